"""
mitmproxy Addon feeding the scan pipeline

Turns every completed request/response pair into a TrafficItem and hands
it to the coordinator, which decides whether it is worth a scan.
"""

import structlog
from mitmproxy import http

from ..scanner.traffic import TrafficItem

logger = structlog.get_logger()

# Bodies are cut here before they reach the pipeline
MAX_BODY_CHARS = 256 * 1024


def _format_body(message) -> str:
    text = message.get_text(strict=False) if message.raw_content else ""
    if text and len(text) > MAX_BODY_CHARS:
        return text[:MAX_BODY_CHARS]
    return text or ""


def _format_headers(headers) -> str:
    return "\r\n".join(f"{name}: {value}" for name, value in headers.items(multi=True))


def format_request(request: http.Request) -> str:
    """Raw HTTP/1.x style text of a request"""
    head = f"{request.method} {request.path} {request.http_version}"
    return f"{head}\r\n{_format_headers(request.headers)}\r\n\r\n{_format_body(request)}"


def format_response(response: http.Response) -> str:
    head = f"{response.http_version} {response.status_code} {response.reason}"
    return f"{head}\r\n{_format_headers(response.headers)}\r\n\r\n{_format_body(response)}"


def build_traffic_item(flow: http.HTTPFlow) -> TrafficItem:
    request = flow.request
    return TrafficItem(
        method=request.method.upper(),
        url=request.pretty_url,
        host=request.pretty_host,
        path=request.path or "/",
        raw_request=format_request(request),
        raw_response=format_response(flow.response) if flow.response else None,
    )


class ScanInterceptor:
    """
    mitmproxy addon for the passive scan pipeline

    This addon hooks into mitmproxy's event lifecycle:
    - request: Count requests passing through
    - response: Hand the complete pair to the coordinator
    - error: Count and log failed flows
    """

    def __init__(self, config, coordinator):
        """
        Initialize the interceptor

        Args:
            config: Application configuration
            coordinator: Receives observed traffic
        """
        self.config = config
        self.coordinator = coordinator
        self.logger = logger.bind(component="interceptor")

        # Statistics
        self.stats = {
            "requests_seen": 0,
            "responses_forwarded": 0,
            "ignored": 0,
            "errors": 0
        }

    def load(self, loader):
        self.logger.info("ScanInterceptor addon loaded")

    def request(self, flow: http.HTTPFlow):
        self.stats["requests_seen"] += 1

    def response(self, flow: http.HTTPFlow):
        """
        Called when a response is received

        Args:
            flow: mitmproxy HTTP flow object
        """
        try:
            if not self._should_capture(flow):
                self.stats["ignored"] += 1
                return

            item = build_traffic_item(flow)
            unit = self.coordinator.on_traffic_observed(item)
            self.stats["responses_forwarded"] += 1

            self.logger.debug(
                "Response forwarded",
                url=item.url,
                status=flow.response.status_code if flow.response else None,
                unit_id=unit.id if unit else None
            )

        except Exception as e:
            self.logger.error("Error in response hook", error=str(e), url=flow.request.pretty_url)
            self.stats["errors"] += 1

    def error(self, flow: http.HTTPFlow):
        error_msg = str(flow.error) if flow.error else "Unknown error"
        self.logger.warning(
            "Flow error",
            url=flow.request.pretty_url if flow.request else "unknown",
            error=error_msg
        )
        self.stats["errors"] += 1

    def _should_capture(self, flow: http.HTTPFlow) -> bool:
        """
        Determine if this flow should reach the pipeline

        Args:
            flow: mitmproxy HTTP flow object

        Returns:
            True if should capture, False otherwise
        """
        if not flow.request:
            return False

        if flow.response and flow.response.headers:
            content_type = flow.response.headers.get("content-type", "").lower()
            for ignored in self.config.proxy.ignored_content_types:
                if content_type.startswith(ignored):
                    return False

        return True

    def get_stats(self) -> dict:
        """Get interceptor statistics"""
        return self.stats.copy()
