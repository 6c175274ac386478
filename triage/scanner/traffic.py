"""
Observed traffic as handed to the scan pipeline

The traffic source owns the captured bytes; the pipeline only ever holds a
reference to a TrafficItem and never copies request or response bodies.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlsplit

STATIC_EXTENSIONS = (
    ".js", ".css", ".map",
    ".png", ".jpg", ".jpeg", ".gif", ".ico", ".bmp", ".webp",
    ".svg", ".woff", ".woff2", ".ttf", ".eot", ".otf",
    ".mp3", ".mp4", ".webm", ".wav", ".avi", ".flv",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".zip", ".rar", ".7z", ".tar", ".gz",
    ".xml", ".rss", ".atom", ".sitemap",
)

STATIC_PATH_SEGMENTS = (
    "/images/", "/img/", "/css/", "/js/", "/fonts/", "/static/", "/assets/",
)

# Only consulted for GET; uploads through POST/PUT must still be scanned
BINARY_CONTENT_TYPES = (
    "image/", "font/", "audio/", "video/",
    "application/octet-stream", "application/zip", "application/gzip",
    "application/pdf", "application/wasm",
)


@dataclass(frozen=True)
class TrafficItem:
    """One observed request/response pair"""

    method: str
    url: str
    host: str
    path: str
    raw_request: str
    raw_response: Optional[str] = None
    observed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_raw(
        cls,
        method: str,
        host: str,
        path: str,
        raw_request: str,
        raw_response: Optional[str] = None,
        scheme: str = "http"
    ) -> "TrafficItem":
        """Build an item from the bare (method, host, path, request, response) tuple"""
        if not path.startswith("/"):
            path = "/" + path
        return cls(
            method=method.upper(),
            url=f"{scheme}://{host}{path}",
            host=host,
            path=path,
            raw_request=raw_request,
            raw_response=raw_response,
        )

    @property
    def path_without_query(self) -> str:
        """Path with query string and fragment removed"""
        return urlsplit(self.path).path or "/"

    @property
    def has_response(self) -> bool:
        return self.raw_response is not None

    @property
    def combined_content(self) -> str:
        """Request and response joined so one regex pass sees both sides"""
        return self.raw_request + "\n" + (self.raw_response or "")

    def dedup_key(self) -> str:
        """method|host|path-without-query"""
        return f"{self.method}|{self.host}|{self.path_without_query}"


def is_static_resource(url: str) -> bool:
    """Check whether a URL or path points at a static asset not worth analyzing"""
    path = urlsplit(url.lower()).path

    if path.endswith(STATIC_EXTENSIONS):
        return True

    return any(segment in path for segment in STATIC_PATH_SEGMENTS)


def _response_headers(raw_response: str) -> str:
    """Header block of a raw HTTP response, lower-cased"""
    for separator in ("\r\n\r\n", "\n\n"):
        index = raw_response.find(separator)
        if index > 0:
            return raw_response[:index].lower()
    return raw_response.lower()


def should_skip(item: Optional[TrafficItem]) -> bool:
    """
    Decide whether an observed item is trivial and must not be queued

    Skips static assets by URL, and GET responses carrying a binary
    content type.
    """
    if item is None or not item.url:
        return True

    if is_static_resource(item.url):
        return True

    if item.method == "GET" and item.has_response:
        headers = _response_headers(item.raw_response)
        if "content-type:" in headers:
            return any(content_type in headers for content_type in BINARY_CONTENT_TYPES)

    return False
