"""
Test conversion of mitmproxy flows into pipeline traffic
"""

from types import SimpleNamespace

from mitmproxy.test import tflow

from triage.core.config import ProxyConfig
from triage.interception.interceptor import ScanInterceptor, build_traffic_item


class RecordingCoordinator:
    def __init__(self):
        self.items = []

    def on_traffic_observed(self, item):
        self.items.append(item)
        return None


def make_interceptor():
    coordinator = RecordingCoordinator()
    config = SimpleNamespace(proxy=ProxyConfig())
    return ScanInterceptor(config, coordinator), coordinator


def test_flow_becomes_traffic_item():
    flow = tflow.tflow(resp=True)
    item = build_traffic_item(flow)

    assert item.method == "GET"
    assert item.path == "/path"
    assert item.url == flow.request.pretty_url
    assert item.raw_request.startswith("GET /path HTTP/1.1\r\n")
    assert item.raw_response.startswith("HTTP/1.1 200 OK")
    assert "message" in item.raw_response


def test_response_hook_forwards_to_coordinator():
    interceptor, coordinator = make_interceptor()
    flow = tflow.tflow(resp=True)

    interceptor.request(flow)
    interceptor.response(flow)

    assert len(coordinator.items) == 1
    assert coordinator.items[0].host == flow.request.pretty_host
    assert interceptor.get_stats()["responses_forwarded"] == 1
    assert interceptor.get_stats()["requests_seen"] == 1


def test_ignored_content_types_are_not_forwarded():
    interceptor, coordinator = make_interceptor()
    flow = tflow.tflow(resp=True)
    flow.response.headers["content-type"] = "image/png"

    interceptor.response(flow)

    assert coordinator.items == []
    assert interceptor.get_stats()["ignored"] == 1


def test_hook_errors_are_counted_not_raised():
    interceptor, _ = make_interceptor()
    interceptor.coordinator = None
    flow = tflow.tflow(resp=True)

    interceptor.response(flow)

    assert interceptor.get_stats()["errors"] == 1
