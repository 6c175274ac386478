"""
Test the scan unit lifecycle and the traffic helpers it relies on
"""

import pytest

from triage.scanner.filter_engine import ScanMatch
from triage.scanner.models import InvalidTransitionError, ScanStatus, ScanUnit
from triage.scanner.risk import RiskLevel
from triage.scanner.traffic import TrafficItem, is_static_resource, should_skip

HTML_RESPONSE = "HTTP/1.1 200 OK\r\nContent-Type: text/html\r\n\r\n<html></html>"
IMAGE_RESPONSE = "HTTP/1.1 200 OK\r\nContent-Type: image/png\r\n\r\n\x89PNG"


def make_unit(path="/a?x=1", method="GET", unit_id=1):
    item = TrafficItem.from_raw(method, "example.com", path, f"{method} {path} HTTP/1.1\r\n\r\n", HTML_RESPONSE)
    return ScanUnit(unit_id, item)


def test_new_unit_is_pending():
    unit = make_unit()
    assert unit.status == ScanStatus.PENDING
    assert unit.risk_level == RiskLevel.NONE
    assert not unit.is_terminal


def test_happy_path_derives_risk():
    unit = make_unit()
    unit.mark_scanning()
    assert unit.status == ScanStatus.SCANNING

    assert unit.mark_completed("Confirmed SQL injection in parameter x")
    assert unit.status == ScanStatus.COMPLETED
    assert unit.risk_level == RiskLevel.HIGH
    assert unit.completed_at is not None
    assert unit.duration_seconds is not None


def test_mark_scanning_requires_pending():
    unit = make_unit()
    unit.mark_scanning()

    with pytest.raises(InvalidTransitionError):
        unit.mark_scanning()


def test_terminal_states_are_final():
    unit = make_unit()
    unit.mark_scanning()
    unit.mark_cancelled()

    assert not unit.mark_completed("critical RCE")
    assert not unit.mark_error("late failure")
    assert not unit.mark_cancelled()

    assert unit.status == ScanStatus.CANCELLED
    assert unit.risk_level == RiskLevel.NONE
    assert unit.error_message is None

    with pytest.raises(InvalidTransitionError):
        unit.mark_scanning()


def test_pending_can_fail_or_cancel_directly():
    dropped = make_unit()
    assert dropped.mark_error("queue full")
    assert dropped.status == ScanStatus.ERROR
    assert dropped.error_message == "queue full"

    cancelled = make_unit()
    assert cancelled.mark_cancelled()
    assert cancelled.status == ScanStatus.CANCELLED


def test_views():
    unit = make_unit(path="/very/" + "long/" * 20 + "?q=1")
    assert "?" not in unit.short_url
    assert unit.short_url.endswith("...")
    assert unit.dedup_key == "GET|example.com|/very/" + "long/" * 20

    unit.prefilter_matches = [ScanMatch("sqli", "SQL Injection", "mysql_", "high", "mysql")]
    data = unit.to_dict()
    assert data["status"] == "pending"
    assert data["risk_level"] == "none"
    assert data["prefilter_matches"][0]["sub_type"] == "mysql"
    assert "#1 GET" in repr(unit)


def test_dedup_key_ignores_query_string():
    first = TrafficItem.from_raw("get", "example.com", "/a?x=1", "")
    second = TrafficItem.from_raw("GET", "example.com", "/a?x=2#frag", "")
    other_method = TrafficItem.from_raw("POST", "example.com", "/a", "")

    assert first.dedup_key() == second.dedup_key() == "GET|example.com|/a"
    assert other_method.dedup_key() != first.dedup_key()


def test_static_resources():
    assert is_static_resource("https://example.com/app.min.js")
    assert is_static_resource("https://example.com/logo.PNG?v=3")
    assert is_static_resource("https://example.com/static/page")
    assert not is_static_resource("https://example.com/api/users?id=1")
    assert not is_static_resource("https://example.com/jsonp?callback=x")


def test_static_directories_only_match_the_path():
    assert is_static_resource("/assets/app?v=1")
    assert not is_static_resource("https://example.com/api?next=/js/x")
    assert not is_static_resource("/login?redirect=/static/home")

    redirect = TrafficItem.from_raw("GET", "example.com", "/api?next=/js/x", "", HTML_RESPONSE)
    assert not should_skip(redirect)


def test_should_skip():
    api = TrafficItem.from_raw("GET", "example.com", "/api/users", "", HTML_RESPONSE)
    image_get = TrafficItem.from_raw("GET", "example.com", "/avatar", "", IMAGE_RESPONSE)
    image_post = TrafficItem.from_raw("POST", "example.com", "/upload", "", IMAGE_RESPONSE)
    script = TrafficItem.from_raw("GET", "example.com", "/bundle.js", "", HTML_RESPONSE)

    assert not should_skip(api)
    assert should_skip(image_get)
    assert not should_skip(image_post)
    assert should_skip(script)
    assert should_skip(None)


def test_binary_check_needs_a_response():
    pending = TrafficItem.from_raw("GET", "example.com", "/avatar", "")
    assert not pending.has_response
    assert not should_skip(pending)

    answered = TrafficItem.from_raw("GET", "example.com", "/avatar", "", IMAGE_RESPONSE)
    assert answered.has_response
