"""
Test the budgeted concurrent pre-filter
"""

import time

from triage.scanner.filter_engine import (
    FilterEngine,
    ScanMatch,
    build_prompt_hint,
    build_ui_message,
    partition,
)
from triage.scanner.rules import CompiledPattern, RuleStore, VulnerabilityRule
from triage.scanner.traffic import TrafficItem

MYSQL_ERROR_PAGE = (
    "GET /item?id=1%27 HTTP/1.1\r\nHost: shop.example\r\n\r\n"
    "\nHTTP/1.1 500 Internal Server Error\r\nContent-Type: text/html\r\n\r\n"
    "<p>... You have an error in your SQL syntax ...</p>"
)


class StaticStore:
    """Serves prebuilt rules, bypassing the YAML loader"""

    def __init__(self, rules):
        self.rules = list(rules)

    def get_all_rules(self):
        return list(self.rules)


class ExplodingRegex:
    def search(self, content):
        raise RuntimeError("regex engine failure")


class SlowRegex:
    def __init__(self, delay):
        self.delay = delay

    def search(self, content):
        time.sleep(self.delay)
        return None


def make_rule(rule_type, *patterns):
    return VulnerabilityRule(
        type=rule_type,
        name=rule_type.title(),
        severity="high",
        patterns=tuple(patterns)
    )


def test_mysql_error_page_yields_single_match():
    engine = FilterEngine(RuleStore.default(), workers=2)
    try:
        matches = engine.scan(MYSQL_ERROR_PAGE, 500)
    finally:
        engine.shutdown()

    assert len(matches) == 1
    assert matches[0].rule_type == "sqli"
    assert matches[0].sub_type == "mysql"
    assert matches[0].matched_string == "You have an error in your SQL syntax"


def test_first_pattern_in_declaration_order_wins():
    store = RuleStore.from_definitions([
        {"type": "demo", "name": "Demo", "severity": "low", "patterns": [
            {"regex": "alpha", "sub_type": "first"},
            {"regex": "beta", "sub_type": "second"},
        ]},
    ])
    engine = FilterEngine(store, workers=1)
    try:
        matches = engine.scan("beta comes before alpha here", 1000)
    finally:
        engine.shutdown()

    assert len(matches) == 1
    assert matches[0].sub_type == "first"
    assert matches[0].matched_string == "alpha"


def test_shorter_budget_returns_subset():
    content = MYSQL_ERROR_PAGE + "\nredis_version:7.0\n<title>Index of /</title>\nFatal error: boom"
    engine = FilterEngine(RuleStore.default(), workers=3)
    try:
        quick = engine.scan(content, 0)
        full = engine.scan(content, 10000)
    finally:
        engine.shutdown()

    assert set(quick) <= set(full)
    assert {match.rule_type for match in full} >= {"sqli", "service_fingerprints", "directory_listing"}


def test_rule_that_raises_is_skipped():
    store = StaticStore([
        make_rule("broken", CompiledPattern("boom", ExplodingRegex())),
        make_rule("working", CompiledPattern.compile("needle")),
    ])
    engine = FilterEngine(store, workers=1)
    try:
        matches = engine.scan("haystack with a needle", 1000)
    finally:
        engine.shutdown()

    assert [match.rule_type for match in matches] == ["working"]


def test_late_batch_contributes_nothing():
    store = StaticStore([
        make_rule("slow", CompiledPattern("slow", SlowRegex(0.5))),
        make_rule("fast", CompiledPattern.compile("needle")),
    ])
    engine = FilterEngine(store, workers=2)
    try:
        started = time.monotonic()
        matches = engine.scan("needle", 50)
        elapsed = time.monotonic() - started
    finally:
        engine.shutdown()

    assert [match.rule_type for match in matches] == ["fast"]
    assert elapsed < 0.4
    assert engine.get_stats()["timeouts"] == 1


def test_disabled_engine_returns_nothing():
    engine = FilterEngine(RuleStore.default(), workers=1, enabled=False)
    try:
        assert engine.scan(MYSQL_ERROR_PAGE, 500) == []
        engine.enable()
        assert len(engine.scan(MYSQL_ERROR_PAGE, 500)) == 1
    finally:
        engine.shutdown()


def test_scan_traffic_covers_both_sides():
    store = RuleStore.from_definitions([
        {"type": "req", "name": "Req", "severity": "low", "patterns": ["X-Debug: 1"]},
        {"type": "resp", "name": "Resp", "severity": "low", "patterns": ["stack dump"]},
    ])
    item = TrafficItem.from_raw(
        "get", "api.example", "/v1/users",
        raw_request="GET /v1/users HTTP/1.1\r\nX-Debug: 1\r\n\r\n",
        raw_response="HTTP/1.1 500 Error\r\n\r\nstack dump follows"
    )
    engine = FilterEngine(store, workers=1)
    try:
        matches = engine.scan_traffic(item, 1000)
    finally:
        engine.shutdown()

    assert {match.rule_type for match in matches} == {"req", "resp"}


def test_scan_after_shutdown_returns_nothing():
    engine = FilterEngine(RuleStore.default(), workers=1)
    engine.shutdown()
    assert engine.scan(MYSQL_ERROR_PAGE, 500) == []


def test_partition_sizes():
    rules = list(range(10))
    assert [len(batch) for batch in partition(rules, 3)] == [4, 4, 2]
    assert [len(batch) for batch in partition(rules, 20)] == [1] * 10
    assert partition([], 3) == []


def test_hint_and_ui_text():
    match = ScanMatch("sqli", "SQL Injection", "x" * 80, "high", "mysql")

    hint = match.to_prompt_hint()
    assert hint.startswith("SQL Injection (mysql) suspected")
    assert "x" * 50 + "..." in hint
    assert "x" * 51 not in hint

    assert "x" * 80 in match.to_ui_message()

    block = build_prompt_hint([match])
    assert "[Pre-filter results]" in block
    assert "1. SQL Injection (mysql)" in block

    assert build_prompt_hint([]) == ""
    assert build_ui_message([]) == ""
    assert "1 suspected" in build_ui_message([match])
