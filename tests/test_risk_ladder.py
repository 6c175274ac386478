"""
Test risk level derivation from analyzer verdicts
"""

from triage.scanner.risk import RiskLevel, derive_risk_level, match_ladder


def test_negative_verdict_overrides_everything():
    """An explicit 'nothing found' wins even when severe keywords follow"""
    text = "No issues found. A critical RCE was suspected but could not be reproduced."
    assert derive_risk_level(text) == RiskLevel.NONE


def test_high_severity_class():
    assert derive_risk_level("Confirmed SQL injection in the id parameter") == RiskLevel.HIGH


def test_critical_beats_high():
    assert derive_risk_level("SQL injection leading to remote code execution") == RiskLevel.CRITICAL


def test_medium_severity_class():
    assert derive_risk_level("Reflected XSS in the search box") == RiskLevel.MEDIUM


def test_low_severity():
    assert derive_risk_level("Low severity: missing header") == RiskLevel.LOW


def test_advisory_words():
    assert derive_risk_level("Please note the cookie lacks SameSite") == RiskLevel.INFO


def test_generic_noun_defaults_to_medium():
    assert derive_risk_level("A weakness exists in the login flow") == RiskLevel.MEDIUM


def test_no_keyword_is_none():
    assert derive_risk_level("The page renders a static greeting.") == RiskLevel.NONE
    assert derive_risk_level("") == RiskLevel.NONE
    assert derive_risk_level(None) == RiskLevel.NONE


def test_case_insensitive():
    assert derive_risk_level("CROSS-SITE SCRIPTING") == RiskLevel.MEDIUM


def test_keywords_match_as_raw_substrings():
    """'rce' inside 'source' still counts; the ladder does no word splitting"""
    level, keyword = match_ladder("Check the source")
    assert level == RiskLevel.CRITICAL
    assert keyword == "rce"


def test_match_ladder_reports_keyword():
    level, keyword = match_ladder("Server-side request forgery via the url parameter")
    assert level == RiskLevel.HIGH
    assert keyword == "server-side request forgery"

    assert match_ladder("plain text") == (RiskLevel.NONE, None)


def test_priorities_order_levels():
    ordered = sorted(RiskLevel, key=lambda level: level.priority, reverse=True)
    assert ordered == [
        RiskLevel.CRITICAL,
        RiskLevel.HIGH,
        RiskLevel.MEDIUM,
        RiskLevel.LOW,
        RiskLevel.INFO,
        RiskLevel.NONE,
    ]
