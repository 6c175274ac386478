"""
Risk Ladder

Maps the analyzer's free-text verdict to a discrete risk level.

The ladder is an ordered table: rows are evaluated top to bottom with a
case-insensitive substring search and the first row with a hit decides the
level. The negative-assessment row comes first, so a verdict that says
"no issues found" is NONE even when it also mentions "critical RCE".
Downstream consumers depend on this exact order; extend keyword lists
within their row, never reorder rows.
"""

from enum import Enum
from typing import Optional, Tuple


class RiskLevel(str, Enum):
    """Discrete risk levels with display names and sort priority"""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"
    NONE = "none"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def priority(self) -> int:
        return _PRIORITIES[self]


_PRIORITIES = {
    RiskLevel.CRITICAL: 4,
    RiskLevel.HIGH: 3,
    RiskLevel.MEDIUM: 2,
    RiskLevel.LOW: 1,
    RiskLevel.INFO: 0,
    RiskLevel.NONE: -1,
}

RISK_LADDER_VERSION = "1.0"

# (level, keywords); order is the precedence
RISK_LADDER: Tuple[Tuple[RiskLevel, Tuple[str, ...]], ...] = (
    # 1. Explicit "nothing found" verdicts override everything below
    (RiskLevel.NONE, (
        "no issues found",
        "no issue found",
        "no vulnerabilities found",
        "no vulnerability found",
        "no vulnerabilities were found",
        "no vulnerabilities detected",
        "no security issues",
        "no security issue",
        "no significant issues",
        "no significant risk",
        "looks secure",
        "appears secure",
        "未发现漏洞",
        "未发现安全问题",
        "无安全问题",
    )),
    # 2. Critical / remote code execution class
    (RiskLevel.CRITICAL, (
        "critical",
        "rce",
        "remote code execution",
        "arbitrary code execution",
        "远程代码执行",
    )),
    # 3. High severity classes
    (RiskLevel.HIGH, (
        "sql injection",
        "command injection",
        "xxe",
        "xml external entity",
        "ssrf",
        "server-side request forgery",
        "high risk",
        "high severity",
        "severity: high",
    )),
    # 4. Medium severity classes
    (RiskLevel.MEDIUM, (
        "xss",
        "cross-site scripting",
        "csrf",
        "cross-site request forgery",
        "broken access control",
        "idor",
        "information disclosure",
        "information leak",
        "medium risk",
        "medium severity",
        "severity: medium",
    )),
    # 5. Low severity
    (RiskLevel.LOW, (
        "low risk",
        "low severity",
        "severity: low",
    )),
    # 6. Generic advisory wording
    (RiskLevel.INFO, (
        "info",
        "note",
        "recommend",
    )),
    # 7. Unclassified vulnerability/risk nouns default to medium
    (RiskLevel.MEDIUM, (
        "vulnerability",
        "vulnerabilities",
        "vulnerable",
        "risk",
        "weakness",
    )),
)


def match_ladder(text: Optional[str]) -> Tuple[RiskLevel, Optional[str]]:
    """
    Walk the ladder and report the deciding keyword

    Returns:
        (level, keyword) where keyword is None when no row matched
    """
    if not text:
        return RiskLevel.NONE, None

    lower = text.lower()
    for level, keywords in RISK_LADDER:
        for keyword in keywords:
            if keyword in lower:
                return level, keyword

    return RiskLevel.NONE, None


def derive_risk_level(text: Optional[str]) -> RiskLevel:
    """Derive the risk level of an analysis verdict"""
    level, _ = match_ladder(text)
    return level
