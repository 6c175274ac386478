"""
Rule Store

Immutable collection of vulnerability signatures for the pre-filter.

Rules are built once, on first use, from a declarative data set. Building
fails open per pattern: a regex that does not compile is dropped on its
own and the rule keeps its other patterns; a rule left without any valid
pattern is omitted. One bad pattern never takes the rule set down.
"""

import re
import threading
from collections import OrderedDict
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

import structlog
import yaml

logger = structlog.get_logger()

SEVERITIES = ("critical", "high", "medium", "low", "info")

DEFAULT_RULES_RESOURCE = "default_rules.yaml"


@dataclass(frozen=True)
class CompiledPattern:
    """A regular expression with an optional sub-type label"""

    source: str
    regex: Optional["re.Pattern[str]"]
    sub_type: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.regex is not None

    @classmethod
    def compile(cls, source: str, sub_type: Optional[str] = None) -> "CompiledPattern":
        """Compile a pattern, recording the failure instead of raising"""
        try:
            return cls(source=source, regex=re.compile(source), sub_type=sub_type)
        except (re.error, TypeError) as e:
            return cls(source=str(source), regex=None, sub_type=sub_type, error=str(e))


@dataclass(frozen=True)
class VulnerabilityRule:
    """One signature category: type tag, display name, severity and patterns"""

    type: str
    name: str
    severity: str
    patterns: Tuple[CompiledPattern, ...]


def build_rule(
    rule_type: str,
    name: str,
    severity: str,
    patterns: Iterable[Union[str, Dict[str, Any]]],
    sub_type: Optional[str] = None
) -> Optional[VulnerabilityRule]:
    """
    Build one rule, dropping patterns that do not compile

    Args:
        rule_type: Category tag, e.g. "sqli"
        name: Display name
        severity: One of SEVERITIES
        patterns: Bare regex strings or {"regex", "sub_type"} mappings
        sub_type: Default sub-type for bare strings

    Returns:
        The rule, or None when no pattern survived or the severity is unknown
    """
    severity = str(severity).lower()
    if severity not in SEVERITIES:
        logger.warning("Rule dropped: unknown severity", type=rule_type, name=name, severity=severity)
        return None

    compiled = []
    for entry in patterns or ():
        if isinstance(entry, dict):
            pattern = CompiledPattern.compile(entry.get("regex"), entry.get("sub_type", sub_type))
        else:
            pattern = CompiledPattern.compile(entry, sub_type)

        if pattern.is_valid:
            compiled.append(pattern)
        else:
            logger.debug(
                "Pattern dropped",
                type=rule_type,
                sub_type=pattern.sub_type,
                pattern=pattern.source,
                error=pattern.error
            )

    if not compiled:
        logger.debug("Rule dropped: no valid patterns", type=rule_type, name=name)
        return None

    return VulnerabilityRule(
        type=rule_type,
        name=name,
        severity=severity,
        patterns=tuple(compiled)
    )


def build_rules(definitions: Iterable[Dict[str, Any]]) -> List[VulnerabilityRule]:
    """Build every definition, skipping the ones that end up empty"""
    rules = []
    for definition in definitions or ():
        if not isinstance(definition, dict):
            logger.warning("Rule definition ignored: not a mapping", definition=repr(definition)[:80])
            continue
        rule = build_rule(
            rule_type=definition.get("type", ""),
            name=definition.get("name") or definition.get("type", ""),
            severity=definition.get("severity", "info"),
            patterns=definition.get("patterns") or [],
            sub_type=definition.get("sub_type")
        )
        if rule is not None:
            rules.append(rule)
    return rules


def load_definitions(path: Optional[Path] = None) -> List[Dict[str, Any]]:
    """
    Read rule definitions from a YAML document

    Args:
        path: Rule file; the packaged default set when None
    """
    if path is None:
        text = resources.files(__package__).joinpath(DEFAULT_RULES_RESOURCE).read_text(encoding="utf-8")
    else:
        text = Path(path).read_text(encoding="utf-8")

    document = yaml.safe_load(text) or {}
    if isinstance(document, list):
        return document
    return document.get("rules") or []


class RuleStore:
    """
    Lazily built, read-mostly rule collection

    The first get_all_rules() call builds the rules under a lock; every
    later call reads the finished tuple without locking.
    """

    def __init__(self, loader: Callable[[], Iterable[Dict[str, Any]]]):
        self._loader = loader
        self._rules: Optional[Tuple[VulnerabilityRule, ...]] = None
        self._lock = threading.Lock()
        self.logger = logger.bind(component="rule_store")

    @classmethod
    def default(cls) -> "RuleStore":
        """Store over the packaged signature set"""
        return cls(lambda: load_definitions(None))

    @classmethod
    def from_yaml(cls, path: Path) -> "RuleStore":
        return cls(lambda: load_definitions(path))

    @classmethod
    def from_definitions(cls, definitions: Iterable[Dict[str, Any]]) -> "RuleStore":
        definitions = list(definitions)
        return cls(lambda: definitions)

    def get_all_rules(self) -> List[VulnerabilityRule]:
        """All rules, in declaration order"""
        rules = self._rules
        if rules is None:
            with self._lock:
                if self._rules is None:
                    self._rules = tuple(build_rules(self._loader()))
                    self.logger.info(
                        "Rule set built",
                        rules=len(self._rules),
                        patterns=sum(len(rule.patterns) for rule in self._rules)
                    )
                rules = self._rules
        return list(rules)

    def __len__(self) -> int:
        return len(self.get_all_rules())

    def stats(self) -> Dict[str, Any]:
        """Rule and pattern counts, overall and per type"""
        rules = self.get_all_rules()
        by_type: Dict[str, Dict[str, int]] = OrderedDict()

        for rule in sorted(rules, key=lambda r: r.type):
            counts = by_type.setdefault(rule.type, {"rules": 0, "patterns": 0})
            counts["rules"] += 1
            counts["patterns"] += len(rule.patterns)

        return {
            "total_rules": len(rules),
            "total_patterns": sum(len(rule.patterns) for rule in rules),
            "by_type": dict(by_type),
        }
