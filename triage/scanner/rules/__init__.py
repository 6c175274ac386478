"""
Declarative signature rules for the pre-filter engine
"""

from .store import (
    SEVERITIES,
    CompiledPattern,
    VulnerabilityRule,
    RuleStore,
    build_rule,
    build_rules,
    load_definitions,
)

__all__ = [
    "SEVERITIES",
    "CompiledPattern",
    "VulnerabilityRule",
    "RuleStore",
    "build_rule",
    "build_rules",
    "load_definitions",
]
