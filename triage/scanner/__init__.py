"""
Scan pipeline

Components:
- RuleStore: Declarative vulnerability signatures
- FilterEngine: Budgeted concurrent signature matching
- ScanUnit: Per-request lifecycle and risk derivation
- ScanCoordinator: Bounded queue, consumer pool and run lifecycle
  (import it from triage.scanner.coordinator)
"""

from .filter_engine import FilterEngine, ScanMatch, build_prompt_hint, build_ui_message
from .models import InvalidTransitionError, ScanStatus, ScanUnit
from .risk import RiskLevel, derive_risk_level
from .rules import RuleStore, VulnerabilityRule
from .traffic import TrafficItem, should_skip

__all__ = [
    "FilterEngine",
    "ScanMatch",
    "build_prompt_hint",
    "build_ui_message",
    "InvalidTransitionError",
    "ScanStatus",
    "ScanUnit",
    "RiskLevel",
    "derive_risk_level",
    "RuleStore",
    "VulnerabilityRule",
    "TrafficItem",
    "should_skip",
]
