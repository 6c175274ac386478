"""
Pre-Filter Engine

Fast, best-effort signature matching over a request/response pair, run
before the slow analyzer to hand it hints.

The rule list is split into one batch per filter worker. Every batch runs
as a task on the engine's own thread pool and all batches share a single
deadline: a batch that has not finished when the budget runs out is
cancelled and contributes nothing. Partial results are normal here, not an
error.

Thread ceiling: the pool is shared by every coordinator consumer, so at
most consumer_workers x filter_workers batch tasks can be outstanding while
filter_workers of them run.
"""

import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import structlog

from .rules import RuleStore, VulnerabilityRule
from .traffic import TrafficItem

logger = structlog.get_logger()

DEFAULT_FILTER_WORKERS = 2
DEFAULT_BUDGET_MS = 500


def _truncate(text: Optional[str], limit: int) -> str:
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


@dataclass(frozen=True)
class ScanMatch:
    """One rule hit from a single scan call"""

    rule_type: str
    rule_name: str
    matched_string: str
    severity: str
    sub_type: Optional[str] = None

    def _label(self) -> str:
        if self.sub_type:
            return f"{self.rule_name} ({self.sub_type})"
        return self.rule_name

    def to_prompt_hint(self) -> str:
        """Short form appended to the analyzer prompt"""
        return f"{self._label()} suspected (matched: {_truncate(self.matched_string, 50)})"

    def to_ui_message(self) -> str:
        return (
            f"Pre-filter matched a possible {self._label()}, "
            f"matched text: {_truncate(self.matched_string, 100)}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.rule_type,
            "name": self.rule_name,
            "matched": self.matched_string,
            "severity": self.severity,
            "sub_type": self.sub_type,
        }


def build_prompt_hint(matches: Sequence[ScanMatch]) -> str:
    """Hint block appended to the analyzer's user prompt"""
    if not matches:
        return ""

    lines = [
        "",
        "",
        "[Pre-filter results]",
        "The following vulnerability signatures were detected. "
        "Focus on them and verify whether they are real:",
    ]
    for index, match in enumerate(matches, start=1):
        lines.append(f"{index}. {match.to_prompt_hint()}")
    lines.append("")
    lines.append("Verify these findings actively; do not conclude from signatures alone.")
    return "\n".join(lines)


def build_ui_message(matches: Sequence[ScanMatch]) -> str:
    if not matches:
        return ""
    return f"Pre-filter matched {len(matches)} suspected vulnerability signature(s)"


def partition(rules: Sequence[VulnerabilityRule], parts: int) -> List[Sequence[VulnerabilityRule]]:
    """Split rules into at most `parts` contiguous, roughly equal batches"""
    if not rules:
        return []
    size = max(1, math.ceil(len(rules) / max(1, parts)))
    return [rules[i:i + size] for i in range(0, len(rules), size)]


class FilterEngine:
    """
    Timeout-bounded concurrent rule matcher

    Created once at startup and shared by every scan run.
    """

    def __init__(
        self,
        rule_store: RuleStore,
        workers: int = DEFAULT_FILTER_WORKERS,
        enabled: bool = True
    ):
        """
        Args:
            rule_store: Source of the rules to evaluate
            workers: Batch count and pool size; keep it below the consumer pool
            enabled: Disabled engines return no matches
        """
        self.rule_store = rule_store
        self.workers = max(1, workers)
        self.enabled = enabled
        self.logger = logger.bind(component="filter_engine")

        self._executor = ThreadPoolExecutor(
            max_workers=self.workers,
            thread_name_prefix="prefilter"
        )
        self._stats_lock = threading.Lock()
        self.stats = {
            "scans": 0,
            "matches": 0,
            "timeouts": 0,
            "batch_errors": 0,
        }

        self.logger.info(
            "Filter engine ready",
            workers=self.workers,
            rules=len(self.rule_store.get_all_rules())
        )

    def enable(self):
        self.enabled = True
        self.logger.info("Filter engine enabled")

    def disable(self):
        self.enabled = False
        self.logger.info("Filter engine disabled")

    def scan(self, content: str, budget_ms: int = DEFAULT_BUDGET_MS) -> List[ScanMatch]:
        """
        Match every rule against the content within a wall-clock budget

        Args:
            content: Text to match, normally request and response joined
            budget_ms: Shared deadline for all batches, in milliseconds

        Returns:
            Matches from the batches that finished in time, at most one per rule
        """
        if not self.enabled or not content:
            return []

        rules = self.rule_store.get_all_rules()
        batches = partition(rules, self.workers)
        if not batches:
            return []

        deadline = time.monotonic() + max(0, budget_ms) / 1000.0
        stop = threading.Event()

        try:
            futures = [
                self._executor.submit(self._scan_batch, content, batch, stop)
                for batch in batches
            ]
        except RuntimeError as e:
            # Pool already shut down
            self.logger.warning("Filter scan skipped", error=str(e))
            return []

        matches: List[ScanMatch] = []
        timeouts = 0
        errors = 0

        for future in futures:
            remaining = max(0.0, deadline - time.monotonic())
            try:
                matches.extend(future.result(timeout=remaining))
            except FuturesTimeoutError:
                future.cancel()
                timeouts += 1
            except Exception as e:
                errors += 1
                self.logger.debug("Filter batch failed", error=str(e))

        # Batches still running stop at their next rule boundary
        stop.set()

        with self._stats_lock:
            self.stats["scans"] += 1
            self.stats["matches"] += len(matches)
            self.stats["timeouts"] += timeouts
            self.stats["batch_errors"] += errors

        if timeouts:
            self.logger.debug("Filter scan hit its budget", budget_ms=budget_ms, late_batches=timeouts)

        return matches

    def scan_traffic(self, item: TrafficItem, budget_ms: int = DEFAULT_BUDGET_MS) -> List[ScanMatch]:
        """Scan both sides of an observed pair in one pass"""
        return self.scan(item.combined_content, budget_ms)

    @staticmethod
    def _scan_batch(
        content: str,
        rules: Sequence[VulnerabilityRule],
        stop: threading.Event
    ) -> List[ScanMatch]:
        """Evaluate one batch; first matching pattern wins per rule"""
        matches = []

        for rule in rules:
            if stop.is_set():
                break

            for pattern in rule.patterns:
                if not pattern.is_valid:
                    continue
                try:
                    found = pattern.regex.search(content)
                except Exception:
                    # A failing rule is skipped on its own
                    break

                if found:
                    matches.append(ScanMatch(
                        rule_type=rule.type,
                        rule_name=rule.name,
                        matched_string=found.group(0),
                        severity=rule.severity,
                        sub_type=pattern.sub_type
                    ))
                    break

        return matches

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            return {**self.stats, "workers": self.workers, "enabled": self.enabled}

    def shutdown(self, wait: bool = False):
        """Release the pool; queued batches are cancelled"""
        self.logger.info("Filter engine shutting down")
        self._executor.shutdown(wait=wait, cancel_futures=True)
