"""
Scan unit model and lifecycle

One ScanUnit per candidate request. Lifecycle:

    PENDING -> SCANNING -> COMPLETED | ERROR | CANCELLED
    PENDING -> ERROR | CANCELLED

Terminal states never change again. The risk level is derived from the
analysis text on completion and is not settable directly.
"""

import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .risk import RiskLevel, derive_risk_level
from .traffic import TrafficItem

SHORT_URL_LENGTH = 60


class ScanStatus(str, Enum):
    """Lifecycle states of a scan unit"""

    PENDING = "pending"
    SCANNING = "scanning"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanStatus.COMPLETED, ScanStatus.ERROR, ScanStatus.CANCELLED)


class InvalidTransitionError(Exception):
    """Raised when a scan unit is asked to start scanning from a wrong state"""

    def __init__(self, unit_id: int, current: ScanStatus, target: ScanStatus):
        super().__init__(f"unit #{unit_id}: cannot move from {current.value} to {target.value}")
        self.unit_id = unit_id
        self.current = current
        self.target = target


class ScanUnit:
    """
    One request/response pair under analysis

    Only the worker that dequeued the unit drives it forward; the per-unit
    lock exists so a concurrent stop() sweep cannot interleave with that
    worker's transition.
    """

    def __init__(self, unit_id: int, traffic: TrafficItem):
        self.id = unit_id
        self.traffic = traffic
        self.method = traffic.method
        self.url = traffic.url
        self.host = traffic.host
        self.created_at = datetime.now(timezone.utc)

        self.status = ScanStatus.PENDING
        self.risk_level = RiskLevel.NONE
        self.analysis_result: Optional[str] = None
        self.error_message: Optional[str] = None
        self.completed_at: Optional[datetime] = None
        self.started_at: Optional[datetime] = None
        self.prefilter_matches: List[Any] = []

        self._lock = threading.Lock()

    # ========== Transitions ==========

    def mark_scanning(self):
        """PENDING -> SCANNING"""
        with self._lock:
            if self.status is not ScanStatus.PENDING:
                raise InvalidTransitionError(self.id, self.status, ScanStatus.SCANNING)
            self.status = ScanStatus.SCANNING
            self.started_at = datetime.now(timezone.utc)

    def mark_completed(self, text: Optional[str]) -> bool:
        """
        Record the analysis verdict and derive the risk level

        Returns:
            False if the unit was already terminal and nothing changed
        """
        with self._lock:
            if self.status.is_terminal:
                return False
            self.status = ScanStatus.COMPLETED
            self.analysis_result = text
            self.risk_level = derive_risk_level(text)
            self.completed_at = datetime.now(timezone.utc)
            return True

    def mark_error(self, message: str) -> bool:
        with self._lock:
            if self.status.is_terminal:
                return False
            self.status = ScanStatus.ERROR
            self.error_message = message
            self.completed_at = datetime.now(timezone.utc)
            return True

    def mark_cancelled(self) -> bool:
        with self._lock:
            if self.status.is_terminal:
                return False
            self.status = ScanStatus.CANCELLED
            self.completed_at = datetime.now(timezone.utc)
            return True

    # ========== Derived views ==========

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def short_url(self) -> str:
        """URL without query string, truncated for display"""
        url = self.url or ""
        query_index = url.find("?")
        if query_index > 0:
            url = url[:query_index]
        if len(url) > SHORT_URL_LENGTH:
            return url[:SHORT_URL_LENGTH] + "..."
        return url

    @property
    def dedup_key(self) -> str:
        return self.traffic.dedup_key()

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "method": self.method,
            "url": self.url,
            "host": self.host,
            "status": self.status.value,
            "risk_level": self.risk_level.value,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "analysis_result": self.analysis_result,
            "error_message": self.error_message,
            "prefilter_matches": [match.to_dict() for match in self.prefilter_matches],
        }

    def __repr__(self) -> str:
        return (
            f"#{self.id} {self.method} {self.short_url} "
            f"[{self.status.value}] {self.risk_level.display_name}"
        )
