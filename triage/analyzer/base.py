"""
Base class for deep analyzers
The scan pipeline depends only on this contract, never on a concrete backend
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional, Sequence

from ..core.cancellation import CancelToken
from ..scanner.traffic import TrafficItem

ChunkCallback = Callable[[str], None]

TIMEOUT_MESSAGE_PREFIX = "analysis timed out"


class AnalyzerError(Exception):
    """The analyzer failed; the unit ends in ERROR with this message"""


class AnalyzerTimeoutError(AnalyzerError):
    """The analyzer exceeded its wall-clock limit"""

    def __init__(self, timeout_seconds: float):
        super().__init__(f"{TIMEOUT_MESSAGE_PREFIX} after {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


class AnalysisCancelled(Exception):
    """The cancel token fired while the analysis was in flight"""


class Analyzer(ABC):
    """
    Abstract base class for the slow, authoritative classifier

    analyze() may block from under a second to several minutes. It must
    check the cancel token promptly and raise AnalysisCancelled when it
    fires, raise AnalyzerError on failure, and otherwise return the full
    verdict text. Partial text may be pushed through on_chunk as it
    arrives.
    """

    @abstractmethod
    def analyze(
        self,
        item: TrafficItem,
        cancel_token: CancelToken,
        on_chunk: Optional[ChunkCallback] = None,
        hints: Sequence = ()
    ) -> str:
        """
        Analyze one request/response pair

        Args:
            item: Observed traffic
            cancel_token: Run-wide cancel flag
            on_chunk: Receives incremental output text
            hints: Pre-filter matches to steer the analysis

        Returns:
            The verdict text
        """

    def close(self):
        """Release connections held by the backend"""
