"""
Cooperative cancellation for one scan run
"""

import threading
from typing import Optional


class CancelToken:
    """
    Shared cancel flag handed to every consumer and analyzer of a run

    A fresh token is created on every start(); a token that has been
    cancelled stays cancelled.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled or the timeout passes; True when cancelled"""
        return self._event.wait(timeout)

    def __repr__(self) -> str:
        return f"CancelToken(cancelled={self.is_cancelled})"
