"""Cooperative cancellation of per-transcript work.

The scheduler hands every transcript a fresh ``CancellationToken``.
Long-running loops (alignment rows, DP fills, backtracking, gap filling)
call ``check()`` at coarse boundaries, which raises ``TranscriptCancelled``
once the token has been cancelled.
"""

from __future__ import annotations

import threading


class TranscriptCancelled(RuntimeError):
    """Raised inside a worker when its transcript has been cancelled."""


class CancellationToken:
    """Thread-safe cancellation flag.

    Example:
        >>> token = CancellationToken()
        >>> token.cancel()
        >>> token.cancelled
        True
    """

    __slots__ = ("_event", "reason")

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    def check(self) -> None:
        """Raise ``TranscriptCancelled`` if the token was cancelled."""
        if self._event.is_set():
            raise TranscriptCancelled(self.reason)


# Token that is never cancelled, used when no scheduler is involved
NEVER_CANCELLED = CancellationToken()
