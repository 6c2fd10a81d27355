from __future__ import annotations

from time import monotonic
from typing import Any

from .errors import ReconcileCancelled


class ReconcileContext:
    """Cancellation token for one reconciliation invocation.

    ``stopped`` is any object exposing ``is_set()`` (a ``threading.Event`` or the
    flag kopf hands to timers). ``timeout`` is an overall deadline in seconds.
    """

    def __init__(
        self,
        *,
        stopped: Any = None,
        timeout: float | None = None,
        request_timeout: float | None = None,
    ) -> None:
        self._stopped = stopped
        self._deadline = monotonic() + timeout if timeout else None
        self._request_timeout = request_timeout

    @property
    def cancelled(self) -> bool:
        if self._stopped is not None and self._stopped.is_set():
            return True
        return self._deadline is not None and monotonic() >= self._deadline

    def check(self) -> None:
        """Raise ReconcileCancelled if the invocation must stop."""
        if self._stopped is not None and self._stopped.is_set():
            raise ReconcileCancelled("reconciliation cancelled")
        if self._deadline is not None and monotonic() >= self._deadline:
            raise ReconcileCancelled("reconciliation deadline exceeded")

    def request_timeout(self) -> float | None:
        """Timeout for the next store request, bounded by the remaining deadline."""
        if self._deadline is None:
            return self._request_timeout
        remaining = max(self._deadline - monotonic(), 0.001)
        if self._request_timeout is None:
            return remaining
        return min(remaining, self._request_timeout)
