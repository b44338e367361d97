from __future__ import annotations

import threading

from task_flow_orchestrator.orchestrator.errors import OperationCancelled


class CancellationToken:
    """Cooperative cancellation flag.

    Setting the token does not interrupt anything; long-running work checks it
    at safe points (between HTTP retries and pages) and stops there.
    """

    __slots__ = ("_event", "_reason")

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self._reason)
