"""Cooperative cancellation checked at the executor's suspension points."""

from __future__ import annotations


class OperationCancelledError(Exception):
    """Raised when work observes a cancellation request."""


class CancellationToken:
    """Caller-owned cancellation flag.

    The executor checks it before a buffered fill, before each cursor drain,
    before and after each streamed row, and before any retry attempt. A fill
    already running is never interrupted.
    """

    __slots__ = ("_cancelled", "_reason")

    def __init__(self) -> None:
        self._cancelled = False
        self._reason = ""

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "operation cancelled") -> None:
        self._cancelled = True
        self._reason = reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelledError(self._reason)


def is_cancelled(token: CancellationToken | None) -> bool:
    return token is not None and token.cancelled
