"""Explicit transaction handle with disposal-implies-rollback semantics."""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Optional

import structlog

from ._async_utils import _maybe_await, _maybe_close
from .contracts import TransactionPort
from .errors import DatabaseError, ErrorCategory

logger = structlog.get_logger(__name__)


class TransactionState(str, Enum):
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    DISPOSED = "disposed"


class TransactionHandle:
    """Single-use wrapper over a transport transaction.

    Leaving `async with` disposes the handle; work that was not committed
    explicitly is rolled back.

    Example:
        async with await executor.begin_transaction() as tx:
            await executor.execute(command)
            await tx.commit()
    """

    def __init__(
        self,
        transaction: TransactionPort,
        on_dispose: Optional[Callable[[], None]] = None,
    ) -> None:
        self._transaction = transaction
        self._on_dispose = on_dispose
        self._state = TransactionState.ACTIVE

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is TransactionState.ACTIVE

    @property
    def transaction(self) -> Any:
        """Underlying transport transaction, passed to commands run inside it."""

        return self._transaction

    def _require_active(self, action: str) -> None:
        if self._state is not TransactionState.ACTIVE:
            raise DatabaseError(
                ErrorCategory.STATE,
                f"Cannot {action}: transaction is {self._state.value}.",
            )

    async def commit(self) -> None:
        self._require_active("commit")
        await _maybe_await(self._transaction.commit())
        self._state = TransactionState.COMMITTED
        logger.debug("transaction_committed")

    async def rollback(self) -> None:
        self._require_active("rollback")
        try:
            await _maybe_await(self._transaction.rollback())
        finally:
            self._state = TransactionState.ROLLED_BACK
        logger.debug("transaction_rolled_back")

    async def dispose(self) -> None:
        """Roll back if still active, then release the transaction. Idempotent."""

        if self._state is TransactionState.DISPOSED:
            return
        try:
            if self._state is TransactionState.ACTIVE:
                logger.debug("transaction_rollback_on_dispose")
                await _maybe_await(self._transaction.rollback())
        finally:
            self._state = TransactionState.DISPOSED
            try:
                await _maybe_close(self._transaction)
            finally:
                if self._on_dispose is not None:
                    self._on_dispose()

    async def __aenter__(self) -> TransactionHandle:
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.dispose()
