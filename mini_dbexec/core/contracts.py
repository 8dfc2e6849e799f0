"""Core port contracts implemented by transport adapters.

Methods marked as returning `Any` may return a plain value or an awaitable;
the executor awaits when needed.
"""

from __future__ import annotations

from typing import Any, List, Optional, Protocol, Sequence, Tuple

from .commands import BoundParameter, Command
from .errors import DbError
from .options import Backend
from .types import Rows


class DialectPort(Protocol):
    """Backend identity and backend-specific error translation."""

    backend: Backend

    def map_error(self, exc: BaseException) -> DbError: ...


class ReaderPort(Protocol):
    """Sequential row reader; one `read()` per row until it yields `None`."""

    columns: Tuple[str, ...]

    def read(self) -> Any: ...

    def close(self) -> Any: ...


class TransactionPort(Protocol):
    def commit(self) -> Any: ...

    def rollback(self) -> Any: ...


class CommandPort(Protocol):
    """One prepared command bound to a connection (and optional transaction)."""

    @property
    def parameters(self) -> Sequence[BoundParameter]: ...

    def execute(self) -> Any: ...

    def execute_scalar(self) -> Any: ...

    def execute_reader(self) -> Any: ...

    def fill_table(self) -> Tuple[Tuple[str, ...], Rows]: ...

    def fill_tables(self) -> List[Tuple[Tuple[str, ...], Rows]]: ...

    def read_cursor(self, handle: Any) -> Tuple[Tuple[str, ...], Rows]: ...

    def close(self) -> Any: ...


class ConnectionPort(Protocol):
    """Open connection able to create commands and begin transactions."""

    dialect: DialectPort

    def create_command(
        self,
        command: Command,
        *,
        timeout: float,
        transaction: Optional[TransactionPort] = None,
    ) -> CommandPort: ...

    def begin(self) -> Any: ...

    def close(self) -> Any: ...


__all__ = [
    "CommandPort",
    "ConnectionPort",
    "DialectPort",
    "ReaderPort",
    "TransactionPort",
]
