"""Shared core type aliases and sentinels used across contracts, executor, and ports."""

from __future__ import annotations

from typing import Any, List, Mapping, Optional

RowMapping = Mapping[str, Any]
Rows = List[RowMapping]
MaybeRow = Optional[RowMapping]


class _DBNullType:
    """Singleton marker a transport may return for a database NULL."""

    _instance: "_DBNullType | None" = None

    def __new__(cls) -> "_DBNullType":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DB_NULL"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self) -> str:
        return "DB_NULL"


DB_NULL = _DBNullType()


def is_null(value: Any) -> bool:
    """Return whether `value` is `None` or the `DB_NULL` sentinel."""

    return value is None or value is DB_NULL
