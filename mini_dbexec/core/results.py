"""Result entities returned by executor operations."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .commands import name_key, strip_prefix
from .strategy import Strategy
from .types import RowMapping


@dataclass(frozen=True)
class ResultTable:
    """One buffered result set: column names plus row mappings."""

    columns: Tuple[str, ...] = ()
    rows: Tuple[RowMapping, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "rows", tuple(self.rows))

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[RowMapping]:
        return iter(self.rows)


class OutputValues(Mapping[str, Any]):
    """Read-only output values keyed by prefix-stripped, case-insensitive names.

    Iteration yields the names as reported by the backend (prefix removed).
    """

    __slots__ = ("_items",)

    def __init__(self, items: Optional[Mapping[str, Any]] = None):
        self._items: Dict[str, Tuple[str, Any]] = {}
        for name, value in (items or {}).items():
            self._set(name, value)

    def _set(self, name: str, value: Any) -> None:
        stripped = strip_prefix(name)
        self._items[stripped.casefold()] = (stripped, value)

    def _key(self, name: str) -> str:
        # Reported names may themselves start with a prefix character.
        exact = name.casefold()
        return exact if exact in self._items else name_key(name)

    def __getitem__(self, name: str) -> Any:
        return self._items[self._key(name)][1]

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        return self._key(name) in self._items

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        body = ", ".join(f"{name!r}: {value!r}" for name, value in self._items.values())
        return f"OutputValues({{{body}}})"


EMPTY_OUTPUT_VALUES = OutputValues()


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one successful command execution.

    Attributes:
        tables: Buffered result sets; ref-cursor results follow declaration order.
        output_values: Normalized out/in-out values (ref-cursors excluded).
        rows_affected: Row count reported for non-query execution.
        scalar: First column of the first row for scalar execution.
        strategy: Strategy chosen for the command.
        attempts: Number of attempts the retry gate ran.
    """

    tables: Tuple[ResultTable, ...] = ()
    output_values: OutputValues = field(default_factory=OutputValues)
    rows_affected: Optional[int] = None
    scalar: Any = None
    strategy: Optional[Strategy] = None
    attempts: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "tables", tuple(self.tables))

    @property
    def table(self) -> ResultTable:
        """First result table, or an empty table when none was produced."""

        if self.tables:
            return self.tables[0]
        return ResultTable()

    @property
    def rows(self) -> List[RowMapping]:
        return list(self.table.rows)
