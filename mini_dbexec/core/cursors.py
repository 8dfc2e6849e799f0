"""Detection of cursor-shaped commands and collection of returned cursor handles."""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from .capabilities import resolve_capabilities
from .commands import BoundParameter, Command, Parameter, name_key
from .options import Backend


def requires_cursor_handling(backend: Backend | str, command: Command) -> bool:
    """Return whether `command` must be drained through ref-cursor result tables.

    True only for a stored procedure on a backend that exposes multiple result
    sets through cursors, with at least one ref-cursor parameter declared.
    """

    if not command.is_stored_procedure:
        return False
    if not resolve_capabilities(backend).multi_result_requires_cursor:
        return False
    return any(p.is_ref_cursor for p in command.parameters)


def is_cursor_handle(value: Any) -> bool:
    """A named server-side cursor (non-empty text) or a driver cursor object."""

    if isinstance(value, str):
        return bool(value.strip())
    return callable(getattr(value, "fetchall", None))


def collect_cursor_handles(
    executed: Sequence[BoundParameter],
    declared: Sequence[Parameter],
) -> List[Any]:
    """Return cursor handles in parameter declaration order."""

    by_key: Dict[str, BoundParameter] = {}
    for bound in executed:
        if bound.direction.is_output:
            by_key.setdefault(name_key(bound.name), bound)

    handles: List[Any] = []
    for parameter in declared:
        if not parameter.is_ref_cursor or not parameter.direction.is_output:
            continue
        bound = by_key.get(parameter.key)
        if bound is not None and is_cursor_handle(bound.value):
            handles.append(bound.value)
    return handles
