"""Post-execution harvesting of out/in-out parameter values."""

from __future__ import annotations

from typing import Dict, Optional, Sequence

from .commands import BoundParameter, Parameter, name_key
from .normalization import normalize
from .results import OutputValues
from .types import is_null

__all__ = ["extract_output_values", "has_output_values"]


def has_output_values(declared: Sequence[Parameter]) -> bool:
    """Return whether any declared parameter yields an output value."""

    return any(p.direction.is_output and not p.is_ref_cursor for p in declared)


def extract_output_values(
    executed: Optional[Sequence[BoundParameter]],
    declared: Optional[Sequence[Parameter]],
) -> Optional[OutputValues]:
    """Collect normalized out/in-out values from executed parameter state.

    Returns `None` when nothing was declared or the executed command carried
    no parameters. Ref-cursor parameters are skipped; their cursors surface
    as result tables instead. Executed parameters with no declaration keep
    their raw value, with `DB_NULL` collapsed to `None`.
    """

    if not declared or not executed:
        return None

    by_key: Dict[str, Parameter] = {p.key: p for p in declared}
    values: Dict[str, object] = {}
    for bound in executed:
        if not bound.direction.is_output:
            continue

        definition = by_key.get(name_key(bound.name))
        if definition is None:
            values[bound.name] = None if is_null(bound.value) else bound.value
            continue
        if definition.is_ref_cursor:
            continue
        values[bound.name] = normalize(bound.value, definition.logical_type)

    return OutputValues(values)
