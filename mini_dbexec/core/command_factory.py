"""Helpers that build commands with backend-conventional parameter names."""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Optional

from .capabilities import normalize_parameter_name
from .commands import Command, CommandKind, Parameter
from .options import Backend


def build_command(
    text: str,
    kind: CommandKind = CommandKind.TEXT,
    parameters: Iterable[Parameter] = (),
    *,
    backend: Optional[Backend | str] = None,
    timeout: Optional[float] = None,
    allowed_procedures: Optional[Iterable[str]] = None,
    allowed_identifiers: Optional[Iterable[str]] = None,
    identifiers: Iterable[str] = (),
) -> Command:
    """Build a `Command`, re-prefixing parameter names for `backend` when given.

    SQL Server names get `@`; PostgreSQL and Oracle names are bare.
    """

    declared = []
    for parameter in parameters:
        if backend is not None:
            name = normalize_parameter_name(backend, parameter.name)
            if name != parameter.name:
                parameter = replace(parameter, name=name)
        declared.append(parameter)

    return Command(
        text=text,
        kind=kind,
        parameters=tuple(declared),
        timeout=timeout,
        allowed_procedures=frozenset(allowed_procedures) if allowed_procedures is not None else None,
        allowed_identifiers=frozenset(allowed_identifiers) if allowed_identifiers is not None else None,
        identifiers=tuple(identifiers),
    )
