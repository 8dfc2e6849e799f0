"""Per-backend capability facts and identifier/parameter naming rules."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from .commands import strip_prefix
from .options import Backend


class IdentifierCasing(str, Enum):
    """How a backend folds unquoted identifiers."""

    NONE = "none"
    UPPERCASE_UNQUOTED = "uppercase_unquoted"


@dataclass(frozen=True)
class Capabilities:
    """Fixed backend facts consulted by strategy selection and naming helpers."""

    backend: Backend
    supports_streaming: bool
    multi_result_requires_cursor: bool
    identifier_casing: IdentifierCasing
    parameter_prefix: str
    cursor_requires_transaction: bool


_CAPABILITIES: Mapping[Backend, Capabilities] = MappingProxyType(
    {
        Backend.SQL_SERVER: Capabilities(
            backend=Backend.SQL_SERVER,
            supports_streaming=True,
            multi_result_requires_cursor=False,
            identifier_casing=IdentifierCasing.NONE,
            parameter_prefix="@",
            cursor_requires_transaction=False,
        ),
        Backend.POSTGRESQL: Capabilities(
            backend=Backend.POSTGRESQL,
            supports_streaming=True,
            multi_result_requires_cursor=True,
            identifier_casing=IdentifierCasing.NONE,
            parameter_prefix="",
            # Named cursors only live inside the transaction that opened them.
            cursor_requires_transaction=True,
        ),
        Backend.ORACLE: Capabilities(
            backend=Backend.ORACLE,
            supports_streaming=False,
            multi_result_requires_cursor=True,
            identifier_casing=IdentifierCasing.UPPERCASE_UNQUOTED,
            parameter_prefix="",
            cursor_requires_transaction=False,
        ),
    }
)


def resolve_capabilities(backend: Backend | str) -> Capabilities:
    """Return the capability facts for `backend`."""

    return _CAPABILITIES[Backend.parse(backend)]


def normalize_table_name(backend: Backend | str, table_name: str) -> str:
    """Normalize a table name handed to an external table/bulk operation.

    Backends that fold unquoted identifiers get each dot-separated part
    uppercased; names containing a double quote are passed through unchanged.
    """

    if not table_name or not table_name.strip():
        return table_name

    capabilities = resolve_capabilities(backend)
    if capabilities.identifier_casing is not IdentifierCasing.UPPERCASE_UNQUOTED:
        return table_name

    if '"' in table_name:
        return table_name

    parts = [part.strip() for part in table_name.split(".")]
    parts = [part for part in parts if part]
    if not parts:
        return table_name
    return ".".join(part.upper() for part in parts)


def normalize_parameter_name(backend: Backend | str, name: str) -> str:
    """Re-prefix a parameter name with the backend's expected prefix."""

    if not name or not name.strip():
        return name
    return resolve_capabilities(backend).parameter_prefix + strip_prefix(name)
