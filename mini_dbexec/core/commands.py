"""Immutable command and parameter descriptions consumed by the executor."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, FrozenSet, Optional, Tuple

PARAMETER_PREFIXES = ("@", ":", "?")


class LogicalType(str, Enum):
    """Cross-backend logical type used for parameter declaration and normalization."""

    STRING = "string"
    ANSI_STRING = "ansi_string"
    STRING_FIXED = "string_fixed"
    ANSI_STRING_FIXED = "ansi_string_fixed"
    CLOB = "clob"
    NCLOB = "nclob"

    INT16 = "int16"
    INT32 = "int32"
    INT64 = "int64"
    BYTE = "byte"
    SBYTE = "sbyte"
    UINT16 = "uint16"
    UINT32 = "uint32"
    UINT64 = "uint64"
    DECIMAL = "decimal"
    DOUBLE = "double"
    SINGLE = "single"
    CURRENCY = "currency"

    BOOLEAN = "boolean"
    GUID = "guid"

    BINARY = "binary"
    BLOB = "blob"

    DATE = "date"
    TIME = "time"
    DATE_TIME = "date_time"
    DATE_TIME_PRECISE = "date_time_precise"
    DATE_TIME_OFFSET = "date_time_offset"
    TIMESTAMP = "timestamp"
    INTERVAL = "interval"

    JSON = "json"
    XML = "xml"

    REF_CURSOR = "ref_cursor"


class Direction(str, Enum):
    """Parameter direction as seen by the backend."""

    IN = "in"
    OUT = "out"
    IN_OUT = "in_out"
    RETURN_VALUE = "return_value"

    @property
    def is_output(self) -> bool:
        return self in (Direction.OUT, Direction.IN_OUT)


class CommandKind(str, Enum):
    """How the command text is interpreted."""

    TEXT = "text"
    STORED_PROCEDURE = "stored_procedure"


def strip_prefix(name: str) -> str:
    """Remove exactly one leading backend parameter prefix (`@`, `:`, `?`)."""

    if not name:
        return name
    if name[0] in PARAMETER_PREFIXES:
        return name[1:]
    return name


def name_key(name: str) -> str:
    """Comparison key for parameter names: prefix-stripped, case-insensitive."""

    return strip_prefix(name).casefold()


@dataclass(frozen=True)
class Parameter:
    """Database-agnostic parameter declaration.

    `name` may carry the backend prefix; lookups always use `name_key()`.
    `size` is required for output strings when validation is enabled.
    """

    name: str = field(metadata={"non_empty": True})
    logical_type: LogicalType = LogicalType.STRING
    direction: Direction = Direction.IN
    value: Any = None
    size: Optional[int] = field(default=None, metadata={"ge": 0})
    precision: Optional[int] = field(default=None, metadata={"ge": 0})
    scale: Optional[int] = field(default=None, metadata={"ge": 0})

    @property
    def key(self) -> str:
        return name_key(self.name)

    @property
    def stripped_name(self) -> str:
        return strip_prefix(self.name)

    @property
    def is_ref_cursor(self) -> bool:
        return self.logical_type is LogicalType.REF_CURSOR


@dataclass(frozen=True)
class Command:
    """Command text (SQL or procedure name) plus its ordered parameters.

    `timeout` overrides the executor's default command timeout (seconds).
    """

    text: str = field(metadata={"non_empty": True})
    kind: CommandKind = CommandKind.TEXT
    parameters: Tuple[Parameter, ...] = ()
    timeout: Optional[float] = field(default=None, metadata={"gt": 0})
    allowed_procedures: Optional[FrozenSet[str]] = None
    allowed_identifiers: Optional[FrozenSet[str]] = None
    identifiers: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", tuple(self.parameters))
        object.__setattr__(self, "identifiers", tuple(self.identifiers))
        if self.allowed_procedures is not None:
            object.__setattr__(self, "allowed_procedures", frozenset(self.allowed_procedures))
        if self.allowed_identifiers is not None:
            object.__setattr__(self, "allowed_identifiers", frozenset(self.allowed_identifiers))

    @property
    def is_stored_procedure(self) -> bool:
        return self.kind is CommandKind.STORED_PROCEDURE

    def parameter(self, name: str) -> Optional[Parameter]:
        """Find a declared parameter by prefix-stripped, case-insensitive name."""

        key = name_key(name)
        for parameter in self.parameters:
            if parameter.key == key:
                return parameter
        return None


@dataclass(frozen=True)
class BoundParameter:
    """Executed parameter state reported by a transport after execution."""

    name: str
    direction: Direction
    value: Any = None
