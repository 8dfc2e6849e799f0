"""Best-effort normalization of backend values by declared logical type.

Normalization never raises. A value that cannot be converted is returned
unchanged, so callers must treat the result as advisory rather than
guaranteed-typed. `try_normalize()` exposes whether a conversion happened.
"""

from __future__ import annotations

import math
import re
import struct
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Any, Callable, Dict, Optional, Type, TypeVar

from .commands import LogicalType
from .types import is_null

T = TypeVar("T")

_BYTES_TYPES = (bytes, bytearray, memoryview)

_INT_RANGES: Dict[LogicalType, tuple[int, int]] = {
    LogicalType.INT16: (-(2**15), 2**15 - 1),
    LogicalType.INT32: (-(2**31), 2**31 - 1),
    LogicalType.INT64: (-(2**63), 2**63 - 1),
    LogicalType.BYTE: (0, 2**8 - 1),
    LogicalType.SBYTE: (-(2**7), 2**7 - 1),
    LogicalType.UINT16: (0, 2**16 - 1),
    LogicalType.UINT32: (0, 2**32 - 1),
    LogicalType.UINT64: (0, 2**64 - 1),
}

# [-][d.]hh:mm[:ss[.fffffff]] or a bare day count.
_DURATION_RE = re.compile(
    r"^(?P<sign>-)?(?:(?P<days>\d+)\.)?(?P<hours>\d{1,2}):(?P<minutes>\d{1,2})"
    r"(?::(?P<seconds>\d{1,2})(?:\.(?P<fraction>\d{1,7}))?)?$"
)
_DAYS_RE = re.compile(r"^(?P<sign>-)?(?P<days>\d+)$")


class _NotConvertible(ValueError):
    """Raised by converters that fall back to the raw value."""


@dataclass(frozen=True)
class Normalization:
    """Tagged normalization outcome: converted value or raw passthrough."""

    value: Any
    normalized: bool


def normalize(value: Any, logical_type: LogicalType) -> Any:
    """Normalize `value` to the canonical Python shape for `logical_type`.

    `None` and `DB_NULL` become `None` for every type. Conversion failures
    return `value` unchanged.
    """

    return try_normalize(value, logical_type).value


def try_normalize(value: Any, logical_type: LogicalType) -> Normalization:
    """Like `normalize()` but reports whether the value was converted."""

    if is_null(value):
        return Normalization(None, True)

    converter = _CONVERTERS.get(logical_type)
    if converter is None:
        return Normalization(value, False)

    try:
        return Normalization(converter(value), True)
    except Exception:  # noqa: BLE001
        return Normalization(value, False)


def normalize_as(value: Any, logical_type: LogicalType, expected: Type[T]) -> Optional[T]:
    """Normalize and return `None` unless the result is an instance of `expected`."""

    normalized = normalize(value, logical_type)
    if isinstance(normalized, expected):
        return normalized
    return None


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, _BYTES_TYPES):
        return bytes(value).decode("utf-8")
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value)


def _integer_converter(logical_type: LogicalType) -> Callable[[Any], int]:
    low, high = _INT_RANGES[logical_type]

    def convert(value: Any) -> int:
        result = _to_int(value)
        if result < low or result > high:
            raise OverflowError(f"{result} is out of range for {logical_type.value}.")
        return result

    return convert


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise OverflowError("non-finite float")
        # round() is banker's rounding, matching invariant numeric conversion.
        return int(round(value))
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise OverflowError("non-finite decimal")
        return int(value.to_integral_value(rounding=ROUND_HALF_EVEN))
    if isinstance(value, str):
        return int(value.strip())
    raise _NotConvertible(type(value).__name__)


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        result = Decimal(int(value))
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        result = Decimal(value.strip())
    else:
        raise _NotConvertible(type(value).__name__)
    if not result.is_finite():
        raise OverflowError("non-finite decimal")
    return result


def _to_double(value: Any) -> float:
    if isinstance(value, bool):
        return float(int(value))
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, str):
        return float(value.strip())
    raise _NotConvertible(type(value).__name__)


def _to_single(value: Any) -> float:
    return struct.unpack("<f", struct.pack("<f", _to_double(value)))[0]


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return value != 0
    if isinstance(value, str):
        text = value.strip().casefold()
        if text == "true":
            return True
        if text == "false":
            return False
        raise ValueError(f"Not a boolean literal: {value!r}.")
    raise _NotConvertible(type(value).__name__)


def _to_guid(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    if isinstance(value, _BYTES_TYPES) and len(value) == 16:
        # Leading three fields are little-endian in the 16-byte GUID layout.
        return uuid.UUID(bytes_le=bytes(value))
    if isinstance(value, str):
        return uuid.UUID(value.strip())
    raise _NotConvertible(type(value).__name__)


def _to_binary(value: Any) -> Any:
    if isinstance(value, _BYTES_TYPES):
        return value
    raise _NotConvertible(type(value).__name__)


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        return datetime.fromisoformat(text)
    raise _NotConvertible(type(value).__name__)


def _to_datetime_offset(value: Any) -> datetime:
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value
    parsed = _to_datetime(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_duration(value: Any) -> timedelta:
    if isinstance(value, timedelta):
        return value
    if isinstance(value, datetime):
        return _time_of_day(value.time())
    if isinstance(value, time):
        return _time_of_day(value)
    if isinstance(value, str):
        return _parse_duration(value.strip())
    raise _NotConvertible(type(value).__name__)


def _time_of_day(value: time) -> timedelta:
    return timedelta(
        hours=value.hour,
        minutes=value.minute,
        seconds=value.second,
        microseconds=value.microsecond,
    )


def _parse_duration(text: str) -> timedelta:
    match = _DAYS_RE.match(text)
    if match:
        days = int(match.group("days"))
        return -timedelta(days=days) if match.group("sign") else timedelta(days=days)

    match = _DURATION_RE.match(text)
    if match is None:
        raise ValueError(f"Not a duration: {text!r}.")

    hours = int(match.group("hours"))
    minutes = int(match.group("minutes"))
    seconds = int(match.group("seconds") or 0)
    if hours > 23 or minutes > 59 or seconds > 59:
        raise OverflowError(f"Duration component out of range: {text!r}.")

    fraction = match.group("fraction") or ""
    # Seven fractional digits are 100ns ticks; timedelta keeps microseconds.
    microseconds = int(fraction.ljust(7, "0")[:6]) if fraction else 0
    result = timedelta(
        days=int(match.group("days") or 0),
        hours=hours,
        minutes=minutes,
        seconds=seconds,
        microseconds=microseconds,
    )
    return -result if match.group("sign") else result


_CONVERTERS: Dict[LogicalType, Callable[[Any], Any]] = {
    LogicalType.STRING: _to_text,
    LogicalType.ANSI_STRING: _to_text,
    LogicalType.STRING_FIXED: _to_text,
    LogicalType.ANSI_STRING_FIXED: _to_text,
    LogicalType.CLOB: _to_text,
    LogicalType.NCLOB: _to_text,
    LogicalType.JSON: _to_text,
    LogicalType.XML: _to_text,
    **{logical_type: _integer_converter(logical_type) for logical_type in _INT_RANGES},
    LogicalType.DECIMAL: _to_decimal,
    LogicalType.CURRENCY: _to_decimal,
    LogicalType.DOUBLE: _to_double,
    LogicalType.SINGLE: _to_single,
    LogicalType.BOOLEAN: _to_bool,
    LogicalType.GUID: _to_guid,
    LogicalType.BINARY: _to_binary,
    LogicalType.BLOB: _to_binary,
    LogicalType.TIMESTAMP: _to_binary,
    LogicalType.DATE: _to_datetime,
    LogicalType.DATE_TIME: _to_datetime,
    LogicalType.DATE_TIME_PRECISE: _to_datetime,
    LogicalType.DATE_TIME_OFFSET: _to_datetime_offset,
    LogicalType.TIME: _to_duration,
    LogicalType.INTERVAL: _to_duration,
}
