"""Validation of options, commands and parameter declarations.

Field-level constraints are declared in dataclass field metadata (`non_empty`,
`gt`, `ge`, `lt`, `le`, `choices`) and checked generically; cross-field rules
are written out per model. Every check collects `"field: message"` strings and
the public entry points fold them into one VALIDATION `DbError`.
"""

from __future__ import annotations

from dataclasses import fields, is_dataclass
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional

from .commands import Command, Direction, LogicalType, Parameter
from .errors import DbError, validation_error
from .options import DbOptions

LENGTH_CONSTRAINED_TYPES = frozenset(
    {
        LogicalType.STRING,
        LogicalType.ANSI_STRING,
        LogicalType.STRING_FIXED,
        LogicalType.ANSI_STRING_FIXED,
    }
)
UNSIGNED_TYPES = frozenset({LogicalType.UINT16, LogicalType.UINT32, LogicalType.UINT64})
EXACT_NUMERIC_TYPES = frozenset({LogicalType.DECIMAL, LogicalType.CURRENCY})


def check_constraints(instance: Any) -> List[str]:
    """Return metadata constraint failures for a dataclass instance."""

    if not is_dataclass(instance):
        raise TypeError("check_constraints() expects a dataclass instance.")

    failures: List[str] = []
    for field in fields(instance):
        message = _constraint_failure(getattr(instance, field.name), dict(field.metadata))
        if message is not None:
            failures.append(f"{field.name}: {message}")
    return failures


def _constraint_failure(value: Any, metadata: Dict[str, Any]) -> Optional[str]:
    if metadata.get("non_empty"):
        if value is None or (isinstance(value, str) and not value.strip()):
            return "must be non-empty."

    if value is None:
        return None

    if "choices" in metadata and value not in set(metadata["choices"]):
        return f"must be one of {metadata['choices']!r}."

    for key, op in (("gt", ">"), ("ge", ">="), ("lt", "<"), ("le", "<=")):
        if key not in metadata:
            continue
        bound = metadata[key]
        ok = (
            (key == "gt" and value > bound)
            or (key == "ge" and value >= bound)
            or (key == "lt" and value < bound)
            or (key == "le" and value <= bound)
        )
        if not ok:
            return f"must satisfy {op} {bound!r}."
    return None


def _to_error(failures: List[str]) -> Optional[DbError]:
    if not failures:
        return None
    return validation_error(failures[0], failures)


def options_failures(options: DbOptions) -> List[str]:
    return check_constraints(options)


def parameter_failures(parameter: Parameter) -> List[str]:
    """Cross-backend rules for one parameter declaration."""

    failures = check_constraints(parameter)
    name = parameter.name or "<unnamed>"
    is_output = parameter.direction.is_output

    def fail(message: str) -> None:
        failures.append(f"{name}: {message}")

    if parameter.direction is Direction.RETURN_VALUE:
        fail("ReturnValue parameters are not supported.")

    if is_output and parameter.logical_type in LENGTH_CONSTRAINED_TYPES and parameter.size is None:
        fail("Output parameters must specify size.")

    if (
        is_output
        and parameter.logical_type in EXACT_NUMERIC_TYPES
        and (parameter.precision is None or parameter.scale is None)
    ):
        fail("Decimal parameters must specify precision and scale.")

    if parameter.logical_type is LogicalType.TIMESTAMP and isinstance(
        parameter.value, (datetime, date, time)
    ):
        fail("Timestamp parameters must not use date/time values.")

    if parameter.logical_type in UNSIGNED_TYPES:
        fail("Unsigned types are not supported.")

    if parameter.is_ref_cursor and not is_output:
        fail("RefCursor parameters must be Output or InputOutput.")

    return failures


def command_failures(command: Command) -> List[str]:
    """Rules for a command and each of its parameters."""

    failures = check_constraints(command)

    if (
        command.is_stored_procedure
        and command.allowed_procedures is not None
        and command.text not in command.allowed_procedures
    ):
        failures.append(f"text: Stored procedure '{command.text}' is not in the allowed list.")

    if command.identifiers:
        allowed = command.allowed_identifiers or frozenset()
        rejected = [identifier for identifier in command.identifiers if identifier not in allowed]
        if rejected:
            failures.append(
                "identifiers: One or more identifiers are not in the allowed list: "
                + ", ".join(rejected)
            )

    seen: Dict[str, str] = {}
    for parameter in command.parameters:
        failures.extend(parameter_failures(parameter))
        if not parameter.name:
            continue
        if parameter.key in seen:
            failures.append(
                f"parameters: '{parameter.name}' duplicates '{seen[parameter.key]}'."
            )
        else:
            seen[parameter.key] = parameter.name

    return failures


def validate_options(options: DbOptions) -> Optional[DbError]:
    """Return a VALIDATION error for invalid options, else `None`."""

    return _to_error(options_failures(options))


def validate_command(command: Command) -> Optional[DbError]:
    """Return a VALIDATION error for an invalid command, else `None`."""

    return _to_error(command_failures(command))


def validate_parameter(parameter: Parameter) -> Optional[DbError]:
    return _to_error(parameter_failures(parameter))
