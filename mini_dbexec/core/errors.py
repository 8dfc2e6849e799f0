"""Closed, provider-independent error taxonomy and the shared exception mapper."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Generic, Iterable, Optional, Sequence, Tuple, TypeVar

from .cancellation import OperationCancelledError

E = TypeVar("E", bound=BaseException)


class ErrorKind(str, Enum):
    """Canonical failure categories surfaced to callers."""

    UNKNOWN = "unknown"
    TIMEOUT = "timeout"
    VALIDATION = "validation"
    DEADLOCK = "deadlock"
    CONNECTION_FAILURE = "connection_failure"
    RESOURCE_LIMIT = "resource_limit"
    SYNTAX_ERROR = "syntax_error"


class ErrorCode:
    """Stable machine-readable error codes."""

    UNKNOWN = "unknown"
    TIMEOUT = "timeout"
    CANCELED = "canceled"
    DEADLOCK = "deadlock"
    CONNECTION_LOST = "connection_lost"
    RESOURCE_LIMIT_EXCEEDED = "resource_limit_exceeded"
    VALIDATION_FAILED = "validation_failed"
    SYNTAX_ERROR = "syntax_error"


MESSAGE_KEYS = {
    ErrorKind.UNKNOWN: "errors.unknown",
    ErrorKind.TIMEOUT: "errors.timeout",
    ErrorKind.VALIDATION: "errors.validation",
    ErrorKind.DEADLOCK: "errors.deadlock",
    ErrorKind.CONNECTION_FAILURE: "errors.connection_failure",
    ErrorKind.RESOURCE_LIMIT: "errors.resource_limit",
    ErrorKind.SYNTAX_ERROR: "errors.syntax_error",
}


@dataclass(frozen=True)
class DbError:
    """Canonical error record.

    `backend_details` is a diagnostic string only; it never carries the
    originating exception object.
    """

    kind: ErrorKind
    code: str
    message_key: str
    message_parameters: Tuple[str, ...] = ()
    is_transient: bool = False
    backend_details: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "message_parameters", tuple(self.message_parameters))


class ErrorCategory(str, Enum):
    """Library misuse categories carried by `DatabaseError`."""

    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    UNSUPPORTED = "unsupported"
    STATE = "state"
    DISPOSED = "disposed"


class DatabaseError(Exception):
    """Raised for library misuse: bad configuration, invalid state, disposed objects."""

    def __init__(self, category: ErrorCategory, message: str):
        super().__init__(message)
        self.category = category

    @property
    def message_key(self) -> str:
        return f"errors.{self.category.value}"


class DbCallerError(Exception):
    """Every failure surfaced to callers; wraps one canonical `DbError`."""

    def __init__(self, error: DbError):
        super().__init__(error.message_key)
        self.error = error

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    @property
    def code(self) -> str:
        return self.error.code

    @property
    def message_key(self) -> str:
        return self.error.message_key

    @property
    def is_transient(self) -> bool:
        return self.error.is_transient


def qualified_name(exc: BaseException) -> str:
    """Fully-qualified type name of `exc`, used as diagnostic detail."""

    cls = type(exc)
    module = cls.__module__
    if module in ("builtins", None):
        return cls.__qualname__
    return f"{module}.{cls.__qualname__}"


def _message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def unknown_error(exc: BaseException) -> DbError:
    """Shared fallback shape every backend mapper ends with."""

    return DbError(
        kind=ErrorKind.UNKNOWN,
        code=ErrorCode.UNKNOWN,
        message_key=MESSAGE_KEYS[ErrorKind.UNKNOWN],
        message_parameters=(_message(exc),),
        is_transient=False,
        backend_details=qualified_name(exc),
    )


def validation_error(message: str, parameters: Optional[Iterable[str]] = None) -> DbError:
    """Caller-input failure: deterministic and never transient."""

    if not message:
        raise ValueError("message must be non-empty.")
    return DbError(
        kind=ErrorKind.VALIDATION,
        code=ErrorCode.VALIDATION_FAILED,
        message_key=MESSAGE_KEYS[ErrorKind.VALIDATION],
        message_parameters=tuple(parameters) if parameters is not None else (message,),
        is_transient=False,
    )


def backend_error(
    exc: BaseException,
    kind: ErrorKind,
    code: str,
    *,
    transient: bool,
    details: Optional[str] = None,
    parameters: Optional[Sequence[str]] = None,
) -> DbError:
    """Build a refined error for a recognized backend failure."""

    return DbError(
        kind=kind,
        code=code,
        message_key=MESSAGE_KEYS[kind],
        message_parameters=tuple(parameters) if parameters is not None else (_message(exc),),
        is_transient=transient,
        backend_details=details or qualified_name(exc),
    )


def map_exception(
    exc: BaseException,
    backend_code: Optional[str] = None,
    is_transient_override: Optional[bool] = None,
) -> DbError:
    """Classify `exc` into the canonical taxonomy.

    Checked in order: library `DatabaseError` categories, deadline exceeded,
    cooperative cancellation, then the unknown fallback.
    """

    if isinstance(exc, DbCallerError):
        return exc.error

    if isinstance(exc, DatabaseError):
        if exc.category is ErrorCategory.VALIDATION:
            return validation_error(_message(exc))
        return replace(unknown_error(exc), message_key=exc.message_key)

    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return DbError(
            kind=ErrorKind.TIMEOUT,
            code=ErrorCode.TIMEOUT,
            message_key=MESSAGE_KEYS[ErrorKind.TIMEOUT],
            message_parameters=(_message(exc),),
            is_transient=True if is_transient_override is None else is_transient_override,
            backend_details=backend_code or qualified_name(exc),
        )

    if isinstance(exc, (OperationCancelledError, asyncio.CancelledError)):
        return DbError(
            kind=ErrorKind.TIMEOUT,
            code=ErrorCode.CANCELED,
            message_key="errors.canceled",
            message_parameters=(_message(exc),),
            is_transient=False if is_transient_override is None else is_transient_override,
            backend_details=backend_code or qualified_name(exc),
        )

    return unknown_error(exc)


@dataclass(frozen=True)
class ErrorRule(Generic[E]):
    """One backend rule: a predicate over the exception and the error it maps to."""

    match: Callable[[E], bool]
    build: Callable[[E], DbError]


def match_rules(
    exc: E,
    rules: Sequence[ErrorRule[E]],
    fallback: Callable[[E], DbError] = map_exception,
) -> DbError:
    """Return the error built by the first matching rule, else `fallback(exc)`."""

    for rule in rules:
        try:
            matched = rule.match(exc)
        except (AttributeError, TypeError, ValueError):
            matched = False
        if matched:
            return rule.build(exc)
    return fallback(exc)
