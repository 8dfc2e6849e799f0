"""Backend error translation tables.

Driver exceptions are inspected by attribute, never by importing a driver:
SQL Server error numbers (`number`, or a leading int argument), PostgreSQL
SQLSTATE codes (`sqlstate` / `pgcode`), and Oracle ORA numbers (`code` on the
first argument, as oracledb reports them).
"""

from __future__ import annotations

import re
from typing import Any, Callable, Optional, Sequence

from ...core.errors import (
    DbError,
    ErrorCode,
    ErrorKind,
    ErrorRule,
    backend_error,
    map_exception,
    match_rules,
)

_SQLSERVER_NUMBER_RE = re.compile(r"\((-?\d+)\)\s*\(SQL")


def sqlserver_number(exc: BaseException) -> Optional[int]:
    number = getattr(exc, "number", None)
    if isinstance(number, int):
        return number
    args = getattr(exc, "args", ())
    if args and isinstance(args[0], int) and not isinstance(args[0], bool):
        return args[0]
    match = _SQLSERVER_NUMBER_RE.search(str(exc))
    if match:
        return int(match.group(1))
    return None


def sqlserver_state(exc: BaseException) -> Optional[str]:
    """ODBC SQLSTATE as reported by pyodbc in the first argument."""

    args = getattr(exc, "args", ())
    if args and isinstance(args[0], str) and len(args[0]) == 5:
        return args[0]
    return None


def postgres_sqlstate(exc: BaseException) -> Optional[str]:
    for attr in ("sqlstate", "pgcode"):
        code = getattr(exc, attr, None)
        if isinstance(code, str) and code:
            return code
    return None


def oracle_number(exc: BaseException) -> Optional[int]:
    number = getattr(exc, "code", None)
    if isinstance(number, int):
        return number
    args = getattr(exc, "args", ())
    if args:
        number = getattr(args[0], "code", None)
        if isinstance(number, int):
            return number
    return None


def _sqlserver(kind: ErrorKind, code: str) -> Callable[[BaseException], DbError]:
    def build(exc: BaseException) -> DbError:
        number = sqlserver_number(exc)
        tag = number if number is not None else sqlserver_state(exc)
        return backend_error(
            exc,
            kind,
            code,
            transient=True,
            details=f"sqlserver#{tag}",
            parameters=(str(tag), str(exc)),
        )

    return build


def _postgres(kind: ErrorKind, code: str, transient: bool) -> Callable[[BaseException], DbError]:
    def build(exc: BaseException) -> DbError:
        sqlstate = postgres_sqlstate(exc)
        return backend_error(
            exc,
            kind,
            code,
            transient=transient,
            details=f"postgresql#{sqlstate}",
            parameters=(str(sqlstate), str(exc)),
        )

    return build


def _oracle(kind: ErrorKind, code: str, transient: bool) -> Callable[[BaseException], DbError]:
    def build(exc: BaseException) -> DbError:
        number = oracle_number(exc) or 0
        return backend_error(
            exc,
            kind,
            code,
            transient=transient,
            details=f"oracle#ORA-{number:05d}",
            parameters=(str(number), str(exc)),
        )

    return build


SQLSERVER_RULES: Sequence[ErrorRule[Any]] = (
    # Login failed or database unavailable.
    ErrorRule(
        lambda e: sqlserver_number(e) in (4060, 18456),
        _sqlserver(ErrorKind.CONNECTION_FAILURE, ErrorCode.CONNECTION_LOST),
    ),
    # Deadlock victim.
    ErrorRule(
        lambda e: sqlserver_number(e) == 1205,
        _sqlserver(ErrorKind.DEADLOCK, ErrorCode.DEADLOCK),
    ),
    # Azure SQL throttling.
    ErrorRule(
        lambda e: sqlserver_number(e) in (10928, 10929),
        _sqlserver(ErrorKind.RESOURCE_LIMIT, ErrorCode.RESOURCE_LIMIT_EXCEEDED),
    ),
    ErrorRule(
        lambda e: sqlserver_number(e) == -2 or sqlserver_state(e) in ("HYT00", "HYT01"),
        _sqlserver(ErrorKind.TIMEOUT, ErrorCode.TIMEOUT),
    ),
    ErrorRule(
        lambda e: sqlserver_number(e) is None and (sqlserver_state(e) or "").startswith("08"),
        _sqlserver(ErrorKind.CONNECTION_FAILURE, ErrorCode.CONNECTION_LOST),
    ),
)

POSTGRES_RULES: Sequence[ErrorRule[Any]] = (
    ErrorRule(
        lambda e: postgres_sqlstate(e) == "40P01",
        _postgres(ErrorKind.DEADLOCK, ErrorCode.DEADLOCK, True),
    ),
    ErrorRule(
        lambda e: postgres_sqlstate(e) == "55P03",
        _postgres(ErrorKind.RESOURCE_LIMIT, ErrorCode.RESOURCE_LIMIT_EXCEEDED, True),
    ),
    ErrorRule(
        lambda e: postgres_sqlstate(e) == "40001",
        _postgres(ErrorKind.DEADLOCK, ErrorCode.DEADLOCK, True),
    ),
    ErrorRule(
        lambda e: postgres_sqlstate(e) == "57014",
        _postgres(ErrorKind.TIMEOUT, ErrorCode.TIMEOUT, True),
    ),
    # Class 08: connection exceptions.
    ErrorRule(
        lambda e: (postgres_sqlstate(e) or "").startswith("08"),
        _postgres(ErrorKind.CONNECTION_FAILURE, ErrorCode.CONNECTION_LOST, True),
    ),
    ErrorRule(
        lambda e: postgres_sqlstate(e) == "42601",
        _postgres(ErrorKind.SYNTAX_ERROR, ErrorCode.SYNTAX_ERROR, False),
    ),
)

ORACLE_RULES: Sequence[ErrorRule[Any]] = (
    # ORA-01013 user requested cancel; ORA-12170 connect timeout.
    ErrorRule(
        lambda e: oracle_number(e) in (1013, 12170),
        _oracle(ErrorKind.TIMEOUT, ErrorCode.TIMEOUT, True),
    ),
    ErrorRule(
        lambda e: oracle_number(e) in (12514, 12541),
        _oracle(ErrorKind.CONNECTION_FAILURE, ErrorCode.CONNECTION_LOST, True),
    ),
    # ORA-01000 maximum open cursors exceeded.
    ErrorRule(
        lambda e: oracle_number(e) == 1000,
        _oracle(ErrorKind.RESOURCE_LIMIT, ErrorCode.RESOURCE_LIMIT_EXCEEDED, False),
    ),
    ErrorRule(
        lambda e: oracle_number(e) == 0 and "broken pipe" in str(e).lower(),
        _oracle(ErrorKind.CONNECTION_FAILURE, ErrorCode.CONNECTION_LOST, True),
    ),
)


def map_sqlserver_error(exc: BaseException) -> DbError:
    return match_rules(exc, SQLSERVER_RULES, map_exception)


def map_postgres_error(exc: BaseException) -> DbError:
    return match_rules(exc, POSTGRES_RULES, map_exception)


def map_oracle_error(exc: BaseException) -> DbError:
    return match_rules(exc, ORACLE_RULES, map_exception)
