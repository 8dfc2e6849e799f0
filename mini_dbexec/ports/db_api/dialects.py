"""Concrete backend dialects for the DB-API adapter."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Mapping, Optional, Sequence

from ...core.capabilities import normalize_table_name
from ...core.commands import Command, LogicalType, Parameter, name_key
from ...core.errors import DbError, map_exception
from ...core.options import Backend
from .error_rules import map_oracle_error, map_postgres_error, map_sqlserver_error


class Dialect:
    """Base dialect: parameter style, quoting, procedure calls and output binding."""

    name: str = "generic"
    backend: Backend
    paramstyle: str = "named"
    quote_char: str = '"'

    def q(self, ident: str) -> str:
        """Quote SQL identifier."""

        return f"{self.quote_char}{ident}{self.quote_char}"

    def placeholder(self, key: str, paramstyle: Optional[str] = None) -> str:
        """Return parameter placeholder for `paramstyle` (default: the dialect's)."""

        style = paramstyle or self.paramstyle
        if style == "named":
            return f":{key}"
        if style == "qmark":
            return "?"
        if style == "format":
            return "%s"
        if style == "pyformat":
            return f"%({key})s"
        raise ValueError(f"Unsupported paramstyle: {style}")

    def normalize_table_name(self, table_name: str) -> str:
        return normalize_table_name(self.backend, table_name)

    def map_error(self, exc: BaseException) -> DbError:
        return map_exception(exc)

    def cursor_fetch_sql(self, handle: str) -> str:
        """SQL that drains a named server-side cursor."""

        return f"FETCH ALL IN {self.q(handle)}"

    def apply_timeout(self, conn: Any, cursor: Any, timeout: float) -> None:
        """Apply the command timeout (seconds) where the driver exposes one."""

    def bind_output(self, conn: Any, cursor: Any, parameter: Parameter) -> Any:
        """Value bound for an out/in-out parameter before execution."""

        return parameter.value

    def call_procedure(self, cursor: Any, command: Command, values: Sequence[Any]) -> Any:
        """Invoke a stored procedure; returns driver-reported parameter values if any."""

        return cursor.callproc(command.text, list(values))

    def read_outputs(
        self,
        cursor: Any,
        command: Command,
        values: Sequence[Any],
        returned: Any,
    ) -> List[Any]:
        """Executed value of every declared parameter, in declaration order."""

        source = list(returned) if isinstance(returned, (list, tuple)) else list(values)
        result: List[Any] = []
        for index, parameter in enumerate(command.parameters):
            value = source[index] if index < len(source) else parameter.value
            if parameter.direction.is_output:
                value = _unwrap_variable(value)
            result.append(value)
        return result


def _unwrap_variable(value: Any) -> Any:
    getvalue = getattr(value, "getvalue", None)
    if callable(getvalue):
        return getvalue()
    return value


class SqlServerDialect(Dialect):
    """SQL Server dialect (`?` parameters via ODBC, bracket quoting)."""

    name = "sqlserver"
    backend = Backend.SQL_SERVER
    paramstyle = "qmark"
    quote_char = "["

    def q(self, ident: str) -> str:
        return f"[{ident.replace(']', ']]')}]"

    def map_error(self, exc: BaseException) -> DbError:
        return map_sqlserver_error(exc)

    def apply_timeout(self, conn: Any, cursor: Any, timeout: float) -> None:
        if hasattr(conn, "timeout"):
            conn.timeout = max(1, int(timeout))

    def call_procedure(self, cursor: Any, command: Command, values: Sequence[Any]) -> Any:
        # ODBC call escape; output parameters are not reported back by the driver.
        marks = ", ".join("?" for _ in values)
        cursor.execute(f"{{CALL {command.text} ({marks})}}", list(values))
        return None

    def read_outputs(
        self,
        cursor: Any,
        command: Command,
        values: Sequence[Any],
        returned: Any,
    ) -> List[Any]:
        return [
            None if parameter.direction.is_output else values[index]
            for index, parameter in enumerate(command.parameters)
        ]


class PostgresDialect(Dialect):
    """PostgreSQL dialect (`%s` parameters, `CALL` procedures, named ref-cursors)."""

    name = "postgresql"
    backend = Backend.POSTGRESQL
    paramstyle = "pyformat"
    quote_char = '"'

    def map_error(self, exc: BaseException) -> DbError:
        return map_postgres_error(exc)

    def call_procedure(self, cursor: Any, command: Command, values: Sequence[Any]) -> Any:
        marks = ", ".join("%s" for _ in values)
        cursor.execute(f"CALL {command.text}({marks})", list(values))
        return None

    def read_outputs(
        self,
        cursor: Any,
        command: Command,
        values: Sequence[Any],
        returned: Any,
    ) -> List[Any]:
        """Out/in-out values come back as the single row produced by `CALL`."""

        has_outputs = any(p.direction.is_output for p in command.parameters)
        if not command.is_stored_procedure or not has_outputs:
            return list(values)

        row: Optional[Mapping[str, Any]] = None
        if getattr(cursor, "description", None):
            fetched = cursor.fetchone()
            if fetched is not None:
                columns = [d[0] for d in cursor.description]
                row = fetched if isinstance(fetched, Mapping) else dict(zip(columns, fetched))

        by_key = {name_key(str(k)): v for k, v in (row or {}).items()}
        ordered = list((row or {}).values())
        result: List[Any] = []
        position = 0
        for index, parameter in enumerate(command.parameters):
            if not parameter.direction.is_output:
                result.append(values[index])
                continue
            if parameter.key in by_key:
                result.append(by_key[parameter.key])
            elif position < len(ordered):
                result.append(ordered[position])
            else:
                result.append(None)
            position += 1
        return result


_ORACLE_VARIABLE_TYPES = {
    LogicalType.INT16: int,
    LogicalType.INT32: int,
    LogicalType.INT64: int,
    LogicalType.BYTE: int,
    LogicalType.SBYTE: int,
    LogicalType.DECIMAL: Decimal,
    LogicalType.CURRENCY: Decimal,
    LogicalType.DOUBLE: float,
    LogicalType.SINGLE: float,
    LogicalType.BOOLEAN: bool,
    LogicalType.BINARY: bytes,
    LogicalType.BLOB: bytes,
    LogicalType.GUID: bytes,
    LogicalType.TIMESTAMP: bytes,
    LogicalType.DATE: datetime,
    LogicalType.DATE_TIME: datetime,
    LogicalType.DATE_TIME_PRECISE: datetime,
    LogicalType.DATE_TIME_OFFSET: datetime,
}


class OracleDialect(Dialect):
    """Oracle dialect (`:name` parameters, bind variables for outputs, ref-cursors)."""

    name = "oracle"
    backend = Backend.ORACLE
    paramstyle = "named"
    quote_char = '"'

    def map_error(self, exc: BaseException) -> DbError:
        return map_oracle_error(exc)

    def apply_timeout(self, conn: Any, cursor: Any, timeout: float) -> None:
        if hasattr(conn, "call_timeout"):
            conn.call_timeout = int(timeout * 1000)

    def bind_output(self, conn: Any, cursor: Any, parameter: Parameter) -> Any:
        if parameter.is_ref_cursor:
            # A fresh cursor bound OUT receives the REF CURSOR.
            return conn.cursor()
        var_factory = getattr(cursor, "var", None)
        if not callable(var_factory):
            return parameter.value
        python_type = _ORACLE_VARIABLE_TYPES.get(parameter.logical_type, str)
        if parameter.size is not None and python_type in (str, bytes):
            variable = var_factory(python_type, parameter.size)
        else:
            variable = var_factory(python_type)
        if parameter.value is not None:
            variable.setvalue(0, parameter.value)
        return variable
