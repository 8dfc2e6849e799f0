"""DB-API adapter, dialect and error-table exports."""

from .connection import DbApiCommand, DbApiConnection, DbApiReader, DbApiTransaction, connector
from .dialects import Dialect, OracleDialect, PostgresDialect, SqlServerDialect
from .error_rules import map_oracle_error, map_postgres_error, map_sqlserver_error

__all__ = [
    "DbApiCommand",
    "DbApiConnection",
    "DbApiReader",
    "DbApiTransaction",
    "Dialect",
    "OracleDialect",
    "PostgresDialect",
    "SqlServerDialect",
    "connector",
    "map_oracle_error",
    "map_postgres_error",
    "map_sqlserver_error",
]
