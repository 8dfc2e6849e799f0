"""Public port exports for concrete adapter implementations."""

from .db_api import (
    DbApiConnection,
    Dialect,
    OracleDialect,
    PostgresDialect,
    SqlServerDialect,
    connector,
)

__all__ = [
    "DbApiConnection",
    "Dialect",
    "SqlServerDialect",
    "PostgresDialect",
    "OracleDialect",
    "connector",
]
