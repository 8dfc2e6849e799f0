"""mini_dbexec: provider-agnostic command execution over DB-API drivers."""

from .core import (
    Backend,
    BoundParameter,
    CancellationToken,
    Capabilities,
    Command,
    CommandKind,
    DatabaseError,
    DbCallerError,
    DbError,
    DbOptions,
    Direction,
    ErrorCategory,
    ErrorCode,
    ErrorKind,
    ExecutionResult,
    Executor,
    LogicalType,
    OperationCancelledError,
    OutputValues,
    Parameter,
    ResultShape,
    ResultTable,
    RetryConfig,
    Strategy,
    StreamingResult,
    TransactionHandle,
    build_command,
    resolve_capabilities,
    select_strategy,
)
from .ports import (
    DbApiConnection,
    Dialect,
    OracleDialect,
    PostgresDialect,
    SqlServerDialect,
    connector,
)

__all__ = [
    "Backend",
    "BoundParameter",
    "CancellationToken",
    "Capabilities",
    "Command",
    "CommandKind",
    "DatabaseError",
    "DbApiConnection",
    "DbCallerError",
    "DbError",
    "DbOptions",
    "Dialect",
    "Direction",
    "ErrorCategory",
    "ErrorCode",
    "ErrorKind",
    "ExecutionResult",
    "Executor",
    "LogicalType",
    "OperationCancelledError",
    "OracleDialect",
    "OutputValues",
    "Parameter",
    "PostgresDialect",
    "ResultShape",
    "ResultTable",
    "RetryConfig",
    "SqlServerDialect",
    "Strategy",
    "StreamingResult",
    "TransactionHandle",
    "build_command",
    "connector",
    "resolve_capabilities",
    "select_strategy",
]
