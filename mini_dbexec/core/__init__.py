"""Public core API for command description, strategy selection and execution."""

from .cancellation import CancellationToken, OperationCancelledError
from .capabilities import (
    Capabilities,
    IdentifierCasing,
    normalize_parameter_name,
    normalize_table_name,
    resolve_capabilities,
)
from .command_factory import build_command
from .commands import (
    BoundParameter,
    Command,
    CommandKind,
    Direction,
    LogicalType,
    Parameter,
    name_key,
    strip_prefix,
)
from .cursors import collect_cursor_handles, requires_cursor_handling
from .errors import (
    DatabaseError,
    DbCallerError,
    DbError,
    ErrorCategory,
    ErrorCode,
    ErrorKind,
    ErrorRule,
    backend_error,
    map_exception,
    match_rules,
    unknown_error,
    validation_error,
)
from .executor import ExecutionPlan, Executor, StreamingResult
from .normalization import Normalization, normalize, normalize_as, try_normalize
from .options import Backend, DbOptions, RetryConfig
from .parameters import extract_output_values, has_output_values
from .results import ExecutionResult, OutputValues, ResultTable
from .retry import AttemptOutcome, RetryGate
from .strategy import ResultShape, Strategy, select_strategy
from .transactions import TransactionHandle, TransactionState
from .types import DB_NULL, is_null
from .validation import validate_command, validate_options, validate_parameter

__all__ = [
    "AttemptOutcome",
    "Backend",
    "BoundParameter",
    "CancellationToken",
    "Capabilities",
    "Command",
    "CommandKind",
    "DB_NULL",
    "DatabaseError",
    "DbCallerError",
    "DbError",
    "DbOptions",
    "Direction",
    "ErrorCategory",
    "ErrorCode",
    "ErrorKind",
    "ErrorRule",
    "ExecutionPlan",
    "ExecutionResult",
    "Executor",
    "IdentifierCasing",
    "LogicalType",
    "Normalization",
    "OperationCancelledError",
    "OutputValues",
    "Parameter",
    "ResultShape",
    "ResultTable",
    "RetryConfig",
    "RetryGate",
    "Strategy",
    "StreamingResult",
    "TransactionHandle",
    "TransactionState",
    "backend_error",
    "build_command",
    "collect_cursor_handles",
    "extract_output_values",
    "has_output_values",
    "is_null",
    "map_exception",
    "match_rules",
    "name_key",
    "normalize",
    "normalize_as",
    "normalize_parameter_name",
    "normalize_table_name",
    "requires_cursor_handling",
    "resolve_capabilities",
    "select_strategy",
    "strip_prefix",
    "try_normalize",
    "unknown_error",
    "validate_command",
    "validate_options",
    "validate_parameter",
    "validation_error",
]
