"""Executor: composes strategy selection, retry, extraction and error mapping.

One executor owns one lazily-opened connection and runs one command at a
time. Every failure that reaches the caller is a `DbCallerError`; library
misuse (invalid state, closed executor, bad configuration) is a
`DatabaseError`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

import structlog

from ._async_utils import _maybe_await, _maybe_close
from .cancellation import CancellationToken, is_cancelled
from .capabilities import Capabilities, resolve_capabilities
from .commands import Command, Parameter
from .contracts import CommandPort, ConnectionPort
from .cursors import collect_cursor_handles, requires_cursor_handling
from .errors import (
    DatabaseError,
    DbCallerError,
    DbError,
    ErrorCategory,
    map_exception,
)
from .options import Backend, DbOptions
from .parameters import extract_output_values, has_output_values
from .results import EMPTY_OUTPUT_VALUES, ExecutionResult, OutputValues, ResultTable
from .retry import AttemptOutcome, RetryGate
from .strategy import ResultShape, Strategy, select_strategy
from .transactions import TransactionHandle
from .types import RowMapping
from .validation import validate_command, validate_options

T = TypeVar("T")

Connect = Callable[[str], Any]


@dataclass(frozen=True)
class ExecutionPlan:
    """Strategy chosen for one command, fixed before the first attempt."""

    strategy: Strategy
    shape: ResultShape
    requires_cursor: bool
    capabilities: Capabilities


def _output_values(port: CommandPort, declared: Sequence[Parameter]) -> OutputValues:
    if not has_output_values(declared):
        return EMPTY_OUTPUT_VALUES
    return extract_output_values(port.parameters, declared) or EMPTY_OUTPUT_VALUES


def _table(filled: Tuple[Sequence[str], Sequence[RowMapping]]) -> ResultTable:
    columns, rows = filled
    return ResultTable(columns=tuple(columns), rows=tuple(rows))


class StreamingResult:
    """Row stream returned by `Executor.open_stream()`.

    Iterate with `async for`. Output values become available once the stream
    is closed, since most backends only report them after the reader is done.
    A cancellation request stops the stream quietly at the next row boundary.
    """

    def __init__(
        self,
        *,
        strategy: Strategy,
        columns: Sequence[str] = (),
        reader: Any = None,
        command: Optional[CommandPort] = None,
        declared: Sequence[Parameter] = (),
        buffered: Optional[Sequence[RowMapping]] = None,
        output_values: Optional[OutputValues] = None,
        attempts: int = 1,
        cancellation: Optional[CancellationToken] = None,
        map_error: Callable[[BaseException], DbError] = map_exception,
        on_close: Optional[Callable[[], None]] = None,
    ) -> None:
        self.strategy = strategy
        self.columns = tuple(columns)
        self.attempts = attempts
        self._reader = reader
        self._command = command
        self._declared = tuple(declared)
        self._buffered = list(buffered) if buffered is not None else None
        self._output_values = output_values
        self._cancellation = cancellation
        self._map_error = map_error
        self._on_close = on_close
        self._index = 0
        self._closed = False
        self.rows_read = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def output_values(self) -> OutputValues:
        if self._output_values is None:
            raise DatabaseError(
                ErrorCategory.STATE,
                "Output values are available after the stream is closed.",
            )
        return self._output_values

    async def _next_row(self) -> Optional[RowMapping]:
        if self._buffered is not None:
            if self._index >= len(self._buffered):
                return None
            row = self._buffered[self._index]
            self._index += 1
            return row
        try:
            return await _maybe_await(self._reader.read())
        except Exception as exc:
            raise DbCallerError(self._map_error(exc)) from exc

    def __aiter__(self) -> AsyncIterator[RowMapping]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[RowMapping]:
        try:
            while not self._closed:
                if is_cancelled(self._cancellation):
                    break
                row = await self._next_row()
                if row is None or is_cancelled(self._cancellation):
                    break
                self.rows_read += 1
                yield row
        finally:
            await self.close()

    async def fetch_all(self) -> List[RowMapping]:
        return [row async for row in self]

    async def close(self) -> None:
        """Close the reader and command, then harvest output values. Idempotent."""

        if self._closed:
            return
        self._closed = True
        try:
            if self._reader is not None:
                await _maybe_close(self._reader)
            if self._command is not None and self._output_values is None:
                self._output_values = _output_values(self._command, self._declared)
        finally:
            if self._output_values is None:
                self._output_values = EMPTY_OUTPUT_VALUES
            try:
                await _maybe_close(self._command)
            finally:
                if self._on_close is not None:
                    self._on_close()

    async def __aenter__(self) -> StreamingResult:
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()


class Executor:
    """Provider-agnostic command executor.

    Example:
        executor = Executor.create(options, connect=lambda dsn: DbApiConnection(...))
        async with executor:
            result = await executor.query_table(command)
    """

    def __init__(
        self,
        options: DbOptions,
        connect: Connect,
        *,
        in_user_transaction: bool = False,
        logger: Any = None,
    ) -> None:
        self._options = options
        self._connect = connect
        self._in_user_transaction = in_user_transaction
        self._capabilities = resolve_capabilities(options.backend)
        self._gate = RetryGate(options.retry_config, self._map_error)
        self._log = (logger or structlog.get_logger(__name__)).bind(
            backend=options.backend.value
        )
        self._lock = asyncio.Lock()
        self._connection: Optional[ConnectionPort] = None
        self._transaction: Optional[TransactionHandle] = None
        self._stream: Optional[StreamingResult] = None
        self._closed = False

    @classmethod
    def create(
        cls,
        options: DbOptions,
        connect: Connect,
        *,
        in_user_transaction: bool = False,
        logger: Any = None,
    ) -> Executor:
        """Validate `options` and build an executor; the connection opens on first use."""

        if options.enable_validation:
            error = validate_options(options)
            if error is not None:
                raise DatabaseError(
                    ErrorCategory.CONFIGURATION,
                    "Invalid DbOptions: " + "; ".join(error.message_parameters),
                )
        return cls(options, connect, in_user_transaction=in_user_transaction, logger=logger)

    @property
    def options(self) -> DbOptions:
        return self._options

    @property
    def capabilities(self) -> Capabilities:
        return self._capabilities

    @property
    def in_transaction(self) -> bool:
        """Whether commands currently run inside a caller-managed transaction."""

        if self._in_user_transaction:
            return True
        return self._transaction is not None and self._transaction.is_active

    # --- planning -----------------------------------------------------------

    def plan(self, command: Command, shape: ResultShape = ResultShape.SINGLE) -> ExecutionPlan:
        """Select the execution strategy for `command` and `shape`."""

        requires_cursor = requires_cursor_handling(self._options.backend, command)
        strategy = select_strategy(self._capabilities, requires_cursor, shape)
        self._log.debug(
            "strategy_selected",
            strategy=strategy.value,
            shape=shape.value,
            requires_cursor=requires_cursor,
        )
        return ExecutionPlan(
            strategy=strategy,
            shape=shape,
            requires_cursor=requires_cursor,
            capabilities=self._capabilities,
        )

    # --- public operations --------------------------------------------------

    async def execute(
        self, command: Command, cancellation: Optional[CancellationToken] = None
    ) -> ExecutionResult:
        """Run a non-query command; returns rows affected and output values."""

        plan = self.plan(command, ResultShape.SINGLE)

        async def work(port: CommandPort) -> ExecutionResult:
            if cancellation is not None:
                cancellation.raise_if_cancelled()
            affected = await _maybe_await(port.execute())
            return ExecutionResult(
                rows_affected=affected if isinstance(affected, int) else None,
                output_values=_output_values(port, command.parameters),
                strategy=plan.strategy,
            )

        return await self._execute(command, work, cancellation)

    async def execute_scalar(
        self, command: Command, cancellation: Optional[CancellationToken] = None
    ) -> ExecutionResult:
        """Run a command and return the first column of its first row as `scalar`."""

        plan = self.plan(command, ResultShape.SINGLE)

        async def work(port: CommandPort) -> ExecutionResult:
            if cancellation is not None:
                cancellation.raise_if_cancelled()
            scalar = await _maybe_await(port.execute_scalar())
            return ExecutionResult(
                scalar=scalar,
                output_values=_output_values(port, command.parameters),
                strategy=plan.strategy,
            )

        return await self._execute(command, work, cancellation)

    async def query_table(
        self, command: Command, cancellation: Optional[CancellationToken] = None
    ) -> ExecutionResult:
        """Buffer one result set (or the ref-cursor tables for cursor-shaped commands)."""

        return await self._buffered(command, self.plan(command, ResultShape.SINGLE), cancellation)

    async def query_tables(
        self, command: Command, cancellation: Optional[CancellationToken] = None
    ) -> ExecutionResult:
        """Buffer every result set the command produces."""

        return await self._buffered(command, self.plan(command, ResultShape.MULTIPLE), cancellation)

    async def query(
        self,
        command: Command,
        map_row: Callable[[RowMapping], T],
        cancellation: Optional[CancellationToken] = None,
    ) -> Tuple[List[T], OutputValues]:
        """Buffer the first result set and map each row with `map_row`."""

        result = await self.query_table(command, cancellation)
        return [map_row(row) for row in result.table.rows], result.output_values

    async def open_stream(
        self, command: Command, cancellation: Optional[CancellationToken] = None
    ) -> StreamingResult:
        """Open a row stream.

        Backends that cannot stream run the command buffered and replay the
        first table row by row. Only opening the reader is retried; rows
        already delivered are never re-read.
        """

        plan = self.plan(command, ResultShape.SEQUENTIAL)
        if plan.strategy is not Strategy.STREAMING:
            result = await self._buffered(command, plan, cancellation)
            return self._track_stream(
                StreamingResult(
                    strategy=plan.strategy,
                    columns=result.table.columns,
                    buffered=result.table.rows,
                    output_values=result.output_values,
                    attempts=result.attempts,
                    cancellation=cancellation,
                    map_error=self._map_error,
                )
            )

        async def attempt() -> Tuple[CommandPort, Any]:
            port = await self._create_command(command)
            try:
                if cancellation is not None:
                    cancellation.raise_if_cancelled()
                reader = await _maybe_await(port.execute_reader())
            except BaseException:
                await _maybe_close(port)
                raise
            return port, reader

        (port, reader), attempts = await self._run(command, attempt, cancellation)
        return self._track_stream(
            StreamingResult(
                strategy=plan.strategy,
                columns=getattr(reader, "columns", ()),
                reader=reader,
                command=port,
                declared=command.parameters,
                attempts=attempts,
                cancellation=cancellation,
                map_error=self._map_error,
            )
        )

    async def stream(
        self, command: Command, cancellation: Optional[CancellationToken] = None
    ) -> AsyncIterator[RowMapping]:
        """Yield rows one at a time; see `open_stream()`."""

        result = await self.open_stream(command, cancellation)
        async with result:
            async for row in result:
                yield row

    async def begin_transaction(self) -> TransactionHandle:
        """Begin a transaction on this executor's connection.

        Commands run inside it are never retried. Only one transaction may be
        active at a time.
        """

        self._require_usable()
        async with self._lock:
            self._require_usable()
            if self._transaction is not None and self._transaction.is_active:
                raise DatabaseError(ErrorCategory.STATE, "A transaction is already active.")
            try:
                connection = await self._ensure_connection()
                transaction = await _maybe_await(connection.begin())
            except DatabaseError:
                raise
            except Exception as exc:
                raise DbCallerError(self._map_error(exc)) from exc
            handle = TransactionHandle(
                transaction,
                on_dispose=lambda: self._clear_transaction(handle),
            )
            self._transaction = handle
            self._log.debug("transaction_begun")
            return handle

    async def close(self) -> None:
        """Dispose any active transaction and close the connection. Idempotent."""

        if self._closed:
            return
        self._closed = True
        try:
            if self._stream is not None:
                await self._stream.close()
            if self._transaction is not None:
                await self._transaction.dispose()
        finally:
            connection, self._connection = self._connection, None
            if connection is not None:
                await _maybe_close(connection)
                self._log.debug("connection_closed")

    async def __aenter__(self) -> Executor:
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    # --- internals ----------------------------------------------------------

    def _map_error(self, exc: BaseException) -> DbError:
        if isinstance(exc, DbCallerError):
            return exc.error
        dialect = getattr(self._connection, "dialect", None)
        map_error = getattr(dialect, "map_error", None)
        if callable(map_error):
            return map_error(exc)
        return map_exception(exc)

    def _require_usable(self) -> None:
        if self._closed:
            raise DatabaseError(ErrorCategory.DISPOSED, "Executor has been closed.")
        if self._stream is not None and not self._stream.closed:
            raise DatabaseError(
                ErrorCategory.STATE,
                "A stream is still open on this executor; close it first.",
            )

    def _validate(self, command: Command) -> None:
        if not self._options.enable_validation:
            return
        error = validate_command(command)
        if error is not None:
            raise DbCallerError(error)

    def _track_stream(self, stream: StreamingResult) -> StreamingResult:
        def _clear() -> None:
            if self._stream is stream:
                self._stream = None

        stream._on_close = _clear
        self._stream = stream
        return stream

    def _clear_transaction(self, handle: TransactionHandle) -> None:
        if self._transaction is handle:
            self._transaction = None
        self._log.debug("transaction_disposed")

    def _active_transaction(self) -> Any:
        if self._transaction is not None and self._transaction.is_active:
            return self._transaction.transaction
        return None

    async def _ensure_connection(self) -> ConnectionPort:
        if self._closed:
            raise DatabaseError(ErrorCategory.DISPOSED, "Executor has been closed.")
        if self._connection is not None:
            return self._connection

        connection = await _maybe_await(self._connect(self._options.connection_string))
        dialect_backend = getattr(getattr(connection, "dialect", None), "backend", None)
        if dialect_backend is not None and Backend.parse(dialect_backend) is not self._options.backend:
            await _maybe_close(connection)
            raise DatabaseError(
                ErrorCategory.CONFIGURATION,
                f"Connection dialect targets {Backend.parse(dialect_backend).value}, "
                f"options target {self._options.backend.value}.",
            )
        self._connection = connection
        self._log.debug("connection_opened")
        return connection

    async def _create_command(self, command: Command, transaction: Any = None) -> CommandPort:
        connection = await self._ensure_connection()
        return connection.create_command(
            command,
            timeout=command.timeout or self._options.command_timeout,
            transaction=transaction if transaction is not None else self._active_transaction(),
        )

    async def _run(
        self,
        command: Command,
        attempt: Callable[[], Awaitable[T]],
        cancellation: Optional[CancellationToken],
    ) -> Tuple[T, int]:
        """Validate, serialize and run `attempt` through the retry gate."""

        self._require_usable()
        self._validate(command)
        async with self._lock:
            self._require_usable()
            outcome: AttemptOutcome[T] = await self._gate.run(
                attempt,
                in_user_transaction=self.in_transaction,
                cancellation=cancellation,
            )
        if not outcome.ok:
            assert outcome.error is not None
            self._log.info(
                "command_failed",
                command=command.text,
                attempts=outcome.attempts,
                error_kind=outcome.error.kind.value,
                error_code=outcome.error.code,
                transient=outcome.error.is_transient,
            )
            if isinstance(outcome.exception, DatabaseError):
                raise outcome.exception
        return outcome.unwrap(), outcome.attempts

    async def _execute(
        self,
        command: Command,
        work: Callable[[CommandPort], Awaitable[ExecutionResult]],
        cancellation: Optional[CancellationToken],
    ) -> ExecutionResult:
        """Run `work` on a fresh command per attempt; failed attempts leave nothing behind."""

        async def attempt() -> ExecutionResult:
            port = await self._create_command(command)
            try:
                return await work(port)
            finally:
                await _maybe_close(port)

        result, attempts = await self._run(command, attempt, cancellation)
        return replace(result, attempts=attempts)

    async def _buffered(
        self,
        command: Command,
        plan: ExecutionPlan,
        cancellation: Optional[CancellationToken],
    ) -> ExecutionResult:
        if plan.requires_cursor:
            return await self._run_cursor_command(command, plan, cancellation)

        async def work(port: CommandPort) -> ExecutionResult:
            # A fill cannot be interrupted once started; check before it begins.
            if cancellation is not None:
                cancellation.raise_if_cancelled()
            if plan.strategy is Strategy.BUFFERED_MULTI:
                tables = [_table(filled) for filled in await _maybe_await(port.fill_tables())]
            else:
                tables = [_table(await _maybe_await(port.fill_table()))]
            return ExecutionResult(
                tables=tables,
                output_values=_output_values(port, command.parameters),
                strategy=plan.strategy,
            )

        return await self._execute(command, work, cancellation)

    async def _run_cursor_command(
        self,
        command: Command,
        plan: ExecutionPlan,
        cancellation: Optional[CancellationToken],
    ) -> ExecutionResult:
        """Execute a stored procedure and drain each returned ref-cursor as a table.

        Backends whose named cursors only live inside a transaction get a
        short-lived one when the caller has none; it is committed after the
        cursors are drained and rolled back on failure.
        """

        async def attempt() -> ExecutionResult:
            own_transaction = None
            try:
                if plan.capabilities.cursor_requires_transaction and self._active_transaction() is None:
                    connection = await self._ensure_connection()
                    own_transaction = await _maybe_await(connection.begin())

                port = await self._create_command(command, own_transaction)
                try:
                    if cancellation is not None:
                        cancellation.raise_if_cancelled()
                    await _maybe_await(port.execute())
                    tables: List[ResultTable] = []
                    for handle in collect_cursor_handles(port.parameters, command.parameters):
                        if cancellation is not None:
                            cancellation.raise_if_cancelled()
                        tables.append(_table(await _maybe_await(port.read_cursor(handle))))
                    result = ExecutionResult(
                        tables=tables,
                        output_values=_output_values(port, command.parameters),
                        strategy=plan.strategy,
                    )
                finally:
                    await _maybe_close(port)

                if own_transaction is not None:
                    await _maybe_await(own_transaction.commit())
            except BaseException:
                if own_transaction is not None:
                    await _maybe_await(own_transaction.rollback())
                raise
            return result

        result, attempts = await self._run(command, attempt, cancellation)
        return replace(result, attempts=attempts)
