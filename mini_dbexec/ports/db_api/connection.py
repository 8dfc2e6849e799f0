"""DB-API adapter implementing the core connection, command and reader ports."""

from __future__ import annotations

from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

from ...core.commands import BoundParameter, Command
from ...core.types import MaybeRow, RowMapping, Rows
from .dialects import Dialect

Table = Tuple[Tuple[str, ...], Rows]

_NAMED_STYLES = ("named", "pyformat")


def _columns(cursor: Any) -> Tuple[str, ...]:
    desc = getattr(cursor, "description", None)
    if not desc:
        return ()
    return tuple(d[0] for d in desc)


def _row_to_mapping(cursor: Any, row: Any) -> RowMapping:
    """Normalize row object to mapping.

    Supports mapping rows directly and tuple/list rows via
    `cursor.description`.
    """

    if isinstance(row, Mapping):
        return row

    if isinstance(row, (tuple, list)):
        cols = _columns(cursor)
        if not cols:
            raise TypeError("Cursor has no description; cannot map tuple rows to dict.")
        return dict(zip(cols, row, strict=True))

    try:
        return dict(row)
    except (TypeError, ValueError):
        pass

    raise TypeError(f"Unsupported row type: {type(row)}")


def _drain(cursor: Any) -> Table:
    if not getattr(cursor, "description", None):
        return (), []
    rows = cursor.fetchall()
    return _columns(cursor), [_row_to_mapping(cursor, r) for r in rows]


def _close_quietly(cursor: Any) -> None:
    close = getattr(cursor, "close", None)
    if callable(close):
        close()


class DbApiTransaction:
    """Transaction over a DB-API connection.

    Drivers running in autocommit mode are switched out of it for the
    lifetime of the transaction and switched back on commit or rollback.
    """

    def __init__(self, conn: Any, *, restore_autocommit: bool = False):
        self._conn = conn
        self._restore_autocommit = restore_autocommit

    def _finish(self) -> None:
        if self._restore_autocommit:
            self._restore_autocommit = False
            self._conn.autocommit = True

    def commit(self) -> None:
        try:
            self._conn.commit()
        finally:
            self._finish()

    def rollback(self) -> None:
        try:
            self._conn.rollback()
        finally:
            self._finish()


class DbApiReader:
    """Sequential reader over an executed DB-API cursor."""

    def __init__(self, cursor: Any, on_close: Any = None):
        self._cursor = cursor
        self._on_close = on_close
        self.columns = _columns(cursor)

    def read(self) -> MaybeRow:
        if not self.columns:
            return None
        row = self._cursor.fetchone()
        if row is None:
            return None
        return _row_to_mapping(self._cursor, row)

    def close(self) -> None:
        if self._on_close is not None:
            self._on_close()
            self._on_close = None


class DbApiCommand:
    """One command bound to a DB-API connection.

    Each execution method runs the command once on a fresh cursor. Outside a
    transaction the work is committed when the command closes cleanly and
    rolled back when execution fails, matching autocommit semantics.
    """

    def __init__(
        self,
        connection: DbApiConnection,
        command: Command,
        *,
        timeout: float,
        transaction: Optional[DbApiTransaction] = None,
    ):
        self._connection = connection
        self._command = command
        self._timeout = timeout
        self._transaction = transaction
        self._cursor: Any = None
        self._bound: List[BoundParameter] = []
        self._ref_cursors: List[Any] = []
        self._failed = False
        self._closed = False

    @property
    def parameters(self) -> Sequence[BoundParameter]:
        return tuple(self._bound)

    @property
    def _dialect(self) -> Dialect:
        return self._connection.dialect

    def _bind_text_arguments(self, values: Sequence[Any]) -> Any:
        if not self._command.parameters:
            return None
        if self._connection.paramstyle in _NAMED_STYLES:
            return {
                parameter.stripped_name: value
                for parameter, value in zip(self._command.parameters, values, strict=True)
            }
        return list(values)

    def _run(self) -> Any:
        if self._closed:
            raise RuntimeError("command is closed")
        conn = self._connection.require_open()
        self._close_cursor()
        self._close_ref_cursors()
        cursor = conn.cursor()
        self._cursor = cursor
        try:
            self._dialect.apply_timeout(conn, cursor, self._timeout)
            values = []
            for p in self._command.parameters:
                if not p.direction.is_output:
                    values.append(p.value)
                    continue
                value = self._dialect.bind_output(conn, cursor, p)
                if p.is_ref_cursor and callable(getattr(value, "close", None)):
                    self._ref_cursors.append(value)
                values.append(value)
            if self._command.is_stored_procedure:
                returned = self._dialect.call_procedure(cursor, self._command, values)
            else:
                arguments = self._bind_text_arguments(values)
                if arguments is None:
                    cursor.execute(self._command.text)
                else:
                    cursor.execute(self._command.text, arguments)
                returned = None
            executed = self._dialect.read_outputs(cursor, self._command, values, returned)
        except BaseException:
            self._failed = True
            raise
        self._bound = [
            BoundParameter(name=p.name, direction=p.direction, value=value)
            for p, value in zip(self._command.parameters, executed, strict=True)
        ]
        return cursor

    def execute(self) -> Optional[int]:
        cursor = self._run()
        rowcount = getattr(cursor, "rowcount", -1)
        return rowcount if isinstance(rowcount, int) and rowcount >= 0 else None

    def execute_scalar(self) -> Any:
        cursor = self._run()
        if not getattr(cursor, "description", None):
            return None
        row = cursor.fetchone()
        if row is None:
            return None
        mapping = _row_to_mapping(cursor, row)
        return next(iter(mapping.values()), None)

    def execute_reader(self) -> DbApiReader:
        cursor = self._run()
        return DbApiReader(cursor, on_close=self._close_cursor)

    def fill_table(self) -> Table:
        return _drain(self._run())

    def fill_tables(self) -> List[Table]:
        cursor = self._run()
        tables = [_drain(cursor)]
        nextset = getattr(cursor, "nextset", None)
        while callable(nextset) and nextset():
            tables.append(_drain(cursor))
        return tables

    def read_cursor(self, handle: Any) -> Table:
        """Drain a ref-cursor: a driver cursor object or a named server-side cursor."""

        if callable(getattr(handle, "fetchall", None)):
            self._ref_cursors = [c for c in self._ref_cursors if c is not handle]
            try:
                return _drain(handle)
            finally:
                _close_quietly(handle)

        conn = self._connection.require_open()
        cursor = conn.cursor()
        try:
            cursor.execute(self._dialect.cursor_fetch_sql(str(handle)))
            return _drain(cursor)
        finally:
            _close_quietly(cursor)

    def _close_cursor(self) -> None:
        cursor, self._cursor = self._cursor, None
        if cursor is not None:
            _close_quietly(cursor)

    def _close_ref_cursors(self) -> None:
        # Bound ref-cursors the caller never drained.
        cursors, self._ref_cursors = self._ref_cursors, []
        for cursor in cursors:
            _close_quietly(cursor)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._close_ref_cursors()
        self._close_cursor()
        if self._transaction is not None or not self._connection.autocommit:
            return
        conn = self._connection.conn
        if conn is None:
            return
        if self._failed:
            conn.rollback()
        else:
            conn.commit()


class DbApiConnection:
    """Thin DB-API wrapper implementing the executor's connection port."""

    def __init__(
        self,
        conn: Any,
        dialect: Dialect,
        *,
        paramstyle: Optional[str] = None,
        autocommit: bool = True,
    ):
        """Create connection adapter.

        Args:
            conn: Open DB-API connection object.
            dialect: Concrete backend dialect instance.
            paramstyle: Driver parameter style when it differs from the dialect default.
            autocommit: Commit each command run outside an explicit transaction.
        """

        self.conn: Any | None = conn
        self.dialect = dialect
        self.paramstyle = paramstyle or dialect.paramstyle
        self.autocommit = autocommit
        self._closed = False

    def require_open(self) -> Any:
        if self._closed or self.conn is None:
            raise RuntimeError("connection is closed")
        return self.conn

    def _should_begin_explicitly(self, conn: Any) -> bool:
        # sqlite3 with isolation_level=None never opens a transaction implicitly.
        if not hasattr(conn, "isolation_level") or conn.isolation_level is not None:
            return False
        in_transaction = getattr(conn, "in_transaction", None)
        return in_transaction is False

    def create_command(
        self,
        command: Command,
        *,
        timeout: float,
        transaction: Optional[DbApiTransaction] = None,
    ) -> DbApiCommand:
        return DbApiCommand(self, command, timeout=timeout, transaction=transaction)

    def begin(self) -> DbApiTransaction:
        conn = self.require_open()
        if getattr(conn, "autocommit", None) is True:
            conn.autocommit = False
            return DbApiTransaction(conn, restore_autocommit=True)
        if self._should_begin_explicitly(conn):
            cursor = conn.cursor()
            try:
                cursor.execute("BEGIN")
            finally:
                _close_quietly(cursor)
        return DbApiTransaction(conn)

    def close(self) -> None:
        """Close the underlying connection. Idempotent."""

        if self._closed:
            return
        conn = self.conn
        self._closed = True
        self.conn = None
        close = getattr(conn, "close", None)
        if callable(close):
            close()

    def __enter__(self) -> DbApiConnection:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()


def connector(
    driver_connect: Callable[[str], Any],
    dialect: Dialect,
    *,
    paramstyle: Optional[str] = None,
    autocommit: bool = True,
) -> Callable[[str], DbApiConnection]:
    """Build an executor `connect` callable from a DB-API `connect` function.

    Example:
        executor = Executor.create(options, connect=connector(sqlite3.connect, dialect))
    """

    def connect(connection_string: str) -> DbApiConnection:
        return DbApiConnection(
            driver_connect(connection_string),
            dialect,
            paramstyle=paramstyle,
            autocommit=autocommit,
        )

    return connect


__all__ = [
    "DbApiCommand",
    "DbApiConnection",
    "DbApiReader",
    "DbApiTransaction",
    "connector",
]
