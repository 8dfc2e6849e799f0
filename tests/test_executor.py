from __future__ import annotations

import unittest
from decimal import Decimal

from mini_dbexec.core import (
    Backend,
    CancellationToken,
    Command,
    CommandKind,
    DatabaseError,
    DbCallerError,
    DbOptions,
    Direction,
    ErrorCategory,
    ErrorCode,
    ErrorKind,
    Executor,
    LogicalType,
    Parameter,
    ResultShape,
    Strategy,
)
from tests.dbexec_test_helpers import (
    FakeConnection,
    FakeTransaction,
    RecordingConnect,
    make_executor,
    table,
)


def _ref_cursor(name: str) -> Parameter:
    return Parameter(name, LogicalType.REF_CURSOR, Direction.OUT)


class _UnpreparedConnection(FakeConnection):
    def create_command(self, command, *, timeout, transaction=None):  # noqa: ANN001,ANN201
        raise RuntimeError("prepare failed")


class _CommitFailingTransaction(FakeTransaction):
    def commit(self) -> None:
        raise RuntimeError("commit failed")


class _CommitFailingConnection(FakeConnection):
    def begin(self) -> FakeTransaction:
        transaction = _CommitFailingTransaction()
        self.transactions.append(transaction)
        return transaction


class ExecutorCursorTests(unittest.IsolatedAsyncioTestCase):
    async def test_oracle_ref_cursor_procedure_returns_one_table_per_cursor(self) -> None:
        connection = FakeConnection(
            Backend.ORACLE,
            outputs={"p_customer_cursor": "cursor-1", "p_total": Decimal("3")},
            cursor_tables={"cursor-1": table(["ID", "NAME"], [1, "Ann"], [2, "Bob"], [3, "Cy"])},
        )
        executor, _ = make_executor(connection)
        command = Command(
            "pkg_customers.list_all",
            CommandKind.STORED_PROCEDURE,
            (
                _ref_cursor(":p_customer_cursor"),
                Parameter("p_total", LogicalType.INT32, Direction.OUT),
            ),
        )

        async with executor:
            result = await executor.query_table(command)

        self.assertEqual(result.strategy, Strategy.BUFFERED_MULTI)
        self.assertEqual(len(result.tables), 1)
        self.assertEqual([row["NAME"] for row in result.table], ["Ann", "Bob", "Cy"])
        self.assertNotIn("p_customer_cursor", result.output_values)
        self.assertEqual(result.output_values["P_TOTAL"], 3)
        self.assertIsInstance(result.output_values["p_total"], int)
        # Oracle ref-cursors do not need a transaction.
        self.assertEqual(connection.transactions, [])

    async def test_cursor_tables_follow_declaration_order(self) -> None:
        connection = FakeConnection(
            Backend.ORACLE,
            outputs={"p_orders": "orders", "p_customers": "customers"},
            cursor_tables={
                "customers": table(["ID"], [1]),
                "orders": table(["ORDER_ID"], [10], [11]),
            },
        )
        executor, _ = make_executor(connection)
        command = Command(
            "pkg.dashboard",
            CommandKind.STORED_PROCEDURE,
            (_ref_cursor("p_customers"), _ref_cursor("p_orders")),
        )

        result = await executor.query_tables(command)

        self.assertEqual(connection.drained, ["customers", "orders"])
        self.assertEqual([t.columns for t in result.tables], [("ID",), ("ORDER_ID",)])
        self.assertEqual(len(result.output_values), 0)

    async def test_postgres_cursor_procedure_runs_in_its_own_transaction(self) -> None:
        connection = FakeConnection(
            Backend.POSTGRESQL,
            outputs={"result_cursor": "<unnamed portal 1>"},
            cursor_tables={"<unnamed portal 1>": table(["id"], [7])},
        )
        executor, _ = make_executor(connection)
        command = Command(
            "report_rows",
            CommandKind.STORED_PROCEDURE,
            (_ref_cursor("result_cursor"),),
        )

        result = await executor.query_table(command)

        self.assertEqual(result.rows, [{"id": 7}])
        self.assertEqual(len(connection.transactions), 1)
        transaction = connection.transactions[0]
        self.assertIs(connection.commands[0].transaction, transaction)
        self.assertEqual((transaction.commits, transaction.rollbacks), (1, 0))
        self.assertTrue(connection.commands[0].closed)

    async def test_postgres_cursor_failure_rolls_back_own_transaction(self) -> None:
        connection = FakeConnection(
            Backend.POSTGRESQL,
            outputs={"result_cursor": "missing"},
        )
        executor, _ = make_executor(connection)
        command = Command("report_rows", CommandKind.STORED_PROCEDURE, (_ref_cursor("result_cursor"),))

        with self.assertRaises(DbCallerError) as ctx:
            await executor.query_table(command)

        self.assertEqual(ctx.exception.kind, ErrorKind.UNKNOWN)
        self.assertIsInstance(ctx.exception.__cause__, KeyError)
        transaction = connection.transactions[0]
        self.assertEqual((transaction.commits, transaction.rollbacks), (0, 1))

    async def test_postgres_command_setup_failure_rolls_back_own_transaction(self) -> None:
        connection = _UnpreparedConnection(Backend.POSTGRESQL)
        executor, _ = make_executor(connection)
        command = Command("report_rows", CommandKind.STORED_PROCEDURE, (_ref_cursor("result_cursor"),))

        with self.assertRaises(DbCallerError) as ctx:
            await executor.query_table(command)

        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)
        transaction = connection.transactions[0]
        self.assertEqual((transaction.commits, transaction.rollbacks), (0, 1))

    async def test_postgres_failed_commit_rolls_back_own_transaction(self) -> None:
        connection = _CommitFailingConnection(
            Backend.POSTGRESQL,
            outputs={"result_cursor": "c1"},
            cursor_tables={"c1": table(["id"], [1])},
        )
        executor, _ = make_executor(connection)
        command = Command("report_rows", CommandKind.STORED_PROCEDURE, (_ref_cursor("result_cursor"),))

        with self.assertRaises(DbCallerError) as ctx:
            await executor.query_table(command)

        self.assertEqual(str(ctx.exception.__cause__), "commit failed")
        self.assertEqual(connection.transactions[0].rollbacks, 1)
        self.assertTrue(connection.commands[0].closed)

    async def test_postgres_cursor_procedure_reuses_caller_transaction(self) -> None:
        connection = FakeConnection(
            Backend.POSTGRESQL,
            outputs={"result_cursor": "c1"},
            cursor_tables={"c1": table(["id"], [1])},
        )
        executor, _ = make_executor(connection)
        command = Command("report_rows", CommandKind.STORED_PROCEDURE, (_ref_cursor("result_cursor"),))

        async with await executor.begin_transaction() as tx:
            await executor.query_table(command)
            await tx.commit()

        self.assertEqual(len(connection.transactions), 1)
        self.assertIs(connection.commands[0].transaction, connection.transactions[0])
        self.assertEqual(connection.transactions[0].commits, 1)

    async def test_sql_server_procedure_is_filled_directly(self) -> None:
        connection = FakeConnection(Backend.SQL_SERVER, tables=[table(["id"], [1])])
        executor, _ = make_executor(connection)
        command = Command("dbo.list", CommandKind.STORED_PROCEDURE)

        result = await executor.query_table(command)

        self.assertEqual(result.strategy, Strategy.BUFFERED_SINGLE)
        self.assertEqual(result.rows, [{"id": 1}])


class ExecutorStreamingTests(unittest.IsolatedAsyncioTestCase):
    async def test_sql_server_stream_stops_quietly_when_cancelled(self) -> None:
        connection = FakeConnection(
            Backend.SQL_SERVER,
            tables=[table(["n"], [1], [2], [3], [4], [5])],
            outputs={"@total": 5},
        )
        executor, _ = make_executor(connection)
        command = Command(
            "SELECT n FROM numbers",
            parameters=(Parameter("@total", LogicalType.INT32, Direction.OUT),),
        )
        token = CancellationToken()

        stream = await executor.open_stream(command, token)
        rows = []
        async for row in stream:
            rows.append(row)
            if len(rows) == 2:
                token.cancel()

        self.assertEqual(stream.strategy, Strategy.STREAMING)
        self.assertEqual([row["n"] for row in rows], [1, 2])
        self.assertTrue(stream.closed)
        reader = connection.readers[0]
        self.assertTrue(reader.closed)
        self.assertEqual(reader.reads, 2)
        self.assertTrue(connection.commands[0].closed)
        self.assertEqual(stream.output_values["total"], 5)

    async def test_output_values_are_unavailable_until_stream_closes(self) -> None:
        connection = FakeConnection(Backend.SQL_SERVER, tables=[table(["n"], [1])])
        executor, _ = make_executor(connection)

        stream = await executor.open_stream(Command("SELECT 1 AS n"))
        with self.assertRaises(DatabaseError) as ctx:
            _ = stream.output_values
        self.assertEqual(ctx.exception.category, ErrorCategory.STATE)

        self.assertEqual(await stream.fetch_all(), [{"n": 1}])
        self.assertEqual(len(stream.output_values), 0)

    async def test_oracle_stream_falls_back_to_buffered_replay(self) -> None:
        connection = FakeConnection(Backend.ORACLE, tables=[table(["N"], [1], [2])])
        executor, _ = make_executor(connection)

        rows = [row async for row in executor.stream(Command("SELECT n FROM t"))]

        self.assertEqual(rows, [{"N": 1}, {"N": 2}])
        self.assertEqual(connection.readers, [])
        self.assertEqual(executor.plan(Command("SELECT 1"), ResultShape.SEQUENTIAL).strategy, Strategy.BUFFERED_SINGLE)

    async def test_open_stream_blocks_other_operations_until_closed(self) -> None:
        connection = FakeConnection(Backend.POSTGRESQL, tables=[table(["n"], [1], [2])])
        executor, _ = make_executor(connection)

        stream = await executor.open_stream(Command("SELECT n FROM t"))
        with self.assertRaises(DatabaseError) as ctx:
            await executor.execute(Command("DELETE FROM t"))
        self.assertEqual(ctx.exception.category, ErrorCategory.STATE)

        await stream.close()
        await executor.execute(Command("DELETE FROM t"))
        self.assertEqual(len(connection.commands), 2)


class ExecutorRetryTests(unittest.IsolatedAsyncioTestCase):
    async def test_transient_failures_are_retried_until_success(self) -> None:
        connection = FakeConnection(
            Backend.SQL_SERVER,
            failures=[TimeoutError("slow"), TimeoutError("slow")],
            rows_affected=4,
        )
        executor, _ = make_executor(connection, enable_retry=True, retry_count=2, retry_delay=0)

        result = await executor.execute(Command("UPDATE t SET x = 1"))

        self.assertEqual(result.rows_affected, 4)
        self.assertEqual(result.attempts, 3)
        self.assertEqual(connection.executions, 3)
        self.assertEqual(len(connection.commands), 3)
        self.assertTrue(all(command.closed for command in connection.commands))

    async def test_retry_budget_exhaustion_surfaces_last_error(self) -> None:
        connection = FakeConnection(
            Backend.SQL_SERVER,
            failures=[TimeoutError("a"), TimeoutError("b"), TimeoutError("c")],
        )
        executor, _ = make_executor(connection, enable_retry=True, retry_count=1, retry_delay=0)

        with self.assertRaises(DbCallerError) as ctx:
            await executor.execute(Command("UPDATE t SET x = 1"))

        self.assertEqual(ctx.exception.kind, ErrorKind.TIMEOUT)
        self.assertEqual(str(ctx.exception.__cause__), "b")
        self.assertEqual(connection.executions, 2)

    async def test_non_transient_failure_is_not_retried(self) -> None:
        connection = FakeConnection(Backend.SQL_SERVER, failures=[ValueError("bad")])
        executor, _ = make_executor(connection, enable_retry=True, retry_count=3, retry_delay=0)

        with self.assertRaises(DbCallerError) as ctx:
            await executor.execute(Command("UPDATE t SET x = 1"))

        self.assertEqual(ctx.exception.code, ErrorCode.UNKNOWN)
        self.assertFalse(ctx.exception.is_transient)
        self.assertEqual(connection.executions, 1)

    async def test_retry_is_suppressed_inside_a_transaction(self) -> None:
        connection = FakeConnection(
            Backend.SQL_SERVER,
            failures=[TimeoutError("slow"), TimeoutError("slow")],
        )
        executor, _ = make_executor(connection, enable_retry=True, retry_count=3, retry_delay=0)

        async with await executor.begin_transaction():
            self.assertTrue(executor.in_transaction)
            with self.assertRaises(DbCallerError) as ctx:
                await executor.execute(Command("UPDATE t SET x = 1"))

        self.assertTrue(ctx.exception.is_transient)
        self.assertEqual(connection.executions, 1)
        # Disposed without commit.
        self.assertEqual(connection.transactions[0].rollbacks, 1)
        self.assertFalse(executor.in_transaction)

    async def test_in_user_transaction_flag_disables_retry(self) -> None:
        connection = FakeConnection(Backend.POSTGRESQL, failures=[TimeoutError("slow")])
        options = DbOptions(
            backend=Backend.POSTGRESQL,
            connection_string="host=fake",
            enable_retry=True,
            retry_delay=0,
        )
        executor = Executor.create(options, RecordingConnect(connection), in_user_transaction=True)

        with self.assertRaises(DbCallerError):
            await executor.execute(Command("UPDATE t SET x = 1"))
        self.assertEqual(connection.executions, 1)


class ExecutorOperationTests(unittest.IsolatedAsyncioTestCase):
    async def test_execute_reports_rows_affected_and_normalized_outputs(self) -> None:
        connection = FakeConnection(
            Backend.SQL_SERVER,
            outputs={"@new_id": "42", "@label": b"ok"},
            rows_affected=1,
        )
        executor, connect = make_executor(connection)
        command = Command(
            "INSERT INTO t (x) VALUES (@x)",
            parameters=(
                Parameter("@x", LogicalType.INT32, value=1),
                Parameter("@new_id", LogicalType.INT64, Direction.OUT),
                Parameter("@label", LogicalType.STRING, Direction.IN_OUT, value="", size=10),
            ),
        )

        result = await executor.execute(command)

        self.assertEqual(result.rows_affected, 1)
        self.assertEqual(dict(result.output_values), {"new_id": 42, "label": "ok"})
        self.assertEqual(connect.calls, ["Server=fake"])
        self.assertEqual(connection.commands[0].timeout, 30.0)

    async def test_command_timeout_overrides_default(self) -> None:
        connection = FakeConnection(Backend.SQL_SERVER)
        executor, _ = make_executor(connection, command_timeout=15)

        await executor.execute(Command("SELECT 1", timeout=2.5))
        await executor.execute(Command("SELECT 1"))

        self.assertEqual([c.timeout for c in connection.commands], [2.5, 15])

    async def test_execute_scalar_and_query_mapping(self) -> None:
        connection = FakeConnection(Backend.POSTGRESQL, tables=[table(["id", "name"], [1, "a"], [2, "b"])])
        executor, _ = make_executor(connection)

        scalar = await executor.execute_scalar(Command("SELECT id FROM t"))
        names, outputs = await executor.query(Command("SELECT * FROM t"), lambda row: row["name"])

        self.assertEqual(scalar.scalar, 1)
        self.assertEqual(names, ["a", "b"])
        self.assertEqual(len(outputs), 0)

    async def test_query_tables_buffers_every_result_set(self) -> None:
        connection = FakeConnection(
            Backend.SQL_SERVER,
            tables=[table(["a"], [1]), table(["b"], [2], [3])],
        )
        executor, _ = make_executor(connection)

        result = await executor.query_tables(Command("SELECT a FROM x; SELECT b FROM y"))

        self.assertEqual(result.strategy, Strategy.BUFFERED_MULTI)
        self.assertEqual([len(t) for t in result.tables], [1, 2])

    async def test_validation_failure_is_raised_before_connecting(self) -> None:
        connection = FakeConnection(Backend.SQL_SERVER)
        executor, connect = make_executor(connection)
        command = Command(
            "dbo.drop_everything",
            CommandKind.STORED_PROCEDURE,
            allowed_procedures={"dbo.list"},
        )

        with self.assertRaises(DbCallerError) as ctx:
            await executor.execute(command)

        self.assertEqual(ctx.exception.kind, ErrorKind.VALIDATION)
        self.assertEqual(ctx.exception.code, ErrorCode.VALIDATION_FAILED)
        self.assertEqual(connect.calls, [])

    async def test_validation_can_be_disabled(self) -> None:
        connection = FakeConnection(Backend.SQL_SERVER)
        executor, _ = make_executor(connection, enable_validation=False)
        command = Command("dbo.anything", CommandKind.STORED_PROCEDURE, allowed_procedures=set())

        await executor.execute(command)

        self.assertEqual(connection.executions, 1)

    async def test_cancelled_token_prevents_any_attempt(self) -> None:
        connection = FakeConnection(Backend.SQL_SERVER)
        executor, connect = make_executor(connection)
        token = CancellationToken()
        token.cancel()

        with self.assertRaises(DbCallerError) as ctx:
            await executor.query_table(Command("SELECT 1"), token)

        self.assertEqual(ctx.exception.code, ErrorCode.CANCELED)
        self.assertEqual(connect.calls, [])

    async def test_invalid_options_are_rejected_at_creation(self) -> None:
        options = DbOptions(backend=Backend.ORACLE, connection_string="  ")

        with self.assertRaises(DatabaseError) as ctx:
            Executor.create(options, RecordingConnect(None))

        self.assertEqual(ctx.exception.category, ErrorCategory.CONFIGURATION)
        self.assertIn("connection_string", str(ctx.exception))

    async def test_dialect_backend_mismatch_is_a_configuration_error(self) -> None:
        connection = FakeConnection(Backend.ORACLE)
        options = DbOptions(backend=Backend.POSTGRESQL, connection_string="host=fake")
        executor = Executor.create(options, RecordingConnect(connection))

        with self.assertRaises(DatabaseError) as ctx:
            await executor.execute(Command("SELECT 1"))

        self.assertEqual(ctx.exception.category, ErrorCategory.CONFIGURATION)
        self.assertTrue(connection.closed)

    async def test_closed_executor_rejects_work(self) -> None:
        connection = FakeConnection(Backend.SQL_SERVER)
        executor, _ = make_executor(connection)
        await executor.execute(Command("SELECT 1"))

        await executor.close()
        await executor.close()

        self.assertTrue(connection.closed)
        with self.assertRaises(DatabaseError) as ctx:
            await executor.execute(Command("SELECT 1"))
        self.assertEqual(ctx.exception.category, ErrorCategory.DISPOSED)

    async def test_only_one_transaction_may_be_active(self) -> None:
        connection = FakeConnection(Backend.SQL_SERVER)
        executor, _ = make_executor(connection)

        first = await executor.begin_transaction()
        with self.assertRaises(DatabaseError):
            await executor.begin_transaction()
        await first.commit()

        second = await executor.begin_transaction()
        await first.dispose()
        self.assertTrue(executor.in_transaction)
        await second.dispose()

        self.assertEqual(connection.transactions[0].commits, 1)
        self.assertEqual(connection.transactions[1].rollbacks, 1)
        self.assertFalse(executor.in_transaction)

    async def test_close_rolls_back_open_transaction(self) -> None:
        connection = FakeConnection(Backend.SQL_SERVER)
        executor, _ = make_executor(connection)

        tx = await executor.begin_transaction()
        await executor.close()

        self.assertFalse(tx.is_active)
        self.assertEqual(connection.transactions[0].rollbacks, 1)


if __name__ == "__main__":
    unittest.main()
