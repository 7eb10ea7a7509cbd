"""Schema-qualified execution, transactions and error translation."""

import asyncio

import pytest
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError

from fakes import FakeConnection, connection_lost, db_error, make_ctx, slow, unique_violation
from juris.tenancy import (
    ConstraintViolation,
    DatabaseConnectionError,
    DecodeError,
    QueryTemplateError,
    QueryTimeout,
    TenantDataError,
)
from juris.tenancy.executor import SchemaQueryExecutor, sqlstate_of, translate_error


class Row(BaseModel):
    id: int
    title: str


@pytest.fixture
def executor():
    return SchemaQueryExecutor()


async def test_statement_runs_in_tenant_schema_with_bound_values(executor, ctx, conn):
    await executor.query(ctx, "SELECT * FROM ${schema}.estimates WHERE title = :title", {"title": "x' OR 1=1"})
    sql, params = conn.statements[0]
    assert sql == 'SELECT * FROM "tenant_acme".estimates WHERE title = :title'
    assert params == {"title": "x' OR 1=1"}


async def test_template_without_placeholder_never_reaches_database(executor, ctx, conn):
    with pytest.raises(QueryTemplateError):
        await executor.query(ctx, "SELECT * FROM estimates")
    assert conn.statements == []


async def test_single_statement_commits(executor):
    conn = FakeConnection(lambda sql, params: [{"id": 1, "title": "a"}])
    rows = await executor.query(make_ctx(conn), "SELECT * FROM ${schema}.t")
    assert rows == [{"id": 1, "title": "a"}]
    assert conn.events == ["execute", "commit"]


async def test_statement_without_rows_returns_empty_list(executor, ctx, conn):
    assert await executor.query(ctx, "CREATE SCHEMA IF NOT EXISTS ${schema}") == []


async def test_rows_decode_into_model(executor):
    conn = FakeConnection(lambda sql, params: [{"id": 1, "title": "a"}])
    rows = await executor.query(make_ctx(conn), "SELECT * FROM ${schema}.t", model=Row)
    assert rows == [Row(id=1, title="a")]


async def test_bad_row_shape_raises_decode_error(executor):
    conn = FakeConnection(lambda sql, params: [{"id": "not-a-number"}])
    with pytest.raises(DecodeError):
        await executor.query(make_ctx(conn), "SELECT * FROM ${schema}.t", model=Row)


async def test_extra_columns_are_ignored_unless_strict(executor):
    conn = FakeConnection(lambda sql, params: [{"id": 1, "title": "a", "secret": "x"}])
    rows = await executor.query(make_ctx(conn), "SELECT * FROM ${schema}.t", model=Row)
    assert rows == [Row(id=1, title="a")]
    with pytest.raises(DecodeError) as info:
        await executor.query(make_ctx(conn), "SELECT * FROM ${schema}.t", model=Row, strict=True)
    assert "secret" in info.value.message


async def test_query_one(executor):
    conn = FakeConnection(lambda sql, params: [])
    assert await executor.query_one(make_ctx(conn), "SELECT * FROM ${schema}.t") is None


async def test_transaction_commits_once_at_the_end(executor, ctx, conn):
    async with executor.transaction(ctx):
        assert executor.in_transaction(ctx)
        await executor.query(ctx, "INSERT INTO ${schema}.t VALUES (1)")
        await executor.query(ctx, "INSERT INTO ${schema}.t VALUES (2)")
    assert not executor.in_transaction(ctx)
    assert conn.events == ["begin:tx", "execute", "execute", "commit:tx"]


async def test_transaction_rolls_back_on_error(executor, ctx, conn):
    with pytest.raises(RuntimeError):
        async with executor.transaction(ctx):
            await executor.query(ctx, "INSERT INTO ${schema}.t VALUES (1)")
            raise RuntimeError("abort")
    assert conn.events == ["begin:tx", "execute", "rollback:tx"]
    assert not executor.in_transaction(ctx)


async def test_nested_transaction_uses_savepoint(executor, ctx, conn):
    async with executor.transaction(ctx):
        with pytest.raises(RuntimeError):
            async with executor.transaction(ctx):
                raise RuntimeError("inner")
        await executor.query(ctx, "INSERT INTO ${schema}.t VALUES (1)")
    assert conn.events == [
        "begin:tx",
        "begin:savepoint",
        "rollback:savepoint",
        "execute",
        "commit:tx",
    ]


async def test_after_commit_runs_at_once_outside_a_transaction(executor, ctx):
    calls = []
    executor.after_commit(ctx, lambda: calls.append("done"))
    assert calls == ["done"]


async def test_after_commit_waits_for_the_outermost_commit(executor, ctx):
    calls = []
    async with executor.transaction(ctx):
        async with executor.transaction(ctx):
            executor.after_commit(ctx, lambda: calls.append("done"))
        assert calls == []
    assert calls == ["done"]


async def test_after_commit_is_dropped_on_rollback(executor, ctx):
    calls = []
    with pytest.raises(RuntimeError):
        async with executor.transaction(ctx):
            executor.after_commit(ctx, lambda: calls.append("outer"))
            raise RuntimeError("abort")

    async with executor.transaction(ctx):
        with pytest.raises(RuntimeError):
            async with executor.transaction(ctx):
                executor.after_commit(ctx, lambda: calls.append("inner"))
                raise RuntimeError("inner")
        executor.after_commit(ctx, lambda: calls.append("kept"))
    assert calls == ["kept"]


async def test_unique_violation_becomes_constraint_violation(executor):
    def responder(sql, params):
        raise unique_violation("uq_publications_user_id")

    conn = FakeConnection(responder)
    with pytest.raises(ConstraintViolation) as info:
        await executor.query(make_ctx(conn), "INSERT INTO ${schema}.t VALUES (1)")
    assert info.value.sqlstate == "23505"
    assert info.value.constraint == "uq_publications_user_id"
    assert conn.events == ["execute", "rollback"]


async def test_error_inside_transaction_leaves_rollback_to_the_block(executor):
    def responder(sql, params):
        raise unique_violation()

    conn = FakeConnection(responder)
    ctx = make_ctx(conn)
    with pytest.raises(ConstraintViolation):
        async with executor.transaction(ctx):
            await executor.query(ctx, "INSERT INTO ${schema}.t VALUES (1)")
    assert conn.events == ["begin:tx", "execute", "rollback:tx"]


async def test_statement_timeout_rolls_back(executor):
    conn = FakeConnection(lambda sql, params: slow(5))
    with pytest.raises(QueryTimeout):
        await executor.query(make_ctx(conn), "SELECT pg_sleep(5) FROM ${schema}.t", timeout=0.01)
    assert conn.events == ["execute", "rollback"]


async def test_default_timeout_applies():
    executor = SchemaQueryExecutor(default_timeout=0.01)
    conn = FakeConnection(lambda sql, params: slow(5))
    with pytest.raises(QueryTimeout):
        await executor.query(make_ctx(conn), "SELECT 1 FROM ${schema}.t")


async def test_cancellation_rolls_back(executor):
    conn = FakeConnection(lambda sql, params: slow(5))
    task = asyncio.ensure_future(executor.query(make_ctx(conn), "SELECT 1 FROM ${schema}.t"))
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert conn.events == ["execute", "rollback"]


async def test_connection_loss_is_reported_as_connection_error(executor):
    def responder(sql, params):
        raise connection_lost()

    with pytest.raises(DatabaseConnectionError):
        await executor.query(make_ctx(FakeConnection(responder)), "SELECT 1 FROM ${schema}.t")


@pytest.mark.parametrize(
    "exc, expected",
    [
        (db_error("23505", IntegrityError), ConstraintViolation),
        (db_error("23503", IntegrityError), ConstraintViolation),
        (db_error("23502", IntegrityError), ConstraintViolation),
        (db_error("57014", OperationalError), QueryTimeout),
        (db_error("08006", OperationalError), DatabaseConnectionError),
        (db_error("57P01", OperationalError), DatabaseConnectionError),
        (db_error(None, OperationalError), DatabaseConnectionError),
        (db_error(None, InterfaceError), DatabaseConnectionError),
        (db_error("42P01"), TenantDataError),
    ],
)
def test_translate_error(exc, expected):
    translated = translate_error(exc)
    assert type(translated) is expected
    assert translated.sqlstate == sqlstate_of(exc)


def test_sqlstate_of_reads_wrapped_cause():
    class Adapted(Exception):
        pass

    inner = db_error("42P07").orig
    outer = Adapted("wrapped")
    outer.__cause__ = inner
    assert sqlstate_of(outer) == "42P07"
