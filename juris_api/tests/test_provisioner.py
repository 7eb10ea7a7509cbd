"""Lazy, idempotent provisioning of tenant tables."""

import asyncio

import pytest
from sqlalchemy import Date, String, Text
from sqlalchemy.exc import IntegrityError, ProgrammingError

from fakes import FakeConnection, connection_lost, db_error, make_ctx
from juris.tenancy import (
    ColumnDef,
    DatabaseConnectionError,
    IndexDef,
    ProvisionError,
    TableSchema,
)
from juris.tenancy.executor import SchemaQueryExecutor
from juris.tenancy.provisioner import (
    SchemaProvisioner,
    add_columns_sql,
    create_index_sql,
    create_table_sql,
    provisioning_plan,
)

DOCS = TableSchema(
    name="docs",
    columns=(
        ColumnDef("user_id", String(), nullable=False),
        ColumnDef("external_id", String()),
        ColumnDef("published_on", Date()),
        ColumnDef("body", Text()),
    ),
    unique_together=(("user_id", "external_id"),),
    indexes=(IndexDef(("user_id",)), IndexDef(("published_on",), name="idx_docs_date")),
)


@pytest.fixture
def provisioner():
    return SchemaProvisioner(SchemaQueryExecutor())


def test_plan_order():
    labels = [label for label, _ in provisioning_plan(DOCS)]
    assert labels == ["schema", "table", "columns", "index idx_docs_user_id", "index idx_docs_date"]


def test_create_table_sql():
    sql = create_table_sql(DOCS)
    assert sql.startswith('CREATE TABLE IF NOT EXISTS ${schema}."docs" (')
    assert '"id" UUID PRIMARY KEY' in sql
    assert '"user_id" VARCHAR NOT NULL' in sql
    assert 'UNIQUE ("user_id", "external_id")' in sql


def test_add_columns_is_one_additive_statement():
    sql = add_columns_sql(DOCS)
    assert sql.startswith('ALTER TABLE ${schema}."docs" ADD COLUMN IF NOT EXISTS "user_id"')
    assert sql.count("ADD COLUMN IF NOT EXISTS") == len(DOCS.all_columns) - 1
    assert '"id"' not in sql
    assert "DROP" not in sql and "TYPE" not in sql


def test_added_required_column_without_default_is_nullable():
    sql = add_columns_sql(DOCS)
    assert 'ADD COLUMN IF NOT EXISTS "user_id" VARCHAR,' in sql
    assert '"user_id" VARCHAR NOT NULL' not in sql
    assert (
        'ADD COLUMN IF NOT EXISTS "created_at" TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now()' in sql
    )


def test_create_index_sql():
    assert create_index_sql(DOCS, DOCS.indexes[1]) == (
        'CREATE INDEX IF NOT EXISTS "idx_docs_date" ON ${schema}."docs" ("published_on")'
    )
    unique = IndexDef(("external_id",), unique=True)
    assert create_index_sql(DOCS, unique).startswith("CREATE UNIQUE INDEX IF NOT EXISTS")


async def test_ensure_runs_every_step_in_its_own_transaction(provisioner, ctx, conn):
    await provisioner.ensure(ctx, DOCS)
    assert [sql for sql, _ in conn.statements][0] == 'CREATE SCHEMA IF NOT EXISTS "tenant_acme"'
    assert len(conn.statements) == len(provisioning_plan(DOCS))
    assert conn.events.count("begin:tx") == len(provisioning_plan(DOCS))
    assert conn.events.count("commit:tx") == len(provisioning_plan(DOCS))
    assert provisioner.is_ensured("tenant_acme", DOCS)


async def test_ensure_is_cached_per_schema(provisioner, ctx, conn):
    await provisioner.ensure(ctx, DOCS)
    issued = len(conn.statements)
    await provisioner.ensure(ctx, DOCS)
    assert len(conn.statements) == issued

    other = FakeConnection()
    await provisioner.ensure(make_ctx(other, "tenant_other"), DOCS)
    assert other.statements[0][0] == 'CREATE SCHEMA IF NOT EXISTS "tenant_other"'


async def test_invalidate_forces_a_new_round(provisioner, ctx, conn):
    await provisioner.ensure(ctx, DOCS)
    provisioner.invalidate("tenant_acme")
    assert not provisioner.is_ensured("tenant_acme", DOCS)
    await provisioner.ensure(ctx, DOCS)
    assert len(conn.statements) == 2 * len(provisioning_plan(DOCS))


async def test_changed_definition_is_provisioned_again(provisioner, ctx, conn):
    await provisioner.ensure(ctx, DOCS)
    wider = TableSchema(
        name="docs",
        columns=DOCS.columns + (ColumnDef("notes", Text()),),
        unique_together=DOCS.unique_together,
        indexes=DOCS.indexes,
    )
    await provisioner.ensure(ctx, wider)
    assert any('ADD COLUMN IF NOT EXISTS "notes" TEXT' in sql for sql, _ in conn.statements)


@pytest.mark.parametrize("sqlstate", ["42P06", "42P07", "42701", "42710", "23505"])
async def test_lost_creation_race_is_absorbed(provisioner, sqlstate):
    def responder(sql, params):
        if sql.startswith("CREATE TABLE"):
            raise db_error(sqlstate, IntegrityError if sqlstate.startswith("23") else ProgrammingError)
        return None

    conn = FakeConnection(responder)
    await provisioner.ensure(make_ctx(conn, "tenant_acme"), DOCS)
    assert provisioner.is_ensured("tenant_acme", DOCS)
    assert "rollback:tx" in conn.events


async def test_other_ddl_failures_raise_provision_error(provisioner):
    def responder(sql, params):
        if sql.startswith("ALTER TABLE"):
            raise db_error("42601")
        return None

    conn = FakeConnection(responder)
    with pytest.raises(ProvisionError) as info:
        await provisioner.ensure(make_ctx(conn, "tenant_acme"), DOCS)
    assert info.value.sqlstate == "42601"
    assert "columns" in info.value.message
    assert not provisioner.is_ensured("tenant_acme", DOCS)


async def test_connection_errors_propagate_unchanged(provisioner):
    def responder(sql, params):
        raise connection_lost()

    with pytest.raises(DatabaseConnectionError):
        await provisioner.ensure(make_ctx(FakeConnection(responder), "tenant_acme"), DOCS)


async def test_concurrent_first_touch_provisions_once(provisioner):
    async def slow_ddl():
        await asyncio.sleep(0.01)

    conn = FakeConnection(lambda sql, params: slow_ddl())
    ctx = make_ctx(conn, "tenant_acme")
    await asyncio.gather(*(provisioner.ensure(ctx, DOCS) for _ in range(5)))
    assert len(conn.statements) == len(provisioning_plan(DOCS))


async def test_rolled_back_provisioning_is_not_remembered(provisioner, ctx, conn):
    with pytest.raises(RuntimeError):
        async with provisioner.executor.transaction(ctx):
            await provisioner.ensure(ctx, DOCS)
            raise RuntimeError("caller aborts")
    assert not provisioner.is_ensured("tenant_acme", DOCS)

    await provisioner.ensure(ctx, DOCS)
    assert len(conn.statements) == 2 * len(provisioning_plan(DOCS))
    assert provisioner.is_ensured("tenant_acme", DOCS)


async def test_provisioning_inside_a_transaction_counts_once_committed(provisioner, ctx, conn):
    async with provisioner.executor.transaction(ctx):
        await provisioner.ensure(ctx, DOCS)
        assert not provisioner.is_ensured("tenant_acme", DOCS)
    assert provisioner.is_ensured("tenant_acme", DOCS)
    assert conn.events.count("begin:savepoint") == len(provisioning_plan(DOCS))


async def test_locks_are_released_once_ensured(provisioner, ctx):
    await provisioner.ensure(ctx, DOCS)
    assert provisioner._locks == {}

    def responder(sql, params):
        raise db_error("42601")

    failing = FakeConnection(responder)
    with pytest.raises(ProvisionError):
        await provisioner.ensure(make_ctx(failing, "tenant_other"), DOCS)
    assert len(provisioner._locks) == 1
    provisioner.invalidate("tenant_other")
    assert provisioner._locks == {}
