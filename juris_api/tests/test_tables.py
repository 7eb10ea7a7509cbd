"""TableSchema definitions, DDL fragments and the registry."""

import pytest
from sqlalchemy import Date, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from juris.tenancy import (
    ColumnDef,
    IndexDef,
    InvalidIdentifier,
    TableRegistry,
    TableSchema,
    UnknownColumn,
    UnknownTable,
)


def _notes(**kwargs):
    return TableSchema(
        name="notes",
        columns=(
            ColumnDef("owner_id", String(), nullable=False),
            ColumnDef("body", Text(), searchable=True),
            ColumnDef("tags", JSONB(), server_default="'[]'::jsonb"),
        ),
        **kwargs,
    )


def test_managed_columns_wrap_declared_ones():
    schema = _notes()
    assert schema.column_names == (
        "id", "owner_id", "body", "tags", "created_at", "updated_at", "is_active",
    )
    assert schema.managed_column_names == ("id", "created_at", "updated_at", "is_active")


def test_managed_columns_can_be_turned_off():
    schema = _notes(identity=False, audit=False, soft_delete=False)
    assert schema.column_names == ("owner_id", "body", "tags")
    assert schema.managed_column_names == ()


def test_column_ddl():
    assert ColumnDef("status", String(), server_default="'nova'").ddl() == "\"status\" VARCHAR DEFAULT 'nova'"
    assert ColumnDef("amount", Numeric(15, 2), nullable=False).ddl() == '"amount" NUMERIC(15, 2) NOT NULL'
    schema = _notes()
    assert schema.column("id").ddl() == '"id" UUID PRIMARY KEY'
    assert schema.column("created_at").ddl() == '"created_at" TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now()'
    assert schema.column("is_active").ddl() == '"is_active" BOOLEAN NOT NULL DEFAULT true'


def test_declaring_a_managed_column_is_rejected():
    with pytest.raises(ValueError):
        TableSchema(name="t", columns=(ColumnDef("created_at", Date()),))


def test_duplicate_columns_are_rejected():
    with pytest.raises(ValueError):
        TableSchema(name="t", columns=(ColumnDef("a", Integer()), ColumnDef("a", Text())))


def test_index_over_unknown_column_is_rejected():
    with pytest.raises(UnknownColumn):
        _notes(indexes=(IndexDef(("missing",)),))


def test_unique_over_unknown_column_is_rejected():
    with pytest.raises(UnknownColumn):
        _notes(unique_together=(("owner_id", "missing"),))


def test_invalid_names_are_rejected():
    with pytest.raises(InvalidIdentifier):
        TableSchema(name="Notes", columns=())
    with pytest.raises(InvalidIdentifier):
        ColumnDef("body text", Text())


def test_index_on_managed_column_is_allowed():
    schema = _notes(indexes=(IndexDef(("is_active",)),))
    assert schema.indexes[0].resolved_name("notes") == "idx_notes_is_active"


def test_long_index_names_fit_postgres_limit():
    index = IndexDef(("a_really_long_column_name", "another_really_long_column_name"))
    name = index.resolved_name("a_table_with_a_long_name")
    assert len(name) <= 63
    assert name == index.resolved_name("a_table_with_a_long_name")


def test_column_lookup():
    schema = _notes()
    assert schema.has_column("body")
    assert not schema.has_column("nope")
    with pytest.raises(UnknownColumn):
        schema.column("nope")
    assert schema.searchable_columns == ("body",)
    assert set(schema.bind_types(["owner_id", "tags"])) == {"owner_id", "tags"}


def test_fingerprint_tracks_definition():
    assert _notes().fingerprint == _notes().fingerprint
    wider = TableSchema(
        name="notes",
        columns=_notes().columns + (ColumnDef("pinned", Integer()),),
    )
    assert wider.fingerprint != _notes().fingerprint
    indexed = _notes(indexes=(IndexDef(("owner_id",)),))
    assert indexed.fingerprint != _notes().fingerprint


def test_registry():
    registry = TableRegistry([_notes()])
    assert "notes" in registry
    assert len(registry) == 1
    assert registry.get("notes").name == "notes"
    assert [s.name for s in registry] == ["notes"]
    with pytest.raises(UnknownTable):
        registry.get("estimates")
