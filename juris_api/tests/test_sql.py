"""Identifier allow-list, quoting and ${schema} rendering."""

import pytest

from juris.tenancy import InvalidIdentifier, QueryTemplateError
from juris.tenancy.sql import quote_columns, quote_identifier, render, table_ref, validate_identifier


@pytest.mark.parametrize("name", ["publications", "tenant_0f3c", "_x", "a" * 63, "user_id"])
def test_valid_identifiers(name):
    assert validate_identifier(name) == name


@pytest.mark.parametrize(
    "name",
    [
        "",
        "Publications",
        "1table",
        "a" * 64,
        "pg_catalog",
        "tenant-1",
        'x"; DROP TABLE tenants; --',
        "acme.estimates",
        None,
    ],
)
def test_invalid_identifiers(name):
    with pytest.raises(InvalidIdentifier):
        validate_identifier(name)


def test_invalid_identifier_is_a_value_error():
    with pytest.raises(ValueError):
        validate_identifier("bad name")


def test_quote_identifier_always_quotes():
    assert quote_identifier("estimates") == '"estimates"'
    assert quote_identifier("date") == '"date"'
    assert quote_columns(["user_id", "external_id"]) == '"user_id", "external_id"'


def test_render_replaces_every_placeholder():
    template = "SELECT * FROM ${schema}.a JOIN ${schema}.b ON a.id = b.id WHERE a.x = :x"
    sql = render(template, "tenant_acme")
    assert sql == 'SELECT * FROM "tenant_acme".a JOIN "tenant_acme".b ON a.id = b.id WHERE a.x = :x'


def test_render_requires_placeholder():
    with pytest.raises(QueryTemplateError):
        render("SELECT * FROM publications", "tenant_acme")


def test_render_rejects_unsafe_schema():
    with pytest.raises(InvalidIdentifier):
        render("SELECT 1 FROM ${schema}.t", 'acme"; DROP SCHEMA public; --')


def test_render_is_single_pass():
    # a schema name can never reintroduce the placeholder
    assert render("${schema}.t", "schema_x").count("${schema}") == 0


def test_table_ref():
    assert table_ref("estimates") == '${schema}."estimates"'
