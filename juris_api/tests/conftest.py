"""Shared test fixtures."""

import pytest

from fakes import FakeConnection, make_ctx


@pytest.fixture
def conn():
    return FakeConnection()


@pytest.fixture
def ctx(conn):
    return make_ctx(conn, "tenant_acme")
