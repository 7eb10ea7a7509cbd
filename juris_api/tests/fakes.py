"""In-memory stand-ins for pooled connections and driver errors."""

import asyncio
import inspect
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from juris.tenancy import Tenant, TenantContext


class DriverError(Exception):
    """What asyncpg raises, reduced to the attributes the core inspects."""

    def __init__(self, message: str, sqlstate: Optional[str] = None, constraint_name: Optional[str] = None):
        super().__init__(message)
        self.sqlstate = sqlstate
        self.constraint_name = constraint_name


def db_error(sqlstate: Optional[str], cls=ProgrammingError, message: str = "boom", **kwargs):
    """Build the SQLAlchemy exception wrapping a driver error with ``sqlstate``."""
    return cls("<stmt>", {}, DriverError(message, sqlstate, **kwargs))


def unique_violation(constraint: str = "uq_publications_user_id"):
    return db_error("23505", IntegrityError, "duplicate key value", constraint_name=constraint)


def connection_lost():
    return db_error("08006", OperationalError, "connection lost")


class FakeResult:
    def __init__(self, rows: Optional[List[Dict[str, Any]]]):
        self._rows = rows
        self.returns_rows = rows is not None

    def mappings(self):
        return self

    def all(self):
        return list(self._rows or [])

    def first(self):
        return self._rows[0] if self._rows else None

    def one(self):
        assert self._rows and len(self._rows) == 1
        return self._rows[0]


class FakeTransaction:
    def __init__(self, conn: "FakeConnection", kind: str):
        self.conn = conn
        self.kind = kind

    async def __aenter__(self):
        self.conn.events.append(f"begin:{self.kind}")
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.conn.events.append(f"{'rollback' if exc_type else 'commit'}:{self.kind}")
        return False


Responder = Callable[[str, Dict[str, Any]], Any]


class FakeConnection:
    """
    Records every statement and transaction event.

    ``responder(sql, params)`` returns the rows for a statement (None for
    statements without a result), raises to simulate a database error, or
    returns an awaitable to simulate a slow statement.
    """

    def __init__(self, responder: Optional[Responder] = None):
        self.responder = responder
        self.info: Dict[str, Any] = {}
        self.statements: List[tuple] = []
        self.events: List[str] = []
        self.closed = False

    async def execute(self, stmt, params=None):
        sql = str(stmt)
        params = dict(params or {})
        self.statements.append((sql, params))
        self.events.append("execute")
        rows = self.responder(sql, params) if self.responder else None
        if inspect.isawaitable(rows):
            rows = await rows
        return FakeResult(rows)

    async def commit(self):
        self.events.append("commit")

    async def rollback(self):
        self.events.append("rollback")

    def begin(self):
        return FakeTransaction(self, "tx")

    def begin_nested(self):
        return FakeTransaction(self, "savepoint")

    async def close(self):
        self.closed = True

    def sql_matching(self, fragment: str) -> List[tuple]:
        return [(sql, params) for sql, params in self.statements if fragment in sql]


class FakeEngine:
    def __init__(self, *connections: FakeConnection, error: Optional[BaseException] = None):
        self._connections = list(connections)
        self.error = error
        self.disposed = False

    async def connect(self):
        if self.error is not None:
            raise self.error
        return self._connections.pop(0) if self._connections else FakeConnection()

    async def dispose(self):
        self.disposed = True


def make_tenant(schema_name: Optional[str] = None, **kwargs) -> Tenant:
    tenant_id = kwargs.pop("id", None) or uuid4()
    return Tenant(
        id=tenant_id,
        name=kwargs.pop("name", "Acme Advocacia"),
        slug=kwargs.pop("slug", "acme"),
        schema_name=schema_name or f"tenant_{tenant_id.hex}",
        **kwargs,
    )


def make_ctx(conn: FakeConnection, schema_name: Optional[str] = None) -> TenantContext:
    return TenantContext(tenant=make_tenant(schema_name), connection=conn)


def slow(seconds: float):
    """Responder result that keeps the statement running for ``seconds``."""
    return asyncio.sleep(seconds)

