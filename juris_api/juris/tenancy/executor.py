"""
Schema-qualified query execution.

Every statement that reaches a tenant's tables goes through
``SchemaQueryExecutor.query``: the ``${schema}`` placeholder is replaced with
the tenant's quoted schema, values are bound as parameters, and driver errors
are translated into the ``tenancy.errors`` taxonomy.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Type

from pydantic import BaseModel, ValidationError
from sqlalchemy import bindparam, text
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.types import TypeEngine

from .context import TenantContext
from .errors import (
    ConstraintViolation,
    DatabaseConnectionError,
    DecodeError,
    QueryTimeout,
    TenantDataError,
)
from .sql import render

logger = logging.getLogger(__name__)

# Explicit transaction depth is tracked on the connection so nested blocks
# become savepoints and single statements know not to commit.
_TX_DEPTH_KEY = "juris.tx_depth"
_AFTER_COMMIT_KEY = "juris.after_commit"

_UNSET: Any = object()


def sqlstate_of(exc: BaseException) -> Optional[str]:
    """Return the Postgres SQLSTATE carried by a driver error, if any."""
    orig = getattr(exc, "orig", None) or exc
    for candidate in (orig, getattr(orig, "__cause__", None)):
        if candidate is None:
            continue
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return str(code)
    return None


def _constraint_of(exc: BaseException) -> Optional[str]:
    orig = getattr(exc, "orig", None) or exc
    for candidate in (orig, getattr(orig, "__cause__", None)):
        name = getattr(candidate, "constraint_name", None)
        if name:
            return str(name)
    return None


# PUBLIC_INTERFACE
def translate_error(exc: DBAPIError) -> TenantDataError:
    """Map a SQLAlchemy/driver error onto the core's error taxonomy."""
    state = sqlstate_of(exc)
    message = str(exc.orig) if exc.orig is not None else str(exc)

    if state and state.startswith("23"):
        return ConstraintViolation(message, sqlstate=state, constraint=_constraint_of(exc))
    if state == "57014":
        return QueryTimeout(message, sqlstate=state)
    if (
        exc.connection_invalidated
        or isinstance(exc, InterfaceError)
        or (state and (state.startswith("08") or state in {"57P01", "57P02", "57P03"}))
        or (isinstance(exc, OperationalError) and state is None)
    ):
        return DatabaseConnectionError(message, sqlstate=state)
    return TenantDataError(message, sqlstate=state)


class SchemaQueryExecutor:
    """
    Executes SQL templates against the schema of the tenant in ``ctx``.

    There is no implicit transaction: outside ``transaction(ctx)`` each
    statement commits on success and rolls back on failure.
    """

    def __init__(self, default_timeout: Optional[float] = None) -> None:
        self.default_timeout = default_timeout

    @staticmethod
    def in_transaction(ctx: TenantContext) -> bool:
        return ctx.connection.info.get(_TX_DEPTH_KEY, 0) > 0

    def after_commit(self, ctx: TenantContext, callback: Callable[[], None]) -> None:
        """
        Run ``callback`` once the work issued so far on ``ctx`` is durable.

        Outside a transaction that is immediately. Inside one it runs when the
        outermost block commits, and is dropped if the block it was
        registered in rolls back.
        """
        if not self.in_transaction(ctx):
            callback()
            return
        ctx.connection.info.setdefault(_AFTER_COMMIT_KEY, []).append(callback)

    # PUBLIC_INTERFACE
    @asynccontextmanager
    async def transaction(self, ctx: TenantContext) -> AsyncIterator[TenantContext]:
        """
        Scoped transaction on the context's connection.

        Commits when the block exits normally, rolls back on any exception
        (cancellation included). Nested blocks use savepoints.
        """
        conn = ctx.connection
        depth = conn.info.get(_TX_DEPTH_KEY, 0)
        hooks: List[Callable[[], None]] = conn.info.setdefault(_AFTER_COMMIT_KEY, [])
        mark = len(hooks)
        committed = False
        conn.info[_TX_DEPTH_KEY] = depth + 1
        try:
            async with (conn.begin_nested() if depth else conn.begin()):
                yield ctx
            committed = True
        except DBAPIError as exc:
            raise translate_error(exc) from exc
        finally:
            conn.info[_TX_DEPTH_KEY] = depth
            if not committed:
                del hooks[mark:]

        if not depth:
            pending = list(hooks)
            hooks.clear()
            for callback in pending:
                callback()

    # PUBLIC_INTERFACE
    async def query(
        self,
        ctx: TenantContext,
        template: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        model: Optional[Type[BaseModel]] = None,
        bind_types: Optional[Mapping[str, TypeEngine]] = None,
        timeout: Optional[float] = _UNSET,
        strict: bool = False,
    ) -> List[Any]:
        """
        Run a statement in the tenant schema and return its rows.

        Parameters:
            ctx: tenant context of the current request
            template: SQL text containing the ``${schema}`` placeholder and
                ``:name`` bind markers
            params: values for the bind markers
            model: optional pydantic model each row is validated into
            bind_types: optional SQLAlchemy types for specific binds (JSONB etc.)
            timeout: seconds before the statement is abandoned; ``None`` waits forever
            strict: reject rows carrying columns ``model`` does not declare
                (by default they are left out of the decoded value)
        Returns:
            list of dict rows, or of ``model`` instances when given
        """
        sql = render(template, ctx.schema_name)
        stmt = text(sql)
        if bind_types:
            stmt = stmt.bindparams(*[bindparam(name, type_=t) for name, t in bind_types.items()])

        effective_timeout = self.default_timeout if timeout is _UNSET else timeout
        conn = ctx.connection
        explicit = self.in_transaction(ctx)

        logger.debug("Executing in %s: %s", ctx.schema_name, sql)
        try:
            result = await asyncio.wait_for(conn.execute(stmt, dict(params or {})), effective_timeout)
            rows: List[Dict[str, Any]] = (
                [dict(r) for r in result.mappings().all()] if result.returns_rows else []
            )
            if not explicit:
                await conn.commit()
        except asyncio.TimeoutError as exc:
            await self._abandon(ctx, explicit)
            raise QueryTimeout(
                f"Statement exceeded {effective_timeout}s in schema {ctx.schema_name}"
            ) from exc
        except asyncio.CancelledError:
            await self._abandon(ctx, explicit)
            raise
        except DBAPIError as exc:
            await self._abandon(ctx, explicit)
            raise translate_error(exc) from exc

        return self.decode(rows, model, strict=strict)

    async def query_one(
        self,
        ctx: TenantContext,
        template: str,
        params: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> Optional[Any]:
        """Like ``query`` but returns the first row or None."""
        rows = await self.query(ctx, template, params, **kwargs)
        return rows[0] if rows else None

    @staticmethod
    def decode(
        rows: List[Dict[str, Any]], model: Optional[Type[BaseModel]], *, strict: bool = False
    ) -> List[Any]:
        """
        Validate each row into ``model``.

        Columns the model does not declare are ignored unless ``strict`` is set,
        in which case they raise ``DecodeError`` like any other mismatch.
        """
        if model is None:
            return rows
        if strict:
            for row in rows:
                extra = sorted(set(row) - set(model.model_fields))
                if extra:
                    raise DecodeError(f"Row has columns {model.__name__} does not declare: {', '.join(extra)}")
        try:
            return [model.model_validate(row) for row in rows]
        except ValidationError as exc:
            raise DecodeError(
                f"Row does not match {model.__name__}: {exc.error_count()} validation error(s)"
            ) from exc

    async def _abandon(self, ctx: TenantContext, explicit: bool) -> None:
        """
        Leave the connection clean after a failed or cancelled statement.

        Inside an explicit transaction the enclosing ``transaction()`` block
        owns the rollback.
        """
        if explicit:
            return
        try:
            await ctx.connection.rollback()
        except SQLAlchemyError:
            logger.warning("Rollback after failed statement in %s failed", ctx.schema_name, exc_info=True)
