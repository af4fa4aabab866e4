"""
Branch database access: per-call connections and the query executor.

Each query opens its own engine and connection and throws both away when it
is done. Nothing is pooled across calls, so a connection can never carry
rows from one branch database into another branch's query.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Sequence

from sqlalchemy import URL, Unicode, bindparam, text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from maintdash.config import CONNECT_DEADLINE_MARGIN_SECONDS, CONNECT_TIMEOUT_SECONDS
from maintdash.logging_config import get_logger
from maintdash.models import BranchConfig, QueryResult

logger = get_logger("Database")


class BranchConnectionFactory:
    """Opens short-lived async SQL Server connections for one branch at a time."""

    def __init__(self, connect_timeout: float = CONNECT_TIMEOUT_SECONDS):
        self.connect_timeout = connect_timeout
        self.connect_deadline = connect_timeout + CONNECT_DEADLINE_MARGIN_SECONDS

    def url_for(self, branch: BranchConfig) -> URL:
        if not branch.database:
            raise ValueError(f"Database name not configured for branch: {branch.code}")
        if not branch.server:
            raise ValueError(f"Server not configured for branch: {branch.code}")
        return URL.create(
            "mssql+aioodbc",
            username=branch.user,
            password=branch.password,
            host=branch.server,
            port=branch.port,
            database=branch.database,
            query={
                "driver": branch.driver,
                "Encrypt": "yes",
                "TrustServerCertificate": "yes",
            },
        )

    @asynccontextmanager
    async def connect(self, branch: BranchConfig):
        """Yield an AsyncConnection scoped to this block; the engine is disposed on exit."""
        engine = create_async_engine(
            self.url_for(branch),
            poolclass=NullPool,
            connect_args={"timeout": int(self.connect_timeout)},
        )
        try:
            conn = await asyncio.wait_for(engine.connect(), timeout=self.connect_deadline)
            try:
                yield conn
            finally:
                await conn.close()
        finally:
            await engine.dispose()


def bind_text_params(sql: str, params: Sequence[Any]):
    """Compile *sql* with ``:param0``.. placeholders bound as Unicode text.

    Returns the statement and the matching parameter dict.
    """
    values: Dict[str, Any] = {f"param{i}": value for i, value in enumerate(params)}
    statement = text(sql)
    if values:
        statement = statement.bindparams(*(bindparam(name, type_=Unicode) for name in values))
    return statement, values


def _elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000))


async def execute_branch_query(factory, branch: BranchConfig, sql: str,
                               params: Sequence[Any] = ()) -> QueryResult:
    """Run *sql* against one branch and report the outcome as a QueryResult.

    Connection, authentication, timeout and query errors are caught and
    returned as ``success=False``; they never propagate to the caller.
    """
    started = time.perf_counter()
    try:
        statement, values = bind_text_params(sql, params)
        async with factory.connect(branch) as conn:
            result = await conn.execute(statement, values)
            rows = [dict(row) for row in result.mappings().all()]
    except Exception as e:
        message = str(e) or type(e).__name__
        logger.error(f"Query failed for {branch.code} ({branch.name}): {message}")
        return QueryResult.failed(branch.code, message, _elapsed_ms(started))

    duration = _elapsed_ms(started)
    logger.debug(f"{branch.code} returned {len(rows)} rows in {duration}ms")
    return QueryResult.ok(branch.code, rows, duration)
