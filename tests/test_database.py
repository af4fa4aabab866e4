"""
Unit tests for branch connection settings and the single-branch query executor.
"""

import asyncio
from contextlib import asynccontextmanager

import pytest

from maintdash.database import BranchConnectionFactory, bind_text_params, execute_branch_query
from maintdash.models import BranchConfig


# ── Helpers / Fakes ──────────────────────────────────────────────────

class FakeResult:
    """Mimic SQLAlchemy Result with .mappings().all()."""
    def __init__(self, rows):
        self._rows = rows

    def mappings(self):
        return self

    def all(self):
        return self._rows


class FakeConn:
    def __init__(self, rows=None, error=None):
        self._rows = rows or []
        self._error = error
        self.executed = []

    async def execute(self, statement, params=None):
        self.executed.append((str(statement), params))
        if self._error:
            raise self._error
        return FakeResult(self._rows)


class FakeFactory:
    """Mimic BranchConnectionFactory.connect(); optionally fail on connect."""
    def __init__(self, rows=None, query_error=None, connect_error=None):
        self.conn = FakeConn(rows, query_error)
        self._connect_error = connect_error
        self.opened = 0
        self.closed = 0

    @asynccontextmanager
    async def connect(self, branch):
        if self._connect_error:
            raise self._connect_error
        self.opened += 1
        try:
            yield self.conn
        finally:
            self.closed += 1


def pmb(**overrides):
    settings = dict(code="PMB", name="Pietermaritzburg", server="pmb-sql", database="PMB_Live",
                    user="reader", password="pw")
    settings.update(overrides)
    return BranchConfig(**settings)


# ── Tests: BranchConnectionFactory.url_for ───────────────────────────

def test_url_for_builds_async_odbc_url():
    url = BranchConnectionFactory().url_for(pmb())
    assert url.drivername == "mssql+aioodbc"
    assert url.host == "pmb-sql"
    assert url.port == 1433
    assert url.database == "PMB_Live"
    assert url.username == "reader"
    assert url.query["driver"] == "ODBC Driver 18 for SQL Server"
    assert url.query["TrustServerCertificate"] == "yes"


def test_url_for_missing_database_raises():
    with pytest.raises(ValueError, match="Database name not configured for branch: PMB"):
        BranchConnectionFactory().url_for(pmb(database=None))


def test_url_for_missing_server_raises():
    with pytest.raises(ValueError, match="Server not configured"):
        BranchConnectionFactory().url_for(pmb(server=""))


# ── Tests: BranchConnectionFactory.connect ───────────────────────────

class FakeEngine:
    """Mimic AsyncEngine: connect() is awaited, dispose() is recorded."""
    def __init__(self, url, **kwargs):
        self.url = url
        self.kwargs = kwargs
        self.conn_closed = False
        self.disposed = False

    async def connect(self):
        return self

    async def close(self):
        self.conn_closed = True

    async def dispose(self):
        self.disposed = True


def test_connect_deadline_outlasts_driver_login_timeout(monkeypatch):
    engines = []

    def fake_create_async_engine(url, **kwargs):
        engines.append(FakeEngine(url, **kwargs))
        return engines[-1]

    monkeypatch.setattr("maintdash.database.create_async_engine", fake_create_async_engine)
    factory = BranchConnectionFactory()

    async def open_and_close():
        async with factory.connect(pmb()) as conn:
            return conn

    conn = asyncio.run(open_and_close())
    engine = engines[0]

    assert engine.kwargs["connect_args"] == {"timeout": 15}
    assert factory.connect_deadline > factory.connect_timeout == 15
    assert conn is engine
    assert engine.conn_closed
    assert engine.disposed


# ── Tests: bind_text_params ──────────────────────────────────────────

def test_bind_text_params_numbers_placeholders():
    statement, values = bind_text_params(
        "SELECT * FROM t WHERE d >= :param0 AND d <= :param1", ["2025-01-01", "2025-03-31"],
    )
    assert values == {"param0": "2025-01-01", "param1": "2025-03-31"}
    assert ":param0" in str(statement)


def test_bind_text_params_without_params():
    statement, values = bind_text_params("SELECT 1", [])
    assert values == {}
    assert str(statement) == "SELECT 1"


# ── Tests: execute_branch_query ──────────────────────────────────────

def test_execute_success_returns_rows_and_closes():
    factory = FakeFactory(rows=[{"costCode": "PMB-MNT-001"}, {"costCode": "MNT-002"}])
    result = asyncio.run(execute_branch_query(factory, pmb(), "SELECT 1 WHERE x = :param0", ["a"]))

    assert result.success
    assert result.branch == "PMB"
    assert result.record_count == 2
    assert result.data[0] == {"costCode": "PMB-MNT-001"}
    assert result.error is None
    assert result.duration_ms >= 0
    assert factory.conn.executed[0][1] == {"param0": "a"}
    assert factory.opened == factory.closed == 1


def test_execute_query_error_is_captured_and_connection_closed():
    factory = FakeFactory(query_error=RuntimeError("Invalid object name"))
    result = asyncio.run(execute_branch_query(factory, pmb(), "SELECT 1"))

    assert not result.success
    assert result.error == "Invalid object name"
    assert result.data == ()
    assert result.record_count == 0
    assert factory.closed == 1


def test_execute_connect_error_is_captured():
    factory = FakeFactory(connect_error=ConnectionError("Login failed for user 'reader'"))
    result = asyncio.run(execute_branch_query(factory, pmb(), "SELECT 1"))
    assert not result.success
    assert "Login failed" in result.error


def test_execute_timeout_without_message_uses_type_name():
    factory = FakeFactory(connect_error=asyncio.TimeoutError())
    result = asyncio.run(execute_branch_query(factory, pmb(), "SELECT 1"))
    assert not result.success
    assert result.error == "TimeoutError"


def test_execute_with_unconfigured_branch_fails_without_connecting():
    result = asyncio.run(execute_branch_query(BranchConnectionFactory(), pmb(database=None), "SELECT 1"))
    assert not result.success
    assert result.error == "Database name not configured for branch: PMB"
