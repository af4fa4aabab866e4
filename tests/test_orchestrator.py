"""
Unit tests for multi-branch fan-out with bounded, backed-off retries.
"""

import asyncio
import time
from collections import Counter
from contextlib import asynccontextmanager

import pytest

from maintdash.config import BRANCH_NAMES, BRANCH_ORDER
from maintdash.models import BranchConfig, QueryResult
from maintdash.orchestrator import BranchOrchestrator, backoff_delay


# ── Helpers / Fakes ──────────────────────────────────────────────────

class FakeResult:
    def __init__(self, rows):
        self._rows = rows

    def mappings(self):
        return self

    def all(self):
        return self._rows


class FakeConn:
    def __init__(self, rows):
        self._rows = rows

    async def execute(self, statement, params=None):
        return FakeResult(self._rows)


class ScriptedFactory:
    """Per-branch outcomes, one per attempt: a row list or an exception.

    The last outcome repeats once the script runs out.
    """
    def __init__(self, script):
        self._script = {code: list(outcomes) for code, outcomes in script.items()}
        self.calls = []

    @asynccontextmanager
    async def connect(self, branch):
        self.calls.append(branch.code)
        outcomes = self._script[branch.code]
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        await asyncio.sleep(0)
        if isinstance(outcome, Exception):
            raise outcome
        yield FakeConn(outcome)


class RecordingSleep:
    """Stand-in for asyncio.sleep that only records the requested delays."""
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def branches():
    return [
        BranchConfig(code=c, name=BRANCH_NAMES[c], server=f"{c.lower()}-sql", database=f"{c}_Live")
        for c in BRANCH_ORDER
    ]


def rows_for(code):
    return [{"orderNumber": f"WO-{code}-1", "costCode": f"{code}-MNT-001"}]


# ── Tests: backoff_delay ─────────────────────────────────────────────

def test_backoff_delay_doubles():
    assert backoff_delay(1) == 0.5
    assert backoff_delay(2) == 1.0
    assert backoff_delay(3, base=0.25) == 1.0


# ── Tests: query_all ─────────────────────────────────────────────────

def test_query_all_success_single_attempt_in_branch_order():
    factory = ScriptedFactory({c: [rows_for(c)] for c in BRANCH_ORDER})
    sleep = RecordingSleep()
    orch = BranchOrchestrator(branches(), factory, sleep=sleep)

    results = asyncio.run(orch.query_all("SELECT 1"))

    assert [r.branch for r in results] == list(BRANCH_ORDER)
    assert all(r.success for r in results)
    assert Counter(factory.calls) == {c: 1 for c in BRANCH_ORDER}
    assert sleep.delays == []


def test_query_all_retry_bound_and_backoff():
    script = {c: [rows_for(c)] for c in BRANCH_ORDER}
    script["PTA"] = [ConnectionError("PTA unreachable")]
    script["CPT"] = [ConnectionError("CPT unreachable")]
    factory = ScriptedFactory(script)
    sleep = RecordingSleep()
    orch = BranchOrchestrator(branches(), factory, sleep=sleep)

    results = asyncio.run(orch.query_all("SELECT 1"))

    assert Counter(factory.calls) == {"PMB": 1, "QTN": 1, "PTA": 3, "CPT": 3}
    assert sleep.delays == [0.5, 1.0]
    assert [r.branch for r in results] == list(BRANCH_ORDER)
    assert [r.success for r in results] == [True, False, True, False]
    assert results[1].error == "PTA unreachable"
    assert results[1].data == ()


def test_query_all_partial_recovery_stops_retrying_recovered_branch():
    script = {c: [rows_for(c)] for c in BRANCH_ORDER}
    script["PTA"] = [ConnectionError("timeout"), rows_for("PTA")]
    script["QTN"] = [ConnectionError("down")]
    factory = ScriptedFactory(script)
    sleep = RecordingSleep()
    orch = BranchOrchestrator(branches(), factory, sleep=sleep)

    results = asyncio.run(orch.query_all("SELECT 1"))

    assert Counter(factory.calls) == {"PMB": 1, "CPT": 1, "PTA": 2, "QTN": 3}
    assert results[1].success
    assert results[1].data == tuple(rows_for("PTA"))
    assert not results[2].success


def test_query_all_stops_early_when_everything_recovers():
    script = {c: [rows_for(c)] for c in BRANCH_ORDER}
    script["PMB"] = [ConnectionError("blip"), rows_for("PMB")]
    factory = ScriptedFactory(script)
    sleep = RecordingSleep()
    orch = BranchOrchestrator(branches(), factory, sleep=sleep)

    results = asyncio.run(orch.query_all("SELECT 1"))

    assert all(r.success for r in results)
    assert sleep.delays == [0.5]
    assert factory.calls.count("PMB") == 2


def test_query_all_really_waits_between_rounds():
    script = {c: [rows_for(c)] for c in BRANCH_ORDER}
    script["QTN"] = [ConnectionError("down")]
    orch = BranchOrchestrator(branches(), ScriptedFactory(script))

    started = time.monotonic()
    results = asyncio.run(orch.query_all("SELECT 1"))
    elapsed = time.monotonic() - started

    assert elapsed >= 1.5
    assert not results[2].success


# ── Tests: retry_failed ──────────────────────────────────────────────

def test_retry_failed_returns_new_list_and_leaves_input_untouched():
    factory = ScriptedFactory({c: [rows_for(c)] for c in BRANCH_ORDER})
    sleep = RecordingSleep()
    orch = BranchOrchestrator(branches(), factory, sleep=sleep)
    before = [
        QueryResult.ok("PMB", rows_for("PMB"), 5),
        QueryResult.failed("PTA", "boom", 5),
        QueryResult.ok("QTN", rows_for("QTN"), 5),
        QueryResult.ok("CPT", rows_for("CPT"), 5),
    ]

    after = asyncio.run(orch.retry_failed(before, 2, "SELECT 1"))

    assert after is not before
    assert not before[1].success
    assert after[1].success
    assert after[0] is before[0]
    assert factory.calls == ["PTA"]
    assert sleep.delays == [1.0]


def test_retry_failed_without_failures_does_not_sleep():
    sleep = RecordingSleep()
    orch = BranchOrchestrator(branches(), ScriptedFactory({}), sleep=sleep)
    results = [QueryResult.ok(c, [], 1) for c in BRANCH_ORDER]
    assert asyncio.run(orch.retry_failed(results, 1, "SELECT 1")) == results
    assert sleep.delays == []


# ── Tests: query_branch / info ───────────────────────────────────────

def test_query_branch_single_attempt():
    factory = ScriptedFactory({"QTN": [ConnectionError("down")]})
    sleep = RecordingSleep()
    orch = BranchOrchestrator(branches(), factory, sleep=sleep)

    result = asyncio.run(orch.query_branch("QTN", "SELECT 1"))

    assert not result.success
    assert factory.calls == ["QTN"]
    assert sleep.delays == []


def test_query_branch_unknown_code():
    orch = BranchOrchestrator(branches(), ScriptedFactory({}))
    with pytest.raises(ValueError, match="Unknown branch: JHB"):
        asyncio.run(orch.query_branch("JHB", "SELECT 1"))


def test_branch_info_and_listing():
    orch = BranchOrchestrator(branches(), ScriptedFactory({}))
    assert orch.branch_codes == list(BRANCH_ORDER)
    assert orch.branch_info("CPT").name == "Cape Town"
    assert orch.branch_info("JHB") is None
    assert orch.all_branches()[0] == {"code": "PMB", "name": "Pietermaritzburg", "server": "pmb-sql"}


# ── Tests: connection_status ─────────────────────────────────────────

def test_connection_status_reports_each_branch():
    script = {c: [[{"": 1}]] for c in BRANCH_ORDER}
    script["CPT"] = [ConnectionError("Login failed")]
    orch = BranchOrchestrator(branches(), ScriptedFactory(script))

    status = asyncio.run(orch.connection_status())

    assert list(status) == list(BRANCH_ORDER)
    assert status["PMB"]["connected"] is True
    assert "error" not in status["PMB"]
    assert status["CPT"] == {
        "connected": False,
        "name": "Cape Town",
        "server": "cpt-sql",
        "timestamp": status["CPT"]["timestamp"],
        "error": "Login failed",
    }
