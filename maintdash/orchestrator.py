"""
Fan a query out to every branch, then retry only the branches that failed.

The first pass queries all branches concurrently. Failed branches get up to
MAX_RETRY_ROUNDS more attempts, each round preceded by an exponential
backoff (0.5 s, then 1 s). Branches that already succeeded are never
queried again, and the result list always follows configuration order.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from maintdash.config import BASE_BACKOFF_SECONDS, MAX_RETRY_ROUNDS
from maintdash.database import execute_branch_query
from maintdash.logging_config import get_logger
from maintdash.models import BranchConfig, QueryResult

logger = get_logger("Database")

Sleep = Callable[[float], Awaitable[Any]]


def backoff_delay(attempt: int, base: float = BASE_BACKOFF_SECONDS) -> float:
    """Seconds to wait before retry round *attempt* (1-based)."""
    return base * 2 ** (attempt - 1)


class BranchOrchestrator:
    """Runs one SQL template against all configured branch databases."""

    def __init__(self, branches: Sequence[BranchConfig], connection_factory,
                 sleep: Sleep = asyncio.sleep, max_retry_rounds: int = MAX_RETRY_ROUNDS):
        self._branches = list(branches)
        self._by_code: Dict[str, BranchConfig] = {b.code: b for b in self._branches}
        self._factory = connection_factory
        self._sleep = sleep
        self.max_retry_rounds = max_retry_rounds

    # ── Branch info ──────────────────────────────────────────────────

    @property
    def branch_codes(self) -> List[str]:
        return [b.code for b in self._branches]

    def branch_info(self, code: str) -> Optional[BranchConfig]:
        return self._by_code.get(code)

    def all_branches(self) -> List[Dict[str, Optional[str]]]:
        return [{"code": b.code, "name": b.name, "server": b.server} for b in self._branches]

    # ── Queries ──────────────────────────────────────────────────────

    async def _execute(self, branch: BranchConfig, sql: str, params: Sequence[Any]) -> QueryResult:
        return await execute_branch_query(self._factory, branch, sql, params)

    async def query_branch(self, code: str, sql: str, params: Sequence[Any] = ()) -> QueryResult:
        """Query a single branch once, without retries."""
        branch = self._by_code.get(code)
        if branch is None:
            raise ValueError(f"Unknown branch: {code}")
        return await self._execute(branch, sql, params)

    async def retry_failed(self, results: Sequence[QueryResult], attempt: int,
                           sql: str, params: Sequence[Any] = ()) -> List[QueryResult]:
        """One retry round: back off, re-run the failed branches, return a new list.

        Successful entries are carried over untouched; each retried entry is
        replaced by its new outcome, success or not.
        """
        failed = [i for i, r in enumerate(results) if not r.success]
        if not failed:
            return list(results)

        delay = backoff_delay(attempt)
        logger.info(f"Waiting {int(delay * 1000)}ms before retry #{attempt} "
                    f"for {', '.join(results[i].branch for i in failed)}")
        await self._sleep(delay)

        retried = await asyncio.gather(
            *(self._execute(self._by_code[results[i].branch], sql, params) for i in failed)
        )

        updated = list(results)
        for i, result in zip(failed, retried):
            updated[i] = result
            if result.success:
                logger.info(f"{result.branch} recovered on retry #{attempt}")
            else:
                logger.warning(f"{result.branch} still failing: {result.error}")
        return updated

    async def query_all(self, sql: str, params: Sequence[Any] = ()) -> List[QueryResult]:
        """Query every branch concurrently, retrying failures with backoff.

        Returns one QueryResult per configured branch, in configuration order.
        Branch failures are reported in the results, never raised.
        """
        results: List[QueryResult] = list(await asyncio.gather(
            *(self._execute(b, sql, params) for b in self._branches)
        ))

        failed = [r.branch for r in results if not r.success]
        if not failed:
            return results

        logger.info(f"Retrying {len(failed)} failed branch(es): {', '.join(failed)}")
        for attempt in range(1, self.max_retry_rounds + 1):
            results = await self.retry_failed(results, attempt, sql, params)
            if all(r.success for r in results):
                logger.info(f"All branches recovered after retry #{attempt}")
                break

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Final result: {succeeded}/{len(results)} branches succeeded")
        return results

    async def connection_status(self) -> Dict[str, Dict[str, Any]]:
        """Check every branch with ``SELECT 1``."""
        checks = await asyncio.gather(*(self._execute(b, "SELECT 1", ()) for b in self._branches))
        timestamp = datetime.now(timezone.utc).isoformat()
        status = {}
        for branch, check in zip(self._branches, checks):
            entry = {
                "connected": check.success,
                "name": branch.name,
                "server": branch.server,
                "timestamp": timestamp,
            }
            if not check.success:
                entry["error"] = check.error
            status[branch.code] = entry
        return status
