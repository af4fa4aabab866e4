"""
Purchase record fetching, merging, caching and summarising.
"""

import math
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from maintdash.cache import TTLCache, build_key
from maintdash.config import (
    BRANCH_NAMES, BRANCH_ORDER, CATALOGUE_CACHE_TTL, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE,
    MIN_PAGE_SIZE, PURCHASES_VIEW, RECORDS_CACHE_TTL, UNCATEGORIZED, UNKNOWN_COST_CODE,
)
from maintdash.cost_codes import deduplicate, extract_owning_branch
from maintdash.logging_config import get_logger
from maintdash.models import PurchaseRecord, QueryResult, RecordSet

logger = get_logger("DataService")

CATALOGUE_START_DATE = "2025-01-01"

# view column -> record field
RECORD_COLUMNS = (
    ("DATE", "date"),
    ("ORDER NUMBER", "orderNumber"),
    ("SUPPLIER", "supplier"),
    ("ORDER TOTAL", "orderTotal"),
    ("ITEM CODE", "itemCode"),
    ("INV DESCRIPTION", "invDescription"),
    ("LINE TOTAL", "lineTotal"),
    ("COST CODE", "costCode"),
    ("GROUP", "group"),
    ("LINE NO", "lineNo"),
    ("QCODE", "qCode"),
    ("GRV REFERENCE", "grvReference"),
    ("ITEM DESCRIPTION", "itemDescription"),
    ("PERIOD", "period"),
)


# ── Query building ───────────────────────────────────────────────────

def build_records_query(filters: Optional[Mapping[str, str]] = None) -> Tuple[str, List[str]]:
    """SELECT over the purchases view with optional inclusive date bounds."""
    filters = filters or {}
    where = "WHERE 1=1"
    params: List[str] = []

    if filters.get("startDate"):
        where += f" AND [DATE] >= :param{len(params)}"
        params.append(filters["startDate"])
    if filters.get("endDate"):
        where += f" AND [DATE] <= :param{len(params)}"
        params.append(filters["endDate"])

    columns = ",\n  ".join(f"[{col}] AS [{alias}]" for col, alias in RECORD_COLUMNS)
    sql = f"SELECT\n  {columns}\nFROM {PURCHASES_VIEW}\n{where}"
    return sql, params


def _distinct_query(column: str, alias: str) -> str:
    return (
        f"SELECT DISTINCT [{column}] AS [{alias}]\n"
        f"FROM {PURCHASES_VIEW}\n"
        f"WHERE [{column}] IS NOT NULL AND [DATE] >= :param0\n"
        f"ORDER BY [{column}]"
    )


# ── Record processing ────────────────────────────────────────────────

def to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value)
    return value if value.strip() else None


def build_record(row: Mapping[str, Any], source_branch: str) -> PurchaseRecord:
    """Map one view row to a PurchaseRecord.

    The owning branch comes from the cost-code prefix and only falls back to
    the branch the row was fetched from when the code has no known prefix.
    """
    cost_code = _text(row.get("costCode")) or UNKNOWN_COST_CODE
    group = _text(row.get("group"))
    line_total = to_float(row.get("lineTotal"))
    order_total = to_float(row.get("orderTotal"))
    owning = extract_owning_branch(cost_code) or source_branch

    return PurchaseRecord(
        date=row.get("date"),
        order_number=row.get("orderNumber"),
        supplier=row.get("supplier"),
        order_total=order_total,
        item_code=row.get("itemCode"),
        inv_description=row.get("invDescription"),
        line_total=line_total,
        cost_code=cost_code,
        group=group,
        line_no=row.get("lineNo"),
        q_code=row.get("qCode"),
        grv_reference=row.get("grvReference"),
        item_description=row.get("itemDescription"),
        period=row.get("period"),
        branch=owning,
        branch_name=BRANCH_NAMES.get(owning, owning),
        source_database=source_branch,
        amount=line_total or order_total or 0.0,
        category=group or UNCATEGORIZED,
    )


def process_results(results: Iterable[QueryResult]) -> List[PurchaseRecord]:
    """Merge successful branch results into one list of records."""
    records = []
    for result in results:
        if not result.success:
            continue
        records.extend(build_record(row, result.branch) for row in result.data)
    return records


def is_malformed_group(name: Optional[str]) -> bool:
    """Group names that are really branch-prefixed cost codes ("QTN - Mechanical")."""
    if not name or not name.strip():
        return True
    upper = name.strip().upper()
    return any(upper.startswith(b + "-") or upper.startswith(b + " -") for b in BRANCH_ORDER)


def groups_from_values(values: Iterable[Optional[str]]) -> List[str]:
    groups = set()
    for value in values:
        if is_malformed_group(value):
            if value:
                logger.debug(f"Filtered out malformed group: {value!r}")
            continue
        groups.add(value)
    return sorted(groups)


# ── Summaries ────────────────────────────────────────────────────────

def _frame(records: Sequence[PurchaseRecord]) -> pd.DataFrame:
    return pd.DataFrame({
        "date": [r.date for r in records],
        "branch": [r.branch or "Unknown" for r in records],
        "group": [r.group or "Unknown" for r in records],
        "costCode": [r.cost_code or "Unclassified" for r in records],
        "amount": [r.order_total or 0.0 for r in records],
    })


def purchase_stats(records: Sequence[PurchaseRecord]) -> Dict[str, Any]:
    """Totals and counts by branch, group and cost code (order totals)."""
    stats: Dict[str, Any] = {
        "totalAmount": 0.0,
        "recordCount": len(records),
        "completedCount": len(records),
        "branchStats": {},
        "groupStats": {},
        "costCodeStats": {},
    }
    if not records:
        return stats

    df = _frame(records)
    stats["totalAmount"] = float(df["amount"].sum())

    for column, key in (("branch", "branchStats"), ("group", "groupStats")):
        grouped = df.groupby(column)["amount"].agg(["sum", "count"])
        stats[key] = {
            name: {"total": float(row["sum"]), "count": int(row["count"])}
            for name, row in grouped.iterrows()
        }

    by_code = df.groupby("costCode").agg(
        total=("amount", "sum"), count=("amount", "count"), group=("group", "first"),
    )
    stats["costCodeStats"] = {
        code: {"total": float(row["total"]), "count": int(row["count"]), "group": row["group"]}
        for code, row in by_code.iterrows()
    }
    return stats


def monthly_trends(records: Sequence[PurchaseRecord], months: int = 12,
                   today: Optional[date] = None) -> List[Dict[str, Any]]:
    """Total and count per calendar month for the last *months* months, oldest first."""
    today = today or date.today()
    periods = pd.period_range(end=pd.Timestamp(today).to_period("M"), periods=months, freq="M")
    trends = {str(p): {"total": 0.0, "count": 0} for p in periods}

    if records:
        df = _frame(records)
        df["month"] = pd.to_datetime(df["date"], errors="coerce").dt.strftime("%Y-%m")
        grouped = df.dropna(subset=["month"]).groupby("month")["amount"].agg(["sum", "count"])
        for month, row in grouped.iterrows():
            if month in trends:
                trends[month] = {"total": float(row["sum"]), "count": int(row["count"])}

    return [{"month": month, **values} for month, values in trends.items()]


def clamp_page_size(raw: Any) -> int:
    """Parse a page size; invalid or zero means the default, then clamp to [10, 500]."""
    try:
        size = int(raw)
    except (TypeError, ValueError):
        size = 0
    size = size or DEFAULT_PAGE_SIZE
    return min(MAX_PAGE_SIZE, max(MIN_PAGE_SIZE, size))


def parse_page_number(raw: Any) -> int:
    try:
        page = int(raw)
    except (TypeError, ValueError):
        page = 1
    return max(1, page)


def paginate(records: Sequence[Any], page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> Dict[str, Any]:
    """Slice *records* into one page plus navigation metadata.

    The page number is clamped to [1, totalPages].
    """
    total = len(records)
    total_pages = math.ceil(total / page_size) if page_size else 0

    page = max(1, page)
    if total_pages and page > total_pages:
        page = total_pages

    start = (page - 1) * page_size
    return {
        "data": list(records[start:start + page_size]),
        "pagination": {
            "currentPage": page,
            "pageSize": page_size,
            "totalRecords": total,
            "totalPages": total_pages,
            "hasNextPage": page < total_pages,
            "hasPreviousPage": page > 1,
        },
    }


# ── Service ──────────────────────────────────────────────────────────

class PurchaseDataService:
    """Live data path: multi-branch fetch, merge and cache."""

    def __init__(self, orchestrator, cache: TTLCache):
        self._orchestrator = orchestrator
        self._cache = cache

    @property
    def cache(self) -> TTLCache:
        return self._cache

    def all_branches(self) -> List[Dict[str, Optional[str]]]:
        return self._orchestrator.all_branches()

    async def get_purchase_records(self, branch: Optional[str] = None,
                                   filters: Optional[Mapping[str, str]] = None) -> RecordSet:
        """Records for one branch, or every branch when *branch* is None.

        Results are cached for RECORDS_CACHE_TTL seconds, but only when no
        branch failed, so a recovered branch shows up on the next request.
        """
        filters = {k: v for k, v in (filters or {}).items() if v}
        key = build_key(f"records:{branch or 'all'}", filters)

        cached = self._cache.get(key)
        if cached is not None:
            logger.info(f"Cache HIT for {branch or 'all branches'}")
            return RecordSet(records=cached, from_cache=True)

        sql, params = build_records_query(filters)
        if filters:
            logger.info(f"Date range: {filters.get('startDate')} to {filters.get('endDate')}")

        if branch:
            logger.info(f"Fetching purchase records from {branch}...")
            results = [await self._orchestrator.query_branch(branch, sql, params)]
        else:
            logger.info("Fetching purchase records from all branches...")
            results = await self._orchestrator.query_all(sql, params)

        records = tuple(process_results(results))
        failed = tuple(r.branch for r in results if not r.success)

        for r in results:
            if r.success:
                logger.info(f"  {r.branch}: {r.record_count} records ({r.duration_ms}ms)")
            else:
                logger.warning(f"  {r.branch}: failed - {r.error}")
        logger.info(f"Retrieved {len(records)} records from {len(results) - len(failed)} branch(es)")

        if not failed:
            self._cache.set(key, records, RECORDS_CACHE_TTL)
        return RecordSet(records=records, failed_branches=failed)

    async def _distinct_values(self, branch: Optional[str], column: str,
                               alias: str) -> Tuple[List[Any], Tuple[str, ...]]:
        """Distinct column values from the branches that answered, plus the ones that failed."""
        sql = _distinct_query(column, alias)
        params = [CATALOGUE_START_DATE]
        if branch:
            results = [await self._orchestrator.query_branch(branch, sql, params)]
        else:
            results = await self._orchestrator.query_all(sql, params)
        values = [row.get(alias) for r in results if r.success for row in r.data]
        return values, tuple(r.branch for r in results if not r.success)

    def _cache_catalogue(self, key: str, values: List[str], failed: Sequence[str]) -> None:
        # Partial lists are served but not kept, same as record sets.
        if failed:
            logger.warning(f"Not caching {key}: {', '.join(failed)} failed")
            return
        self._cache.set(key, values, CATALOGUE_CACHE_TTL)

    async def get_available_groups(self, branch: Optional[str] = None) -> List[str]:
        key = build_key(f"groups:{branch or 'all'}")
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        values, failed = await self._distinct_values(branch, "GROUP", "group")
        groups = groups_from_values(values)
        logger.info(f"Available groups: {', '.join(groups)}")
        self._cache_catalogue(key, groups, failed)
        return groups

    async def get_available_cost_codes(self, branch: Optional[str] = None) -> List[str]:
        key = build_key(f"costCodes:{branch or 'all'}")
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        values, failed = await self._distinct_values(branch, "COST CODE", "costCode")
        codes = deduplicate(v for v in values if v)
        self._cache_catalogue(key, codes, failed)
        return codes

    async def connection_status(self) -> Dict[str, Dict[str, Any]]:
        return await self._orchestrator.connection_status()

    async def test_connection(self, branch: str) -> QueryResult:
        """Count rows in one branch; on success drop that branch's cached data."""
        result = await self._orchestrator.query_branch(
            branch, f"SELECT COUNT(*) AS recordCount FROM {PURCHASES_VIEW}",
        )
        if result.success:
            for resource in ("records", "groups", "costCodes"):
                self._cache.evict_by_prefix(f"{resource}:{branch}")
        return result
