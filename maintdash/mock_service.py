"""
Synthetic purchase records for development, used when DATA_SOURCE is not LIVE.
"""

import random
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Mapping, Optional

from faker import Faker

from maintdash.cache import TTLCache
from maintdash.config import BRANCH_NAMES, BRANCH_ORDER, MOCK_RECORD_COUNT
from maintdash.cost_codes import category_of, deduplicate
from maintdash.data_service import groups_from_values
from maintdash.models import PurchaseRecord, QueryResult, RecordSet

COST_CODES = [
    "MNT-001", "MNT-002", "MNT-003", "MNT-004", "MNT-005",
    "ELEC-001", "ELEC-002", "ELEC-003", "ELEC-004", "ELEC-005",
    "PLUMB-001", "PLUMB-002", "PLUMB-003", "HVAC-001", "HVAC-002",
    "FLOOR-001", "FLOOR-002", "FLOOR-003", "ROOF-001", "ROOF-002",
]

DESCRIPTIONS = [
    "Preventive maintenance on HVAC system",
    "Electrical panel inspection and testing",
    "Plumbing pipe repair and replacement",
    "Floor tile replacement in production area",
    "Roof leak repair and sealing",
    "Generator testing and fuel system check",
    "Fire alarm system inspection",
    "Emergency lighting system testing",
    "Compressed air system maintenance",
    "Boiler system inspection and cleaning",
    "Conveyor belt system repair",
    "Industrial door maintenance",
]

SUPPLIERS = [
    "Truda Maintenance Services",
    "Eastern Cape Electricians",
    "Port Elizabeth Plumbing Co",
    "Gauteng HVAC Solutions",
    "Queenstown Industrial Repairs",
    "Cape Town Building Services",
    "National Fire Safety Ltd",
    "Roofing Solutions SA",
]


def generate_records(count: int = MOCK_RECORD_COUNT, seed: Optional[int] = None,
                     today: Optional[date] = None) -> List[PurchaseRecord]:
    """*count* synthetic records from the last two years, newest first."""
    fake = Faker()
    rng = random.Random(seed)
    if seed is not None:
        fake.seed_instance(seed)
    today = today or date.today()

    records = []
    for i in range(1, count + 1):
        when = fake.date_between(start_date=today - timedelta(days=730), end_date=today)
        branch = rng.choice(BRANCH_ORDER)
        code = f"{branch}-{rng.choice(COST_CODES)}"
        category = category_of(code)
        total = round(rng.uniform(500, 50000), 2)

        records.append(PurchaseRecord(
            date=when,
            order_number=f"WO-{branch}-{when.year}-{i:04d}",
            supplier=rng.choice(SUPPLIERS),
            order_total=total,
            item_code=f"ITM-{rng.randint(1000, 9999)}",
            inv_description=rng.choice(DESCRIPTIONS),
            line_total=total,
            cost_code=code,
            group=category,
            line_no=1,
            q_code=None,
            grv_reference=f"GRV-{rng.randint(10000, 99999)}",
            item_description=fake.sentence(nb_words=4),
            period=when.strftime("%Y%m"),
            branch=branch,
            branch_name=BRANCH_NAMES[branch],
            source_database=branch,
            amount=total,
            category=category,
        ))

    return sorted(records, key=lambda r: r.date, reverse=True)


def _in_range(when: date, filters: Mapping[str, str]) -> bool:
    day = when.isoformat()
    if filters.get("startDate") and day < filters["startDate"]:
        return False
    if filters.get("endDate") and day > filters["endDate"]:
        return False
    return True


class MockDataService:
    """Same surface as PurchaseDataService, backed by a fixed synthetic data set."""

    def __init__(self, cache: Optional[TTLCache] = None, count: int = MOCK_RECORD_COUNT,
                 seed: Optional[int] = None):
        self._cache = cache if cache is not None else TTLCache()
        self._records = generate_records(count, seed=seed)

    @property
    def cache(self) -> TTLCache:
        return self._cache

    def all_branches(self) -> List[Dict[str, Optional[str]]]:
        return [{"code": code, "name": BRANCH_NAMES[code], "server": None} for code in BRANCH_ORDER]

    async def get_purchase_records(self, branch: Optional[str] = None,
                                   filters: Optional[Mapping[str, str]] = None) -> RecordSet:
        filters = filters or {}
        records = tuple(
            r for r in self._records
            if (branch is None or r.source_database == branch) and _in_range(r.date, filters)
        )
        return RecordSet(records=records)

    async def get_available_groups(self, branch: Optional[str] = None) -> List[str]:
        recordset = await self.get_purchase_records(branch)
        return groups_from_values(r.group for r in recordset.records)

    async def get_available_cost_codes(self, branch: Optional[str] = None) -> List[str]:
        recordset = await self.get_purchase_records(branch)
        return deduplicate(r.cost_code for r in recordset.records)

    async def connection_status(self) -> Dict[str, Dict[str, object]]:
        timestamp = datetime.now(timezone.utc).isoformat()
        return {
            code: {"connected": True, "name": BRANCH_NAMES[code], "server": None, "timestamp": timestamp}
            for code in BRANCH_ORDER
        }

    async def test_connection(self, branch: str) -> QueryResult:
        count = sum(1 for r in self._records if r.source_database == branch)
        return QueryResult.ok(branch, [{"recordCount": count}], duration_ms=0)
