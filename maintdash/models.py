"""
Domain dataclasses used across the application.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, FrozenSet, Optional, Tuple, Union


@dataclass(frozen=True)
class BranchConfig:
    """Connection details for one regional branch database."""
    code: str                  # "PMB", "PTA", "QTN" or "CPT"
    name: str
    server: Optional[str]
    database: Optional[str]
    port: int = 1433
    user: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    driver: str = "ODBC Driver 18 for SQL Server"


@dataclass(frozen=True)
class QueryResult:
    """Outcome of one query against one branch."""
    branch: str
    data: Tuple[Dict[str, Any], ...]
    success: bool
    error: Optional[str]
    duration_ms: int
    record_count: int

    @classmethod
    def ok(cls, branch: str, rows, duration_ms: int) -> "QueryResult":
        rows = tuple(rows)
        return cls(branch=branch, data=rows, success=True, error=None,
                   duration_ms=duration_ms, record_count=len(rows))

    @classmethod
    def failed(cls, branch: str, error: str, duration_ms: int) -> "QueryResult":
        return cls(branch=branch, data=(), success=False, error=error or "Unknown error",
                   duration_ms=duration_ms, record_count=0)


@dataclass(frozen=True)
class PurchaseRecord:
    """A merged purchase line item, tagged with owning and source branch."""
    date: Union[date, datetime, str, None]
    order_number: Optional[str]
    supplier: Optional[str]
    order_total: Optional[float]
    item_code: Optional[str]
    inv_description: Optional[str]
    line_total: Optional[float]
    cost_code: str
    group: Optional[str]
    line_no: Optional[int]
    q_code: Optional[str]
    grv_reference: Optional[str]
    item_description: Optional[str]
    period: Optional[str]
    branch: str                # owning branch, from the cost-code prefix
    branch_name: str
    source_database: str       # branch the row was fetched from
    amount: float
    category: str
    status: str = "Completed"

    def to_dict(self) -> Dict[str, Any]:
        """Render the record in the camelCase shape the dashboard consumes."""
        when = self.date.isoformat() if isinstance(self.date, (date, datetime)) else self.date
        return {
            "date": when,
            "orderNumber": self.order_number,
            "supplier": self.supplier,
            "orderTotal": self.order_total,
            "itemCode": self.item_code,
            "invDescription": self.inv_description,
            "lineTotal": self.line_total,
            "costCode": self.cost_code,
            "group": self.group,
            "lineNo": self.line_no,
            "qCode": self.q_code,
            "grvReference": self.grv_reference,
            "itemDescription": self.item_description,
            "period": self.period,
            "branch": self.branch,
            "branchName": self.branch_name,
            "sourceDatabase": self.source_database,
            "amount": self.amount,
            "category": self.category,
            "status": self.status,
        }


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    created_at: float
    expires_at: float


# ── Cost-code access variants ────────────────────────────────────────

@dataclass(frozen=True)
class Unrestricted:
    """No cost-code level restriction; fall through to group or branch rules."""


@dataclass(frozen=True)
class DenyAll:
    """Assigned to specific cost codes, but none are assigned."""


@dataclass(frozen=True)
class RestrictedTo:
    """Only the listed cost codes (exact text) are visible."""
    codes: FrozenSet[str]


CodeAccess = Union[Unrestricted, DenyAll, RestrictedTo]


@dataclass
class CurrentUser:
    """The authenticated user's role and data scope."""
    role: str                          # "ADMIN" or "User"
    branch: str                        # branch code or "ALL"
    cost_codes: CodeAccess
    groups: Optional[FrozenSet[str]]   # None = no group restriction
    user_id: Optional[int] = None
    username: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"


@dataclass(frozen=True)
class RecordSet:
    """Merged records plus the branches that could not be reached."""
    records: Tuple[PurchaseRecord, ...]
    failed_branches: Tuple[str, ...] = ()
    from_cache: bool = False
