"""
Centralised configuration constants and environment helpers.
"""

import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

from maintdash.models import BranchConfig

load_dotenv()

# ── Branches ─────────────────────────────────────────────────────────
BRANCH_ORDER = ("PMB", "PTA", "QTN", "CPT")
BRANCH_NAMES = {
    "PMB": "Pietermaritzburg",
    "PTA": "Pretoria",
    "QTN": "Queenstown",
    "CPT": "Cape Town",
}
ALL_BRANCHES = "ALL"

# ── Branch queries ───────────────────────────────────────────────────
PURCHASES_VIEW = "[dbo].[TNT_vw_MaintenancePurchases]"
CONNECT_TIMEOUT_SECONDS = 15
# Outer asyncio deadline sits past the driver login timeout so the driver gives up first.
CONNECT_DEADLINE_MARGIN_SECONDS = 5
MAX_RETRY_ROUNDS = 2
BASE_BACKOFF_SECONDS = 0.5

# ── Cost codes ───────────────────────────────────────────────────────
SIMILARITY_THRESHOLD = 0.85
UNKNOWN_COST_CODE = "Unknown"
UNCATEGORIZED = "Uncategorized"

# ── Cache (seconds) ──────────────────────────────────────────────────
RECORDS_CACHE_TTL = 300
CATALOGUE_CACHE_TTL = 1800

# ── Pagination ───────────────────────────────────────────────────────
DEFAULT_PAGE_SIZE = 50
MIN_PAGE_SIZE = 10
MAX_PAGE_SIZE = 500

# ── API server ───────────────────────────────────────────────────────
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
TOKEN_EXPIRY_HOURS = 24
DATA_SOURCE = os.getenv("DATA_SOURCE", "MOCK").upper()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
MOCK_RECORD_COUNT = 50
MAX_PREVIEW_ROWS = 20


def get_env(name: str) -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        sys.exit(1)
    return value


def get_env_default(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return an environment variable, or *default* when it is unset or blank."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value


def is_live_data_source() -> bool:
    return get_env_default("DATA_SOURCE", DATA_SOURCE).upper() == "LIVE"


def load_branch_configs() -> List[BranchConfig]:
    """Build one BranchConfig per branch, in BRANCH_ORDER.

    Server and database names come from ``<CODE>_SERVER`` / ``<CODE>_DB``;
    credentials and port are shared across branches.
    """
    user = get_env_default("MSSQL_USER")
    password = get_env_default("MSSQL_PASS")
    port = int(get_env_default("MSSQL_PORT", "1433"))
    driver = get_env_default("MSSQL_DRIVER", "ODBC Driver 18 for SQL Server")

    return [
        BranchConfig(
            code=code,
            name=BRANCH_NAMES[code],
            server=get_env_default(f"{code}_SERVER"),
            database=get_env_default(f"{code}_DB"),
            port=port,
            user=user,
            password=password,
            driver=driver,
        )
        for code in BRANCH_ORDER
    ]
