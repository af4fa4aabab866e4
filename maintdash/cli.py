"""
Diagnostics CLI: branch connectivity and a summary of one records fetch.
"""

import asyncio
import sys

import pandas as pd

from maintdash.api.app import build_data_service
from maintdash.config import MAX_PREVIEW_ROWS
from maintdash.logging_config import configure_logging


async def run_diagnostics(data_service, start_date=None, end_date=None) -> int:
    """Print status and a preview; return the number of failed branches."""
    print("\n[Connection status]")
    status = await data_service.connection_status()
    for code, info in status.items():
        mark = "ok  " if info["connected"] else "FAIL"
        line = f"  {mark} {code} ({info['name']})"
        if not info["connected"]:
            line += f": {info.get('error')}"
        print(line)

    filters = {k: v for k, v in (("startDate", start_date), ("endDate", end_date)) if v}
    recordset = await data_service.get_purchase_records(filters=filters)

    print(f"\n[Records] {len(recordset.records)} merged record(s)")
    if recordset.failed_branches:
        print(f"  Failed branches: {', '.join(recordset.failed_branches)}")
    if not recordset.records:
        print("(no rows returned)")
        return len(recordset.failed_branches)

    df = pd.DataFrame([r.to_dict() for r in recordset.records])
    by_branch = df.groupby(["sourceDatabase", "branch"]).size().rename("records").reset_index()
    print("\n[Records by source database / owning branch]")
    print(by_branch.to_string(index=False))

    print(f"\n[Preview of results (up to {MAX_PREVIEW_ROWS} rows)]")
    columns = ["date", "orderNumber", "supplier", "costCode", "group", "branch", "sourceDatabase", "amount"]
    print(df[columns].head(MAX_PREVIEW_ROWS).to_string(index=False))
    return len(recordset.failed_branches)


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    start_date = argv[0] if len(argv) > 0 else None
    end_date = argv[1] if len(argv) > 1 else None

    print("=== Maintenance Cost Dashboard: branch diagnostics ===")
    configure_logging("WARNING")
    failed = asyncio.run(run_diagnostics(build_data_service(), start_date, end_date))
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
