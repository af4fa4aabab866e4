"""
Flask route handlers for the REST API.
"""

import re
from datetime import datetime, timezone
from typing import Dict

from flask import g, jsonify, request
from werkzeug.exceptions import HTTPException

from maintdash.config import BRANCH_ORDER, get_env_default, is_live_data_source
from maintdash.cost_codes import group_by_category
from maintdash.data_service import clamp_page_size, monthly_trends, paginate, parse_page_number, purchase_stats
from maintdash.logging_config import get_logger
from maintdash.permissions import filter_records
from maintdash.api.auth import admin_only, token_required

logger = get_logger("API")

_DATE_FORMAT = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_date_filters(args) -> Dict[str, str]:
    """Validate optional startDate / endDate query args (YYYY-MM-DD, start <= end)."""
    filters = {}
    for name in ("startDate", "endDate"):
        value = (args.get(name) or "").strip()
        if not value:
            continue
        if not _DATE_FORMAT.match(value):
            raise ValueError(f"Invalid {name} format. Use YYYY-MM-DD")
        try:
            datetime.strptime(value, "%Y-%m-%d")
        except ValueError:
            raise ValueError(f"Invalid {name} format. Use YYYY-MM-DD")
        filters[name] = value

    if "startDate" in filters and "endDate" in filters and filters["startDate"] > filters["endDate"]:
        raise ValueError("startDate must be before or equal to endDate")
    return filters


def _data_source() -> str:
    return "LIVE" if is_live_data_source() else "MOCK"


def _branch_param(branch: str):
    code = branch.strip().upper()
    return code if code in BRANCH_ORDER else None


def register_routes(app, data_service):
    """Register all API routes on the Flask *app*."""

    # ── Health / info ────────────────────────────────────────────────

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "service": "Maintenance Cost Dashboard API",
            "version": "1.0.0",
            "status": "running",
            "dataSource": _data_source(),
        })

    @app.route("/health", methods=["GET"])
    async def health():
        try:
            status = await data_service.connection_status()
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return jsonify({"status": "ERROR", "timestamp": _now()}), 500

        all_connected = all(s["connected"] for s in status.values())
        return jsonify({"status": "OK" if all_connected else "PARTIAL", "timestamp": _now()}), 200

    @app.route("/api/health/detailed", methods=["GET"])
    @token_required
    @admin_only
    async def health_detailed():
        try:
            status = await data_service.connection_status()
        except Exception as e:
            logger.error(f"Detailed health check failed: {e}")
            return jsonify({"status": "ERROR", "timestamp": _now(), "error": "Server error checking health"}), 500

        all_connected = all(s["connected"] for s in status.values())
        return jsonify({
            "status": "OK" if all_connected else "PARTIAL",
            "timestamp": _now(),
            "dataSource": _data_source(),
            "connections": status,
        }), 200

    # ── Maintenance data ─────────────────────────────────────────────

    @app.route("/api/maintenance/records", methods=["GET"])
    @token_required
    async def maintenance_records():
        try:
            filters = parse_date_filters(request.args)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

        recordset = await data_service.get_purchase_records(filters=filters)
        rows = [r.to_dict() for r in filter_records(recordset.records, g.current_user)]
        failed = list(recordset.failed_branches)

        if request.args.get("page"):
            page = paginate(
                rows,
                parse_page_number(request.args.get("page")),
                clamp_page_size(request.args.get("pageSize")),
            )
            page["failedBranches"] = failed
            return jsonify(page), 200

        return jsonify({"records": rows, "recordCount": len(rows), "failedBranches": failed}), 200

    @app.route("/api/maintenance/stats", methods=["GET"])
    @token_required
    async def maintenance_stats():
        try:
            filters = parse_date_filters(request.args)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

        recordset = await data_service.get_purchase_records(filters=filters)
        records = filter_records(recordset.records, g.current_user)
        return jsonify({
            "stats": purchase_stats(records),
            "monthlyTrends": monthly_trends(records),
            "failedBranches": list(recordset.failed_branches),
        }), 200

    @app.route("/api/branches", methods=["GET"])
    @token_required
    async def branches():
        return jsonify({"branches": data_service.all_branches()}), 200

    # ── Catalogues ───────────────────────────────────────────────────

    @app.route("/api/groups", methods=["GET"])
    @token_required
    async def groups():
        names = await data_service.get_available_groups()
        return jsonify({"groups": names, "count": len(names), "timestamp": _now()}), 200

    @app.route("/api/cost-codes", methods=["GET"])
    @token_required
    async def cost_codes():
        codes = await data_service.get_available_cost_codes()
        return jsonify({"costCodes": codes, "count": len(codes), "timestamp": _now()}), 200

    @app.route("/api/cost-codes/branch/<branch>", methods=["GET"])
    @token_required
    async def branch_cost_codes(branch):
        code = _branch_param(branch)
        if code is None:
            return jsonify({"error": "Invalid branch code"}), 400

        codes = await data_service.get_available_cost_codes(code)
        return jsonify({"branch": code, "costCodes": codes, "count": len(codes), "timestamp": _now()}), 200

    @app.route("/api/cost-codes/grouped/by-category", methods=["GET"])
    @token_required
    async def cost_codes_by_category():
        codes = await data_service.get_available_cost_codes()
        grouped = group_by_category(codes)
        return jsonify({
            "grouped": grouped,
            "totalCodes": len(codes),
            "categories": list(grouped),
            "timestamp": _now(),
        }), 200

    # ── Connections ──────────────────────────────────────────────────

    @app.route("/api/connection-status", methods=["GET"])
    @token_required
    async def connection_status():
        status = await data_service.connection_status()
        connections = {
            code: {"connected": s["connected"], "name": s["name"], "timestamp": s["timestamp"]}
            for code, s in status.items()
        }
        return jsonify({"connections": connections, "timestamp": _now()}), 200

    @app.route("/api/diagnostics", methods=["GET"])
    @token_required
    @admin_only
    async def diagnostics():
        # Never echo MSSQL_PASS.
        port = get_env_default("MSSQL_PORT")
        user = get_env_default("MSSQL_USER")
        configured = [
            {
                "code": b["code"],
                "name": b["name"],
                "server": b["server"],
                "database": get_env_default(f"{b['code']}_DB"),
                "port": port,
                "user": user,
            }
            for b in data_service.all_branches()
        ]
        return jsonify({
            "timestamp": _now(),
            "dataSource": _data_source(),
            "configuredBranches": configured,
            "connectionStatus": await data_service.connection_status(),
            "mssqlConfig": {"encrypt": "true", "trustServerCertificate": "true"},
        }), 200

    @app.route("/api/test-connection/<branch>", methods=["POST"])
    @token_required
    @admin_only
    async def test_connection(branch):
        code = _branch_param(branch)
        if code is None:
            return jsonify({"error": "Invalid branch code"}), 400

        result = await data_service.test_connection(code)
        if not result.success:
            return jsonify({"status": "failed", "branch": code, "error": result.error, "timestamp": _now()}), 500

        count = result.data[0].get("recordCount", 0) if result.data else 0
        return jsonify({
            "status": "success",
            "branch": code,
            "message": f"Successfully connected to {code}. Cache cleared.",
            "recordCount": count,
            "timestamp": _now(),
        }), 200

    # ── Cache ────────────────────────────────────────────────────────

    @app.route("/api/cache/stats", methods=["GET"])
    @token_required
    @admin_only
    async def cache_stats():
        return jsonify({"timestamp": _now(), "cache": data_service.cache.stats()}), 200

    @app.route("/api/cache/clear", methods=["POST"])
    @token_required
    @admin_only
    async def cache_clear():
        body = request.get_json(silent=True) or {}
        pattern = body.get("pattern")
        if pattern:
            cleared = data_service.cache.evict_by_prefix(pattern)
            message = f"Cleared {cleared} items matching pattern: {pattern}"
        else:
            cleared = data_service.cache.evict_all()
            message = f"Cleared all {cleared} cache items"
        return jsonify({"message": message, "clearedCount": cleared, "timestamp": _now()}), 200

    # ── Error handlers ───────────────────────────────────────────────

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Endpoint not found", "message": str(e)}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed", "message": str(e)}), 405

    @app.errorhandler(Exception)
    def internal_error(e):
        if isinstance(e, HTTPException):
            return jsonify({"error": e.name, "message": e.description}), e.code
        logger.error(f"Unhandled error: {e}", exc_info=True)
        return jsonify({"error": "Internal server error"}), 500
