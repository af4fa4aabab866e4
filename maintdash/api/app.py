"""
Flask application factory and server entry-point.
"""

import os
import sys
import traceback

from flask import Flask
from flask_cors import CORS

from maintdash.cache import TTLCache
from maintdash.config import SECRET_KEY, get_env, is_live_data_source, load_branch_configs
from maintdash.database import BranchConnectionFactory
from maintdash.data_service import PurchaseDataService
from maintdash.logging_config import configure_logging, get_logger
from maintdash.mock_service import MockDataService
from maintdash.orchestrator import BranchOrchestrator
from maintdash.api.routes import register_routes

logger = get_logger("API")


def build_data_service(cache=None):
    """Live multi-branch service, or the synthetic one outside LIVE mode."""
    cache = cache if cache is not None else TTLCache()
    if not is_live_data_source():
        logger.info("Data source: MOCK (synthetic records)")
        return MockDataService(cache=cache)

    get_env("MSSQL_USER")  # fail early if missing
    get_env("MSSQL_PASS")
    branches = load_branch_configs()
    for b in branches:
        if not b.server or not b.database:
            logger.warning(f"{b.code} ({b.name}) is missing server or database settings")
    logger.info(f"Data source: LIVE ({', '.join(b.code for b in branches)})")
    orchestrator = BranchOrchestrator(branches, BranchConnectionFactory())
    return PurchaseDataService(orchestrator, cache)


def create_app(data_service=None, secret_key=None):
    """Build and return a fully configured Flask application."""
    app = Flask(__name__)
    app.config["JWT_SECRET_KEY"] = secret_key or SECRET_KEY
    CORS(app, supports_credentials=True)

    # ── Initialise shared resources ──────────────────────────────────
    if data_service is None:
        try:
            data_service = build_data_service()
        except Exception as e:
            logger.critical(f"Failed to initialize: {e}")
            traceback.print_exc()
            sys.exit(1)

    app.extensions["maintdash.data_service"] = data_service

    # ── Register routes ──────────────────────────────────────────────
    register_routes(app, data_service)

    return app


def main():
    """Run the development server."""
    configure_logging()
    app = create_app()

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "5000"))
    debug = os.getenv("FLASK_ENV") == "development"

    logger.info(f"Starting Flask API on {host}:{port} (debug={debug})")
    for rule in sorted(app.url_map.iter_rules(), key=lambda r: r.rule):
        methods = ",".join(sorted(m for m in rule.methods if m not in {"HEAD", "OPTIONS"}))
        logger.info(f"  {methods:<5} {rule.rule}")

    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()
