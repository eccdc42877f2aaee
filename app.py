#!/usr/bin/env python3
"""
NWF Forms Portal — Application Entry Point
Creates Flask app and registers the API Blueprint.
"""

import os
import logging
from flask import Flask

from logging_config import setup_logging


def create_app():
    """Application factory."""
    setup_logging()
    app = Flask(__name__)
    app.json.sort_keys = False

    # ── Persistent database init ──────────────────────────────────────────────
    try:
        from src.core.db import startup as db_startup
        result = db_startup()
        logging.getLogger("forms").info(
            "DB: %s | forms=%d users=%d resets=%d",
            result["db_path"],
            result["stats"].get("forms", 0),
            result["stats"].get("users", 0),
            result["stats"].get("password_resets", 0),
        )
    except Exception as e:
        logging.getLogger("forms").warning("DB init skipped: %s", e)

    # Register the API blueprint (all routes)
    from src.api.dashboard import bp
    app.register_blueprint(bp)

    # ── Security middleware (rate limiting, headers) ──────────────────────────
    try:
        from src.core.security import init_security
        init_security(app)
    except Exception as e:
        logging.getLogger("forms").warning("Security init skipped: %s", e)

    # ── Secrets report ────────────────────────────────────────────────────────
    try:
        from src.core.secrets import startup_check
        startup_check()
    except Exception as e:
        logging.getLogger("forms").warning("Secrets check skipped: %s", e)

    # ── Runtime self-test: catches path/route/schema bugs at boot ────────────
    try:
        from src.core.startup_checks import run_startup_checks
        with app.app_context():
            checks = run_startup_checks(app)
            if checks["failed"] > 0:
                logging.getLogger("forms").error(
                    "STARTUP: %d checks FAILED — review logs", checks["failed"])
    except Exception as e:
        logging.getLogger("forms").warning("Startup checks skipped: %s", e)

    return app


# For gunicorn: gunicorn app:app
app = create_app()

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port, debug=False)
