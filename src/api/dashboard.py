"""
Forms Portal API
Blueprint for every /api route: bearer auth, error mapping, request logging.
Route modules in src/api/modules attach their views to ``bp`` on import.
"""
import functools
import logging
import sqlite3
import time as _time

from flask import Blueprint, g, jsonify, request
from werkzeug.exceptions import HTTPException

from src.auth.tokens import decode_session_token
from src.core.errors import (
    PermissionDeniedError, PortalError, ServiceUnavailableError, TokenMissingError,
)

log = logging.getLogger("forms.api")

bp = Blueprint("forms_portal", __name__)


# ── Request-level structured logging ────────────────────────────────────────
@bp.before_app_request
def _log_request_start():
    g._start_time = _time.time()


@bp.after_app_request
def _log_request_end(response):
    start = g.get("_start_time")
    if start is not None:
        duration_ms = round((_time.time() - start) * 1000, 1)
        # Skip health spam
        if request.path != "/api/health":
            user = (g.get("user") or {}).get("email", "")
            log.info("%s %s → %d (%.0fms)",
                     request.method, request.path, response.status_code, duration_ms,
                     extra={"route": request.path, "method": request.method,
                            "status": response.status_code, "duration_ms": duration_ms,
                            "user": user})
    return response


# ═══════════════════════════════════════════════════════════════════════
# Bearer Token Auth
# ═══════════════════════════════════════════════════════════════════════

def _bearer_token() -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return ""
    return token.strip()


def auth_required(f):
    """Missing token → 401, bad or expired token → 403. Sets g.user."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        token = _bearer_token()
        if not token:
            raise TokenMissingError()
        g.user = decode_session_token(token)
        return f(*args, **kwargs)
    return decorated


def role_required(*roles):
    """auth_required plus a role check against the token's role claim."""
    allowed = {r.lower() for r in roles}

    def decorator(f):
        @functools.wraps(f)
        @auth_required
        def decorated(*args, **kwargs):
            if (g.user.get("role") or "").lower() not in allowed:
                raise PermissionDeniedError()
            return f(*args, **kwargs)
        return decorated
    return decorator


def current_user() -> dict:
    return g.get("user") or {}


def json_body() -> dict:
    """Request JSON as a dict; anything else (missing, list, garbage) → {}."""
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


# ═══════════════════════════════════════════════════════════════════════
# Error Mapping
# ═══════════════════════════════════════════════════════════════════════

@bp.app_errorhandler(PortalError)
def _handle_portal_error(e):
    if e.status_code >= 500:
        log.error("%s %s failed: %s (%s)", request.method, request.path, e.message, e.code)
    else:
        log.info("%s %s rejected: %s (%s)", request.method, request.path, e.message, e.code)
    return jsonify(e.to_dict()), e.status_code


@bp.app_errorhandler(sqlite3.OperationalError)
def _handle_db_error(e):
    log.error("Database unavailable on %s %s: %s", request.method, request.path, e)
    err = ServiceUnavailableError("Database unavailable")
    return jsonify(err.to_dict()), err.status_code


@bp.app_errorhandler(404)
def _handle_unknown_route(e):
    return jsonify({"ok": False, "error": "Not found", "code": "NOT_FOUND"}), 404


@bp.app_errorhandler(405)
def _handle_bad_method(e):
    return jsonify({"ok": False, "error": "Method not allowed", "code": "METHOD_NOT_ALLOWED"}), 405


@bp.app_errorhandler(Exception)
def _handle_unexpected(e):
    if isinstance(e, HTTPException):
        return jsonify({"ok": False, "error": e.description, "code": e.name.upper().replace(" ", "_")}), e.code
    log.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({"ok": False, "error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


# ═══════════════════════════════════════════════════════════════════════
# Health
# ═══════════════════════════════════════════════════════════════════════

@bp.route("/api/health")
def api_health():
    from src.core.db import get_db_stats
    try:
        stats = get_db_stats()
        return jsonify({"ok": True, "db": "ok", "forms": stats.get("forms", 0)})
    except sqlite3.Error as e:
        log.error("Health check DB error: %s", e)
        return jsonify({"ok": False, "db": "error", "forms": 0}), 503


# Route modules register on bp at import time
from src.api.modules import routes_auth, routes_forms, routes_stats  # noqa: E402,F401
