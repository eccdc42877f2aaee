"""
src/core/startup_checks.py — Runtime Self-Test on App Boot

Runs automatically when the app starts. Catches the class of bugs that only
show up at runtime:

  1. Path resolution — DATA_DIR exists and is writable
  2. Secrets — JWT_SECRET set, mail/directory config reported
  3. Database — all tables present in the live sqlite file
  4. Route integrity — expected API routes registered, no duplicate endpoints
  5. Renderer — reportlab can build a document end to end
"""

import logging

log = logging.getLogger("forms.startup")

EXPECTED_ROUTES = (
    "/api/login",
    "/api/register",
    "/api/forms",
    "/api/forms/<int:form_id>",
    "/api/forms/<int:form_id>/pdf",
    "/api/forms/pdf-email",
    "/api/health",
)


def run_startup_checks(app=None) -> dict:
    """Run all startup validation checks. Call from app.py after blueprint registration.

    Returns:
        {"passed": int, "failed": int, "warnings": int, "details": [...]}
    """
    results = {"passed": 0, "failed": 0, "warnings": 0, "details": []}

    def _pass(msg):
        results["passed"] += 1
        results["details"].append(("PASS", msg))
        log.info("PASS %s", msg)

    def _fail(msg):
        results["failed"] += 1
        results["details"].append(("FAIL", msg))
        log.error("STARTUP CHECK FAILED: %s", msg)

    def _warn(msg):
        results["warnings"] += 1
        results["details"].append(("WARN", msg))
        log.warning("WARN %s", msg)

    # ── 1. Path Validation ────────────────────────────────────────────────────
    try:
        from src.core.paths import validate_paths, DATA_DIR
        path_result = validate_paths()
        if path_result["ok"]:
            _pass(f"All paths valid (DATA_DIR={DATA_DIR})")
        else:
            for err in path_result["errors"]:
                _fail(err)
        for warn in path_result.get("warnings", []):
            _warn(warn)
    except Exception as e:
        _fail(f"Path validation error: {e}")

    # ── 2. Secrets ────────────────────────────────────────────────────────────
    try:
        from src.core.secrets import validate_all
        report = validate_all()
        for w in report["warnings"]:
            _fail(w)
        if not report["warnings"]:
            _pass(f"Required secrets present ({report['set']}/{report['total']} configured)")
        for name in ("smtp_host", "ldap_url"):
            if not report["secrets"][name]["set"]:
                _warn(f"{report['secrets'][name]['env']} not set — {report['secrets'][name]['desc']} disabled")
    except Exception as e:
        _warn(f"Secrets check skipped: {e}")

    # ── 3. Database Schema ────────────────────────────────────────────────────
    try:
        from src.core.db import get_db
        with get_db() as conn:
            tables = {r["name"] for r in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'").fetchall()}
        missing = {"forms", "users", "password_resets"} - tables
        if missing:
            _fail(f"DB tables missing: {sorted(missing)}")
        else:
            _pass("DB schema present (forms, users, password_resets)")
    except Exception as e:
        _fail(f"DB check error: {e}")

    # ── 4. Route Integrity (if app provided) ──────────────────────────────────
    if app:
        try:
            rules = [r for r in app.url_map.iter_rules()
                     if r.endpoint and not r.endpoint.startswith("static")]
            _pass(f"Flask routes registered: {len(rules)}")
            paths = {r.rule for r in rules}
            missing = [p for p in EXPECTED_ROUTES if p not in paths]
            if missing:
                _fail(f"Routes missing: {missing}")
            endpoints = [r.endpoint for r in rules]
            dupes = {e for e in endpoints if endpoints.count(e) > 1}
            if dupes:
                _warn(f"Endpoints bound to several rules: {sorted(dupes)}")
        except Exception as e:
            _warn(f"Route check skipped: {e}")

    # ── 5. Renderer Smoke Test ────────────────────────────────────────────────
    try:
        from src.forms.document_renderer import render_form_pdf
        pdf = render_form_pdf({"id": 0, "form_type": "StartupCheck", "owner_name": "system",
                               "status": "Draft", "details": {"check": "ok"}})
        if pdf.startswith(b"%PDF"):
            _pass(f"PDF renderer OK ({len(pdf)} bytes)")
        else:
            _fail("PDF renderer returned non-PDF output")
    except Exception as e:
        _fail(f"PDF renderer error: {e}")

    # ── Summary ──────────────────────────────────────────────────────────────
    total = results["passed"] + results["failed"] + results["warnings"]
    if results["failed"] > 0:
        log.error("STARTUP: %d/%d checks FAILED — app may not work correctly",
                  results["failed"], total)
    else:
        log.info("STARTUP: All %d checks passed (%d warnings)",
                 results["passed"], results["warnings"])

    return results
