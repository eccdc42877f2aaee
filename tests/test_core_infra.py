"""
Tests for the ambient infrastructure: secrets registry, rate limiting,
path validation, startup checks and the user admin script.
"""

import pytest
from flask import Flask, jsonify

from src.core import db, paths, secrets, security
from src.core.security import RateLimiter, rate_limit
from src.core.startup_checks import run_startup_checks


# ─── Secrets ────────────────────────────────────────────────────────────────

class TestSecrets:
    def test_mask(self):
        assert secrets.mask("") == "(not set)"
        assert secrets.mask("short") == "shor****"
        assert secrets.mask("a-much-longer-secret") == "a-much-l****(20 chars)"

    def test_default_and_fallback(self, monkeypatch):
        monkeypatch.delenv("SMTP_PORT", raising=False)
        monkeypatch.delenv("MAIL_FROM", raising=False)
        monkeypatch.setenv("SMTP_USER", "forms@newlywedsfoods.co.th")
        assert secrets.get_key("smtp_port") == "587"
        assert secrets.get_key("mail_from") == "forms@newlywedsfoods.co.th"

    def test_unknown_key(self):
        assert secrets.get_key("no_such_key") == ""

    def test_missing_required_secret_warns(self, monkeypatch):
        monkeypatch.delenv("JWT_SECRET")
        report = secrets.validate_all()
        assert any("JWT_SECRET" in w for w in report["warnings"])
        assert report["secrets"]["jwt_secret"]["masked"] == "not set"

    def test_sensitive_values_never_shown(self):
        report = secrets.validate_all()
        assert report["secrets"]["jwt_secret"]["masked"] == "set"
        assert report["warnings"] == []


# ─── Rate limiting ──────────────────────────────────────────────────────────

class TestRateLimiter:
    def test_bucket_drains(self):
        limiter = RateLimiter()
        results = [limiter.check("1.2.3.4:auth", max_tokens=3, refill_rate=0) for _ in range(5)]
        assert results == [True, True, True, False, False]

    def test_cleanup_removes_stale(self):
        limiter = RateLimiter()
        limiter.check("a", max_tokens=1)
        assert limiter.cleanup(max_age=-1) == 1

    def test_decorator_returns_429(self, monkeypatch):
        monkeypatch.setenv("DISABLE_RATE_LIMIT", "false")
        app = Flask(__name__)

        @app.route("/limited")
        @rate_limit("tiny-test-tier")
        def limited():
            return jsonify({"ok": True})

        monkeypatch.setitem(security.RATE_LIMITS,
                            "tiny-test-tier", {"max_tokens": 1, "refill_rate": 0})
        with app.test_client() as c:
            assert c.get("/limited").status_code == 200
            resp = c.get("/limited")
            assert resp.status_code == 429
            assert resp.get_json()["ok"] is False

    def test_disabled_by_env(self):
        app = Flask(__name__)

        @app.route("/open")
        @rate_limit("auth")
        def open_route():
            return "ok"

        with app.test_client() as c:
            assert all(c.get("/open").status_code == 200 for _ in range(20))


# ─── Paths / startup ────────────────────────────────────────────────────────

class TestStartup:
    def test_validate_paths(self):
        result = paths.validate_paths()
        assert result["ok"] is True
        assert result["resolved"]["DATA_DIR"] == paths.DATA_DIR

    def test_startup_checks_pass(self, app):
        results = run_startup_checks(app)
        assert results["failed"] == 0
        assert any("PDF renderer OK" in msg for level, msg in results["details"])

    def test_startup_checks_report_missing_secret(self, monkeypatch):
        monkeypatch.delenv("JWT_SECRET")
        results = run_startup_checks()
        assert results["failed"] >= 1


# ─── User admin script ──────────────────────────────────────────────────────

class TestManageUsers:
    @pytest.fixture
    def manage(self):
        from scripts import manage_users
        return manage_users

    def test_create_admin(self, manage, monkeypatch, capsys):
        monkeypatch.setattr(manage.getpass, "getpass", lambda prompt: "adm1n-pass")
        assert manage.main(["create-admin", "boss@newlywedsfoods.co.th", "Boss", "IT"]) == 0
        created = db.get_user_by_email("boss@newlywedsfoods.co.th")
        assert created["role"] == "admin"
        assert "OK" in capsys.readouterr().out

    def test_set_role(self, manage, user):
        assert manage.main(["set-role", user["email"], "Manager"]) == 0
        assert db.get_user_by_email(user["email"])["role"] == "manager"

    def test_set_role_rejects_unknown_role(self, manage, user):
        assert manage.main(["set-role", user["email"], "superuser"]) == 1

    def test_set_role_unknown_account(self, manage):
        assert manage.main(["set-role", "ghost@newlywedsfoods.co.th", "admin"]) == 1

    def test_usage(self, manage):
        assert manage.main([]) == 2
