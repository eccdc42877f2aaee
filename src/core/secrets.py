"""
secrets.py — Centralized Secret & Settings Registry for the Forms Portal

Single source of truth for credentials and deploy-time settings.
Values are read from the environment at call time, so tests and
redeploys never see a stale copy.

Env vars:
  JWT_SECRET          — Signing key for session + reset tokens (required)
  SMTP_HOST           — Outbound mail server
  SMTP_PORT           — Outbound mail port (default 587)
  SMTP_USER           — Mail account login
  SMTP_PASSWORD       — Mail account password
  SMTP_SECURE         — ssl | starttls | none (default starttls)
  MAIL_FROM           — Sender address (falls back to SMTP_USER)
  MAIL_FROM_NAME      — Sender display name
  LDAP_URL            — Directory server, e.g. ldap://dc01.corp.local
  LDAP_BASE_DN        — Search base for profile lookups
  LDAP_BIND_USER      — Service account used to read profiles
  LDAP_BIND_PASSWORD  — Service account password
  DIRECTORY_DOMAIN    — Suffix appended to bare directory usernames
  FRONTEND_URL        — Base URL used in password reset links
  LOGO_URL            — Remote logo used when no local logo file ships

Security:
  - Values are never logged in full (masked to first 8 chars)
  - Health endpoint shows which keys are set (not values)
  - Validate on startup — warn loudly about missing keys
"""

import os
import logging

log = logging.getLogger("forms.secrets")

# ─── Secret Definitions ─────────────────────────────────────────────────────

_REGISTRY = {
    # Token signing
    "jwt_secret": {
        "env": "JWT_SECRET",
        "required": True,
        "desc": "HS256 signing key for session and reset tokens",
        "areas": ["auth"],
        "sensitive": True,
    },
    # Mail transport
    "smtp_host": {
        "env": "SMTP_HOST",
        "required": False,
        "desc": "SMTP server host",
        "areas": ["notify"],
    },
    "smtp_port": {
        "env": "SMTP_PORT",
        "required": False,
        "desc": "SMTP server port",
        "areas": ["notify"],
        "default": "587",
    },
    "smtp_user": {
        "env": "SMTP_USER",
        "required": False,
        "desc": "SMTP login",
        "areas": ["notify"],
    },
    "smtp_password": {
        "env": "SMTP_PASSWORD",
        "required": False,
        "desc": "SMTP password",
        "areas": ["notify"],
        "sensitive": True,
    },
    "smtp_secure": {
        "env": "SMTP_SECURE",
        "required": False,
        "desc": "Transport security: ssl | starttls | none",
        "areas": ["notify"],
        "default": "starttls",
    },
    "mail_from": {
        "env": "MAIL_FROM",
        "fallback": "SMTP_USER",
        "required": False,
        "desc": "Sender address",
        "areas": ["notify"],
    },
    "mail_from_name": {
        "env": "MAIL_FROM_NAME",
        "required": False,
        "desc": "Sender display name",
        "areas": ["notify"],
        "default": "NWFTH - Forms System",
    },
    # Directory (Active Directory over LDAP)
    "ldap_url": {
        "env": "LDAP_URL",
        "required": False,
        "desc": "Directory server URL",
        "areas": ["directory"],
    },
    "ldap_base_dn": {
        "env": "LDAP_BASE_DN",
        "required": False,
        "desc": "Directory search base DN",
        "areas": ["directory"],
    },
    "ldap_bind_user": {
        "env": "LDAP_BIND_USER",
        "required": False,
        "desc": "Directory service account",
        "areas": ["directory"],
    },
    "ldap_bind_password": {
        "env": "LDAP_BIND_PASSWORD",
        "required": False,
        "desc": "Directory service account password",
        "areas": ["directory"],
        "sensitive": True,
    },
    "directory_domain": {
        "env": "DIRECTORY_DOMAIN",
        "required": False,
        "desc": "Domain suffix for bare directory usernames",
        "areas": ["directory"],
        "default": "newlywedsfoods.co.th",
    },
    # Links + branding
    "frontend_url": {
        "env": "FRONTEND_URL",
        "required": False,
        "desc": "Base URL of the forms UI (reset links)",
        "areas": ["auth"],
        "default": "http://localhost:3000",
    },
    "logo_url": {
        "env": "LOGO_URL",
        "required": False,
        "desc": "Remote logo for emails when no local logo file ships",
        "areas": ["notify"],
        "default": "https://img2.pic.in.th/pic/logo14821dedd19c2ad18.png",
    },
}


# ─── Public API ──────────────────────────────────────────────────────────────

def get_key(name: str) -> str:
    """Get a secret value by registry name. Returns empty string if not set."""
    entry = _REGISTRY.get(name)
    if not entry:
        log.warning("Unknown secret requested: %s", name)
        return ""

    val = os.environ.get(entry["env"], "")
    if not val and "fallback" in entry:
        val = os.environ.get(entry["fallback"], "")
    if not val and "default" in entry:
        val = entry["default"]
    return val


def mask(value: str) -> str:
    """Mask a secret for safe logging. Shows first 8 chars."""
    if not value:
        return "(not set)"
    if len(value) <= 12:
        return value[:4] + "****"
    return value[:8] + "****" + f"({len(value)} chars)"


def validate_all() -> dict:
    """Validate all secrets. Returns status report."""
    results = {}
    warnings = []
    for name, entry in _REGISTRY.items():
        val = get_key(name)
        is_set = bool(val)
        results[name] = {
            "set": is_set,
            "env": entry["env"],
            "desc": entry["desc"],
            "masked": mask(val) if not entry.get("sensitive") else ("set" if is_set else "not set"),
            "required": entry.get("required", False),
            "areas": entry["areas"],
        }
        if entry.get("required") and not is_set:
            warnings.append(f"REQUIRED secret missing: {entry['env']} ({entry['desc']})")
        if "fallback" in entry:
            results[name]["fallback"] = entry["fallback"]
            results[name]["using_fallback"] = (
                not os.environ.get(entry["env"]) and bool(os.environ.get(entry["fallback"]))
            )

    return {
        "secrets": results,
        "total": len(results),
        "set": sum(1 for r in results.values() if r["set"]),
        "missing": sum(1 for r in results.values() if not r["set"]),
        "warnings": warnings,
    }


def startup_check():
    """Run on startup. Logs warnings for missing critical secrets."""
    report = validate_all()
    log.info("Secrets: %d/%d configured", report["set"], report["total"])
    for w in report["warnings"]:
        log.warning("SECRET: %s", w)

    active = set()
    for info in report["secrets"].values():
        if info["set"] and not info["required"]:
            active.update(info["areas"])
    if active:
        log.info("Configured areas: %s", ", ".join(sorted(active)))

    return report
