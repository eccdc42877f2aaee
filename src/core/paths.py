"""
src/core/paths.py — Centralized Path Configuration

Single source of truth for directory and file paths used by the forms portal.
Every module imports from here instead of computing its own DATA_DIR.

When a persistent volume is mounted, DATA_DIR points to it so the forms
database survives redeploys. The repo's data/ folder is the local fallback.
"""

import os
import logging

log = logging.getLogger("forms.paths")

# ── Project Root ──────────────────────────────────────────────────────────────
_THIS_FILE = os.path.abspath(__file__)
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.dirname(_THIS_FILE)))

_LOCAL_DATA_DIR = os.path.join(PROJECT_ROOT, "data")


# ── Resolve persistent DATA_DIR ─────────────────────────────────────────────
# Priority: FORMS_DATA_DIR env → volume mount → local data/
def _resolve_data_dir() -> str:
    """Find the best persistent data directory."""
    env_dir = os.environ.get("FORMS_DATA_DIR", "")
    if env_dir:
        os.makedirs(env_dir, exist_ok=True)
        return env_dir

    vol_mount = os.environ.get("VOLUME_MOUNT_PATH", "")
    if vol_mount and os.path.isdir(vol_mount):
        return vol_mount if vol_mount.endswith("/data") else os.path.join(vol_mount, "data")

    return _LOCAL_DATA_DIR


DATA_DIR = _resolve_data_dir()
_USING_VOLUME = (DATA_DIR != _LOCAL_DATA_DIR)

# ── Core Directories ─────────────────────────────────────────────────────────
LOG_DIR = os.path.join(DATA_DIR, "logs")
ASSETS_DIR = os.path.join(PROJECT_ROOT, "src", "forms", "assets")

# ── Key File Paths ───────────────────────────────────────────────────────────
DB_PATH = os.path.join(DATA_DIR, "forms_portal.db")
LOGO_PATH = os.path.join(ASSETS_DIR, "logo.png")

for _d in (DATA_DIR, LOG_DIR):
    os.makedirs(_d, exist_ok=True)


def validate_paths() -> dict:
    """Runtime validation — call at app startup to catch path issues early.

    Returns:
        {"ok": bool, "errors": [str], "warnings": [str], "resolved": {name: path}}
    """
    result = {"ok": True, "errors": [], "warnings": [], "resolved": {}}

    checks = {
        "PROJECT_ROOT": (PROJECT_ROOT, True),
        "DATA_DIR": (DATA_DIR, True),
        "LOG_DIR": (LOG_DIR, False),
        "LOGO_PATH": (LOGO_PATH, False),
    }

    for name, (path, required) in checks.items():
        result["resolved"][name] = path
        if not os.path.exists(path):
            if required:
                result["errors"].append(f"{name} not found: {path}")
                result["ok"] = False
            else:
                result["warnings"].append(f"{name} not found: {path}")

    # DATA_DIR must be writable for sqlite + WAL files
    test_file = os.path.join(DATA_DIR, ".write_test")
    try:
        with open(test_file, "w") as f:
            f.write("ok")
        os.remove(test_file)
    except OSError as e:
        result["errors"].append(f"DATA_DIR not writable: {e}")
        result["ok"] = False

    result["resolved"]["USING_VOLUME"] = str(_USING_VOLUME)
    return result
