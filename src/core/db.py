"""
src/core/db.py — Persistent SQLite Database Layer

All structured state for the forms portal lives in one SQLite file under
DATA_DIR (see src/core/paths.py). WAL mode lets two gunicorn workers read
while one writes.

TABLES:
  forms            — one row per drafted/submitted form; `details` is a JSON blob
  users            — local and directory-backed accounts
  password_resets  — single-use reset tickets

INTEGRITY RULES enforced here (not in callers):
  - form ids come from AUTOINCREMENT and are never reused after a delete
  - a form row can only be deleted while status = 'Draft'
  - status changes are compare-and-set on the previous status
  - a reset ticket flips used 0 → 1 at most once
"""

import os
import json
import sqlite3
import logging
import threading
from datetime import datetime, timezone
from contextlib import contextmanager

from src.core.paths import DB_PATH
from src.core.errors import InvalidStateError, NotFoundError, ValidationError
from src.forms.details import parse_details

log = logging.getLogger("forms.db")

DRAFT = "Draft"
DIRECTORY_PASSWORD_SENTINEL = "DIRECTORY_USER"

_db_lock = threading.Lock()


# ── Connection factory ────────────────────────────────────────────────────────
@contextmanager
def get_db():
    """Thread-safe SQLite connection with WAL mode for 2-worker gunicorn."""
    with _db_lock:
        conn = sqlite3.connect(DB_PATH, timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


# ── Schema ────────────────────────────────────────────────────────────────────
SCHEMA = """
CREATE TABLE IF NOT EXISTS forms (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    form_type           TEXT NOT NULL,
    owner_name          TEXT NOT NULL,
    department          TEXT DEFAULT '',
    status              TEXT NOT NULL DEFAULT 'Draft',
    details             TEXT NOT NULL DEFAULT '{}',   -- JSON object, shape depends on form_type
    request_date        TEXT NOT NULL,                -- set once at insert
    updated_at          TEXT,
    status_changed_at   TEXT,
    status_changed_by   TEXT
);

CREATE TABLE IF NOT EXISTS users (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    email               TEXT NOT NULL UNIQUE COLLATE NOCASE,
    name                TEXT NOT NULL DEFAULT '',
    department          TEXT DEFAULT '',
    role                TEXT NOT NULL DEFAULT 'user',
    password_hash       TEXT NOT NULL,                -- DIRECTORY_USER for directory accounts
    is_directory_user   INTEGER NOT NULL DEFAULT 0,
    created_at          TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS password_resets (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id             INTEGER NOT NULL REFERENCES users(id),
    reset_token         TEXT NOT NULL UNIQUE,
    expiry              TEXT NOT NULL,
    used                INTEGER NOT NULL DEFAULT 0,
    created_at          TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_forms_owner ON forms(owner_name);
CREATE INDEX IF NOT EXISTS idx_forms_status ON forms(status);
CREATE INDEX IF NOT EXISTS idx_forms_request_date ON forms(request_date);
CREATE INDEX IF NOT EXISTS idx_resets_user ON password_resets(user_id);
"""


def init_db():
    """Create all tables if they don't exist. Safe to call multiple times."""
    with get_db() as conn:
        conn.executescript(SCHEMA)
    log.info("DB initialized at %s", DB_PATH)
    return True


def _now() -> str:
    return datetime.now().isoformat()


_UTC_FMT = "%Y-%m-%d %H:%M:%S"


def _utc_stamp(moment: datetime) -> str:
    """Fixed-width UTC timestamp so string comparison in SQL orders correctly."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment.strftime(_UTC_FMT)


def _jd(val) -> str:
    """JSON-dump a details payload for DB storage."""
    if val is None:
        return "{}"
    if isinstance(val, str):
        return json.dumps(parse_details(val))
    return json.dumps(val, default=str)


def _form_row(row) -> dict | None:
    if row is None:
        return None
    d = dict(row)
    d["details"] = parse_details(d.get("details"))
    return d


# ══════════════════════════════════════════════════════════════════════════════
# FORM STORE
# ══════════════════════════════════════════════════════════════════════════════

def insert_form(form_type: str, owner_name: str, department: str,
                details: dict, status: str = DRAFT) -> int:
    """Insert a new form row. Returns the assigned id."""
    with get_db() as conn:
        cur = conn.execute("""
            INSERT INTO forms (form_type, owner_name, department, status,
                               details, request_date, updated_at)
            VALUES (?,?,?,?,?,?,?)
        """, (form_type, owner_name, department or "", status,
              _jd(details), _now(), None))
        form_id = cur.lastrowid
    log.info("Form #%d inserted: %s by %s [%s]", form_id, form_type, owner_name, status)
    return form_id


def get_form(form_id: int) -> dict | None:
    """Fetch a form by id with details decoded."""
    with get_db() as conn:
        row = conn.execute("SELECT * FROM forms WHERE id=?", (form_id,)).fetchone()
    return _form_row(row)


def list_forms(owner_name: str = None, status: str = None, limit: int = None) -> list:
    """All forms, newest first. Optionally filtered by owner and/or status."""
    sql = "SELECT * FROM forms"
    clauses, params = [], []
    if owner_name is not None:
        clauses.append("owner_name=?")
        params.append(owner_name)
    if status is not None:
        clauses.append("status=?")
        params.append(status)
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY request_date DESC, id DESC"
    if limit:
        sql += " LIMIT ?"
        params.append(int(limit))
    with get_db() as conn:
        rows = conn.execute(sql, params).fetchall()
    return [_form_row(r) for r in rows]


_UPDATABLE_FORM_COLUMNS = ("owner_name", "department", "details")


def update_form(form_id: int, fields: dict, new_status: str = None,
                expected_status: str = None, actor: str = "") -> bool:
    """Write editable columns, optionally with a status change, in one transaction.

    With new_status the status is compare-and-set against expected_status
    first; if that misses, nothing is written. Returns False when the id
    does not exist or the status moved on meanwhile.
    """
    now = _now()
    sets, params = [], []
    for col in _UPDATABLE_FORM_COLUMNS:
        if col in fields:
            sets.append(f"{col}=?")
            params.append(_jd(fields[col]) if col == "details" else (fields[col] or ""))
    sets.append("updated_at=?")
    params.append(now)
    params.append(form_id)
    with get_db() as conn:
        if new_status is not None:
            cur = conn.execute("""
                UPDATE forms
                   SET status=?, status_changed_at=?, status_changed_by=?
                 WHERE id=? AND status=?
            """, (new_status, now, actor or "", form_id, expected_status))
            if cur.rowcount != 1:
                return False
        cur = conn.execute(f"UPDATE forms SET {', '.join(sets)} WHERE id=?", params)
        return cur.rowcount == 1


def set_form_status(form_id: int, new_status: str, expected_status: str,
                    actor: str = "") -> bool:
    """Compare-and-set the status column. False if the row moved on meanwhile."""
    now = _now()
    with get_db() as conn:
        cur = conn.execute("""
            UPDATE forms
               SET status=?, status_changed_at=?, status_changed_by=?, updated_at=?
             WHERE id=? AND status=?
        """, (new_status, now, actor or "", now, form_id, expected_status))
        return cur.rowcount == 1


def delete_draft_form(form_id: int) -> None:
    """Delete a form, only while it is still a Draft.

    Raises NotFoundError for an unknown id and InvalidStateError for any
    other status; the row is left untouched in both cases.
    """
    with get_db() as conn:
        row = conn.execute("SELECT status FROM forms WHERE id=?", (form_id,)).fetchone()
        if row is None:
            raise NotFoundError("Form not found")
        if row["status"] != DRAFT:
            raise InvalidStateError("cannot delete non-draft form",
                                    details={"status": row["status"]})
        conn.execute("DELETE FROM forms WHERE id=? AND status=?", (form_id, DRAFT))
    log.info("Form #%d deleted", form_id)


def count_forms_by_status() -> dict:
    with get_db() as conn:
        rows = conn.execute(
            "SELECT status, COUNT(*) AS n FROM forms GROUP BY status").fetchall()
    return {r["status"]: r["n"] for r in rows}


# ══════════════════════════════════════════════════════════════════════════════
# USERS
# ══════════════════════════════════════════════════════════════════════════════

def get_user(user_id: int) -> dict | None:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM users WHERE id=?", (user_id,)).fetchone()
    return dict(row) if row else None


def get_user_by_email(email: str, directory_user: bool = None) -> dict | None:
    """Look up a user by email (case-insensitive).

    directory_user=False restricts to local accounts, True to directory
    accounts, None matches either.
    """
    sql = "SELECT * FROM users WHERE email=?"
    params = [(email or "").strip()]
    if directory_user is not None:
        sql += " AND is_directory_user=?"
        params.append(1 if directory_user else 0)
    with get_db() as conn:
        row = conn.execute(sql, params).fetchone()
    return dict(row) if row else None


def create_user(email: str, name: str, department: str, password_hash: str,
                role: str = "user", is_directory_user: bool = False) -> int:
    """Insert a new account. Raises ValidationError on duplicate email."""
    try:
        with get_db() as conn:
            cur = conn.execute("""
                INSERT INTO users (email, name, department, role, password_hash,
                                   is_directory_user, created_at)
                VALUES (?,?,?,?,?,?,?)
            """, ((email or "").strip(), name or "", department or "", role or "user",
                  password_hash, 1 if is_directory_user else 0, _now()))
            return cur.lastrowid
    except sqlite3.IntegrityError:
        raise ValidationError("This email is already in use", field="email")


def set_user_role(email: str, role: str) -> bool:
    """Change an account's role. Returns False if no such email."""
    with get_db() as conn:
        cur = conn.execute("UPDATE users SET role=? WHERE email=?",
                           ((role or "user").strip().lower(), (email or "").strip()))
        changed = cur.rowcount == 1
    if changed:
        log.info("Role for %s set to %s", email, role)
    return changed


def ensure_directory_user(email: str, name: str, department: str) -> dict:
    """Return the account mirroring a directory profile, creating it once.

    Keyed on the unique email column, so concurrent first logins still
    produce a single row.
    """
    with get_db() as conn:
        cur = conn.execute("""
            INSERT OR IGNORE INTO users (email, name, department, role, password_hash,
                                         is_directory_user, created_at)
            VALUES (?,?,?,?,?,1,?)
        """, (email.strip(), name or "", department or "", "user",
              DIRECTORY_PASSWORD_SENTINEL, _now()))
        created = cur.rowcount == 1
        row = conn.execute("SELECT * FROM users WHERE email=?", (email.strip(),)).fetchone()
    if created:
        log.info("Provisioned directory account %s (id=%d)", email, row["id"])
    return dict(row)


# ══════════════════════════════════════════════════════════════════════════════
# PASSWORD RESET TICKETS
# ══════════════════════════════════════════════════════════════════════════════

def insert_reset_ticket(user_id: int, token: str, expiry: datetime) -> int:
    with get_db() as conn:
        cur = conn.execute("""
            INSERT INTO password_resets (user_id, reset_token, expiry, used, created_at)
            VALUES (?,?,?,0,?)
        """, (user_id, token, _utc_stamp(expiry), _now()))
        return cur.lastrowid


def redeem_reset_ticket(token: str, user_id: int, new_password_hash: str,
                        now: datetime = None) -> bool:
    """Consume a ticket and set the new password in one transaction.

    Returns False if the ticket is unknown, expired, already used, or was
    issued for a different user. The used flag only flips 0 → 1 once.
    """
    now = now or datetime.now(timezone.utc)
    with get_db() as conn:
        row = conn.execute("""
            SELECT user_id FROM password_resets
             WHERE reset_token=? AND used=0 AND expiry>?
        """, (token, _utc_stamp(now))).fetchone()
        if row is None or row["user_id"] != user_id:
            return False
        cur = conn.execute(
            "UPDATE password_resets SET used=1 WHERE reset_token=? AND used=0", (token,))
        if cur.rowcount != 1:
            return False
        conn.execute("UPDATE users SET password_hash=? WHERE id=?",
                     (new_password_hash, user_id))
    log.info("Password reset completed for user id=%d", user_id)
    return True


def get_reset_ticket(token: str) -> dict | None:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM password_resets WHERE reset_token=?",
                           (token,)).fetchone()
    return dict(row) if row else None


# ── DB stats ─────────────────────────────────────────────────────────────────
def get_db_stats() -> dict:
    """Return row counts for all tables — used by /api/health and startup."""
    tables = ["forms", "users", "password_resets"]
    stats = {"db_path": DB_PATH, "db_size_kb": 0}
    try:
        stats["db_size_kb"] = round(os.path.getsize(DB_PATH) / 1024, 1)
    except FileNotFoundError:
        pass
    with get_db() as conn:
        for table in tables:
            stats[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    return stats


def startup() -> dict:
    """Initialize DB. Call once at app start."""
    init_db()
    stats = get_db_stats()
    log.info("DB ready: %s",
             {k: v for k, v in stats.items() if k not in ("db_path", "db_size_kb")})
    return {"ok": True, "db_path": DB_PATH, "stats": stats}
