"""
Credential Verifier — local bcrypt accounts and directory-backed accounts.

authenticate() returns {"token": <jwt>, "user": <identity>} or raises an
AuthError subclass. Local failures always say "Invalid credentials" no
matter which half was wrong.
"""

import logging
import re

from src.auth import tokens
from src.auth.directory import get_directory, normalize_principal
from src.core import db
from src.core.errors import (
    InvalidCredentialsError, ProfileNotFoundError, ValidationError,
)

log = logging.getLogger("forms.auth")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _identity(user: dict) -> dict:
    return {
        "id": user["id"],
        "email": user["email"],
        "name": user.get("name") or "",
        "role": user.get("role") or "user",
        "department": user.get("department") or "",
        "is_directory_user": bool(user.get("is_directory_user")),
    }


def _authenticate_local(identifier: str, secret: str) -> dict:
    user = db.get_user_by_email(identifier, directory_user=False)
    if user is None:
        tokens.verify_password(secret or "x", tokens.DUMMY_PASSWORD_HASH)
        raise InvalidCredentialsError()
    if not tokens.verify_password(secret, user["password_hash"]):
        raise InvalidCredentialsError()
    return user


def _authenticate_directory(identifier: str, secret: str, directory=None) -> dict:
    principal = normalize_principal(identifier)
    client = directory or get_directory()

    if not client.authenticate(principal, secret):
        log.info("Directory login rejected for %s", principal)
        raise InvalidCredentialsError()

    profile = client.find_user(principal)
    if not profile:
        log.warning("Directory accepted %s but has no profile entry", principal)
        raise ProfileNotFoundError()

    email = profile.get("email") or principal
    return db.ensure_directory_user(
        email=email,
        name=profile.get("name") or principal.split("@", 1)[0],
        department=profile.get("department") or "",
    )


def authenticate(identifier: str, secret: str, use_directory: bool = False,
                 remember_me: bool = False, directory=None) -> dict:
    """Verify credentials and issue a session token.

    Args:
        identifier: email (local) or username / UPN (directory)
        secret: password
        use_directory: bind against the directory instead of the users table
        remember_me: 7-day token instead of 1-day
        directory: DirectoryClient override (tests inject a fake)
    """
    if not identifier or not secret:
        raise InvalidCredentialsError()

    if use_directory:
        user = _authenticate_directory(identifier, secret, directory)
    else:
        user = _authenticate_local(identifier.strip(), secret)

    identity = _identity(user)
    token = tokens.issue_session_token(identity, remember_me=remember_me)
    log.info("Login ok: %s (id=%d, directory=%s, remember=%s)",
             identity["email"], identity["id"], bool(use_directory), bool(remember_me))
    return {"token": token, "user": identity}


def register_user(email: str, password: str, name: str, department: str = "") -> int:
    """Create a local account. Returns the new user id."""
    email = (email or "").strip()
    for field, value in (("email", email), ("password", password), ("name", name)):
        if not value or not str(value).strip():
            raise ValidationError(f"{field} is required", field=field)
    if not _EMAIL_RE.match(email):
        raise ValidationError("Invalid email address", field="email")
    if db.get_user_by_email(email) is not None:
        raise ValidationError("This email is already in use", field="email")

    user_id = db.create_user(
        email=email,
        name=name.strip(),
        department=(department or "").strip(),
        password_hash=tokens.hash_password(password),
    )
    log.info("Registered local account %s (id=%d)", email, user_id)
    return user_id
