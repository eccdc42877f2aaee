"""
Password reset — request a single-use link, then redeem it once.
"""

import logging
from urllib.parse import urlencode

from src.agents.notify_agent import send_password_reset_email
from src.auth import tokens
from src.core import db
from src.core.errors import InvalidOrExpiredTokenError, NotFoundError, ValidationError
from src.core.secrets import get_key

log = logging.getLogger("forms.auth")


def reset_link(token: str) -> str:
    base = get_key("frontend_url").rstrip("/")
    return f"{base}/reset-password?{urlencode({'token': token})}"


def request_reset(email: str, sender=None) -> dict:
    """Issue a 1-hour ticket for email and mail the link.

    Returns {"user_id", "expiry"}; the token itself only leaves via email.
    """
    email = (email or "").strip()
    if not email:
        raise ValidationError("email is required", field="email")
    user = db.get_user_by_email(email)
    if user is None:
        raise NotFoundError("Email not found in the system")
    if user.get("is_directory_user"):
        # directory logins never read the local password hash
        raise ValidationError("This account signs in with the company directory; "
                              "reset the password through IT", field="email")

    token, expiry = tokens.issue_reset_token(user["id"], user["email"])
    db.insert_reset_ticket(user["id"], token, expiry)

    send_password_reset_email(user["email"], reset_link(token), name=user.get("name") or "",
                              sender=sender)
    log.info("Password reset requested for user id=%d", user["id"])
    return {"user_id": user["id"], "expiry": expiry.isoformat()}


def complete_reset(token: str, new_secret: str) -> None:
    """Redeem a ticket. Expired, reused, forged or mismatched → InvalidOrExpiredTokenError."""
    if not new_secret or not str(new_secret).strip():
        raise ValidationError("newPassword is required", field="newPassword")
    claims = tokens.decode_reset_token(token)
    new_hash = tokens.hash_password(new_secret)
    if not db.redeem_reset_ticket(token, claims["id"], new_hash):
        log.warning("Rejected reset token for user id=%s (used, expired or unknown)",
                    claims.get("id"))
        raise InvalidOrExpiredTokenError()
