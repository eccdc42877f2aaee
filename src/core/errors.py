"""
Portal error hierarchy.

Every failure a request can hit is one of these. The API blueprint turns
them into ``{"ok": false, "error": ..., "code": ...}`` with the class's
``status_code``; nothing below the request boundary builds HTTP responses.
"""

from typing import Any, Dict, Optional


class PortalError(Exception):
    """Base exception for the forms portal."""

    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"ok": False, "error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


# ── Authentication / authorization ───────────────────────────────────────────

class AuthError(PortalError):
    status_code = 401
    code = "AUTH_ERROR"
    default_message = "Authentication failed"


class InvalidCredentialsError(AuthError):
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid credentials"


class TokenMissingError(AuthError):
    code = "TOKEN_MISSING"
    default_message = "Access denied. No token provided."


class InvalidTokenError(AuthError):
    status_code = 403
    code = "INVALID_TOKEN"
    default_message = "Invalid or expired token"


class PermissionDeniedError(AuthError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "You do not have permission to perform this action"


class ProfileNotFoundError(AuthError):
    status_code = 404
    code = "PROFILE_NOT_FOUND"
    default_message = "User not found in directory"


class InvalidOrExpiredTokenError(PortalError):
    status_code = 400
    code = "INVALID_OR_EXPIRED_TOKEN"
    default_message = "Invalid or expired token"


# ── Resources / state ────────────────────────────────────────────────────────

class NotFoundError(PortalError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Form not found"


class InvalidStateError(PortalError):
    status_code = 400
    code = "INVALID_STATE"
    default_message = "Operation not allowed in the current status"


class ValidationError(PortalError):
    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Validation failed"

    def __init__(self, message: Optional[str] = None, field: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        if field:
            details["field"] = field
        self.field = field
        super().__init__(message, details=details, **kwargs)


# ── Collaborators ────────────────────────────────────────────────────────────

class RenderError(PortalError):
    status_code = 500
    code = "RENDER_ERROR"
    default_message = "Failed to generate PDF"


class SendError(PortalError):
    status_code = 502
    code = "SEND_ERROR"
    default_message = "Failed to send email"


class ServiceUnavailableError(PortalError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"
    default_message = "Service temporarily unavailable"
