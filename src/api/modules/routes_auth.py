# routes_auth.py
# Login, registration, password reset, session check

import logging

from flask import jsonify

from src.api.dashboard import auth_required, bp, current_user, json_body
from src.auth.credentials import authenticate, register_user
from src.auth.password_reset import complete_reset, request_reset
from src.core.security import rate_limit

log = logging.getLogger("forms.api")


def _flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@bp.route("/api/login", methods=["POST"])
@rate_limit("auth")
def api_login():
    """Body: {identifier, secret, rememberMe, useDirectory}.
    email / password / useDomain / useAD are accepted for older clients."""
    body = json_body()
    identifier = body.get("identifier") or body.get("email") or body.get("username") or ""
    secret = body.get("secret") or body.get("password") or ""
    use_directory = _flag(body.get("useDirectory", body.get("useDomain", body.get("useAD", False))))
    result = authenticate(identifier, secret,
                          use_directory=use_directory,
                          remember_me=_flag(body.get("rememberMe", False)))
    return jsonify({"token": result["token"], "user": result["user"]})


@bp.route("/api/register", methods=["POST"])
@rate_limit("auth")
def api_register():
    body = json_body()
    user_id = register_user(
        email=body.get("email"),
        password=body.get("password"),
        name=body.get("name"),
        department=body.get("department", ""),
    )
    return jsonify({"message": "User registered successfully", "id": user_id}), 201


@bp.route("/api/reset-password-request", methods=["POST"])
@rate_limit("auth")
def api_reset_password_request():
    request_reset(json_body().get("email"))
    return jsonify({"message": "Password reset link has been sent to your email"})


@bp.route("/api/reset-password", methods=["POST"])
@rate_limit("auth")
def api_reset_password():
    body = json_body()
    complete_reset(body.get("token"), body.get("newPassword") or body.get("password"))
    return jsonify({"message": "Password has been reset successfully"})


@bp.route("/api/me")
@auth_required
def api_me():
    return jsonify({"user": current_user()})
