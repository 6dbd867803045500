"""
Authentication blueprint:
- POST /auth/register
- GET  /auth/verify-email?token=
- POST /auth/resend-verification
- POST /auth/login
- POST /auth/refresh
- POST /auth/logout
- POST /auth/logout-all
- POST /auth/forgot-password
- POST /auth/reset-password
- POST /auth/change-password
- GET  /auth/<provider> and /auth/<provider>/callback (google, facebook)

The refresh token travels in an HTTP-only cookie (or the `refresh_token`
body field for non-browser clients); the access token is returned in the
body and presented as `Authorization: Bearer`.
"""
from __future__ import annotations

import logging
import secrets
from urllib.parse import urlencode

from flask import Blueprint, abort, current_app, jsonify, redirect, request, session

from models.schemas.user import (
    ChangePasswordSchema,
    EmailSchema,
    LoginSchema,
    RegisterSchema,
    ResetPasswordSchema,
    UserOutSchema,
)
from services import current_services
from services.errors import AuthError, InvalidToken
from services.tokens import ClientMeta
from utils.decorators import bearer_token, jwt_required

logger = logging.getLogger(__name__)

bp = Blueprint("auth", __name__)

register_schema = RegisterSchema()
login_schema = LoginSchema()
email_schema = EmailSchema()
reset_password_schema = ResetPasswordSchema()
change_password_schema = ChangePasswordSchema()
user_out_schema = UserOutSchema()

# Same answer whether or not the address has an account
RESET_SENT = "If an account with that email exists, a password reset link has been sent."
VERIFICATION_SENT = "If an unverified account with that email exists, a verification email has been sent."


def client_meta() -> ClientMeta:
    return ClientMeta(user_agent=request.headers.get("User-Agent"), ip_address=request.remote_addr)


def refresh_token_from_request() -> str | None:
    token = request.cookies.get(current_app.config["REFRESH_COOKIE_NAME"])
    if not token:
        payload = request.get_json(silent=True) or {}
        token = payload.get("refresh_token")
    return token or None


def set_refresh_cookie(response, refresh_token: str):
    response.set_cookie(
        current_app.config["REFRESH_COOKIE_NAME"],
        refresh_token,
        max_age=int(current_app.config["JWT_REFRESH_EXPIRES"].total_seconds()),
        httponly=True,
        secure=current_app.config["REFRESH_COOKIE_SECURE"],
        samesite="Strict",
    )
    return response


def clear_refresh_cookie(response):
    response.delete_cookie(current_app.config["REFRESH_COOKIE_NAME"])
    return response


def token_response(pair, user=None, status: int = 200):
    data = {
        "access_token": pair.access_token,
        "token_type": "bearer",
        "expires_in": int(current_app.config["JWT_ACCESS_EXPIRES"].total_seconds()),
    }
    if user is not None:
        data["user"] = user_out_schema.dump(user)
    response = jsonify({"data": data})
    response.status_code = status
    return set_refresh_cookie(response, pair.refresh_token)


@bp.post("/register")
def register():
    """
    Register a new user and send the verification email.
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        schema:
          type: object
          required: [email, password]
          properties:
            email: { type: string }
            password: { type: string }
            first_name: { type: string }
            last_name: { type: string }
    responses:
      201:
        description: Created
      409:
        description: Email already registered
      422:
        description: Validation error
    """
    payload = request.get_json(silent=True) or {}
    data = register_schema.load(payload)
    user = current_services().auth.register(
        data["email"], data["password"], data.get("first_name"), data.get("last_name")
    )
    return jsonify(
        {
            "data": user_out_schema.dump(user),
            "message": "Registration successful. Please check your email to verify your account.",
        }
    ), 201


@bp.get("/verify-email")
def verify_email():
    """
    Confirm an email address with the token from the verification email.
    ---
    tags:
      - Auth
    parameters:
      - in: query
        name: token
        type: string
        required: true
    responses:
      200:
        description: Verified
      400:
        description: Invalid or expired token
    """
    token = request.args.get("token", "")
    if not token:
        abort(400, description="Verification token is required")
    user = current_services().auth.verify_email(token)
    return jsonify({"data": user_out_schema.dump(user), "message": "Email verified successfully"}), 200


@bp.post("/resend-verification")
def resend_verification():
    """
    Send a fresh verification email.
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            email: { type: string }
    responses:
      200:
        description: Same response for every address
    """
    data = email_schema.load(request.get_json(silent=True) or {})
    current_services().auth.resend_verification(data["email"])
    return jsonify({"message": VERIFICATION_SENT}), 200


@bp.post("/login")
def login():
    """
    Login: returns the access token and sets the refresh cookie
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             email: { type: string }
             password: { type: string }
    responses:
      200:
        description: OK (returns tokens)
      401:
        description: Invalid email or password
      403:
        description: Account disabled or email not verified
    """
    data = login_schema.load(request.get_json(silent=True) or {})
    user, pair = current_services().auth.login(data["email"], data["password"], client_meta())
    return token_response(pair, user)


@bp.post("/refresh")
def refresh():
    """
    Rotate the refresh token and obtain a new access token.
    Reads the refresh cookie, or { "refresh_token": "<token>" } in the body.
    ---
    tags:
      - Auth
    responses:
      200:
        description: New access token (refresh cookie replaced)
      401:
        description: Invalid, expired or already used refresh token
    """
    token = refresh_token_from_request()
    if not token:
        raise InvalidToken("Refresh token is required")
    pair = current_services().auth.refresh_tokens(token)
    return token_response(pair)


@bp.post("/logout")
def logout():
    """
    Logout: blacklists the presented access token and revokes the refresh session.
    Always succeeds.
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    responses:
      200:
        description: Logged out
    """
    current_services().auth.logout(bearer_token(), refresh_token_from_request())
    response = jsonify({"message": "Logout successful"})
    return clear_refresh_cookie(response)


@bp.post("/logout-all")
@jwt_required()
def logout_all(identity):
    """
    Revoke every other session of the current user.
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    responses:
      200:
        description: Other sessions revoked
      401:
        description: Unauthorized
    """
    revoked = current_services().auth.logout_all(identity.user_id, refresh_token_from_request())
    return jsonify({"message": "All other sessions logged out", "data": {"revoked": revoked}}), 200


@bp.post("/forgot-password")
def forgot_password():
    """
    Email a password reset link.
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            email: { type: string }
    responses:
      200:
        description: Same response for every address
    """
    data = email_schema.load(request.get_json(silent=True) or {})
    current_services().auth.forgot_password(data["email"])
    return jsonify({"message": RESET_SENT}), 200


@bp.post("/reset-password")
def reset_password():
    """
    Set a new password with the emailed reset token. Signs out every session.
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            token: { type: string }
            new_password: { type: string }
    responses:
      200:
        description: Password reset
      400:
        description: Invalid or expired token
    """
    data = reset_password_schema.load(request.get_json(silent=True) or {})
    current_services().auth.reset_password(data["token"], data["new_password"])
    return jsonify({"message": "Password reset successfully"}), 200


@bp.post("/change-password")
@jwt_required()
def change_password(identity):
    """
    Change the current user's password. Signs out every session.
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            current_password: { type: string }
            new_password: { type: string }
    responses:
      200:
        description: Password changed
      401:
        description: Current password is incorrect
    """
    data = change_password_schema.load(request.get_json(silent=True) or {})
    current_services().auth.change_password(identity.user_id, data["current_password"], data["new_password"])
    response = jsonify({"message": "Password changed successfully"})
    return clear_refresh_cookie(response)


def _provider(name: str):
    provider = current_services().providers.get(name)
    if provider is None:
        abort(404, description=f"Sign-in with {name} is not available")
    return provider


def _client_redirect(path: str, **params):
    base = current_app.config["CLIENT_URL"].rstrip("/")
    return redirect(f"{base}{path}?{urlencode(params)}")


@bp.get("/<provider>")
def oauth_start(provider):
    """
    Redirect to the provider's consent screen.
    ---
    tags:
      - Auth
    parameters:
      - in: path
        name: provider
        type: string
        enum: [google, facebook]
        required: true
    responses:
      302:
        description: Redirect to provider
      404:
        description: Provider not configured
    """
    client = _provider(provider)
    state = secrets.token_urlsafe(24)
    session["oauth_state"] = state
    return redirect(client.authorization_url(state))


@bp.get("/<provider>/callback")
def oauth_callback(provider):
    """
    Provider callback: signs the user in and redirects to the client app
    with the access token (refresh token set as cookie).
    ---
    tags:
      - Auth
    parameters:
      - in: path
        name: provider
        type: string
        required: true
      - in: query
        name: code
        type: string
      - in: query
        name: state
        type: string
    responses:
      302:
        description: Redirect to the client app
    """
    client = _provider(provider)
    expected_state = session.pop("oauth_state", None)
    code = request.args.get("code")
    if request.args.get("error") or not code:
        return _client_redirect("/auth/error", message="oauth_failed")
    if not expected_state or not secrets.compare_digest(expected_state, request.args.get("state", "")):
        logger.warning("OAuth callback from %s with mismatched state", provider)
        return _client_redirect("/auth/error", message="oauth_failed")

    try:
        profile = client.fetch_profile(code)
        _, pair = current_services().oauth.login(profile, client_meta())
    except AuthError as err:
        logger.warning("%s sign-in failed: %s", provider, err.code)
        return _client_redirect("/auth/error", message="oauth_error")

    response = _client_redirect("/auth/success", token=pair.access_token)
    return set_refresh_cookie(response, pair.refresh_token)
