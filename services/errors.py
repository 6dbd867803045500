"""
Domain failures raised by the services.

Each class carries a stable machine-readable `code` and the HTTP `status`
the request boundary (api.errors) renders. Messages of credential and token
failures are fixed strings: callers must not learn *why* a credential or
token was rejected beyond the kind.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class AuthError(Exception):
    code = "AUTH_ERROR"
    status = 400
    message = "Request could not be completed"

    def __init__(self, message: str | None = None):
        self.message = message or self.message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    code = "INVALID_CREDENTIALS"
    status = 401
    message = "Invalid email or password"


class AccountDisabled(AuthError):
    code = "ACCOUNT_DISABLED"
    status = 403
    message = "Your account has been disabled"


class EmailNotVerified(AuthError):
    code = "EMAIL_NOT_VERIFIED"
    status = 403
    message = "Please verify your email address before signing in"


class InvalidToken(AuthError):
    code = "INVALID_TOKEN"
    status = 401
    message = "Invalid token"


class RefreshTokenReused(InvalidToken):
    """A refresh token that was already rotated or revoked was presented again."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("Refresh token is invalid or revoked")


class ExpiredToken(AuthError):
    code = "TOKEN_EXPIRED"
    status = 401
    message = "Token expired"


class InvalidOrExpiredToken(AuthError):
    code = "INVALID_OR_EXPIRED_TOKEN"
    status = 400
    message = "Invalid or expired token"


class AlreadyExists(AuthError):
    code = "ALREADY_EXISTS"
    status = 409
    message = "Resource already exists"


class Unauthenticated(AuthError):
    code = "UNAUTHENTICATED"
    status = 401
    message = "Authentication required"


class Forbidden(AuthError):
    code = "FORBIDDEN"
    status = 403
    message = "Access denied"


class NotFound(AuthError):
    code = "NOT_FOUND"
    status = 404
    message = "Resource not found"


class ExternalServiceFailure(AuthError):
    code = "EXTERNAL_SERVICE_ERROR"
    status = 502
    message = "External service unavailable"

    def __init__(self, message: str | None = None, service: str | None = None):
        self.service = service
        super().__init__(message)


@contextmanager
def best_effort(action: str):
    """
    Run a cleanup step whose failure must not fail the surrounding operation
    (logout, post-password-change session revocation, notification mail).
    The error is logged here, once, with its traceback, and then dropped.
    """
    try:
        yield
    except Exception:
        logger.exception("%s failed; continuing", action)
