"""
auth/errors.py -- Error taxonomy for the authentication subsystem.

Every failure the auth layer can report is an AuthError subclass carrying the
HTTP status it maps to and a client-safe message. api/main.py registers one
exception handler for AuthError that renders the uniform envelope:

    {"success": false, "message": "...", "stack": "..."}   # stack: dev only

Services and pipeline stages raise (or return) these; routes never build
error JSON by hand.

Layer rule: no imports from api/, cache/, mail/, or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class. Subclasses set status_code and a default message."""

    status_code: int = 500
    default_message: str = "Authentication error."

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class DuplicateEmail(AuthError):
    status_code = 400
    default_message = "Email already exists."


class InvalidCredentials(AuthError):
    # Same message for unknown email and wrong password -- no account enumeration.
    status_code = 401
    default_message = "Invalid email or password."


class InvalidToken(AuthError):
    status_code = 401
    default_message = "Invalid or expired token."


class CodeMismatch(AuthError):
    status_code = 400
    default_message = "Invalid activation code."


class MissingRefreshToken(AuthError):
    status_code = 401
    default_message = "No refresh token provided."


class Unauthenticated(AuthError):
    status_code = 401
    default_message = "Please login to access this resource."


class UserNotFound(AuthError):
    status_code = 404
    default_message = "User not found."


class Forbidden(AuthError):
    status_code = 403
    default_message = "You are not allowed to access this resource."


class InvalidRole(AuthError):
    status_code = 400
    default_message = "Unknown role."


class UpstreamUnavailable(AuthError):
    """A backing store timed out or refused the connection. Safe to retry."""

    status_code = 503
    default_message = "Service temporarily unavailable. Please retry."


class DeliveryError(AuthError):
    status_code = 502
    default_message = "Could not send email. Please try again later."


class InvalidPassword(AuthError):
    status_code = 400
    default_message = "Password must be at most 72 bytes when UTF-8 encoded."
