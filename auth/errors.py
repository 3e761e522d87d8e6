"""
auth/errors.py -- Error taxonomy for the session and OAuth grant engine.

Every failure the engine reports is an AuthError subclass carrying a `kind`.
The transport layer maps kinds to status codes; nothing below api/ knows about
HTTP.

  not_found        session/user/code/token absent
  expired          session/code/token past its deadline
  invalid          malformed key or input, client mismatch, bad registration
  bad_credentials  unknown user OR wrong password (deliberately one error)
  store_error      persistence failure, treated as transient/internal
  hash_error       bcrypt failure
  entropy_error    the OS random source could not be read
  cancelled        the caller's deadline ran out

Messages never contain passwords, token bytes or encoded keys.
"""

from __future__ import annotations


class AuthError(Exception):
    kind = "auth_error"
    message = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


# ---------------------------------------------------------------------------
# not_found
# ---------------------------------------------------------------------------


class NotFoundError(AuthError):
    kind = "not_found"
    message = "Not found."


class SessionNotFoundError(NotFoundError):
    message = "Session not found."


class UserNotFoundError(NotFoundError):
    message = "User not found."


class CodeNotFoundError(NotFoundError):
    message = "Authorization code not found."


class TokenNotFoundError(NotFoundError):
    message = "Access token not found."


class RefreshTokenNotFoundError(NotFoundError):
    message = "Refresh token not found."


# ---------------------------------------------------------------------------
# expired
# ---------------------------------------------------------------------------


class ExpiredError(AuthError):
    kind = "expired"
    message = "Expired."


class SessionExpiredError(ExpiredError):
    message = "Session expired."


class CodeExpiredError(ExpiredError):
    message = "Authorization code expired."


class TokenExpiredError(ExpiredError):
    message = "Access token expired."


# ---------------------------------------------------------------------------
# invalid
# ---------------------------------------------------------------------------


class InvalidError(AuthError):
    kind = "invalid"
    message = "Invalid input."


class MalformedKeyError(InvalidError):
    message = "Malformed key."


class ClientMismatchError(InvalidError):
    message = "Authorization code was not issued to this client."


class RegistrationError(InvalidError):
    message = "Registration rejected."


class WeakPasswordError(InvalidError):
    message = "Password does not meet the length requirement."


# ---------------------------------------------------------------------------
# Everything else
# ---------------------------------------------------------------------------


class CredentialError(AuthError):
    kind = "bad_credentials"
    message = "Invalid username or password."


class StoreError(AuthError):
    kind = "store_error"
    message = "Storage failure."


class DuplicateUserError(StoreError):
    """Insert hit the UNIQUE constraint on email or username."""

    message = "A user with that email or username already exists."


class HashError(AuthError):
    kind = "hash_error"
    message = "Password hashing failed."


class EntropyError(AuthError):
    kind = "entropy_error"
    message = "Secure random source unavailable."


class OperationCancelledError(AuthError):
    kind = "cancelled"
    message = "Operation deadline exceeded."
