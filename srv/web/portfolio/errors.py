from __future__ import annotations

from typing import Any, Dict, List


class AuthError(Exception):
    status_code = 400
    code = "auth_failed"
    message = "Authentication failed"

    def __init__(self, message: str | None = None, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details or {}


class MissingHandshake(AuthError):
    code = "missing_handshake"
    message = "Missing auth session"


class ProviderError(AuthError):
    """OAuth2 error object returned by the identity provider, passed through as-is."""

    code = "provider_error"
    message = "Identity provider returned an error"

    def __init__(self, payload: Dict[str, Any]) -> None:
        super().__init__(str(payload.get("error") or self.message))
        self.payload = {
            key: str(payload[key])
            for key in ("error", "error_description", "error_uri")
            if payload.get(key) is not None
        }


class StateMismatch(AuthError):
    code = "state_mismatch"
    message = "State mismatch"


class InvalidIdToken(AuthError):
    code = "invalid_id_token"
    message = "Invalid ID token"


class MissingEmail(AuthError):
    code = "missing_email"
    message = "Email missing from provider response"


class Unauthorized(AuthError):
    status_code = 403
    code = "unauthorized"
    message = "User is not authorized"


class InvalidCsrfToken(AuthError):
    status_code = 403
    code = "invalid_csrf_token"
    message = "Invalid CSRF token"


class ProviderUnavailable(AuthError):
    status_code = 502
    code = "provider_unavailable"
    message = "Identity provider is unavailable"


class SessionDestroyFailed(AuthError):
    status_code = 500
    code = "session_destroy_failed"
    message = "Failed to log out"


class LoginRequired(Exception):
    pass


class PersistenceError(RuntimeError):
    status_code = 500
    code = "write_failed"
    message = "Failed to save changes"


class FormValidationError(ValueError):
    status_code = 400
    code = "invalid_form"

    def __init__(self, errors: List[Dict[str, str]]) -> None:
        super().__init__("Invalid form submission")
        self.errors = errors
