from __future__ import annotations

from typing import Optional


class AuthLinkError(Exception):
    """Base class for every error raised by the session and account-link layer."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class BackendError(AuthLinkError):
    """Transport failure or an error response from the admin backend.

    ``detail`` is the human-readable text the backend sent, when it sent any.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Optional[str] = None):
        super().__init__(message, status_code)
        self.detail = detail


class AuthenticationError(BackendError):
    """Bad credentials, or a token the backend no longer accepts."""

    @property
    def credential_invalid(self) -> bool:
        return self.status_code == 401


class SecondFactorError(BackendError):
    """Wrong or expired one-time code."""


class RegistrationError(BackendError):
    pass


class NotAuthenticatedError(AuthLinkError):
    """An operation needed a session and none is held. Retrying will not help."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class ValidationError(AuthLinkError):
    pass
