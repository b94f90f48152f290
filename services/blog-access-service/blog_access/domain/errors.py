"""Typed failures raised by the access-control core.

Every error derives from ``ValueError`` so the HTTP layer can translate it
the same way it handles any other rejected input. ``status_code`` carries the
suggested HTTP mapping; ``str(exc)`` is safe to show to the caller verbatim.
"""

from __future__ import annotations


class AccessError(ValueError):
    """Base class for recoverable and fatal access-control failures."""

    status_code: int = 400


class CorruptSecret(AccessError):
    """Sealed MFA material failed to open (tampered data or wrong key)."""

    status_code = 409

    def __init__(self, message: str = "stored MFA secret could not be opened") -> None:
        super().__init__(message)


class InvalidCode(AccessError):
    status_code = 422

    def __init__(self, message: str = "The provided two factor authentication code was invalid.") -> None:
        super().__init__(message)


class InvalidState(AccessError):
    """A command was issued against an account in the wrong enrollment state."""

    status_code = 409


class SelfDeletionForbidden(AccessError):
    status_code = 422

    def __init__(self, message: str = "You cannot delete your own account.") -> None:
        super().__init__(message)


class LastMasterAdminProtected(AccessError):
    status_code = 422


class AccountNotFound(AccessError):
    status_code = 404

    def __init__(self, message: str = "account not found") -> None:
        super().__init__(message)


class DuplicateEmail(AccessError):
    status_code = 409

    def __init__(self, message: str = "email already registered") -> None:
        super().__init__(message)


class InvalidCredentials(AccessError):
    status_code = 401

    def __init__(self, message: str = "invalid credentials") -> None:
        super().__init__(message)
