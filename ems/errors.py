from __future__ import annotations


class EmsError(Exception):
    """Base class for errors surfaced to the user as a message."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class CredentialValidationError(EmsError):
    """Credentials rejected before any request was made."""


class IdentityProviderError(EmsError):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


class StoreError(EmsError):
    """A Firestore read or write failed (network, permission, ...)."""
