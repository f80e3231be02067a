"""
Exceptions raised by the resolver, the signature parser and the verifier.
"""

from __future__ import annotations

GONE = 410


class InboxAuthError(Exception):
    """Base class for inbox authentication errors."""


class ResolutionError(InboxAuthError):
    """
    An actor or key could not be resolved.

    Args:
        message: Description of the failure
        status_code: HTTP status returned by the remote server, if any
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def gone(self) -> bool:
        """True when the remote server reported the object permanently deleted."""
        return self.status_code == GONE


class ActorGoneError(ResolutionError):
    """The referenced actor is a tombstone (HTTP 410)."""

    def __init__(self, message: str):
        super().__init__(message, status_code=GONE)


class SignatureHeaderError(InboxAuthError):
    """The signature header is missing, malformed or outside the clock skew."""


class InvalidKeyError(InboxAuthError):
    """A public key PEM could not be loaded."""
