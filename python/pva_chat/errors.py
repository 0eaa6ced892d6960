"""
Exception taxonomy for the chat-session bootstrap.

Every stage of session bootstrap raises a subclass of ``ChatSessionError``.
The lifecycle controller catches these at its boundary and turns them into
an ``error`` session state, so nothing raised here reaches the hosting shell.

Last Grunted: 10/14/2026
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


__all__ = [
    "ChatSessionError",
    "EndpointValidationError",
    "AuthFailure",
    "IdentityProviderError",
    "InteractionRequiredError",
    "NegotiationErrorKind",
    "NegotiationError",
    "TransportError",
]


class ChatSessionError(Exception):
    """Base exception for chat-session bootstrap failures."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class EndpointValidationError(ChatSessionError):
    """Raised when the configured bot URL is malformed or incomplete."""

    def __init__(self, message: str, raw_url: str = "") -> None:
        self.raw_url = raw_url
        super().__init__(message)


class AuthFailure(ChatSessionError):
    """Raised when no access token could be obtained after every fallback."""

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        self.cause = cause
        super().__init__(message)


class IdentityProviderError(ChatSessionError):
    """Raised by an identity provider when a token request is rejected."""

    def __init__(self, message: str, error_code: Optional[str] = None) -> None:
        self.error_code = error_code
        super().__init__(message)


class InteractionRequiredError(IdentityProviderError):
    """Raised when silent sign-in needs the user to confirm interactively."""


class NegotiationErrorKind(str, Enum):
    """Which step of channel negotiation failed."""

    REGIONAL_FETCH_FAILED = "regional_fetch_failed"
    MISSING_CHANNEL_URL = "missing_channel_url"
    TOKEN_FETCH_FAILED = "token_fetch_failed"


class NegotiationError(ChatSessionError):
    """Raised when the regional settings or conversation token fetch fails."""

    def __init__(
        self,
        kind: NegotiationErrorKind,
        message: str,
        status_code: Optional[int] = None,
    ) -> None:
        self.kind = kind
        self.status_code = status_code
        super().__init__(message)


class TransportError(ChatSessionError):
    """Raised when the realtime connection cannot be constructed."""

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        self.cause = cause
        super().__init__(message)
