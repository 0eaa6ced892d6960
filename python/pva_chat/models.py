"""
Pydantic models for the chat-session bootstrap.

Defines the identity, token, endpoint and channel descriptors that flow
between bootstrap stages, plus the session state reported to the host.

Last Grunted: 10/14/2026
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class IdentityAccount(BaseModel):
    """
    A cached signed-in principal known to the identity provider.

    The core only reads these; the identity cache owns their lifetime.
    """
    username: str = Field(..., description="Login name / email used for account matching")
    home_account_id: Optional[str] = Field(
        default=None,
        description="Provider-side account key used to look the account up again"
    )
    environment: Optional[str] = Field(default=None, description="Identity authority host")

    model_config = {"frozen": True}


class TokenResult(BaseModel):
    """
    Access token produced by the token broker.

    Never mutated; consumed once per negotiation attempt.
    """
    access_token: str = Field(..., description="Bearer access token (may be empty on a bad result)")
    expires_on: Optional[datetime] = Field(default=None, description="UTC expiry of the access token")
    scopes: frozenset[str] = Field(default_factory=frozenset, description="Scopes granted")
    account: Optional[IdentityAccount] = Field(default=None, description="Account the token was issued to")

    model_config = {"frozen": True}

    @property
    def has_token(self) -> bool:
        return bool(self.access_token and self.access_token.strip())


class BotEndpointDescriptor(BaseModel):
    """
    Decomposed bot endpoint URL.

    Example:
        >>> descriptor = BotEndpointDescriptor(
        ...     environment_endpoint="https://bar.example.com",
        ...     api_version="2022-03-01-preview",
        ...     regional_settings_url="https://bar.example.com/powervirtualagents/"
        ...                           "regionalchannelsettings?api-version=2022-03-01-preview",
        ... )
    """
    environment_endpoint: str = Field(..., description="Origin of the bot URL")
    api_version: str = Field(..., min_length=1, description="Value of the api-version query parameter")
    regional_settings_url: str = Field(..., description="Regional channel settings discovery URL")

    model_config = {"frozen": True}


class ChannelDescriptor(BaseModel):
    """Realtime channel descriptor produced by channel negotiation."""
    transport_domain: str = Field(..., description="Direct Line domain, ending in v3/directline")
    conversation_token: str = Field(..., min_length=1, description="Short-lived conversation token")
    conversation_id: Optional[str] = Field(default=None, description="Conversation id, when issued with the token")
    expires_in: Optional[int] = Field(default=None, description="Token lifetime in seconds, when reported")

    model_config = {"frozen": True}


class SessionStatus(str, Enum):
    """Lifecycle status of a chat session."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class SessionState(BaseModel):
    """
    Snapshot of the controller's session state.

    ``generation`` identifies the open attempt that committed this state.
    """
    status: SessionStatus = Field(default=SessionStatus.IDLE)
    message: Optional[str] = Field(default=None, description="Error message (error status only)")
    generation: int = Field(default=0, ge=0)

    model_config = {"frozen": True}

    @property
    def is_loading(self) -> bool:
        return self.status == SessionStatus.LOADING


@dataclass
class GreetingPolicy:
    """
    Greeting behaviour for one transport lifetime.

    ``dispatched`` is write-once: a new policy is created for every transport.
    """

    enabled: bool
    dispatched: bool = False

    @property
    def should_greet(self) -> bool:
        return self.enabled and not self.dispatched

    def mark_dispatched(self) -> None:
        if self.dispatched:
            raise RuntimeError("Greeting already dispatched for this transport.")
        self.dispatched = True
