"""
Configuration for the chat-session bootstrap.

Two sources:
    - ChatbotConfig: the bot's property bag, loaded from a JSON file
      (CHATBOT_CONFIG_PATH). Keys use the same camelCase names as the
      SharePoint extension properties (botURL, customScope, clientID, ...).
    - HostConfig: process settings read from the environment.

A ``.env`` file in the ``python/`` directory is loaded on import.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator


__all__ = [
    "ChatbotConfig",
    "UserIdentity",
    "HostConfig",
    "load_chatbot_config",
    "load_host_config",
    "DEFAULT_BOT_NAME",
    "DEFAULT_BUTTON_LABEL",
]


_env_path = Path(__file__).parent.parent / ".env"
load_dotenv(_env_path)

DEFAULT_BOT_NAME = "Support Chat"
DEFAULT_BUTTON_LABEL = "Chat"

# Property bags often carry booleans as strings.
_TRUTHY_STRINGS = frozenset({"true", "1", "yes", "on"})


class UserIdentity(BaseModel):
    """Signed-in user supplied by the hosting shell."""

    email: str = Field(default="", description="Used as identity hint and Direct Line user id")
    display_name: Optional[str] = Field(default=None, description="Used for avatar initials")

    model_config = {"frozen": True}


class ChatbotConfig(BaseModel):
    """
    Bot configuration surface.

    Only ``bot_url`` is validated, and only when a session is opened (by the
    endpoint resolver). Everything else passes through as given.
    """

    bot_url: str = Field(default="", alias="botURL")
    custom_scope: str = Field(default="", alias="customScope")
    client_id: str = Field(default="", alias="clientID")
    authority: str = Field(default="", alias="authority")
    greet: bool = Field(default=False, alias="greet")
    bot_name: str = Field(default=DEFAULT_BOT_NAME, alias="botName")
    button_label: str = Field(default=DEFAULT_BUTTON_LABEL, alias="buttonLabel")
    bot_avatar_initials: Optional[str] = Field(default=None, alias="botAvatarInitials")
    bot_avatar_image: Optional[str] = Field(default=None, alias="botAvatarImage")

    model_config = {"populate_by_name": True, "extra": "ignore", "frozen": True}

    @field_validator("greet", mode="before")
    @classmethod
    def greet_from_property_bag(cls, value: object) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in _TRUTHY_STRINGS
        return bool(value)

    @field_validator("bot_name", "button_label", mode="before")
    @classmethod
    def blank_label_uses_default(cls, value: object, info: ValidationInfo) -> object:
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_BOT_NAME if info.field_name == "bot_name" else DEFAULT_BUTTON_LABEL
        return value

    @property
    def auth_configured(self) -> bool:
        return bool(self.client_id.strip() and self.authority.strip() and self.custom_scope.strip())


def load_chatbot_config(config_path: str | None = None) -> ChatbotConfig:
    """Load the chatbot config JSON from ``config_path`` or CHATBOT_CONFIG_PATH."""
    raw_path = (config_path or os.environ.get("CHATBOT_CONFIG_PATH") or "").strip()
    if not raw_path:
        raise RuntimeError(
            "Chatbot config path is required. Set CHATBOT_CONFIG_PATH or pass --config."
        )

    resolved_path = Path(raw_path).expanduser().resolve()
    if not resolved_path.exists():
        raise RuntimeError(f"Chatbot config file not found at '{resolved_path}'.")

    try:
        with open(resolved_path, "r", encoding="utf-8") as config_file:
            raw_config = json.load(config_file)
    except OSError as exc:
        raise RuntimeError(
            f"Failed to read chatbot config '{resolved_path}': {exc}"
        ) from exc
    except json.JSONDecodeError as exc:
        raise RuntimeError(
            f"Chatbot config at '{resolved_path}' is not valid JSON: {exc}"
        ) from exc

    try:
        return ChatbotConfig.model_validate(raw_config)
    except ValidationError as exc:
        raise RuntimeError(
            f"Chatbot config validation failed for '{resolved_path}': {exc}"
        ) from exc


@dataclass(frozen=True)
class HostConfig:
    """Process settings for the chat host."""

    host: str
    port: int
    user: UserIdentity
    token_cache_path: Optional[Path]
    http_timeout_seconds: float


def load_host_config() -> HostConfig:
    """Load host settings from the environment with strict validation."""
    host = (os.environ.get("CHAT_HOST", "127.0.0.1") or "").strip()
    if not host:
        raise RuntimeError("CHAT_HOST resolved to empty value.")

    port_raw = (os.environ.get("CHAT_PORT", "8780") or "").strip()
    try:
        port = int(port_raw)
    except ValueError as exc:
        raise RuntimeError(f"CHAT_PORT must be an integer. Got: {port_raw}") from exc
    if port < 1 or port > 65535:
        raise RuntimeError(f"CHAT_PORT must be in range 1-65535. Got: {port}.")

    timeout_raw = (os.environ.get("HTTP_TIMEOUT_SECONDS", "10") or "").strip()
    try:
        timeout = float(timeout_raw)
    except ValueError as exc:
        raise RuntimeError(f"HTTP_TIMEOUT_SECONDS must be a number. Got: {timeout_raw}") from exc
    if timeout <= 0:
        raise RuntimeError(f"HTTP_TIMEOUT_SECONDS must be positive. Got: {timeout}.")

    cache_raw = (os.environ.get("TOKEN_CACHE_PATH") or "").strip()

    return HostConfig(
        host=host,
        port=port,
        user=UserIdentity(
            email=(os.environ.get("USER_EMAIL") or "").strip(),
            display_name=(os.environ.get("USER_DISPLAY_NAME") or "").strip() or None,
        ),
        token_cache_path=Path(cache_raw).expanduser() if cache_raw else None,
        http_timeout_seconds=timeout,
    )
