"""Style options handed to the transport handle for rendering."""

from __future__ import annotations

from typing import Any, Optional


DEFAULT_BOT_INITIALS = "BOT"
DEFAULT_USER_INITIALS = "U"


def user_initials(display_name: Optional[str]) -> str:
    """Initials from a display name, e.g. ``"Jane Q Doe"`` -> ``"JQD"``."""
    parts = (display_name or "").split()
    return "".join(part[0] for part in parts) or DEFAULT_USER_INITIALS


def build_style_options(
    user_display_name: Optional[str] = None,
    bot_avatar_initials: Optional[str] = None,
    bot_avatar_image: Optional[str] = None,
) -> dict[str, Any]:
    """Build the avatar and composer options for a session."""
    options: dict[str, Any] = {
        "hideUploadButton": True,
        "botAvatarInitials": bot_avatar_initials or DEFAULT_BOT_INITIALS,
        "userAvatarInitials": user_initials(user_display_name),
        "sendBoxTextWrap": True,
    }
    if bot_avatar_image:
        options["botAvatarImage"] = bot_avatar_image
    return options
