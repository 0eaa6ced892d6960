"""Bot endpoint URL validation and decomposition."""

from __future__ import annotations

import logging
from urllib.parse import parse_qs, urlencode, urlsplit

from .errors import EndpointValidationError
from .models import BotEndpointDescriptor


__all__ = ["EndpointResolver", "resolve_bot_endpoint", "REGIONAL_SETTINGS_PATH"]


logger = logging.getLogger(__name__)

REGIONAL_SETTINGS_PATH = "/powervirtualagents/regionalchannelsettings"
API_VERSION_PARAM = "api-version"

_DEFAULT_PORTS = {"http": 80, "https": 443}


def _origin(scheme: str, host: str, port: int | None) -> str:
    if ":" in host:
        host = f"[{host}]"
    if port is None or port == _DEFAULT_PORTS.get(scheme):
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


def resolve_bot_endpoint(raw_url: str) -> BotEndpointDescriptor:
    """
    Parse a bot token endpoint URL into a descriptor.

    Args:
        raw_url: Bot URL with a mandatory ``api-version`` query parameter.

    Returns:
        BotEndpointDescriptor with the derived regional settings URL.

    Raises:
        EndpointValidationError: If the URL is empty, not absolute http(s),
            or has no ``api-version``.

    Example:
        >>> resolve_bot_endpoint(
        ...     "https://bar.example.com/api?api-version=2022-03-01-preview"
        ... ).regional_settings_url
        'https://bar.example.com/powervirtualagents/regionalchannelsettings?api-version=2022-03-01-preview'
    """
    url = (raw_url or "").strip()
    if not url:
        raise EndpointValidationError("Bot URL is not configured", raw_url=raw_url or "")

    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError as exc:
        raise EndpointValidationError(f"Invalid bot URL: {exc}", raw_url=url) from exc

    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS or not parts.hostname:
        raise EndpointValidationError(
            "Invalid bot URL: expected an absolute http(s) URL", raw_url=url
        )

    values = parse_qs(parts.query, keep_blank_values=True).get(API_VERSION_PARAM, [])
    api_version = values[0].strip() if values else ""
    if not api_version:
        raise EndpointValidationError("Missing api-version parameter", raw_url=url)

    origin = _origin(scheme, parts.hostname, port)
    query = urlencode({API_VERSION_PARAM: api_version})
    return BotEndpointDescriptor(
        environment_endpoint=origin,
        api_version=api_version,
        regional_settings_url=f"{origin}{REGIONAL_SETTINGS_PATH}?{query}",
    )


class EndpointResolver:
    """Resolves configured bot URLs; stateless and free of I/O."""

    def resolve(self, raw_url: str) -> BotEndpointDescriptor:
        descriptor = resolve_bot_endpoint(raw_url)
        logger.debug(
            "Resolved bot endpoint %s (api-version=%s)",
            descriptor.environment_endpoint,
            descriptor.api_version,
        )
        return descriptor
