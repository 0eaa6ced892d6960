"""
Two-step Direct Line channel negotiation.

Step A fetches the bot environment's regional channel settings to find the
Direct Line host; step B fetches a conversation token from the bot URL
itself. Step B is never attempted unless step A produced a channel URL.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx

from .errors import NegotiationError, NegotiationErrorKind
from .models import BotEndpointDescriptor, ChannelDescriptor


__all__ = ["ChannelNegotiator", "DIRECT_LINE_PATH"]


logger = logging.getLogger(__name__)

DIRECT_LINE_PATH = "v3/directline"


def _direct_line_domain(regional_channel_url: str) -> str:
    base = regional_channel_url if regional_channel_url.endswith("/") else f"{regional_channel_url}/"
    return f"{base}{DIRECT_LINE_PATH}"


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValueError(f"response body is not valid JSON: {exc}") from exc


class ChannelNegotiator:
    """
    Negotiates the realtime channel for a bot endpoint.

    Args:
        timeout_seconds: Timeout applied to each HTTP request.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def negotiate(self, descriptor: BotEndpointDescriptor, raw_url: str) -> ChannelDescriptor:
        """
        Run regional discovery, then fetch the conversation token.

        Args:
            descriptor: Resolved bot endpoint.
            raw_url: The configured bot URL; the token is fetched from here.

        Returns:
            ChannelDescriptor for the transport.

        Raises:
            NegotiationError: With the kind of the step that failed.
        """
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds,
            transport=self._transport,
        ) as client:
            channel_url = await self._fetch_regional_channel_url(client, descriptor)
            token_info = await self._fetch_conversation_token(client, raw_url.strip())

        channel = ChannelDescriptor(
            transport_domain=_direct_line_domain(channel_url),
            conversation_token=token_info["token"],
            conversation_id=token_info.get("conversationId"),
            expires_in=token_info.get("expires_in"),
        )
        logger.info("Negotiated Direct Line channel at %s", channel.transport_domain)
        return channel

    async def _fetch_regional_channel_url(
        self, client: httpx.AsyncClient, descriptor: BotEndpointDescriptor
    ) -> str:
        kind = NegotiationErrorKind.REGIONAL_FETCH_FAILED
        try:
            response = await client.get(descriptor.regional_settings_url)
        except httpx.HTTPError as exc:
            raise NegotiationError(kind, f"Failed to fetch regional settings: {exc}") from exc

        if not response.is_success:
            raise NegotiationError(
                kind,
                f"Failed to fetch regional settings: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = _json_body(response)
        except ValueError as exc:
            raise NegotiationError(
                kind,
                f"Failed to fetch regional settings: {exc}",
                status_code=response.status_code,
            ) from exc

        channel_urls = data.get("channelUrlsById") if isinstance(data, dict) else None
        directline = channel_urls.get("directline") if isinstance(channel_urls, dict) else None
        if not isinstance(directline, str) or not directline.strip():
            raise NegotiationError(
                NegotiationErrorKind.MISSING_CHANNEL_URL,
                "DirectLine URL not found",
            )

        logger.debug("Regional Direct Line URL: %s", directline)
        return directline.strip()

    async def _fetch_conversation_token(
        self, client: httpx.AsyncClient, raw_url: str
    ) -> dict[str, Any]:
        kind = NegotiationErrorKind.TOKEN_FETCH_FAILED
        try:
            response = await client.get(raw_url)
        except httpx.HTTPError as exc:
            raise NegotiationError(kind, f"Failed to fetch DirectLine token: {exc}") from exc

        if not response.is_success:
            raise NegotiationError(
                kind,
                f"Failed to fetch DirectLine token: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = _json_body(response)
        except ValueError as exc:
            raise NegotiationError(
                kind,
                f"Failed to fetch DirectLine token: {exc}",
                status_code=response.status_code,
            ) from exc

        token = data.get("token") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token.strip():
            raise NegotiationError(
                kind,
                "DirectLine token missing from response",
                status_code=response.status_code,
            )

        expires_in = data.get("expires_in")
        return {
            "token": token,
            "conversationId": data.get("conversationId"),
            "expires_in": expires_in if isinstance(expires_in, int) else None,
        }
