"""
Direct Line v3 transport.

``TransportSession.open`` starts a conversation against the negotiated
Direct Line domain and returns a ``DirectLineConnection``: the handle the
host renders from (via ``activities()``) and later closes. Every outbound
action passes through the connection's DispatchChain; the terminal handler
turns ``DIRECT_LINE/POST_ACTIVITY`` actions into HTTP posts.

Last Grunted: 10/17/2026
"""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any, Optional

import httpx
import websockets

from .dispatch import (
    CONNECT_FULFILLED,
    POST_ACTIVITY,
    Action,
    DispatchChain,
    DispatchInterceptor,
)
from .errors import TransportError
from .models import ChannelDescriptor


__all__ = ["DirectLineConnection", "TransportSession"]


logger = logging.getLogger(__name__)


class DirectLineConnection:
    """
    Open Direct Line conversation.

    Attributes:
        conversation_id: Conversation started by the transport.
        stream_url: Websocket URL for incoming activities (may be None).
        user_id: Id stamped on outbound activities.
        style_options: Rendering options handed over by the host.
        dispatched_actions: Every action that reached the terminal handler,
            in order.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        conversation_id: str,
        stream_url: Optional[str],
        user_id: str,
        style_options: dict[str, Any],
        connect: Callable[..., Any] = websockets.connect,
    ) -> None:
        self._client = client
        self.conversation_id = conversation_id
        self.stream_url = stream_url
        self.user_id = user_id
        self.style_options = dict(style_options)
        self.dispatched_actions: list[Action] = []
        self._connect = connect
        self._chain: Optional[DispatchChain] = None
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def attach(self, interceptors: Sequence[DispatchInterceptor]) -> DispatchChain:
        """Wire the dispatch chain: interceptors, then this connection."""
        self._chain = DispatchChain(interceptors, terminal=self._handle_action)
        return self._chain

    async def dispatch(self, action: Action) -> None:
        if self._chain is None:
            raise TransportError("Dispatch chain is not attached")
        if self._closed:
            raise TransportError("Connection is closed")
        await self._chain.dispatch(action)

    async def _handle_action(self, action: Action) -> None:
        self.dispatched_actions.append(action)
        if action.get("type") == POST_ACTIVITY:
            activity = (action.get("payload") or {}).get("activity")
            if activity:
                await self.post_activity(activity)

    async def post_activity(self, activity: dict[str, Any]) -> Optional[str]:
        """
        Post one activity to the conversation.

        Returns:
            The activity id assigned by Direct Line, if any.

        Raises:
            TransportError: If the connection is closed or the post fails.
        """
        if self._closed:
            raise TransportError("Connection is closed")

        body = copy.deepcopy(activity)
        body.setdefault("from", {"id": self.user_id})
        try:
            response = await self._client.post(
                f"conversations/{self.conversation_id}/activities",
                json=body,
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"Failed to post activity: {exc}", cause=exc) from exc

        if not response.is_success:
            raise TransportError(f"Failed to post activity: {response.status_code}")

        activity_id = None
        if response.content:
            try:
                activity_id = response.json().get("id")
            except (json.JSONDecodeError, AttributeError):
                activity_id = None
        logger.debug("Posted %s activity (id=%s)", body.get("type"), activity_id)
        return activity_id

    async def activities(self) -> AsyncIterator[dict[str, Any]]:
        """
        Yield activities received on the conversation's websocket stream.

        Keep-alive (empty) frames are skipped. Iteration ends when the stream
        closes or the connection is closed.
        """
        if not self.stream_url:
            raise TransportError("Conversation has no stream URL")

        async with self._connect(self.stream_url) as stream:
            async for message in stream:
                if self._closed:
                    break
                if not message:
                    continue
                try:
                    frame = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning("Ignoring malformed activity frame")
                    continue
                for activity in frame.get("activities", []):
                    yield activity

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()
        logger.info("Closed Direct Line conversation %s", self.conversation_id)


class TransportSession:
    """
    Opens and closes Direct Line connections.

    Args:
        timeout_seconds: Timeout for Direct Line HTTP calls.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
        connect: Websocket connect factory used by ``activities()``.
    """

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        connect: Callable[..., Any] = websockets.connect,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._connect = connect

    async def open(
        self,
        channel: ChannelDescriptor,
        user_id: str,
        style_options: dict[str, Any],
        interceptors: Sequence[DispatchInterceptor],
    ) -> DirectLineConnection:
        """
        Start the conversation and wire the dispatch chain.

        Raises:
            TransportError: If the conversation cannot be started.
        """
        client = httpx.AsyncClient(
            base_url=channel.transport_domain,
            timeout=self.timeout_seconds,
            transport=self._transport,
            headers={"Authorization": f"Bearer {channel.conversation_token}"},
        )
        try:
            conversation = await self._start_conversation(client)
        except BaseException:
            await client.aclose()
            raise

        token = conversation.get("token")
        if token:
            client.headers["Authorization"] = f"Bearer {token}"

        connection = DirectLineConnection(
            client=client,
            conversation_id=conversation["conversationId"],
            stream_url=conversation.get("streamUrl"),
            user_id=user_id,
            style_options=style_options,
            connect=self._connect,
        )
        connection.attach(interceptors)
        logger.info("Started Direct Line conversation %s", connection.conversation_id)

        try:
            await connection.dispatch(
                {
                    "type": CONNECT_FULFILLED,
                    "payload": {"conversationId": connection.conversation_id},
                }
            )
        except BaseException:
            await connection.close()
            raise
        return connection

    async def _start_conversation(self, client: httpx.AsyncClient) -> dict[str, Any]:
        try:
            response = await client.post("conversations")
        except httpx.HTTPError as exc:
            raise TransportError(f"Failed to start conversation: {exc}", cause=exc) from exc

        if not response.is_success:
            raise TransportError(f"Failed to start conversation: {response.status_code}")

        try:
            conversation = response.json()
        except json.JSONDecodeError as exc:
            raise TransportError("Failed to start conversation: invalid JSON", cause=exc) from exc

        if not isinstance(conversation, dict) or not conversation.get("conversationId"):
            raise TransportError("Failed to start conversation: no conversationId returned")
        return conversation

    async def close(self, handle: Optional[DirectLineConnection]) -> None:
        """Release the connection; ``None`` and closed handles are no-ops."""
        if handle is None:
            return
        await handle.close()
