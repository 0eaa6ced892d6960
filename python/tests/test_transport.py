"""
Tests for the Direct Line transport.

Last Grunted: 10/17/2026
"""

from __future__ import annotations

import pytest

from pva_chat.dispatch import CONNECT_FULFILLED, POST_ACTIVITY, GreetingInjector
from pva_chat.errors import TransportError
from pva_chat.models import ChannelDescriptor, GreetingPolicy
from pva_chat.transport import TransportSession
from tests.mock_data import (
    DIRECT_LINE_DOMAIN,
    DIRECT_LINE_HOST,
    USER_EMAIL,
    FakeBotService,
    FakeConnect,
    activity_frame,
)


CHANNEL = ChannelDescriptor(
    transport_domain=DIRECT_LINE_DOMAIN,
    conversation_token="dl-conversation-token",
)
STYLE = {"hideUploadButton": True, "botAvatarInitials": "BOT"}


async def open_connection(service: FakeBotService, greet: bool = True, connect=None):
    kwargs = {"transport": service.transport()}
    if connect is not None:
        kwargs["connect"] = connect
    session = TransportSession(**kwargs)
    policy = GreetingPolicy(enabled=greet)
    connection = await session.open(CHANNEL, USER_EMAIL, STYLE, [GreetingInjector(policy)])
    return session, connection, policy


class TestOpen:
    """Starting the conversation."""

    @pytest.mark.asyncio
    async def test_starts_conversation_with_negotiated_token(self) -> None:
        service = FakeBotService()

        _, connection, _ = await open_connection(service, greet=False)

        start = service.requests[0]
        assert start.method == "POST"
        assert str(start.url) == f"{DIRECT_LINE_DOMAIN}/conversations"
        assert start.headers["authorization"] == "Bearer dl-conversation-token"
        assert connection.conversation_id == "conv-1"
        assert connection.stream_url.startswith(f"wss://{DIRECT_LINE_HOST}/")
        assert connection.style_options == STYLE
        assert not connection.is_closed

    @pytest.mark.asyncio
    async def test_connect_action_reaches_terminal(self) -> None:
        service = FakeBotService()

        _, connection, _ = await open_connection(service, greet=False)

        assert connection.dispatched_actions == [
            {"type": CONNECT_FULFILLED, "payload": {"conversationId": "conv-1"}}
        ]
        assert service.posted_activities == []

    @pytest.mark.asyncio
    async def test_greeting_is_posted_once_with_user_id(self) -> None:
        service = FakeBotService()

        _, connection, policy = await open_connection(service)

        assert policy.dispatched is True
        assert service.posted_activities == [
            {
                "type": "event",
                "name": "startConversation",
                "channelData": {"postBack": True},
                "from": {"id": USER_EMAIL},
            }
        ]
        assert [action["type"] for action in connection.dispatched_actions] == [
            POST_ACTIVITY,
            CONNECT_FULFILLED,
        ]

    @pytest.mark.asyncio
    async def test_activity_posts_use_refreshed_token(self) -> None:
        service = FakeBotService()

        await open_connection(service)

        activity_request = service.requests[1]
        assert activity_request.url.path == "/v3/directline/conversations/conv-1/activities"
        assert activity_request.headers["authorization"] == "Bearer dl-refreshed-token-1"

    @pytest.mark.asyncio
    async def test_start_failure_raises_transport_error(self) -> None:
        service = FakeBotService()
        service.start_status = 403

        with pytest.raises(TransportError, match="403"):
            await open_connection(service)

        assert service.posted_activities == []

    @pytest.mark.asyncio
    async def test_greeting_post_failure_keeps_connection_open(self, caplog) -> None:
        service = FakeBotService()
        service.activity_status = 500

        with caplog.at_level("WARNING", logger="pva_chat.dispatch"):
            _, connection, policy = await open_connection(service)

        assert not connection.is_closed
        assert policy.dispatched is True
        assert connection.dispatched_actions[-1] == {
            "type": CONNECT_FULFILLED,
            "payload": {"conversationId": "conv-1"},
        }
        assert service.posted_activities == []
        assert "Greeting event was not delivered" in caplog.text


class TestConnection:
    """Posting, streaming and closing."""

    @pytest.mark.asyncio
    async def test_post_activity_returns_id_and_does_not_mutate_input(self) -> None:
        service = FakeBotService()
        _, connection, _ = await open_connection(service, greet=False)
        activity = {"type": "message", "text": "hello"}

        activity_id = await connection.post_activity(activity)

        assert activity_id == "conv-1|0000001"
        assert activity == {"type": "message", "text": "hello"}
        assert service.posted_activities[-1]["from"] == {"id": USER_EMAIL}

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        service = FakeBotService()
        session, connection, _ = await open_connection(service, greet=False)

        await session.close(connection)
        await session.close(connection)
        await session.close(None)

        assert connection.is_closed

    @pytest.mark.asyncio
    async def test_closed_connection_rejects_posts_and_dispatch(self) -> None:
        service = FakeBotService()
        _, connection, _ = await open_connection(service, greet=False)
        await connection.close()

        with pytest.raises(TransportError):
            await connection.post_activity({"type": "message", "text": "late"})
        with pytest.raises(TransportError):
            await connection.dispatch({"type": CONNECT_FULFILLED})

    @pytest.mark.asyncio
    async def test_activities_stream_skips_empty_and_malformed_frames(self) -> None:
        service = FakeBotService()
        connect = FakeConnect(
            [
                "",
                activity_frame({"type": "message", "text": "Hi, I'm HR Assistant"}),
                "not json",
                activity_frame(
                    {"type": "typing"},
                    {"type": "message", "text": "How can I help?"},
                    watermark="3",
                ),
            ]
        )
        _, connection, _ = await open_connection(service, greet=False, connect=connect)

        received = [activity async for activity in connection.activities()]

        assert [activity["type"] for activity in received] == ["message", "typing", "message"]
        assert connect.urls == [connection.stream_url]
        assert connect.stream.entered and connect.stream.exited
