"""
Fakes and fixtures data for chat-session bootstrap tests.

FakeBotService simulates the three HTTP surfaces a session touches (regional
channel settings, the bot's token endpoint, and Direct Line v3) behind an
``httpx.MockTransport``. FakeIdentityProvider stands in for the MSAL cache
and sign-in flows.

Last Grunted: 10/17/2026
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from pva_chat.auth import TokenBroker
from pva_chat.config import ChatbotConfig, UserIdentity
from pva_chat.errors import InteractionRequiredError
from pva_chat.models import IdentityAccount, TokenResult
from pva_chat.negotiation import ChannelNegotiator
from pva_chat.session import SessionLifecycleController
from pva_chat.transport import DirectLineConnection, TransportSession


# =============================================================================
# Constants
# =============================================================================

BOT_HOST = "bar.example.com"
BOT_URL = (
    f"https://{BOT_HOST}/powervirtualagents/botsbyschema/cr123_supportBot"
    "/directline/token?api-version=2022-03-01-preview"
)
REGIONAL_SETTINGS_URL = (
    f"https://{BOT_HOST}/powervirtualagents/regionalchannelsettings"
    "?api-version=2022-03-01-preview"
)
DIRECT_LINE_HOST = "europe.directline.botframework.com"
REGIONAL_CHANNEL_URL = f"https://{DIRECT_LINE_HOST}/"
DIRECT_LINE_DOMAIN = f"https://{DIRECT_LINE_HOST}/v3/directline"

USER_EMAIL = "jane.doe@contoso.com"
USER_NAME = "Jane Doe"
SCOPE = "api://pva-sso-bot/.default"


def make_config(**overrides: Any) -> ChatbotConfig:
    values: dict[str, Any] = {
        "botURL": BOT_URL,
        "customScope": SCOPE,
        "clientID": "11111111-2222-3333-4444-555555555555",
        "authority": "https://login.microsoftonline.com/contoso.onmicrosoft.com",
        "greet": True,
        "botName": "HR Assistant",
    }
    values.update(overrides)
    return ChatbotConfig.model_validate(values)


def make_identity(email: str = USER_EMAIL, display_name: Optional[str] = USER_NAME) -> UserIdentity:
    return UserIdentity(email=email, display_name=display_name)


def make_token(access_token: str = "eyJ0eXAi.fake.token", username: str = USER_EMAIL) -> TokenResult:
    return TokenResult(
        access_token=access_token,
        expires_on=datetime.now(timezone.utc) + timedelta(hours=1),
        scopes=frozenset({SCOPE}),
        account=IdentityAccount(username=username),
    )


def make_account(username: str, home_account_id: Optional[str] = None) -> IdentityAccount:
    return IdentityAccount(
        username=username,
        home_account_id=home_account_id or f"{username}.home",
        environment="login.microsoftonline.com",
    )


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the event loop until ``predicate`` holds."""

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_poll(), timeout=timeout)


# =============================================================================
# Identity Provider
# =============================================================================


class FakeIdentityProvider:
    """
    Scriptable identity provider.

    Each ``*_result`` may be a TokenResult, None, or an exception instance to
    raise. Calls are counted per step.
    """

    def __init__(
        self,
        accounts: Optional[list[IdentityAccount]] = None,
        silent_result: Any = None,
        sso_result: Any = None,
        interactive_result: Any = None,
    ) -> None:
        self.accounts = accounts or []
        self.silent_result = silent_result
        self.sso_result = sso_result
        self.interactive_result = interactive_result
        self.calls: dict[str, int] = {"accounts": 0, "silent": 0, "sso": 0, "interactive": 0}
        self.silent_accounts: list[IdentityAccount] = []
        self.login_hints: list[str] = []
        self.requested_scopes: list[list[str]] = []

    @staticmethod
    def _resolve(result: Any) -> Optional[TokenResult]:
        if isinstance(result, BaseException):
            raise result
        return result

    async def get_accounts(self) -> list[IdentityAccount]:
        self.calls["accounts"] += 1
        return list(self.accounts)

    async def acquire_token_silent(
        self, scopes: list[str], account: IdentityAccount
    ) -> Optional[TokenResult]:
        self.calls["silent"] += 1
        self.silent_accounts.append(account)
        self.requested_scopes.append(scopes)
        return self._resolve(self.silent_result)

    async def acquire_token_sso_silent(
        self, scopes: list[str], login_hint: str
    ) -> Optional[TokenResult]:
        self.calls["sso"] += 1
        self.login_hints.append(login_hint)
        self.requested_scopes.append(scopes)
        return self._resolve(self.sso_result)

    async def acquire_token_interactive(
        self, scopes: list[str], login_hint: str
    ) -> Optional[TokenResult]:
        self.calls["interactive"] += 1
        self.login_hints.append(login_hint)
        self.requested_scopes.append(scopes)
        return self._resolve(self.interactive_result)


def interaction_required() -> InteractionRequiredError:
    return InteractionRequiredError(
        "AADSTS50058: A silent sign-in request was sent but no user is signed in.",
        error_code="interaction_required",
    )


# =============================================================================
# HTTP Surfaces
# =============================================================================


class FakeBotService:
    """
    Simulated regional settings, token endpoint and Direct Line service.

    Gates: append an ``asyncio.Event`` to ``regional_gates`` or
    ``start_gates`` to hold the next matching request until it is set.
    """

    def __init__(self) -> None:
        self.regional_status = 200
        self.regional_body: Any = {
            "channelUrlsById": {"directline": REGIONAL_CHANNEL_URL},
        }
        self.token_status = 200
        self.token_body: Any = {
            "token": "dl-conversation-token",
            "conversationId": "conv-from-token",
            "expires_in": 3600,
        }
        self.start_status = 201
        self.activity_status = 200

        self.regional_gates: list[asyncio.Event] = []
        self.start_gates: list[asyncio.Event] = []

        self.requests: list[httpx.Request] = []
        self.posted_activities: list[dict[str, Any]] = []
        self.conversations_started = 0

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def request_kinds(self) -> list[str]:
        return [self._kind(request) for request in self.requests]

    @staticmethod
    def _kind(request: httpx.Request) -> str:
        path = request.url.path
        if request.url.host == BOT_HOST:
            if path == "/powervirtualagents/regionalchannelsettings":
                return "regional"
            return "token"
        if path.endswith("/conversations"):
            return "start"
        if path.endswith("/activities"):
            return "activity"
        return "unknown"

    @staticmethod
    def _json(status_code: int, body: Any) -> httpx.Response:
        if isinstance(body, (dict, list)):
            return httpx.Response(status_code, json=body)
        return httpx.Response(status_code, text=str(body))

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        kind = self._kind(request)

        if kind == "regional":
            if self.regional_gates:
                await self.regional_gates.pop(0).wait()
            return self._json(self.regional_status, self.regional_body)

        if kind == "token":
            return self._json(self.token_status, self.token_body)

        if kind == "start":
            if self.start_gates:
                await self.start_gates.pop(0).wait()
            if self.start_status >= 400:
                return httpx.Response(self.start_status, json={"error": {"code": "BadArgument"}})
            self.conversations_started += 1
            conversation_id = f"conv-{self.conversations_started}"
            return httpx.Response(
                self.start_status,
                json={
                    "conversationId": conversation_id,
                    "token": f"dl-refreshed-token-{self.conversations_started}",
                    "expires_in": 3600,
                    "streamUrl": f"wss://{DIRECT_LINE_HOST}/v3/directline/conversations/{conversation_id}/stream",
                },
            )

        if kind == "activity":
            if self.activity_status >= 400:
                return httpx.Response(self.activity_status, json={"error": {"code": "ServiceError"}})
            activity = json.loads(request.content)
            self.posted_activities.append(activity)
            return httpx.Response(
                self.activity_status,
                json={"id": f"{request.url.path.split('/')[-2]}|{len(self.posted_activities):07d}"},
            )

        return httpx.Response(404, json={"error": "not found"})


class RecordingTransportSession(TransportSession):
    """TransportSession that remembers every connection it opened."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.opened: list[DirectLineConnection] = []
        self.close_calls = 0

    async def open(self, *args: Any, **kwargs: Any) -> DirectLineConnection:
        connection = await super().open(*args, **kwargs)
        self.opened.append(connection)
        return connection

    async def close(self, handle: Optional[DirectLineConnection]) -> None:
        self.close_calls += 1
        await super().close(handle)


def make_controller(
    service: FakeBotService,
    provider: Optional[FakeIdentityProvider] = None,
    with_auth: bool = True,
) -> SessionLifecycleController:
    broker = None
    if with_auth:
        broker = TokenBroker(
            provider
            or FakeIdentityProvider(accounts=[make_account(USER_EMAIL)], silent_result=make_token())
        )
    return SessionLifecycleController(
        negotiator=ChannelNegotiator(transport=service.transport()),
        transport=RecordingTransportSession(transport=service.transport()),
        broker=broker,
    )


# =============================================================================
# Websocket Stream
# =============================================================================


class FakeStream:
    """Async context manager / iterator standing in for a websocket."""

    def __init__(self, messages: list[str]) -> None:
        self.messages = messages
        self.entered = False
        self.exited = False

    async def __aenter__(self) -> "FakeStream":
        self.entered = True
        return self

    async def __aexit__(self, *exc_info: object) -> bool:
        self.exited = True
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            yield message


class FakeConnect:
    """Websocket connect factory returning a FakeStream."""

    def __init__(self, messages: list[str]) -> None:
        self.stream = FakeStream(messages)
        self.urls: list[str] = []

    def __call__(self, url: str) -> FakeStream:
        self.urls.append(url)
        return self.stream


def activity_frame(*activities: dict[str, Any], watermark: str = "1") -> str:
    return json.dumps({"activities": list(activities), "watermark": watermark})
