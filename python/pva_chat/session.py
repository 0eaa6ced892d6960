"""
Chat Session Lifecycle Controller.

Runs the bootstrap stages (endpoint resolution, token acquisition, channel
negotiation, transport open) for one chat session and tracks the result as
an explicit state machine:

    idle -> loading -> ready
            loading -> error(message)
    ready | error -> idle      (close_session)
    idle | error  -> loading   (open_session)

Every open attempt gets a new generation number. Each stage re-checks that
its generation is still current before committing anything, so a superseded
attempt whose network calls finish late never writes state and never keeps
a transport open.

Concurrency:
    Designed for a single asyncio event loop. Not thread-safe.

Last Grunted: 10/17/2026
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Sequence
from typing import Optional

from .auth import TokenBroker
from .config import ChatbotConfig, UserIdentity
from .dispatch import DispatchInterceptor, GreetingInjector
from .endpoint import EndpointResolver
from .errors import ChatSessionError
from .models import GreetingPolicy, SessionState, SessionStatus, TokenResult
from .negotiation import ChannelNegotiator
from .styling import build_style_options
from .transport import DirectLineConnection, TransportSession


__all__ = ["SessionLifecycleController", "GENERIC_FAILURE_MESSAGE"]


logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Failed to initialize chatbot."

StateListener = Callable[[SessionState], None]


class SessionLifecycleController:
    """
    Owns one chat session at a time and its transport handle.

    Call ``close_session()`` before discarding the controller so the
    transport is released deterministically.

    Example:
        >>> controller = SessionLifecycleController(
        ...     negotiator=ChannelNegotiator(),
        ...     transport=TransportSession(),
        ...     broker=TokenBroker(MsalIdentityProvider(client_id, authority)),
        ... )
        >>> state = await controller.open_session(config, UserIdentity(email="jane@contoso.com"))
        >>> state.status
        <SessionStatus.READY: 'ready'>
        >>> await controller.close_session()
    """

    def __init__(
        self,
        negotiator: ChannelNegotiator,
        transport: TransportSession,
        broker: Optional[TokenBroker] = None,
        resolver: Optional[EndpointResolver] = None,
        extra_interceptors: Sequence[DispatchInterceptor] = (),
    ) -> None:
        self._resolver = resolver or EndpointResolver()
        self._broker = broker
        self._negotiator = negotiator
        self._transport = transport
        self._extra_interceptors = tuple(extra_interceptors)

        self._generation = 0
        self._state = SessionState()
        self._handle: Optional[DirectLineConnection] = None
        self._token: Optional[TokenResult] = None
        self._policy: Optional[GreetingPolicy] = None
        self._inflight: Optional[asyncio.Task[SessionState]] = None
        self._listeners: list[StateListener] = []

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def handle(self) -> Optional[DirectLineConnection]:
        """Transport handle of the ready session, if any."""
        return self._handle

    @property
    def token_result(self) -> Optional[TokenResult]:
        return self._token

    @property
    def greeting_policy(self) -> Optional[GreetingPolicy]:
        return self._policy

    def add_listener(self, listener: StateListener) -> None:
        """Register a callback invoked with every committed state."""
        self._listeners.append(listener)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def open_session(self, config: ChatbotConfig, identity: UserIdentity) -> SessionState:
        """
        Open a chat session, or join the attempt already in flight.

        Args:
            config: Bot configuration.
            identity: Signed-in user from the hosting shell.

        Returns:
            The controller state once this attempt has finished. Never raises
            for bootstrap failures; they are reported as ``error`` state.
        """
        if self._state.is_loading and self._inflight is not None and not self._inflight.done():
            logger.info("Session open already in flight (generation %d)", self._generation)
            return await asyncio.shield(self._inflight)

        if self._state.status == SessionStatus.READY:
            logger.info("Session already open (generation %d)", self._generation)
            return self._state

        self._generation += 1
        generation = self._generation
        self._commit(generation, SessionState(status=SessionStatus.LOADING, generation=generation))
        logger.info("Opening chat session (generation %d)", generation)

        task = asyncio.create_task(self._bootstrap(generation, config, identity))
        self._inflight = task
        return await asyncio.shield(task)

    async def close_session(self) -> SessionState:
        """
        Close the active session and discard any pending open attempt.

        Idempotent: closing an idle controller does nothing.
        """
        if self._state.status == SessionStatus.IDLE and self._handle is None:
            return self._state

        self._generation += 1
        handle, self._handle = self._handle, None
        self._inflight = None
        self._token = None
        self._policy = None
        self._commit(
            self._generation,
            SessionState(status=SessionStatus.IDLE, generation=self._generation),
        )

        try:
            await self._transport.close(handle)
        except Exception as exc:
            logger.warning("Error while closing transport: %s", exc)

        logger.info("Chat session closed (generation %d)", self._generation)
        return self._state

    def dismiss_error(self) -> SessionState:
        """Clear a displayed error. Does not retry; call open_session for that."""
        if self._state.status != SessionStatus.ERROR:
            return self._state
        self._commit(
            self._generation,
            SessionState(status=SessionStatus.IDLE, generation=self._generation),
        )
        return self._state

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _commit(self, generation: int, state: SessionState) -> bool:
        if not self._is_current(generation):
            return False
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as exc:
                logger.error("Session state listener failed: %s", exc)
        return True

    def _fail(self, generation: int, message: str) -> None:
        if not self._commit(
            generation,
            SessionState(status=SessionStatus.ERROR, message=message, generation=generation),
        ):
            logger.debug("Discarded failure from superseded generation %d: %s", generation, message)

    def _superseded(self, generation: int, stage: str) -> SessionState:
        logger.info("Discarding %s result from superseded generation %d", stage, generation)
        return self._state

    async def _bootstrap(
        self,
        generation: int,
        config: ChatbotConfig,
        identity: UserIdentity,
    ) -> SessionState:
        try:
            descriptor = self._resolver.resolve(config.bot_url)

            token: Optional[TokenResult] = None
            if self._broker is not None:
                token = await self._broker.acquire([config.custom_scope], identity.email)
                if not self._is_current(generation):
                    return self._superseded(generation, "token")

            channel = await self._negotiator.negotiate(descriptor, config.bot_url)
            if not self._is_current(generation):
                return self._superseded(generation, "negotiation")

            policy = GreetingPolicy(enabled=config.greet)
            interceptors = (GreetingInjector(policy), *self._extra_interceptors)
            style_options = build_style_options(
                user_display_name=identity.display_name,
                bot_avatar_initials=config.bot_avatar_initials,
                bot_avatar_image=config.bot_avatar_image,
            )
            user_id = identity.email or f"dl_{uuid.uuid4().hex}"
            handle = await self._transport.open(channel, user_id, style_options, interceptors)

            if not self._is_current(generation):
                await self._transport.close(handle)
                return self._superseded(generation, "transport")

            self._handle = handle
            self._token = token
            self._policy = policy
            self._commit(generation, SessionState(status=SessionStatus.READY, generation=generation))
            logger.info(
                "Chat session ready (generation %d, conversation %s)",
                generation,
                handle.conversation_id,
            )

        except ChatSessionError as exc:
            logger.error("Chat setup error: %s", exc.message)
            self._fail(generation, exc.message)
        except Exception as exc:
            logger.error("Error initializing chatbot: %s", exc, exc_info=True)
            self._fail(generation, GENERIC_FAILURE_MESSAGE)

        return self._state
