"""
Outbound action dispatch chain.

Actions are plain dicts shaped like Web Chat store actions
(``{"type": ..., "meta": ..., "payload": ...}``). A DispatchChain runs them
through an ordered list of interceptors and then a terminal handler.
Interceptors receive two callables:

    dispatch  - re-enters the chain at its head (for new actions)
    forward   - hands the current action to the next interceptor

Example:
    >>> policy = GreetingPolicy(enabled=True)
    >>> chain = DispatchChain([GreetingInjector(policy)], terminal=handler)
    >>> await chain.dispatch({"type": CONNECT_FULFILLED})
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol

from .errors import ChatSessionError
from .models import GreetingPolicy


__all__ = [
    "Action",
    "Dispatch",
    "DispatchInterceptor",
    "DispatchChain",
    "GreetingInjector",
    "ActionLogInterceptor",
    "CONNECT_FULFILLED",
    "POST_ACTIVITY",
    "build_greeting_action",
]


logger = logging.getLogger(__name__)

CONNECT_FULFILLED = "DIRECT_LINE/CONNECT_FULFILLED"
POST_ACTIVITY = "DIRECT_LINE/POST_ACTIVITY"

Action = dict[str, Any]
Dispatch = Callable[[Action], Awaitable[None]]


class DispatchInterceptor(Protocol):
    """One link in the dispatch chain."""

    async def intercept(self, action: Action, dispatch: Dispatch, forward: Dispatch) -> None:
        """Handle ``action``; call ``forward`` to pass it on unchanged."""


def build_greeting_action() -> Action:
    """Return the synthetic startConversation event action."""
    return {
        "type": POST_ACTIVITY,
        "meta": {"method": "keyboard"},
        "payload": {
            "activity": {
                "type": "event",
                "name": "startConversation",
                "channelData": {"postBack": True},
            },
        },
    }


class DispatchChain:
    """Runs actions through interceptors in order, then the terminal handler."""

    def __init__(self, interceptors: Sequence[DispatchInterceptor], terminal: Dispatch) -> None:
        self._interceptors = tuple(interceptors)
        self._terminal = terminal

    @property
    def interceptors(self) -> tuple[DispatchInterceptor, ...]:
        return self._interceptors

    async def dispatch(self, action: Action) -> None:
        await self._run(0, action)

    async def _run(self, index: int, action: Action) -> None:
        if index >= len(self._interceptors):
            await self._terminal(action)
            return

        async def forward(next_action: Action) -> None:
            await self._run(index + 1, next_action)

        await self._interceptors[index].intercept(action, self.dispatch, forward)


class GreetingInjector:
    """
    Posts one startConversation event when the connection is established.

    The greeting goes out ahead of the connect action, which is always
    forwarded unchanged, even when the greeting post fails. The policy is
    marked before dispatching so a re-entrant connect action cannot trigger
    a second greeting.
    """

    def __init__(self, policy: GreetingPolicy) -> None:
        self.policy = policy

    async def intercept(self, action: Action, dispatch: Dispatch, forward: Dispatch) -> None:
        if action.get("type") == CONNECT_FULFILLED and self.policy.should_greet:
            self.policy.mark_dispatched()
            logger.info("Connection established; sending greeting event")
            try:
                await dispatch(build_greeting_action())
            except ChatSessionError as exc:
                logger.warning("Greeting event was not delivered: %s", exc.message)
        await forward(action)


class ActionLogInterceptor:
    """Logs every action type at DEBUG."""

    async def intercept(self, action: Action, dispatch: Dispatch, forward: Dispatch) -> None:
        logger.debug("Dispatching action %s", action.get("type"))
        await forward(action)
