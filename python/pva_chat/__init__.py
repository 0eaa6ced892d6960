"""
Copilot Studio (Power Virtual Agents) SSO Chat Package.

Bootstraps an authenticated Direct Line chat session for a Copilot Studio /
Power Virtual Agents bot.

Components:
    - EndpointResolver: Validates the bot URL and derives regional settings URL
    - TokenBroker: Access token via cached-silent -> SSO-silent -> interactive
    - MsalIdentityProvider: MSAL-backed identity cache and sign-in flows
    - ChannelNegotiator: Regional discovery + conversation token fetch
    - GreetingInjector: At-most-once startConversation event on connect
    - TransportSession: Direct Line v3 connection handle and teardown
    - SessionLifecycleController: Generation-guarded open/close state machine

Example:
    >>> from pva_chat import (
    ...     ChannelNegotiator, ChatbotConfig, MsalIdentityProvider,
    ...     SessionLifecycleController, TokenBroker, TransportSession, UserIdentity,
    ... )
    >>>
    >>> config = ChatbotConfig(
    ...     botURL="https://env.api.powerplatform.com/.../token?api-version=2022-03-01-preview",
    ...     customScope="api://bot-app/.default",
    ...     clientID="00000000-0000-0000-0000-000000000000",
    ...     authority="https://login.microsoftonline.com/contoso.onmicrosoft.com",
    ...     greet=True,
    ... )
    >>> controller = SessionLifecycleController(
    ...     negotiator=ChannelNegotiator(),
    ...     transport=TransportSession(),
    ...     broker=TokenBroker(MsalIdentityProvider(config.client_id, config.authority)),
    ... )
    >>> state = await controller.open_session(config, UserIdentity(email="jane@contoso.com"))

Last Grunted: 10/17/2026
"""

from .models import (
    IdentityAccount,
    TokenResult,
    BotEndpointDescriptor,
    ChannelDescriptor,
    SessionStatus,
    SessionState,
    GreetingPolicy,
)

from .errors import (
    ChatSessionError,
    EndpointValidationError,
    AuthFailure,
    IdentityProviderError,
    InteractionRequiredError,
    NegotiationError,
    NegotiationErrorKind,
    TransportError,
)

from .config import (
    ChatbotConfig,
    HostConfig,
    UserIdentity,
    load_chatbot_config,
    load_host_config,
)

from .endpoint import EndpointResolver, resolve_bot_endpoint

from .auth import IdentityProvider, MsalIdentityProvider, TokenBroker

from .negotiation import ChannelNegotiator

from .dispatch import (
    ActionLogInterceptor,
    DispatchChain,
    GreetingInjector,
    build_greeting_action,
)

from .transport import DirectLineConnection, TransportSession

from .session import SessionLifecycleController


__all__ = [
    # Models
    "IdentityAccount",
    "TokenResult",
    "BotEndpointDescriptor",
    "ChannelDescriptor",
    "SessionStatus",
    "SessionState",
    "GreetingPolicy",
    # Errors
    "ChatSessionError",
    "EndpointValidationError",
    "AuthFailure",
    "IdentityProviderError",
    "InteractionRequiredError",
    "NegotiationError",
    "NegotiationErrorKind",
    "TransportError",
    # Config
    "ChatbotConfig",
    "HostConfig",
    "UserIdentity",
    "load_chatbot_config",
    "load_host_config",
    # Bootstrap stages
    "EndpointResolver",
    "resolve_bot_endpoint",
    "IdentityProvider",
    "MsalIdentityProvider",
    "TokenBroker",
    "ChannelNegotiator",
    "ActionLogInterceptor",
    "DispatchChain",
    "GreetingInjector",
    "build_greeting_action",
    "DirectLineConnection",
    "TransportSession",
    # Lifecycle
    "SessionLifecycleController",
]

__version__ = "0.1.0"
