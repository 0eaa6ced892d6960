"""
Copilot Studio Chat Host

Hosting shell for one SSO chat session. The page hosting the chat calls
these endpoints on mount/unmount instead of driving the bootstrap itself.

Endpoints:
    POST /session/open           - Open the chat session (mount)
    POST /session/close          - Close the chat session (unmount)
    POST /session/dismiss-error  - Clear the displayed error (no retry)
    GET  /session/status         - Current session state
    POST /session/activities     - Send a message on the ready session
    GET  /health                 - Health check

Internal binding: configured by CHAT_HOST/CHAT_PORT (default 127.0.0.1:8780)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Annotated, Any, AsyncIterator, TypedDict

import uvicorn
from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from pva_chat import (
    ActionLogInterceptor,
    ChannelNegotiator,
    ChatbotConfig,
    HostConfig,
    MsalIdentityProvider,
    SessionLifecycleController,
    SessionStatus,
    TokenBroker,
    TransportError,
    TransportSession,
    UserIdentity,
    load_chatbot_config,
    load_host_config,
)

# =============================================================================
# Logging Configuration
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "Copilot Studio Chat Host"
SERVICE_VERSION = "0.1.0"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# Request / Response Models
# =============================================================================


class SessionOpenRequest(BaseModel):
    """Optional identity override for the signed-in user."""

    user_email: str | None = Field(default=None, description="Signed-in user's email")
    user_display_name: str | None = Field(default=None, description="Signed-in user's display name")


class ActivityRequest(BaseModel):
    """Message to send on the ready session."""

    text: str = Field(..., min_length=1, description="Message text")


class SessionStatusResponse(BaseModel):
    """Session state as seen by the hosting page."""

    status: SessionStatus
    message: str | None = Field(default=None, description="Error message to display")
    generation: int = Field(..., description="Open attempt that committed this state")
    conversation_id: str | None = Field(default=None, description="Active conversation id")
    greeting_dispatched: bool = Field(default=False, description="Whether the greeting went out")
    bot_name: str = Field(..., description="Dialog title")
    button_label: str = Field(..., description="Chat button label")
    style_options: dict[str, Any] = Field(default_factory=dict, description="Rendering options")


class ActivityResponse(BaseModel):
    """Result of posting a message."""

    ok: bool
    activity_id: str | None = None


class ErrorResponse(BaseModel):
    """Standard error response."""

    ok: bool = Field(default=False)
    error: str = Field(..., description="Error description")
    error_code: str | None = Field(default=None, description="Machine-readable error code")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str
    version: str
    timestamp: str
    session_status: SessionStatus
    auth_configured: bool


# =============================================================================
# Application State
# =============================================================================


class AppState(TypedDict):
    """Application state managed by lifespan."""

    controller: SessionLifecycleController
    chatbot_config: ChatbotConfig
    host_config: HostConfig


class ChatHostError(Exception):
    """Base exception for chat host request errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class SessionNotReadyError(ChatHostError):
    """Raised when an operation requires a ready session."""

    def __init__(self, message: str = "Chat session is not ready. Open a session first.") -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="SESSION_NOT_READY",
        )


def get_app_state(request: Request) -> AppState:
    state = getattr(request, "state", None)
    if state is None:
        raise RuntimeError("Application state not initialized")
    return AppState(
        controller=state.controller,
        chatbot_config=state.chatbot_config,
        host_config=state.host_config,
    )


AppStateDep = Annotated[AppState, Depends(get_app_state)]


def build_controller(
    chatbot_config: ChatbotConfig, host_config: HostConfig
) -> SessionLifecycleController:
    """Wire the bootstrap stages for the configured bot."""
    broker = None
    if chatbot_config.auth_configured:
        broker = TokenBroker(
            MsalIdentityProvider(
                chatbot_config.client_id,
                chatbot_config.authority,
                token_cache_path=host_config.token_cache_path,
            )
        )
    else:
        logger.warning("clientID/authority/customScope not configured; sessions open without a user token")

    return SessionLifecycleController(
        negotiator=ChannelNegotiator(timeout_seconds=host_config.http_timeout_seconds),
        transport=TransportSession(timeout_seconds=host_config.http_timeout_seconds),
        broker=broker,
        extra_interceptors=(ActionLogInterceptor(),),
    )


def build_status(state: AppState) -> SessionStatusResponse:
    controller = state["controller"]
    config = state["chatbot_config"]
    session_state = controller.state
    handle = controller.handle
    policy = controller.greeting_policy
    return SessionStatusResponse(
        status=session_state.status,
        message=session_state.message,
        generation=session_state.generation,
        conversation_id=handle.conversation_id if handle else None,
        greeting_dispatched=bool(policy and policy.dispatched),
        bot_name=config.bot_name,
        button_label=config.button_label,
        style_options=handle.style_options if handle else {},
    )


# =============================================================================
# Exception Handlers
# =============================================================================


async def chat_host_error_handler(request: Request, exc: ChatHostError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            ok=False,
            error=exc.message,
            error_code=exc.error_code,
        ).model_dump(),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            ok=False,
            error="Internal server error",
            error_code="INTERNAL_ERROR",
        ).model_dump(),
    )


# =============================================================================
# FastAPI App Lifespan
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[dict[str, Any]]:
    """
    Build the session controller on startup and release its transport on
    shutdown.
    """
    host_config = load_host_config()
    chatbot_config = load_chatbot_config()
    controller = build_controller(chatbot_config, host_config)

    logger.info(
        "Starting %s: bot=%s greet=%s auth=%s",
        SERVICE_NAME,
        chatbot_config.bot_name,
        chatbot_config.greet,
        chatbot_config.auth_configured,
    )

    yield {
        "controller": controller,
        "chatbot_config": chatbot_config,
        "host_config": host_config,
    }

    logger.info("Shutting down...")
    await controller.close_session()


# =============================================================================
# FastAPI Application
# =============================================================================


app = FastAPI(
    title=SERVICE_NAME,
    version=SERVICE_VERSION,
    description="Opens and closes SSO-authenticated Copilot Studio chat sessions",
    lifespan=lifespan,
)

app.add_exception_handler(ChatHostError, chat_host_error_handler)
app.add_exception_handler(Exception, generic_exception_handler)


# =============================================================================
# Endpoints
# =============================================================================


@app.post("/session/open", response_model=SessionStatusResponse)
async def open_session(
    state: AppStateDep,
    request: SessionOpenRequest | None = None,
) -> SessionStatusResponse:
    """
    Open the chat session for the signed-in user.

    Bootstrap failures are reported in the returned status, not as HTTP
    errors, so the page can show the message with a dismiss action.
    """
    host_user = state["host_config"].user
    identity = UserIdentity(
        email=(request.user_email if request and request.user_email else host_user.email),
        display_name=(
            request.user_display_name
            if request and request.user_display_name
            else host_user.display_name
        ),
    )
    await state["controller"].open_session(state["chatbot_config"], identity)
    return build_status(state)


@app.post("/session/close", response_model=SessionStatusResponse)
async def close_session(state: AppStateDep) -> SessionStatusResponse:
    await state["controller"].close_session()
    return build_status(state)


@app.post("/session/dismiss-error", response_model=SessionStatusResponse)
async def dismiss_error(state: AppStateDep) -> SessionStatusResponse:
    state["controller"].dismiss_error()
    return build_status(state)


@app.get("/session/status", response_model=SessionStatusResponse)
async def get_session_status(state: AppStateDep) -> SessionStatusResponse:
    return build_status(state)


@app.post("/session/activities", response_model=ActivityResponse)
async def post_activity(request: ActivityRequest, state: AppStateDep) -> ActivityResponse:
    """
    Send a user message on the ready session.

    Raises:
        SessionNotReadyError: If no session is ready.
        ChatHostError: If Direct Line rejects the message (502).
    """
    handle = state["controller"].handle
    if handle is None or handle.is_closed:
        raise SessionNotReadyError()

    try:
        activity_id = await handle.post_activity({"type": "message", "text": request.text})
    except TransportError as exc:
        raise ChatHostError(
            message=exc.message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_code="TRANSPORT_ERROR",
        ) from exc

    return ActivityResponse(ok=True, activity_id=activity_id)


@app.get("/health", response_model=HealthResponse)
async def health(state: AppStateDep) -> HealthResponse:
    return HealthResponse(
        status="healthy",
        service=SERVICE_NAME,
        version=SERVICE_VERSION,
        timestamp=_utc_now(),
        session_status=state["controller"].state.status,
        auth_configured=state["chatbot_config"].auth_configured,
    )


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    host_settings = load_host_config()
    logger.info("=" * 60)
    logger.info(SERVICE_NAME)
    logger.info("=" * 60)
    logger.info("Binding to: http://%s:%d", host_settings.host, host_settings.port)
    logger.info("Endpoints:")
    logger.info("  POST /session/open          - Open chat session")
    logger.info("  POST /session/close         - Close chat session")
    logger.info("  POST /session/dismiss-error - Clear error message")
    logger.info("  GET  /session/status        - Session state")
    logger.info("  POST /session/activities    - Send a message")
    logger.info("  GET  /health                - Health check")
    logger.info("=" * 60)

    uvicorn.run(app, host=host_settings.host, port=host_settings.port, log_level="info")
