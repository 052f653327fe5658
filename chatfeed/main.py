import anyio
import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import APIRouter, FastAPI, Query, Request, Response, WebSocket, status
from starlette.websockets import WebSocketDisconnect

from chatfeed.clock import Clock
from chatfeed.config import Settings, get_settings
from chatfeed.errors import UnknownChannelError
from chatfeed.logging_utils import setup_logging, RequestLoggingMiddleware, log_message_data
from chatfeed.metrics import get_metrics, get_metrics_content_type
from chatfeed.service import ChatState, build_state
from chatfeed.schemas import (
    ErrorResponse,
    HealthResponse,
    Message,
    MessagePage,
    SendMessageRequest,
)


logger = logging.getLogger(__name__)

router = APIRouter()


def get_chat(request: Request) -> ChatState:
    return request.app.state.chat


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: start the auto injector
    - Shutdown: cancel background timers and close subscriptions
    """
    chat: ChatState = app.state.chat
    if chat.settings.AUTO_REPLY_ENABLED:
        chat.injector.start()
    app.state.ready = True
    yield
    app.state.ready = False
    await chat.shutdown()


# =============================================================================
# Health Check Routes
# =============================================================================

@router.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness check - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@router.get("/health/ready", response_model=HealthResponse)
async def health_ready(request: Request, response: Response) -> HealthResponse:
    """
    Readiness check - returns 200 once startup has completed and background
    timers are running, 503 otherwise.
    """
    if not getattr(request.app.state, "ready", False):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Service not started"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Messages Routes
# =============================================================================

@router.get(
    "/messages",
    response_model=MessagePage,
)
async def list_messages(
    request: Request,
    first: Annotated[Optional[int], Query(ge=0, description="Take this many messages after `after`")] = None,
    after: Annotated[Optional[str], Query(description="Exclusive lower cursor (message id)")] = None,
    last: Annotated[Optional[int], Query(ge=0, description="Take this many messages before `before`")] = None,
    before: Annotated[Optional[str], Query(description="Exclusive upper cursor (message id)")] = None,
) -> MessagePage:
    """
    Page through the message log.

    Query Parameters:
        - first/after: forward pagination
        - last/before: backward pagination
        - none of first/last: the newest 10 messages before `before`

    Unknown cursors fall back to the head (after) or tail (before) of the log.
    """
    chat = get_chat(request)
    page = chat.service.messages(first=first, after=after, last=last, before=before)

    logger.info(
        f"GET /messages: first={first}, after={after}, last={last}, before={before} "
        f"-> {len(page.edges)} edge(s)"
    )
    log_message_data(request, page_size=len(page.edges), result="page")
    return page


@router.post(
    "/messages",
    response_model=Message,
    responses={
        422: {"description": "Validation error"},
    }
)
async def send_message(request: Request, body: SendMessageRequest) -> Message:
    """
    Send a message as Admin.

    The message is stored with status Sending and returned; Sent and Read
    arrive later on the messageUpdated channel.
    """
    chat = get_chat(request)
    message = await chat.service.send_message(body.text)
    log_message_data(request, message_id=message.id, result="sent")
    return message


# =============================================================================
# Subscription Route
# =============================================================================

@router.websocket("/subscriptions/{channel}")
async def subscriptions(websocket: WebSocket, channel: str) -> None:
    """
    Stream live events of one channel (messageAdded or messageUpdated).

    Each frame is a JSON message snapshot. Only events published after the
    subscription is opened are delivered. The subscription is released as
    soon as the client disconnects.
    """
    chat: ChatState = websocket.app.state.chat
    try:
        # Subscribe before accepting so nothing published after the
        # handshake completes can be missed
        subscription = chat.service.subscribe(channel)
    except UnknownChannelError as e:
        logger.warning(f"Rejected subscription: {e}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        await websocket.accept()
        logger.info(f"Subscription opened on {channel}")

        async with anyio.create_task_group() as tg:

            async def pump() -> None:
                try:
                    async for message in subscription:
                        await websocket.send_json(message.model_dump(mode="json", by_alias=True))
                except WebSocketDisconnect:
                    tg.cancel_scope.cancel()
                    return
                # Subscription closed by the server (overflow or shutdown)
                code = status.WS_1011_INTERNAL_ERROR if subscription.overflowed else status.WS_1000_NORMAL_CLOSURE
                await websocket.close(code=code)
                tg.cancel_scope.cancel()

            async def watch_disconnect() -> None:
                while True:
                    event = await websocket.receive()
                    if event["type"] == "websocket.disconnect":
                        tg.cancel_scope.cancel()
                        return

            tg.start_soon(pump)
            tg.start_soon(watch_disconnect)
    finally:
        subscription.close()
        logger.info(f"Subscription closed on {channel}")



# =============================================================================
# Metrics Route
# =============================================================================

@router.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )


# =============================================================================
# Application Factory
# =============================================================================

def create_app(settings: Optional[Settings] = None, clock: Optional[Clock] = None) -> FastAPI:
    """
    Build the application with its own message log, broker and timers.
    """
    settings = settings or get_settings()
    app = FastAPI(
        title="Chat Feed API",
        description="Paginated message log with live message events",
        version="1.0.0",
        lifespan=lifespan,
        responses={500: {"model": ErrorResponse}},
    )
    app.state.chat = build_state(settings, clock)
    app.state.ready = False

    # Add request logging middleware
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(router)
    return app


# Setup structured JSON logging
setup_logging(get_settings().LOG_LEVEL)

app = create_app()
