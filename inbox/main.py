import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse

from inbox.config import settings, get_settings
from inbox.errors import InvalidStatusValue, MessageNotFound, StoreUnavailable
from inbox.logging_utils import setup_logging, RequestLoggingMiddleware, log_webhook_data
from inbox.metrics import get_metrics, get_metrics_content_type
from inbox.notifications import NotificationHub, WebSocketSubscriber
from inbox.schemas import (
    ConversationSummary,
    ErrorResponse,
    HealthResponse,
    InboxStats,
    Message,
    SendMessageRequest,
    SimulateStatusRequest,
    StatusUpdateRequest,
    StatusUpdateResponse,
    WebhookResponse,
)
from inbox.service import InboxService
from inbox.simulator import StatusSimulator
from inbox.storage import build_store
from inbox.transitions import NOT_FOUND


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: connect the store and create tables (failure aborts startup),
      build the fan-out hub and service, start the demo simulator if enabled
    - Shutdown: stop the simulator and release the store
    """
    app_settings = get_settings()
    store = build_store(app_settings.DATABASE_URL)
    await store.initialize()

    hub = NotificationHub()
    service = InboxService(store, hub, app_settings)
    simulator = None
    if app_settings.STATUS_SIMULATION_ENABLED:
        simulator = StatusSimulator(store, service.applier, app_settings.STATUS_SIMULATION_INTERVAL_SECONDS)
        simulator.start()

    app.state.store = store
    app.state.hub = hub
    app.state.service = service
    yield

    if simulator is not None:
        await simulator.stop()
    await store.close()


app = FastAPI(
    title="Inbox API",
    description="WhatsApp-style webhook ingestion, conversation API and live status updates",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.error(f"Store unavailable: {exc.message}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Storage unavailable"},
    )


@app.exception_handler(MessageNotFound)
async def message_not_found_handler(request: Request, exc: MessageNotFound) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": exc.message},
    )


def get_service(request: Request) -> InboxService:
    return request.app.state.service


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(request: Request, response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the store is reachable and the
    schema is applied, otherwise 503.
    """
    try:
        await request.app.state.store.ping()
    except StoreUnavailable:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Webhook Route
# =============================================================================

@app.post(
    "/webhook",
    response_model=WebhookResponse,
    responses={
        422: {"model": ErrorResponse, "description": "Unusable payload"},
        503: {"model": ErrorResponse, "description": "Storage unavailable"},
    }
)
async def webhook(request: Request, service: InboxService = Depends(get_service)) -> WebhookResponse:
    """
    Ingest one upstream webhook envelope.

    - messages: stored once per external id (re-delivery is a no-op)
    - statuses: applied to the stored message and pushed to live viewers

    Missing ids, malformed numbers and unrecognized statuses answer 422.
    A status for an unknown message answers 200 with result not_found.
    """
    raw_body = await request.body()
    logger.debug(f"Request body size: {len(raw_body)} bytes")

    try:
        payload = json.loads(raw_body)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON: {e}")
        log_webhook_data(request=request, kind="ignored", result="validation_error")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid JSON: {str(e)}"
        )

    result = await service.process_webhook(payload)
    log_webhook_data(
        request=request,
        message_id=result.message_id,
        kind=result.kind,
        result=result.result,
        dup=result.dup,
    )

    if result.rejected:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=result.detail or result.result
        )

    return WebhookResponse(result=result.result)


# =============================================================================
# Conversation Routes
# =============================================================================

@app.get("/conversations", response_model=list[ConversationSummary])
async def list_conversations(service: InboxService = Depends(get_service)) -> list[ConversationSummary]:
    """All conversations, most recently active first."""
    return await service.list_conversations()


@app.get("/conversations/{conversation_id}/messages", response_model=list[Message])
async def list_conversation_messages(
    conversation_id: str,
    service: InboxService = Depends(get_service),
) -> list[Message]:
    """Messages of one conversation in chronological order."""
    messages = await service.list_messages(conversation_id)
    logger.info(f"GET messages for {conversation_id}: returned {len(messages)}")
    return messages


# =============================================================================
# Message Routes
# =============================================================================

@app.post("/messages", response_model=Message, status_code=status.HTTP_201_CREATED)
async def send_message(
    body: SendMessageRequest,
    service: InboxService = Depends(get_service),
) -> Message:
    """Send a message from the business; it is stored as sent and pushed live."""
    return await service.send_message(body)


async def _apply_status(service: InboxService, message_id: str, requested: str) -> StatusUpdateResponse:
    try:
        result = await service.update_status(message_id, requested)
    except InvalidStatusValue as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    if result.outcome == NOT_FOUND:
        raise MessageNotFound(message_id)

    return StatusUpdateResponse(outcome=result.outcome, message=result.message)


@app.put(
    "/messages/{message_id}/status",
    response_model=StatusUpdateResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid status"},
        404: {"model": ErrorResponse, "description": "Message not found"},
    }
)
async def update_message_status(
    message_id: str,
    body: StatusUpdateRequest,
    service: InboxService = Depends(get_service),
) -> StatusUpdateResponse:
    """Move a message to sent, delivered or read."""
    return await _apply_status(service, message_id, body.status)


@app.post(
    "/simulate-status",
    response_model=StatusUpdateResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid status"},
        404: {"model": ErrorResponse, "description": "Message not found"},
    }
)
async def simulate_status(
    body: SimulateStatusRequest,
    service: InboxService = Depends(get_service),
) -> StatusUpdateResponse:
    """Demo helper: same as the status update route, addressed by body."""
    return await _apply_status(service, body.message_id, body.status)


# =============================================================================
# Stats Route
# =============================================================================

@app.get("/stats", response_model=InboxStats)
async def get_statistics(service: InboxService = Depends(get_service)) -> InboxStats:
    """
    Inbox-level analytics.

    Response:
        - total_messages: Total count of all messages
        - total_conversations: Number of distinct conversations
        - status_breakdown: Message count per status
    """
    stats = await service.stats()
    logger.info(f"GET /stats: {stats.total_messages} messages in {stats.total_conversations} conversations")
    return stats


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )


# =============================================================================
# Live Updates
# =============================================================================

async def _send_event(websocket: WebSocket, event: str, data: dict) -> None:
    await websocket.send_json({"event": event, "data": data})


@app.websocket("/ws")
async def live_updates(websocket: WebSocket):
    """
    Live conversation channel.

    Client frames:
        {"action": "join-conversation", "conversation_id": "conv_..."}
        {"action": "leave-conversation", "conversation_id": "conv_..."}
        {"action": "simulate-status-update", "message_id": "...", "status": "read"}

    Server frames:
        {"event": "new-message", "data": {...message...}}
        {"event": "message-status-updated", "data": {"external_message_id", "status", "record_updated_at"}}
        plus joined / left / status-simulated / error acknowledgements
    """
    await websocket.accept()
    hub: NotificationHub = websocket.app.state.hub
    service: InboxService = websocket.app.state.service
    subscriber = WebSocketSubscriber(websocket)
    logger.info("Live client connected")

    try:
        while True:
            try:
                frame = json.loads(await websocket.receive_text())
            except json.JSONDecodeError:
                await _send_event(websocket, "error", {"detail": "Invalid JSON"})
                continue

            action = frame.get("action") if isinstance(frame, dict) else None
            conversation_id = frame.get("conversation_id") if isinstance(frame, dict) else None

            if action in ("join-conversation", "leave-conversation") and not conversation_id:
                await _send_event(websocket, "error", {"detail": "conversation_id is required"})
            elif action == "join-conversation":
                hub.subscribe(conversation_id, subscriber)
                await _send_event(websocket, "joined", {"conversation_id": conversation_id})
            elif action == "leave-conversation":
                hub.unsubscribe(conversation_id, subscriber)
                await _send_event(websocket, "left", {"conversation_id": conversation_id})
            elif action == "simulate-status-update":
                try:
                    result = await service.update_status(str(frame.get("message_id")), frame.get("status"))
                except (InvalidStatusValue, StoreUnavailable) as e:
                    await _send_event(websocket, "error", {"detail": e.message})
                    continue
                await _send_event(
                    websocket,
                    "status-simulated",
                    {"message_id": frame.get("message_id"), "outcome": result.outcome},
                )
            else:
                await _send_event(websocket, "error", {"detail": f"Unknown action: {action}"})
    except WebSocketDisconnect:
        logger.info("Live client disconnected")
    finally:
        hub.unsubscribe_all(subscriber)
