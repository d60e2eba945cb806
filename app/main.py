import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Annotated

from fastapi import FastAPI, Response, Request, Depends, Header, HTTPException, status, Query
from fastapi.responses import JSONResponse

from app.analytics import AnalyticsStore
from app.config import settings
from app.entities import AnalyticsEvent, Conversation, Message
from app.logging_utils import setup_logging, RequestLoggingMiddleware, attach_log_fields
from app.metrics import get_metrics, get_metrics_content_type
from app.schemas import (
    AnalyticsBatchRequest,
    AnalyticsBatchResponse,
    AnalyticsDeleteResponse,
    ConversationCreate,
    ConversationUpdate,
    ErrorResponse,
    HealthResponse,
    MessageCreate,
    MessageUpdate,
    StatusResponse,
)
from app.storage import check_db_health
from app.store import MessagingStore, build_entity_maps


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: build entity maps for the configured backend and the stores over them
    - Shutdown: nothing to release; the store lives for the process lifetime
    """
    conversations, messages, events = build_entity_maps(settings)
    app.state.store = MessagingStore(conversations, messages)
    app.state.analytics = AnalyticsStore(events)
    logger.info(f"Store initialized with {settings.STORE_BACKEND} backend")
    yield


app = FastAPI(
    title="Conversation Store API",
    description="Conversations, messages with synced previews, scoped search and analytics ingestion",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(detail="Internal server error").model_dump(),
    )


# =============================================================================
# Dependencies
# =============================================================================

async def get_current_user_id(
    request: Request,
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
) -> str:
    """
    Authenticated caller id.

    Tokens are verified upstream; the gateway forwards the user id in X-User-Id.
    """
    if not x_user_id:
        logger.warning("Missing X-User-Id header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="authentication required"
        )
    attach_log_fields(request, user_id=x_user_id)
    return x_user_id


def get_store(request: Request) -> MessagingStore:
    return request.app.state.store


def get_analytics(request: Request) -> AnalyticsStore:
    return request.app.state.analytics


CallerId = Annotated[str, Depends(get_current_user_id)]
Store = Annotated[MessagingStore, Depends(get_store)]
Analytics = Annotated[AnalyticsStore, Depends(get_analytics)]

NOT_FOUND = {404: {"model": ErrorResponse, "description": "Not found or not owned by caller"}}


def not_found(entity: str) -> HTTPException:
    # Missing and not-owned resources share one response so ids can't be probed.
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{entity} not found")


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/status", response_model=StatusResponse)
async def service_status() -> StatusResponse:
    return StatusResponse(status="ok", timestamp=datetime.now(timezone.utc))


@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    Used by orchestrators to determine if the app needs to be restarted.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 when the configured backend can serve requests.

    The memory backend is always ready; the sql backend must be reachable with
    its schema applied. Otherwise returns 503 (Service Unavailable).
    """
    if settings.STORE_BACKEND == "sql" and not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Conversation Routes
# =============================================================================

@app.get("/api/conversations", response_model=list[Conversation])
async def list_conversations(user_id: CallerId, store: Store) -> list[Conversation]:
    """Caller's conversations, most recently active first."""
    return store.get_conversations(user_id)


@app.post(
    "/api/conversations",
    response_model=Conversation,
    status_code=status.HTTP_201_CREATED,
)
async def create_conversation(body: ConversationCreate, user_id: CallerId, store: Store) -> Conversation:
    return store.create_conversation(user_id, **body.model_dump())


@app.get("/api/conversations/{conversation_id}", response_model=Conversation, responses=NOT_FOUND)
async def get_conversation(conversation_id: str, user_id: CallerId, store: Store) -> Conversation:
    conversation = store.get_conversation(conversation_id, user_id)
    if conversation is None:
        raise not_found("Conversation")
    return conversation


@app.patch("/api/conversations/{conversation_id}", response_model=Conversation, responses=NOT_FOUND)
async def update_conversation(
    conversation_id: str, body: ConversationUpdate, user_id: CallerId, store: Store
) -> Conversation:
    """Update conversation fields. Preview fields are derived and cannot be set."""
    conversation = store.update_conversation(conversation_id, user_id, body.changes())
    if conversation is None:
        raise not_found("Conversation")
    return conversation


@app.delete(
    "/api/conversations/{conversation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=NOT_FOUND,
)
async def delete_conversation(conversation_id: str, user_id: CallerId, store: Store) -> Response:
    """Delete a conversation together with all of its messages."""
    if not store.delete_conversation(conversation_id, user_id):
        raise not_found("Conversation")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Message Routes
# =============================================================================

@app.get("/api/messages/search", response_model=list[Message])
async def search_messages(
    request: Request,
    user_id: CallerId,
    store: Store,
    q: Annotated[str, Query(min_length=1, description="Case-insensitive substring to look for")],
    conversation_id: Annotated[
        str | None, Query(alias="conversationId", description="Restrict to one owned conversation")
    ] = None,
    limit: Annotated[
        int | None, Query(ge=1, le=settings.SEARCH_MAX_LIMIT, description="Maximum results")
    ] = None,
) -> list[Message]:
    """
    Search the caller's messages by content, sender name and attachment metadata.

    Results are newest first. A conversationId the caller does not own yields
    an empty list rather than an error.
    """
    results = store.search_messages(q, user_id, conversation_id=conversation_id, limit=limit)
    attach_log_fields(request, results=len(results))
    return results


@app.get(
    "/api/conversations/{conversation_id}/messages",
    response_model=list[Message],
)
async def list_messages(conversation_id: str, user_id: CallerId, store: Store) -> list[Message]:
    """Messages of a conversation, oldest first. Empty when not owned."""
    return store.get_messages(conversation_id, user_id)


@app.post(
    "/api/conversations/{conversation_id}/messages",
    response_model=Message,
    status_code=status.HTTP_201_CREATED,
    responses=NOT_FOUND,
)
async def send_message(
    conversation_id: str, body: MessageCreate, user_id: CallerId, store: Store
) -> Message:
    if store.get_conversation(conversation_id, user_id) is None:
        raise not_found("Conversation")
    return store.create_message(conversation_id=conversation_id, **body.model_dump())


@app.get("/api/messages/{message_id}", response_model=Message, responses=NOT_FOUND)
async def get_message(message_id: str, user_id: CallerId, store: Store) -> Message:
    message = store.get_message(message_id, user_id)
    if message is None:
        raise not_found("Message")
    return message


@app.put("/api/messages/{message_id}", response_model=Message, responses=NOT_FOUND)
async def update_message(
    message_id: str, body: MessageUpdate, user_id: CallerId, store: Store
) -> Message:
    """Edit a message. Changing content marks it edited unless isEdited is sent explicitly."""
    message = store.update_message(message_id, user_id, body.changes())
    if message is None:
        raise not_found("Message")
    return message


@app.delete(
    "/api/messages/{message_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=NOT_FOUND,
)
async def delete_message(message_id: str, user_id: CallerId, store: Store) -> Response:
    if not store.delete_message(message_id, user_id):
        raise not_found("Message")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Telemetry Routes
# =============================================================================

@app.post(
    "/api/telemetry/events",
    response_model=AnalyticsBatchResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={403: {"model": ErrorResponse, "description": "Event identity belongs to another user"}},
)
async def ingest_events(
    request: Request, body: AnalyticsBatchRequest, user_id: CallerId, analytics: Analytics
) -> AnalyticsBatchResponse:
    """
    Ingest a batch of client analytics events exactly once.

    - Validates each event against AnalyticsEventPayload
    - Idempotent: an eventId that was already stored is skipped, never overwritten
    - Rejects the whole batch if any event claims a userId other than the caller
    """
    foreign = [e.event_id for e in body.events if e.identity.user_id and e.identity.user_id != user_id]
    if foreign:
        logger.warning(f"Rejected analytics batch with foreign identity: caller={user_id}, events={foreign}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="event identity does not match caller",
        )

    result = analytics.ingest(body.events)
    attach_log_fields(
        request,
        received=result.received,
        ingested=result.ingested,
        duplicates=result.duplicates,
        mode=body.mode,
    )
    return AnalyticsBatchResponse(
        received=result.received,
        ingested=result.ingested,
        duplicates=result.duplicates,
        timestamp=datetime.now(timezone.utc),
        schema_version=body.schema_version,
    )


@app.get("/api/telemetry/events", response_model=list[AnalyticsEvent])
async def list_events(
    user_id: CallerId,
    analytics: Analytics,
    start_date: Annotated[datetime | None, Query(alias="startDate", description="Inclusive lower bound")] = None,
    end_date: Annotated[datetime | None, Query(alias="endDate", description="Inclusive upper bound")] = None,
    event_names: Annotated[list[str] | None, Query(alias="eventNames", description="Allowed event names")] = None,
    limit: Annotated[int | None, Query(ge=1, description="Maximum events to return")] = None,
) -> list[AnalyticsEvent]:
    """Caller's analytics events, newest first."""
    return analytics.query(
        user_id,
        start_date=start_date,
        end_date=end_date,
        event_names=[name for name in event_names if name.strip()] if event_names else None,
        limit=limit,
    )


@app.delete("/api/telemetry/events", response_model=AnalyticsDeleteResponse)
async def erase_events(user_id: CallerId, analytics: Analytics) -> AnalyticsDeleteResponse:
    """Erase every analytics event recorded for the caller."""
    return AnalyticsDeleteResponse(deleted=analytics.delete_for_user(user_id))


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in text exposition format."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
