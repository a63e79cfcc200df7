"""Application entrypoint for the FastAPI service."""

import base64
import binascii
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from moodfeed.config import config
from moodfeed.core import CurationOrchestrator
from moodfeed.errors import ContextEmbeddingUnavailable, InvalidInput, StoreUnavailable
from moodfeed.logging import get_logger, setup_logging
from moodfeed.storage import (
    ALL,
    CorpusStore,
    MeetingRecord,
    close_engine,
    create_tables,
    get_engine,
    get_session_factory,
)
from moodfeed.wiring import build_services

setup_logging(config.log_level)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting application")

    # Ensure all tables exist (idempotent)
    await create_tables(get_engine())
    logger.info("Database tables ensured")

    services = build_services(config, get_session_factory())
    app.state.services = services

    yield

    logger.info("Shutting down application")
    await services.close()
    await close_engine()


app = FastAPI(
    title="moodfeed",
    version="0.1.0",
    lifespan=lifespan,
)


def get_orchestrator(request: Request) -> CurationOrchestrator:
    return request.app.state.services.orchestrator


def get_store(request: Request) -> CorpusStore:
    return request.app.state.services.store


async def verify_admin_token(
    authorization: str | None = Header(None, alias="Authorization"),
) -> None:
    """Require ADMIN_TOKEN on mutating admin endpoints when it is configured.

    Raises:
        HTTPException: If the token is missing or wrong
    """
    if not config.admin_token:
        return

    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    # Support "Bearer <token>" or just "<token>"
    token = authorization
    if authorization.startswith("Bearer "):
        token = authorization[7:]

    if token != config.admin_token:
        raise HTTPException(status_code=403, detail="Invalid admin token")


@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(ContextEmbeddingUnavailable)
async def context_embedding_handler(
    request: Request, exc: ContextEmbeddingUnavailable
) -> JSONResponse:
    logger.error(f"Context embedding unavailable: {exc}")
    return JSONResponse(status_code=503, content={"error": str(exc)})


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.error(f"Store unavailable: {exc}")
    return JSONResponse(status_code=503, content={"error": "Content store unavailable"})


def decode_image(image_base64: str | None) -> bytes | None:
    if not image_base64:
        return None
    # Tolerate data URLs as sent by browsers
    if image_base64.startswith("data:") and "," in image_base64:
        image_base64 = image_base64.split(",", 1)[1]
    try:
        return base64.b64decode(image_base64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="image_base64 is not valid base64")


class ContextPayload(BaseModel):
    """Context snapshot for ingestion and filtering."""

    free_text: str
    image_base64: str | None = None
    user_identity: str | None = None


class IngestPayload(ContextPayload):
    liked_item_ids: list[str] = Field(default_factory=list)


class ExpandPayload(BaseModel):
    liked_item_ids: list[str]


class PreviewPayload(BaseModel):
    text: str
    limit: int | None = Field(default=None, ge=1, le=100)
    threshold: float | None = Field(default=None, ge=-1.0, le=1.0)


class ResetPayload(BaseModel):
    """Omitted ``item_ids`` resets everything."""

    item_ids: list[str] | None = None


class MeetingPayload(BaseModel):
    id: str
    subject: str
    start_time: datetime
    end_time: datetime
    body_preview: str | None = None


class MeetingsPayload(BaseModel):
    user_identity: str
    meetings: list[MeetingPayload]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"ok": True}


@app.get("/stats")
async def get_stats(orchestrator: CurationOrchestrator = Depends(get_orchestrator)) -> dict:
    """Corpus counts: total, embedded, consumed and ready to serve."""
    return {"ok": True, **await orchestrator.stats()}


@app.post("/ingest")
async def ingest(
    payload: IngestPayload,
    orchestrator: CurationOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Populate the corpus from the user's current context."""
    result = await orchestrator.ingest(
        decode_image(payload.image_base64),
        payload.free_text,
        user_identity=payload.user_identity,
        liked_item_ids=payload.liked_item_ids,
    )
    return {"ok": True, **result.to_dict()}


@app.post("/filter")
async def filter_items(
    payload: ContextPayload,
    orchestrator: CurationOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Serve the best unconsumed matches for the context."""
    result = await orchestrator.filter(
        decode_image(payload.image_base64),
        payload.free_text,
        user_identity=payload.user_identity,
    )
    return {"ok": True, **result.to_dict()}


@app.post("/preview")
async def preview(
    payload: PreviewPayload,
    orchestrator: CurationOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Matches for a context text without marking anything consumed."""
    matches = await orchestrator.preview(
        payload.text, limit=payload.limit, threshold=payload.threshold
    )
    return {
        "ok": True,
        "items": [match.to_dict() for match in matches],
        "count": len(matches),
    }


@app.post("/expand")
async def expand(
    payload: ExpandPayload,
    orchestrator: CurationOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Grow the corpus with items similar to liked ones."""
    result = await orchestrator.expand(payload.liked_item_ids)
    return {"ok": True, **result.to_dict()}


@app.post("/reset-consumed")
async def reset_consumed(
    payload: ResetPayload,
    orchestrator: CurationOrchestrator = Depends(get_orchestrator),
    _: None = Depends(verify_admin_token),
) -> dict:
    """Make consumed items servable again."""
    item_ids = ALL if payload.item_ids is None else payload.item_ids
    changed = await orchestrator.reset_consumed(item_ids)
    return {"ok": True, "reset": changed}


@app.post("/calendar/meetings")
async def cache_meetings(
    payload: MeetingsPayload,
    store: CorpusStore = Depends(get_store),
    _: None = Depends(verify_admin_token),
) -> dict:
    """Cache a user's meetings for the calendar collaborator."""
    if not payload.user_identity.strip():
        raise InvalidInput("user_identity is required")

    records = [
        MeetingRecord(
            id=meeting.id,
            subject=meeting.subject,
            start_time=_as_utc(meeting.start_time),
            end_time=_as_utc(meeting.end_time),
            body_preview=meeting.body_preview,
        )
        for meeting in payload.meetings
    ]
    cached = await store.cache_meetings(payload.user_identity, records)
    return {"ok": True, "cached": cached}


@app.get("/calendar/meetings")
async def list_meetings(
    user_identity: str,
    store: CorpusStore = Depends(get_store),
) -> dict:
    """List a user's cached meetings."""
    meetings = await store.list_meetings(user_identity)
    return {
        "ok": True,
        "meetings": [
            {
                "id": meeting.id,
                "subject": meeting.subject,
                "start_time": meeting.start_time.isoformat(),
                "end_time": meeting.end_time.isoformat(),
                "duration_minutes": meeting.duration_minutes,
                "body_preview": meeting.body_preview,
            }
            for meeting in meetings
        ],
    }


if __name__ == "__main__":
    uvicorn.run(
        "moodfeed.main:app",
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )
