"""FastAPI backend for the fire alarm monitoring system."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response, StreamingResponse
from sqlalchemy.orm import Session

from . import chat, correlator, schemas
from .auth import get_current_user
from .config import settings
from .correlator import IncidentFilter
from .db import get_db, init_db
from .errors import FireAlarmError
from .export import export_filename, export_official_incidents
from .models import User
from .realtime import ConnectionManager
from .timeutil import utcnow

handlers: List[logging.Handler] = [logging.StreamHandler()]
if settings.LOG_FILE:
    handlers.append(logging.FileHandler(settings.LOG_FILE, encoding="utf-8"))
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=handlers,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    init_db()
    logger.info("Fire alarm backend ready (database: %s)", settings.DATABASE_URL.split("://", 1)[0])
    yield
    logger.info("Shutting down; dropping %d open streams", len(app.state.hub.snapshot()))


app = FastAPI(
    title="Fire Alarm Monitoring",
    description="Incident verification pipeline and responder chat",
    version="1.0.0",
    lifespan=lifespan,
)
app.state.hub = ConnectionManager()


def get_hub(request: Request) -> ConnectionManager:
    return request.app.state.hub


@app.exception_handler(FireAlarmError)
async def fire_alarm_error_handler(request: Request, exc: FireAlarmError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


def incident_filter(
    device: Optional[str] = Query(default=None),
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    limit: int = Query(default=settings.PENDING_LIMIT_DEFAULT, ge=1, le=1000),
) -> IncidentFilter:
    return IncidentFilter(device_id=device, start=start, end=end, limit=limit)


# ============================================================================
# INCIDENTS
# ============================================================================

@app.get("/api/incidents/pending", response_model=List[schemas.PendingIncidentResponse])
async def pending_incidents(
    filters: IncidentFilter = Depends(incident_filter),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Alert windows at warning level or above that nobody has verified yet."""
    windows = correlator.list_pending_incidents(db, filters)
    return [
        {**w.to_dict(), "severity": correlator.alert_level_label(w.alert_level)}
        for w in windows
    ]


@app.get("/api/incidents/verified", response_model=List[schemas.VerifiedIncidentResponse])
async def verified_incidents(
    filters: IncidentFilter = Depends(incident_filter),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return [v.to_dict() for v in correlator.list_verified_incidents(db, filters)]


@app.post("/api/incidents/verify", response_model=schemas.VerifiedIncidentResponse)
async def verify_incident(
    body: schemas.VerifyIncidentInput,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    incident = correlator.verify_incident(
        db,
        verified_by=user,
        device_id=body.device_id,
        timestamp=body.timestamp,
        alert_level=body.alert_level,
        sensor_peaks=body.sensor_peaks.model_dump(),
        notes=body.notes,
    )
    return incident.to_dict()


@app.get("/api/incidents/official", response_model=List[schemas.OfficialIncidentResponse])
async def official_incidents(
    filters: IncidentFilter = Depends(incident_filter),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return [o.to_dict() for o in correlator.list_official_incidents(db, filters, limit=filters.limit)]


@app.post("/api/incidents/official", response_model=schemas.OfficialIncidentResponse)
async def file_official_incident(
    body: schemas.OfficialIncidentInput,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    details = body.model_dump(exclude={"verified_incident_id"})
    official = correlator.file_official_incident(db, body.verified_incident_id, details, generated_by=user)
    return official.to_dict()


@app.get("/api/incidents/official/export")
async def export_incidents(
    format: str = Query(default="csv", pattern="^(csv|excel)$"),
    device: Optional[str] = Query(default=None),
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Download official incidents as CSV text (``excel`` only changes the declared type)."""
    filters = IncidentFilter(device_id=device, start=start, end=end)
    body, media_type = export_official_incidents(db, filters, format)
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{export_filename(utcnow())}"'},
    )


# ============================================================================
# ANALYTICS
# ============================================================================

@app.get("/api/analytics", response_model=schemas.AnalyticsResponse)
async def analytics(
    device: Optional[str] = Query(default=None, alias="m"),
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    filters = IncidentFilter(device_id=device, start=start, end=end, limit=correlator.ANALYTICS_LIMIT)
    rows = correlator.list_alert_windows(db, filters)
    logger.debug("Analytics query rows: %d", len(rows))
    return {"rows": [r.to_dict() for r in rows]}


@app.get("/api/analytics/devices", response_model=schemas.DevicesResponse)
async def analytics_devices(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"devices": correlator.list_devices(db)}


# ============================================================================
# CHAT
# ============================================================================

@app.get("/messages/stream")
async def message_stream(
    user: User = Depends(get_current_user),
    hub: ConnectionManager = Depends(get_hub),
):
    """
    SSE endpoint for real-time chat events.
    """
    return StreamingResponse(
        hub.open_stream(user.id, user.username),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@app.get("/messages/online", response_model=schemas.OnlineResponse)
async def online_users(
    user: User = Depends(get_current_user),
    hub: ConnectionManager = Depends(get_hub),
):
    return hub.online_users()


@app.get("/messages", response_model=List[schemas.MessageResponse])
async def list_messages(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=settings.MESSAGE_PAGE_SIZE, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return chat.list_messages(db, user, page=page, limit=limit)


@app.post("/messages", response_model=schemas.MessageResponse)
async def send_message(
    body: schemas.MessageInput,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    hub: ConnectionManager = Depends(get_hub),
):
    return chat.send_message(db, hub, user, body.message, message_type=body.type)


@app.post("/messages/typing", response_model=schemas.SuccessResponse)
async def typing(
    body: schemas.TypingInput,
    user: User = Depends(get_current_user),
    hub: ConnectionManager = Depends(get_hub),
):
    chat.relay_typing(hub, user, body.isTyping)
    return {"success": True}


@app.delete("/messages/{message_id}", response_model=schemas.SuccessResponse)
async def delete_message(
    message_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    hub: ConnectionManager = Depends(get_hub),
):
    chat.delete_message(db, hub, message_id, user)
    return {"success": True}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "streams": len(app.state.hub.snapshot())}
