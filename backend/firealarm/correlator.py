"""Incident correlation: pending alert windows, verification and official filing."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import exists, func
from sqlalchemy.orm import Session, joinedload

from .auth import require_admin
from .db import epoch_millis
from .errors import NotFoundError, ValidationError, storage_guard
from .models import AlertWindow, OfficialIncident, User, VerifiedIncident
from .timeutil import to_utc_naive, utcnow

logger = logging.getLogger(__name__)

CORRELATION_TOLERANCE_SEC = 3600  # 1 hour
INCIDENT_MIN_LEVEL = 2
CRITICAL_LEVEL = 3
DEFAULT_LIMIT = 100
ANALYTICS_LIMIT = 500

# Case fields supplied by the operator when filing an official incident
CASE_FIELDS = (
    "incident_type",
    "establishment_type",
    "probable_cause",
    "barangay",
    "city",
    "estimated_damage",
    "injured",
    "fatalities",
    "remarks",
)


@dataclass
class IncidentFilter:
    """Optional device and date-range filter shared by the incident queries."""

    device_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: int = DEFAULT_LIMIT

    def apply(self, query, device_column, time_column):
        if self.device_id:
            query = query.filter(device_column == self.device_id)
        if self.start is not None:
            query = query.filter(time_column >= to_utc_naive(self.start))
        if self.end is not None:
            query = query.filter(time_column <= to_utc_naive(self.end))
        return query


def alert_level_label(level: int) -> str:
    if level >= CRITICAL_LEVEL:
        return "critical"
    if level >= INCIDENT_MIN_LEVEL:
        return "warning"
    return "normal"


def covered_by_verification():
    """
    Correlated EXISTS clause: some verified incident for the same device lies
    strictly within the tolerance of the enclosing alert window's start.
    """
    delta = epoch_millis(VerifiedIncident.timestamp) - epoch_millis(AlertWindow.window_start)
    return exists().where(
        VerifiedIncident.device_id == AlertWindow.device_id,
        func.abs(delta) < CORRELATION_TOLERANCE_SEC * 1000,
    )


def list_pending_incidents(db: Session, filters: Optional[IncidentFilter] = None) -> List[AlertWindow]:
    """
    Alert windows at warning level or above that no verification covers.

    The set difference runs in one query as an anti-join, newest first.
    """
    filters = filters or IncidentFilter()
    with storage_guard(db, "list pending incidents"):
        query = db.query(AlertWindow).filter(
            AlertWindow.alert_level >= INCIDENT_MIN_LEVEL,
            ~covered_by_verification(),
        )
        query = filters.apply(query, AlertWindow.device_id, AlertWindow.window_start)
        return (
            query.order_by(AlertWindow.window_start.desc())
            .limit(filters.limit)
            .all()
        )


def list_verified_incidents(db: Session, filters: Optional[IncidentFilter] = None) -> List[VerifiedIncident]:
    """Verified incidents with their verifier loaded, most recently verified first."""
    filters = filters or IncidentFilter()
    with storage_guard(db, "list verified incidents"):
        query = db.query(VerifiedIncident).options(joinedload(VerifiedIncident.verifier))
        query = filters.apply(query, VerifiedIncident.device_id, VerifiedIncident.timestamp)
        return (
            query.order_by(VerifiedIncident.verified_at.desc(), VerifiedIncident.id.desc())
            .limit(filters.limit)
            .all()
        )


def verify_incident(
    db: Session,
    verified_by: Optional[User],
    device_id: Optional[str],
    timestamp: Optional[datetime],
    alert_level: Optional[int],
    sensor_peaks: Optional[Dict[str, Any]] = None,
    notes: Optional[str] = None,
) -> VerifiedIncident:
    """
    Record an operator's confirmation of an alert window.

    Pending status is recomputed on every read, so nothing else is updated
    here; a verification more than an hour from the window start leaves that
    window pending.
    """
    require_admin(verified_by)
    if not device_id or timestamp is None or alert_level is None:
        raise ValidationError("device_id, timestamp and alert_level are required")

    peaks = sensor_peaks or {}
    incident = VerifiedIncident(
        device_id=device_id,
        timestamp=to_utc_naive(timestamp),
        alert_level=alert_level,
        flame=peaks.get("flame"),
        smoke=peaks.get("smoke"),
        temperature=peaks.get("temperature"),
        gas=peaks.get("gas"),
        notes=notes,
        verified_by=verified_by.id,
        verified_at=utcnow(),
    )
    with storage_guard(db, "verify incident"):
        db.add(incident)
        db.commit()
        db.refresh(incident)

    logger.info(
        "Incident verified: id=%s device=%s level=%s by=%s",
        incident.id, device_id, alert_level, verified_by.username,
    )
    return incident


def file_official_incident(
    db: Session,
    verified_incident_id: int,
    case_details: Dict[str, Any],
    generated_by: Optional[User],
) -> OfficialIncident:
    """
    File an official case record from a verified incident.

    Verification provenance is copied from the source row. Filing the same
    verified incident twice is not rejected.
    """
    require_admin(generated_by)

    with storage_guard(db, "load verified incident"):
        verified = db.get(VerifiedIncident, verified_incident_id)
    if verified is None:
        raise NotFoundError(f"Verified incident {verified_incident_id} not found")

    details = {key: case_details[key] for key in CASE_FIELDS if case_details.get(key) is not None}
    official = OfficialIncident(
        verified_incident_id=verified.id,
        device_id=verified.device_id,
        incident_timestamp=verified.timestamp,
        alert_level=verified.alert_level,
        verified_by=verified.verified_by,
        verified_at=verified.verified_at,
        generated_by=generated_by.id,
        generated_at=utcnow(),
        **details,
    )
    with storage_guard(db, "file official incident"):
        db.add(official)
        db.commit()
        db.refresh(official)

    logger.info(
        "Official incident filed: id=%s from verified=%s by=%s",
        official.id, verified.id, generated_by.username,
    )
    return official


def list_official_incidents(
    db: Session,
    filters: Optional[IncidentFilter] = None,
    limit: Optional[int] = None,
) -> List[OfficialIncident]:
    """Official incidents in incident-time order; ``limit=None`` returns all matches."""
    filters = filters or IncidentFilter()
    with storage_guard(db, "list official incidents"):
        query = db.query(OfficialIncident).options(
            joinedload(OfficialIncident.verifier),
            joinedload(OfficialIncident.generator),
        )
        query = filters.apply(query, OfficialIncident.device_id, OfficialIncident.incident_timestamp)
        query = query.order_by(OfficialIncident.incident_timestamp.desc(), OfficialIncident.id.desc())
        if limit is not None:
            query = query.limit(limit)
        return query.all()


def list_alert_windows(db: Session, filters: Optional[IncidentFilter] = None) -> List[AlertWindow]:
    """Raw alert windows for charting, oldest first."""
    filters = filters or IncidentFilter(limit=ANALYTICS_LIMIT)
    with storage_guard(db, "list alert windows"):
        query = filters.apply(db.query(AlertWindow), AlertWindow.device_id, AlertWindow.window_start)
        return (
            query.order_by(AlertWindow.window_start.asc())
            .limit(min(filters.limit, ANALYTICS_LIMIT))
            .all()
        )


def list_devices(db: Session) -> List[str]:
    with storage_guard(db, "list devices"):
        rows = (
            db.query(AlertWindow.device_id)
            .filter(AlertWindow.device_id.isnot(None))
            .distinct()
            .order_by(AlertWindow.device_id)
            .all()
        )
    return [row[0] for row in rows]
