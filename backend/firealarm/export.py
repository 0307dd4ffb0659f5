"""Delimited-text export of official incidents."""

import csv
import io
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from .config import settings
from .correlator import IncidentFilter, list_official_incidents
from .errors import NotFoundError, ValidationError
from .models import OfficialIncident
from .timeutil import format_local

EXPORT_FIELDS = (
    "id",
    "verified_incident_id",
    "device_id",
    "incident_timestamp",
    "alert_level",
    "incident_type",
    "establishment_type",
    "probable_cause",
    "barangay",
    "city",
    "estimated_damage",
    "injured",
    "fatalities",
    "remarks",
    "verified_by",
    "verified_at",
    "generated_by",
    "generated_at",
)

TIMESTAMP_FIELDS = {"incident_timestamp", "verified_at", "generated_at"}

# Both formats are the same CSV text; only the declared type differs
MEDIA_TYPES = {
    "csv": "text/csv; charset=utf-8",
    "excel": "application/vnd.ms-excel; charset=utf-8",
}


def _cell(incident: OfficialIncident, field: str, tz_name: str) -> str:
    if field == "verified_by":
        return incident.verifier.username if incident.verifier else ""
    if field == "generated_by":
        return incident.generator.username if incident.generator else ""
    value = getattr(incident, field)
    if field in TIMESTAMP_FIELDS:
        return format_local(value, tz_name)
    if value is None:
        return ""
    return str(value)


def render_csv(incidents: Iterable[OfficialIncident], tz_name: Optional[str] = None) -> str:
    """
    Serialize incidents as RFC 4180 CSV with a header row.

    Fields holding the delimiter, a quote or a line break are quoted with
    internal quotes doubled. Timestamps are rendered in ``tz_name``
    (default: the configured export timezone) so the file reads the same
    wherever it is opened.
    """
    tz_name = tz_name or settings.EXPORT_TIMEZONE
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    writer.writerow(EXPORT_FIELDS)
    for incident in incidents:
        writer.writerow([_cell(incident, field, tz_name) for field in EXPORT_FIELDS])
    return buffer.getvalue()


def export_filename(now: datetime) -> str:
    return f"official_incidents_{now:%Y%m%d_%H%M%S}.csv"


def export_official_incidents(
    db: Session,
    filters: Optional[IncidentFilter] = None,
    export_format: str = "csv",
) -> Tuple[str, str]:
    """
    Export every matching official incident.

    Returns ``(body, media_type)``. Raises NotFoundError when nothing matches.
    """
    if export_format not in MEDIA_TYPES:
        raise ValidationError(f"Unsupported export format: {export_format}")

    incidents: List[OfficialIncident] = list_official_incidents(db, filters, limit=None)
    if not incidents:
        raise NotFoundError("No records found for the selected range")
    return render_csv(incidents), MEDIA_TYPES[export_format]
