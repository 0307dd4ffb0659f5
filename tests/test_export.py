# tests/test_export.py
import csv
import io
from datetime import datetime

import pytest

from firealarm import correlator
from firealarm.correlator import IncidentFilter
from firealarm.errors import NotFoundError, ValidationError
from firealarm.export import EXPORT_FIELDS, MEDIA_TYPES, export_official_incidents, render_csv


def file_case(db, users, when, **details):
    verified = correlator.verify_incident(db, users["admin"], "D1", when, 3)
    return correlator.file_official_incident(db, verified.id, details, users["admin"])


def parse(body):
    return list(csv.DictReader(io.StringIO(body, newline="")))


def test_tricky_values_round_trip(db, users):
    cause = 'He said, "it\'s faulty"'
    remarks = "Line one\nLine two, with comma"
    file_case(db, users, datetime(2025, 1, 1, 10, 0), probable_cause=cause, remarks=remarks, barangay="San Roque")

    body, _ = export_official_incidents(db)
    rows = parse(body)

    assert len(rows) == 1
    assert rows[0]["probable_cause"] == cause
    assert rows[0]["remarks"] == remarks
    assert rows[0]["barangay"] == "San Roque"
    assert '"He said, ""it\'s faulty"""' in body


def test_header_row_lists_fields(db, users):
    file_case(db, users, datetime(2025, 1, 1, 10, 0))
    body, _ = export_official_incidents(db)

    assert body.splitlines()[0] == ",".join(EXPORT_FIELDS)


def test_timestamps_use_fixed_export_timezone(db, users):
    official = file_case(db, users, datetime(2025, 1, 1, 20, 30))

    manila = parse(render_csv([official], "Asia/Manila"))[0]
    utc = parse(render_csv([official], "UTC"))[0]

    assert manila["incident_timestamp"] == "2025-01-02 04:30:00"
    assert utc["incident_timestamp"] == "2025-01-01 20:30:00"
    assert manila["verified_by"] == "admin"
    assert manila["generated_by"] == "admin"


def test_excel_is_same_text_with_other_media_type(db, users):
    file_case(db, users, datetime(2025, 1, 1, 10, 0), incident_type="Residential")

    csv_body, csv_type = export_official_incidents(db, export_format="csv")
    xls_body, xls_type = export_official_incidents(db, export_format="excel")

    assert csv_body == xls_body
    assert csv_type == MEDIA_TYPES["csv"]
    assert xls_type == MEDIA_TYPES["excel"]
    assert csv_type != xls_type


def test_empty_range_raises_not_found(db, users):
    file_case(db, users, datetime(2025, 1, 1, 10, 0))

    with pytest.raises(NotFoundError):
        export_official_incidents(db, IncidentFilter(start=datetime(2025, 6, 1)))


def test_date_range_selects_rows(db, users):
    file_case(db, users, datetime(2025, 1, 1, 10, 0), city="Manila")
    file_case(db, users, datetime(2025, 3, 1, 10, 0), city="Cebu")

    body, _ = export_official_incidents(db, IncidentFilter(start=datetime(2025, 2, 1), end=datetime(2025, 4, 1)))

    assert [row["city"] for row in parse(body)] == ["Cebu"]


def test_unknown_format_rejected(db, users):
    with pytest.raises(ValidationError):
        export_official_incidents(db, export_format="pdf")
