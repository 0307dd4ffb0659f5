# tests/helpers.py
from firealarm.models import AlertWindow


def as_user(user):
    return {"X-User-Id": str(user.id)}


def add_window(db, device_id, start, level, **sensors):
    window = AlertWindow(device_id=device_id, window_start=start, last_seen=start, alert_level=level, **sensors)
    db.add(window)
    db.commit()
    return window
