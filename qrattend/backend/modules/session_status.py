# qrattend/backend/modules/session_status.py

from datetime import datetime, timezone

from ..models.db_models import SessionStatus

# Statuses the sweep may still advance and an admin may still invalidate.
OPEN_STATUSES = [SessionStatus.UPCOMING, SessionStatus.ACTIVE]


def ensure_aware(value: datetime) -> datetime:
    """Treats naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def derive_status(start_time: datetime, end_time: datetime, now: datetime) -> SessionStatus:
    """
    Status of a non-invalidated session purely from its window and the clock.
    """
    if now >= end_time:
        return SessionStatus.EXPIRED
    if start_time <= now:
        return SessionStatus.ACTIVE
    return SessionStatus.UPCOMING


def can_invalidate(status: SessionStatus) -> bool:
    return status in OPEN_STATUSES


def truncate_to_minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


def check_scan_window(start_time: datetime, end_time: datetime, now: datetime):
    """
    Compares the scan time with the session window at minute resolution.

    Returns None if the scan is inside the window, otherwise "not_started" or
    "expired". This runs in addition to the status check because the status
    sweep can lag the clock by up to one interval.
    """
    now_m = truncate_to_minute(now)
    if now_m < truncate_to_minute(start_time):
        return "not_started"
    if now_m > truncate_to_minute(end_time):
        return "expired"
    return None
