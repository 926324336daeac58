"""
Pure booking-time rules: interval overlap and time-driven status derivation.

Nothing here touches the database or reads the wall clock; "now" is always
passed in so the rules can be evaluated against fixed timestamps.
"""

from __future__ import annotations

from datetime import datetime

from app.models import TERMINAL_STATUSES, BookingStatus


def intervals_overlap(
    a_start: datetime,
    a_end: datetime,
    b_start: datetime,
    b_end: datetime,
) -> bool:
    """
    Return True if the half-open intervals [a_start, a_end) and
    [b_start, b_end) intersect.

    Touching intervals (one ends exactly when the other starts) do not overlap.
    Mirrors the `start_datetime__lt` / `end_datetime__gt` filter used by
    BookingCRUD.has_conflict.
    """
    return a_start < b_end and b_start < a_end


def is_terminal(status: BookingStatus) -> bool:
    return status in TERMINAL_STATUSES


def resolve_status(
    status: BookingStatus,
    start: datetime,
    end: datetime,
    now: datetime,
) -> BookingStatus:
    """
    Status a booking should hold at `now`.

    Precedence:
      1. terminal statuses are returned unchanged
      2. in_progress stays in_progress until `end`, even before `start`
         (an admin may start a booking early), then becomes completed
      3. pending / confirmed are derived from time alone
    """
    if is_terminal(status):
        return status

    if status == BookingStatus.IN_PROGRESS:
        if now >= end:
            return BookingStatus.COMPLETED
        return BookingStatus.IN_PROGRESS

    if now >= end:
        return BookingStatus.COMPLETED
    if start <= now:
        return BookingStatus.IN_PROGRESS
    return BookingStatus.CONFIRMED
