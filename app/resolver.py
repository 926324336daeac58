"""
Lazy status resolution for bookings on their way out of the API.

Every booking handed to a client is first re-derived against the current time
and, if its stored status is stale, the correction is written back. The write
is a compare-and-set on the (status, version) that was read, so a stale
automatic correction can never overwrite a fresher admin decision.

Resolution never fails a request: write-back misses and errors are logged and
the derived status is returned for display regardless.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING

from loguru import logger

from app.scheduling import resolve_status
from app.schemas import BookingResponse

if TYPE_CHECKING:
    from app.crud import BookingCRUD


async def resolve_booking(
    booking: BookingResponse,
    now: datetime,
    crud: BookingCRUD,
) -> BookingResponse:
    derived = resolve_status(
        booking.status, booking.start_datetime, booking.end_datetime, now
    )
    if derived == booking.status:
        return booking

    try:
        written = await crud.compare_and_set_status(
            booking.id,
            derived,
            expected_status=booking.status,
            expected_version=booking.version,
            now=now,
        )
    except Exception:
        logger.opt(exception=True).warning(
            "Could not persist status {} -> {} for booking {}",
            booking.status,
            derived,
            booking.id,
        )
        return booking.model_copy(update={"status": derived})

    if not written:
        # Someone wrote this row after we read it: a concurrent resolve with
        # the same target, or an admin override. Their write stands.
        logger.warning(
            "Status write-back raced for booking {} (read {} v{}, derived {})",
            booking.id,
            booking.status,
            booking.version,
            derived,
        )
        return booking.model_copy(update={"status": derived})

    logger.debug(
        "Booking {} status {} -> {}", booking.id, booking.status, derived
    )
    return booking.model_copy(
        update={"status": derived, "version": booking.version + 1, "updated_at": now}
    )


async def resolve_bookings(
    bookings: list[BookingResponse],
    now: datetime,
    crud: BookingCRUD,
) -> list[BookingResponse]:
    """Resolve a page of bookings concurrently, preserving order."""
    return list(
        await asyncio.gather(*(resolve_booking(b, now, crud) for b in bookings))
    )
