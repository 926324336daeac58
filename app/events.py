"""
Booking notification events handed to the notifications service.

The notifications service owns storage and push delivery; bookings-ms only
says "booking B of user U is now X".
"""

from __future__ import annotations

from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, Field

from app.models import BookingStatus
from app.schemas import BookingResponse


class NotificationType(StrEnum):
    BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
    BOOKING_REMINDER = "BOOKING_REMINDER"
    BOOKING_STATUS = "BOOKING_STATUS"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"


_STATUS_TITLES: dict[BookingStatus, str] = {
    BookingStatus.PENDING: "Booking pending",
    BookingStatus.CONFIRMED: "Booking confirmed",
    BookingStatus.IN_PROGRESS: "Booking in progress",
    BookingStatus.COMPLETED: "Booking completed",
    BookingStatus.CANCELLED: "Booking cancelled",
    BookingStatus.REFUNDED: "Booking refunded",
}


class BookingEvent(BaseModel):
    type: NotificationType
    user_id: UUID
    booking_id: UUID
    status: BookingStatus
    title: str
    message: str
    data: dict[str, str] = Field(default_factory=dict)


def _event(
    booking: BookingResponse,
    type_: NotificationType,
    title: str,
    message: str,
) -> BookingEvent:
    return BookingEvent(
        type=type_,
        user_id=booking.user_id,
        booking_id=booking.id,
        status=booking.status,
        title=title,
        message=message,
        data={"type": type_.value, "booking_id": str(booking.id)},
    )


def booking_created_event(
    booking: BookingResponse, resource_name: str | None = None
) -> BookingEvent:
    target = resource_name or "your resource"
    return _event(
        booking,
        NotificationType.BOOKING_CONFIRMED,
        "Booking created",
        f"Your booking for {target} was created and confirmed.",
    )


def status_changed_event(booking: BookingResponse) -> BookingEvent:
    """Event for an explicit status change (admin update or cancellation)."""
    type_ = (
        NotificationType.BOOKING_CANCELLED
        if booking.status == BookingStatus.CANCELLED
        else NotificationType.BOOKING_STATUS
    )
    return _event(
        booking,
        type_,
        _STATUS_TITLES.get(booking.status, "Booking updated"),
        f"The status of your booking #{booking.id} changed to {booking.status}.",
    )


def reminder_event(booking: BookingResponse) -> BookingEvent:
    return _event(
        booking,
        NotificationType.BOOKING_REMINDER,
        "Booking reminder",
        f"Your booking #{booking.id} starts soon.",
    )
