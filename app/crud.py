from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import HTTPException, status
from tortoise.expressions import F
from tortoise.transactions import in_transaction

from app.cache import resource_lock
from app.models import (
    AUTO_START_STATUSES,
    BLOCKING_STATUSES,
    CANCELLABLE_STATUSES,
    Booking,
    BookingStatus,
)
from app.schemas import BookingFilters, BookingResponse, BookingSlot

HOUR = Decimal(3600)
CENTS = Decimal("0.01")


def _blocking_overlap(resource_id: UUID, start: datetime, end: datetime):
    """Blocking bookings on `resource_id` intersecting [start, end)."""
    return Booking.filter(
        resource_id=resource_id,
        status__in=list(BLOCKING_STATUSES),
        start_datetime__lt=end,
        end_datetime__gt=start,
    )


def price_booking(
    start: datetime, end: datetime, price_per_hour: Decimal
) -> tuple[Decimal, Decimal]:
    """Return (total_hours, total_price), both rounded to cents."""
    seconds = Decimal(str((end - start).total_seconds()))
    hours = seconds / HOUR
    return hours.quantize(CENTS), (price_per_hour * hours).quantize(CENTS)


class BookingCRUD:
    async def has_conflict(
        self,
        resource_id: UUID,
        start: datetime,
        end: datetime,
        exclude_id: UUID | None = None,
    ) -> bool:
        """Return True if a blocking booking overlaps the given window."""
        qs = _blocking_overlap(resource_id, start, end)
        if exclude_id is not None:
            qs = qs.exclude(id=exclude_id)
        return await qs.exists()

    async def create_booking(
        self,
        resource_id: UUID,
        user_id: UUID,
        start_datetime: datetime,
        end_datetime: datetime,
        price_per_hour: Decimal,
        notes: str | None,
    ) -> BookingResponse:
        """
        Persist a new confirmed booking with its price frozen.

        The conflict check and the insert share one transaction and run under
        the resource lock so two concurrent requests cannot both take a slot.
        """
        total_hours, total_price = price_booking(
            start_datetime, end_datetime, price_per_hour
        )

        async with resource_lock(resource_id):
            async with in_transaction():
                if await _blocking_overlap(
                    resource_id, start_datetime, end_datetime
                ).select_for_update().exists():
                    raise HTTPException(
                        status_code=status.HTTP_409_CONFLICT,
                        detail="Booking conflicts with an existing booking for this resource",
                    )

                inst = await Booking.create(
                    resource_id=resource_id,
                    user_id=user_id,
                    start_datetime=start_datetime,
                    end_datetime=end_datetime,
                    status=BookingStatus.CONFIRMED,
                    price_per_hour=price_per_hour,
                    total_hours=total_hours,
                    total_price=total_price,
                    notes=notes,
                )

        return BookingResponse.model_validate(inst, from_attributes=True)

    async def get_booking(
        self,
        booking_id: UUID,
        user_id: UUID | None = None,
    ) -> BookingResponse | None:
        if user_id is not None:
            inst = await Booking.get_or_none(id=booking_id, user_id=user_id)
        else:
            inst = await Booking.get_or_none(id=booking_id)

        if not inst:
            return None
        return BookingResponse.model_validate(inst, from_attributes=True)

    async def list_bookings(
        self,
        filters: BookingFilters,
        user_id: UUID | None = None,
    ) -> tuple[list[BookingResponse], int]:
        """Return one page of bookings and the total matching count."""
        qs = Booking.all()

        if user_id is not None:
            qs = qs.filter(user_id=user_id)
        if filters.resource_id is not None:
            qs = qs.filter(resource_id=filters.resource_id)
        if filters.status is not None:
            qs = qs.filter(status=filters.status)

        total = await qs.count()

        offset = (filters.page - 1) * filters.page_size
        bookings = await qs.offset(offset).limit(filters.page_size)
        return [
            BookingResponse.model_validate(b, from_attributes=True) for b in bookings
        ], total

    async def compare_and_set_status(
        self,
        booking_id: UUID,
        new_status: BookingStatus,
        *,
        expected_status: BookingStatus,
        expected_version: int,
        now: datetime,
    ) -> bool:
        """
        Write `new_status` only if the row still holds the status and version
        the caller read. Returns False when someone else wrote first.
        """
        updated = await Booking.filter(
            id=booking_id, status=expected_status, version=expected_version
        ).update(status=new_status, version=F("version") + 1, updated_at=now)
        return updated > 0

    async def cancel_booking(
        self, booking_id: UUID, user_id: UUID, now: datetime
    ) -> BookingResponse | None:
        """Cancel the user's booking if it is still pending or confirmed."""
        updated = await Booking.filter(
            id=booking_id,
            user_id=user_id,
            status__in=list(CANCELLABLE_STATUSES),
        ).update(
            status=BookingStatus.CANCELLED, version=F("version") + 1, updated_at=now
        )
        if not updated:
            return None
        return await self.get_booking(booking_id)

    async def list_occupied_slots(self, resource_id: UUID) -> list[BookingSlot]:
        """Return booked time windows for a resource, no user info exposed."""
        bookings = await Booking.filter(
            resource_id=resource_id,
            status__in=list(BLOCKING_STATUSES),
        ).only("start_datetime", "end_datetime")
        return [BookingSlot.model_validate(b, from_attributes=True) for b in bookings]

    # -----------------------------------------------------------------------
    # Sweep queries
    # -----------------------------------------------------------------------

    async def complete_elapsed(self, now: datetime) -> int:
        return await Booking.filter(
            status__in=list(BLOCKING_STATUSES),
            end_datetime__lte=now,
        ).update(
            status=BookingStatus.COMPLETED, version=F("version") + 1, updated_at=now
        )

    async def start_due(self, now: datetime) -> int:
        return await Booking.filter(
            status__in=list(AUTO_START_STATUSES),
            start_datetime__lte=now,
            end_datetime__gt=now,
        ).update(
            status=BookingStatus.IN_PROGRESS, version=F("version") + 1, updated_at=now
        )

    async def list_due_reminders(
        self, now: datetime, until: datetime
    ) -> list[BookingResponse]:
        bookings = await Booking.filter(
            status=BookingStatus.CONFIRMED,
            start_datetime__gte=now,
            start_datetime__lte=until,
            reminder_sent_at__isnull=True,
        )
        return [
            BookingResponse.model_validate(b, from_attributes=True) for b in bookings
        ]

    async def mark_reminded(self, booking_ids: Iterable[UUID], now: datetime) -> int:
        ids = list(booking_ids)
        if not ids:
            return 0
        return await Booking.filter(id__in=ids).update(reminder_sent_at=now)


booking_crud = BookingCRUD()
