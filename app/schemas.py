from __future__ import annotations

import math
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models import BookingStatus


class _TimeRange(BaseModel):
    resource_id: UUID
    start_datetime: datetime
    end_datetime: datetime

    @field_validator("start_datetime", "end_datetime", mode="after")
    @classmethod
    def require_timezone(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            raise ValueError("datetime must be timezone-aware (include UTC offset)")
        return v.astimezone(timezone.utc)

    @model_validator(mode="after")
    def validate_time_range(self) -> _TimeRange:
        # Also rejects zero-length ranges
        if self.end_datetime <= self.start_datetime:
            raise ValueError("end_datetime must be after start_datetime")
        return self


class BookingCreate(_TimeRange):
    notes: str | None = Field(default=None, max_length=1000)


class AvailabilityCheck(_TimeRange):
    pass


class AvailabilityResponse(BaseModel):
    available: bool


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class BookingResponse(BaseModel):
    id: UUID
    resource_id: UUID
    user_id: UUID
    start_datetime: datetime
    end_datetime: datetime
    status: BookingStatus
    version: int = 0
    price_per_hour: Decimal
    total_hours: Decimal
    total_price: Decimal
    notes: str | None
    reminder_sent_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BookingEnriched(BookingResponse):
    """Booking plus display names pulled from the resources and users services."""

    resource_name: str | None = None
    customer_username: str | None = None
    customer_full_name: str | None = None


class BookingSlot(BaseModel):
    """Minimal occupied slot — reveals no user identity."""

    start_datetime: datetime
    end_datetime: datetime

    model_config = ConfigDict(from_attributes=True)


class BookingFilters(BaseModel):
    """Bind to a FastAPI route via Depends(BookingFilters)."""

    resource_id: UUID | None = None
    status: BookingStatus | None = None
    user_id: UUID | None = None  # honoured for admins only

    # Pagination
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class Pagination(BaseModel):
    page: int
    page_size: int
    total: int
    pages: int

    @classmethod
    def build(cls, page: int, page_size: int, total: int) -> Pagination:
        return cls(
            page=page,
            page_size=page_size,
            total=total,
            pages=math.ceil(total / page_size),
        )


class BookingPage(BaseModel):
    items: list[BookingEnriched]
    pagination: Pagination


class SweepResult(BaseModel):
    ran_at: datetime
    completed: int = 0
    started: int = 0
    reminded: int = 0
