"""
Tests for app/resolver.py: lazy resolution with compare-and-set write-back.
CRUD is an AsyncMock; coroutines are driven with asyncio.run.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from app.crud import BookingCRUD
from app.models import BookingStatus
from app.resolver import resolve_booking, resolve_bookings
from app.scheduling import resolve_status

from .factories import BOOKING_ID, at, booking_model


def _booking(status: str = "confirmed", version: int = 3, **overrides):
    return booking_model(
        status=status,
        version=version,
        start_datetime=at(9).isoformat(),
        end_datetime=at(10).isoformat(),
        **overrides,
    )


def _crud(written: bool = True) -> MagicMock:
    crud = MagicMock()
    crud.compare_and_set_status = AsyncMock(return_value=written)
    return crud


class TestResolveBooking:
    def test_unchanged_status_skips_write(self):
        crud = _crud()
        booking = _booking("confirmed")
        result = asyncio.run(resolve_booking(booking, at(8), crud))
        assert result is booking
        crud.compare_and_set_status.assert_not_awaited()

    def test_derived_status_written_with_read_status_and_version(self):
        crud = _crud()
        now = at(9, 30)
        result = asyncio.run(resolve_booking(_booking("confirmed", 3), now, crud))

        assert result.status == BookingStatus.IN_PROGRESS
        assert result.version == 4
        assert result.updated_at == now
        crud.compare_and_set_status.assert_awaited_once_with(
            BOOKING_ID,
            BookingStatus.IN_PROGRESS,
            expected_status=BookingStatus.CONFIRMED,
            expected_version=3,
            now=now,
        )

    def test_race_miss_still_returns_derived_status(self):
        crud = _crud(written=False)
        result = asyncio.run(resolve_booking(_booking("confirmed", 3), at(10, 1), crud))
        assert result.status == BookingStatus.COMPLETED
        # Version left as read: this caller's write did not land
        assert result.version == 3

    def test_persistence_error_is_swallowed(self):
        crud = MagicMock()
        crud.compare_and_set_status = AsyncMock(side_effect=RuntimeError("db down"))
        result = asyncio.run(resolve_booking(_booking("confirmed"), at(9, 30), crud))
        assert result.status == BookingStatus.IN_PROGRESS

    def test_terminal_booking_never_written(self):
        crud = _crud()
        for status in ("cancelled", "refunded", "completed"):
            result = asyncio.run(resolve_booking(_booking(status), at(23), crud))
            assert result.status == status
        crud.compare_and_set_status.assert_not_awaited()

    def test_admin_early_start_not_reverted(self):
        crud = _crud()
        result = asyncio.run(resolve_booking(_booking("in_progress"), at(8, 55), crud))
        assert result.status == BookingStatus.IN_PROGRESS
        crud.compare_and_set_status.assert_not_awaited()

    def test_pending_normalised_to_confirmed(self):
        crud = _crud()
        result = asyncio.run(resolve_booking(_booking("pending"), at(8), crud))
        assert result.status == BookingStatus.CONFIRMED
        crud.compare_and_set_status.assert_awaited_once()


class TestResolveBookings:
    def test_preserves_order(self):
        crud = _crud()
        ids = [uuid4() for _ in range(3)]
        bookings = [
            _booking("confirmed", id=str(ids[0])),
            _booking("cancelled", id=str(ids[1])),
            _booking("in_progress", id=str(ids[2])),
        ]
        result = asyncio.run(resolve_bookings(bookings, at(9, 30), crud))
        assert [b.id for b in result] == ids
        assert [b.status for b in result] == [
            BookingStatus.IN_PROGRESS,
            BookingStatus.CANCELLED,
            BookingStatus.IN_PROGRESS,
        ]

    def test_empty_list(self):
        assert asyncio.run(resolve_bookings([], at(9), _crud())) == []


# ---------------------------------------------------------------------------
# Sweep / lazy convergence
# ---------------------------------------------------------------------------


_LOOKUPS = {
    "in": lambda value, arg: value in arg,
    "lte": lambda value, arg: value <= arg,
    "gt": lambda value, arg: value > arg,
}


def _captured_passes(now) -> list[tuple[dict, BookingStatus]]:
    """(filter kwargs, target status) of each BookingCRUD bulk pass, in sweep order."""
    passes = []
    for method in (BookingCRUD.complete_elapsed, BookingCRUD.start_due):
        with patch("app.crud.Booking") as model:
            model.filter.return_value.update = AsyncMock(return_value=0)
            asyncio.run(method(BookingCRUD(), now))
        passes.append(
            (
                model.filter.call_args.kwargs,
                model.filter.return_value.update.call_args.kwargs["status"],
            )
        )
    return passes


def _apply_sweep(status, start, end, now):
    """Run one row through the filters BookingCRUD's bulk passes actually build."""
    row = {"status": status, "start_datetime": start, "end_datetime": end}
    for filters, target in _captured_passes(now):
        matched = True
        for key, arg in filters.items():
            field, lookup = key.split("__")
            matched = matched and _LOOKUPS[lookup](row[field], arg)
        if matched:
            row["status"] = target
    return row["status"]


class TestSweepLazyConvergence:
    @pytest.mark.parametrize("status", list(BookingStatus))
    @pytest.mark.parametrize(
        "now", [at(8), at(8, 59), at(9), at(9, 30), at(10), at(12)]
    )
    def test_sweep_then_resolve_equals_resolve(self, status, now):
        start, end = at(9), at(10)
        swept = _apply_sweep(status, start, end, now)
        assert resolve_status(swept, start, end, now) == resolve_status(
            status, start, end, now
        )
