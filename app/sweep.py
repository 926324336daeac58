"""
Periodic status sweep.

Bulk counterpart of app.resolver: moves every elapsed booking to completed,
every started pending/confirmed booking to in_progress, and sends the
24h-ahead reminders. Runs as a background task started by app.main.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from loguru import logger

from app import settings
from app.events import reminder_event
from app.schemas import SweepResult

if TYPE_CHECKING:
    from app.crud import BookingCRUD
    from app.deps import NotificationsClient

REMINDER_LEAD = timedelta(hours=settings.reminder_lead_hours)


async def run_status_sweep(
    now: datetime,
    crud: BookingCRUD,
    notifier: NotificationsClient,
) -> SweepResult:
    # Completion first so a booking that both started and ended since the last
    # tick lands in completed without passing through in_progress.
    completed = await crud.complete_elapsed(now)
    started = await crud.start_due(now)

    due = await crud.list_due_reminders(now, now + REMINDER_LEAD)
    reminded = []
    for booking in due:
        if await notifier.dispatch(reminder_event(booking)):
            reminded.append(booking.id)
        else:
            logger.warning("Reminder for booking {} not sent, retry next tick", booking.id)
    await crud.mark_reminded(reminded, now)

    result = SweepResult(
        ran_at=now, completed=completed, started=started, reminded=len(reminded)
    )
    logger.info(
        "Booking sweep: {} completed, {} started, {} reminded",
        completed,
        started,
        len(reminded),
    )
    return result


async def sweep_loop(
    stop_event: asyncio.Event,
    interval: float,
    crud: BookingCRUD,
    notifier: NotificationsClient,
    clock: Callable[[], datetime],
) -> None:
    while not stop_event.is_set():
        try:
            await run_status_sweep(clock(), crud, notifier)
        except Exception:
            logger.opt(exception=True).error("Booking sweep tick failed")
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue
