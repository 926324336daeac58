import asyncio
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger

from app.cache import get_slots_cache, invalidate_slots_cache, set_slots_cache
from app.crud import booking_crud
from app.deps import (
    CurrentUser,
    NotificationsClient,
    ResourcesClient,
    UsersClient,
    can_cancel_booking,
    can_read_booking,
    can_write_booking,
    get_current_user,
    get_notifications_client,
    get_now,
    get_resources_client,
    get_users_client,
    require_booking_admin,
)
from app.events import booking_created_event, status_changed_event
from app.models import CANCELLABLE_STATUSES
from app.resolver import resolve_booking, resolve_bookings
from app.schemas import (
    AvailabilityCheck,
    AvailabilityResponse,
    BookingCreate,
    BookingEnriched,
    BookingFilters,
    BookingPage,
    BookingResponse,
    BookingSlot,
    BookingStatusUpdate,
    Pagination,
    SweepResult,
)
from app.sweep import run_status_sweep

router = APIRouter(prefix="/bookings", tags=["bookings"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _enrich(
    bookings: list[BookingResponse],
    current_user: CurrentUser,
    resources_client: ResourcesClient,
    users_client: UsersClient,
) -> list[BookingEnriched]:
    """
    Attach resource names and renter names fetched from upstream services in
    parallel. Both upstream calls degrade gracefully — enriched fields become
    None on error.
    """
    if not bookings:
        return []

    resource_ids = {b.resource_id for b in bookings}
    user_ids = {b.user_id for b in bookings}

    resources_raw, users_raw = await asyncio.gather(
        resources_client.get_by_ids(resource_ids, current_user),
        users_client.get_by_ids(user_ids, current_user),
    )

    resource_map: dict[str, str | None] = {
        r["id"]: r.get("name") for r in resources_raw
    }
    user_map: dict[str, dict] = {
        u["id"]: {"username": u.get("username"), "full_name": u.get("full_name")}
        for u in users_raw
    }

    result = []
    for b in bookings:
        customer = user_map.get(str(b.user_id), {})
        result.append(
            BookingEnriched(
                **b.model_dump(),
                resource_name=resource_map.get(str(b.resource_id)),
                customer_username=customer.get("username"),
                customer_full_name=customer.get("full_name"),
            )
        )
    return result


def _require_future_start(start: datetime, now: datetime) -> None:
    if start <= now:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="start_datetime must be in the future",
        )


async def _get_bookable_resource(
    resource_id: UUID,
    current_user: CurrentUser,
    resources_client: ResourcesClient,
) -> dict:
    resource = await resources_client.get_resource(resource_id, current_user)
    if resource is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Resource not found",
        )
    if not resource.get("is_active"):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Resource is not available for booking (inactive)",
        )
    return resource


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/slots", response_model=list[BookingSlot])
async def get_resource_slots(
    resource_id: UUID,
    _: CurrentUser = Depends(get_current_user),
) -> list[BookingSlot]:
    """
    Returns occupied time windows for a resource.
    Any authenticated user can call this — response contains NO user identity.
    """
    cached = await get_slots_cache(resource_id)
    if cached is not None:
        logger.debug("Cache hit for slots: resource_id={}", resource_id)
        return [BookingSlot(**s) for s in cached]

    logger.debug("Cache miss for slots: resource_id={}", resource_id)
    slots = await booking_crud.list_occupied_slots(resource_id)
    await set_slots_cache(resource_id, [s.model_dump(mode="json") for s in slots])
    return slots


@router.post("/check-availability", response_model=AvailabilityResponse)
async def check_availability(
    payload: AvailabilityCheck,
    current_user: CurrentUser = Depends(get_current_user),
    now: datetime = Depends(get_now),
    resources_client: ResourcesClient = Depends(get_resources_client),
) -> AvailabilityResponse:
    """Preview whether a window is free, without booking it."""
    _require_future_start(payload.start_datetime, now)
    await _get_bookable_resource(payload.resource_id, current_user, resources_client)

    conflict = await booking_crud.has_conflict(
        payload.resource_id, payload.start_datetime, payload.end_datetime
    )
    logger.debug(
        "Availability resource={} [{}, {}) conflict={}",
        payload.resource_id,
        payload.start_datetime,
        payload.end_datetime,
        conflict,
    )
    return AvailabilityResponse(available=not conflict)


@router.post("/admin/sweep", response_model=SweepResult)
async def trigger_sweep(
    _: CurrentUser = Depends(require_booking_admin),
    now: datetime = Depends(get_now),
    notifications_client: NotificationsClient = Depends(get_notifications_client),
) -> SweepResult:
    """Run one status sweep tick immediately."""
    return await run_status_sweep(now, booking_crud, notifications_client)


@router.get("/", response_model=BookingPage)
async def list_bookings(
    filters: BookingFilters = Depends(),
    current_user: CurrentUser = Depends(can_read_booking),
    now: datetime = Depends(get_now),
    resources_client: ResourcesClient = Depends(get_resources_client),
    users_client: UsersClient = Depends(get_users_client),
) -> BookingPage:
    if current_user.is_booking_admin:
        bookings, total = await booking_crud.list_bookings(
            filters=filters, user_id=filters.user_id
        )
    else:
        bookings, total = await booking_crud.list_bookings(
            filters=filters, user_id=current_user.id
        )

    resolved = await resolve_bookings(bookings, now, booking_crud)
    items = await _enrich(resolved, current_user, resources_client, users_client)
    return BookingPage(
        items=items,
        pagination=Pagination.build(filters.page, filters.page_size, total),
    )


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    current_user: CurrentUser = Depends(can_write_booking),
    now: datetime = Depends(get_now),
    resources_client: ResourcesClient = Depends(get_resources_client),
    notifications_client: NotificationsClient = Depends(get_notifications_client),
) -> BookingResponse:
    # 1. Bookings are auto-confirmed, so they may only start in the future
    _require_future_start(payload.start_datetime, now)

    # 2. Resource must exist and be active; its current price gets frozen
    resource = await _get_bookable_resource(
        payload.resource_id, current_user, resources_client
    )

    # 3. Conflict check and insert happen atomically in CRUD
    booking = await booking_crud.create_booking(
        resource_id=payload.resource_id,
        user_id=current_user.id,
        start_datetime=payload.start_datetime,
        end_datetime=payload.end_datetime,
        price_per_hour=Decimal(str(resource["price_per_hour"])),
        notes=payload.notes,
    )
    logger.info(
        "Booking {} created for resource {} by user {}",
        booking.id,
        booking.resource_id,
        current_user.id,
    )

    await invalidate_slots_cache(payload.resource_id)
    await notifications_client.dispatch(
        booking_created_event(booking, resource.get("name"))
    )
    return booking


@router.get("/{booking_id}", response_model=BookingEnriched)
async def get_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_read_booking),
    now: datetime = Depends(get_now),
    resources_client: ResourcesClient = Depends(get_resources_client),
    users_client: UsersClient = Depends(get_users_client),
) -> BookingEnriched:
    if current_user.is_booking_admin:
        booking = await booking_crud.get_booking(booking_id)
    else:
        booking = await booking_crud.get_booking(booking_id, user_id=current_user.id)

    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )

    resolved = await resolve_booking(booking, now, booking_crud)
    results = await _enrich([resolved], current_user, resources_client, users_client)
    return results[0]


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    current_user: CurrentUser = Depends(can_cancel_booking),
    now: datetime = Depends(get_now),
    notifications_client: NotificationsClient = Depends(get_notifications_client),
) -> BookingResponse:
    """The renter cancels their own booking while it is pending or confirmed."""
    booking = await booking_crud.get_booking(booking_id, user_id=current_user.id)
    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )

    booking = await resolve_booking(booking, now, booking_crud)
    if booking.status not in CANCELLABLE_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Booking cannot be cancelled in status '{booking.status}'",
        )

    cancelled = await booking_crud.cancel_booking(booking_id, current_user.id, now)
    if not cancelled:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Booking changed while cancelling, reload and retry",
        )
    logger.info("Booking {} cancelled by user {}", booking_id, current_user.id)

    await invalidate_slots_cache(booking.resource_id)
    await notifications_client.dispatch(status_changed_event(cancelled))
    return cancelled


@router.patch("/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: UUID,
    payload: BookingStatusUpdate,
    current_user: CurrentUser = Depends(require_booking_admin),
    now: datetime = Depends(get_now),
    notifications_client: NotificationsClient = Depends(get_notifications_client),
) -> BookingResponse:
    """
    Admin sets any status, e.g. starting a booking early with in_progress.
    The write only lands if nobody changed the booking since it was read.
    """
    booking = await booking_crud.get_booking(booking_id)
    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found"
        )

    written = await booking_crud.compare_and_set_status(
        booking.id,
        payload.status,
        expected_status=booking.status,
        expected_version=booking.version,
        now=now,
    )
    if not written:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Booking was modified concurrently, reload and retry",
        )
    logger.info(
        "Booking {} status {} -> {} by admin {}",
        booking.id,
        booking.status,
        payload.status,
        current_user.id,
    )

    updated = booking.model_copy(
        update={
            "status": payload.status,
            "version": booking.version + 1,
            "updated_at": now,
        }
    )
    # The owner hears about the status the booking keeps, so re-derive first:
    # pending on a future booking reads back as confirmed.
    resolved = await resolve_booking(updated, now, booking_crud)
    await invalidate_slots_cache(booking.resource_id)
    await notifications_client.dispatch(status_changed_event(resolved))
    return resolved
