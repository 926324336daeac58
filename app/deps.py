from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import lru_cache
from urllib.parse import quote, unquote
from uuid import UUID

import httpx
from fastapi import Depends, Header, HTTPException, status
from loguru import logger

from app import settings
from app.events import BookingEvent
from app.scopes import ADMIN_READ_SCOPES, ADMIN_WRITE_SCOPES, BookingScope


@dataclass
class CurrentUser:
    id: UUID
    username: str
    scopes: list[str] = field(default_factory=list)

    @property
    def is_booking_admin(self) -> bool:
        """May read every booking."""
        return any(s in ADMIN_READ_SCOPES for s in self.scopes)

    @property
    def is_booking_writer(self) -> bool:
        """May set any booking status."""
        return any(s in ADMIN_WRITE_SCOPES for s in self.scopes)


def get_current_user(
    x_user_id: str = Header(...),
    x_username: str = Header(...),
    x_user_scopes: str = Header(default=""),
) -> CurrentUser:
    """
    Reads the headers injected by the gateway after forwardAuth validation.
    The JWT has already been verified — we just trust these headers.
    """
    try:
        user_id = UUID(x_user_id)
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity from gateway",
        ) from None

    scopes = x_user_scopes.split(" ") if x_user_scopes else []

    return CurrentUser(id=user_id, username=unquote(x_username), scopes=scopes)


def get_now() -> datetime:
    """Current UTC time. Overridden in tests to pin the clock."""
    return datetime.now(UTC)


def require_scopes(*required: str):
    """
    Factory that returns a dependency enforcing one or more scopes.

    Usage:
        @router.get("/protected")
        async def route(user = Depends(require_scopes("bookings:read"))):
            ...
    """

    async def _dep(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        missing = [s for s in required if s not in current_user.scopes]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required scopes: {', '.join(missing)}",
            )
        return current_user

    return _dep


# ---------------------------------------------------------------------------
# Pre-built scope dependencies
# ---------------------------------------------------------------------------

can_write_booking = require_scopes(BookingScope.WRITE)
can_cancel_booking = require_scopes(BookingScope.CANCEL)


async def can_read_booking(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """
    Passes if the user can read their own bookings or is a booking admin.
    - bookings:read        → renter sees own bookings
    - admin:bookings[:read] → admin sees all
    """
    if not (BookingScope.READ in current_user.scopes or current_user.is_booking_admin):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=(
                f"Requires '{BookingScope.READ}' (customers) "
                f"or '{BookingScope.ADMIN_READ}' (admin)."
            ),
        )
    return current_user


async def require_booking_admin(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Admin-only endpoints: any status change and the manual sweep."""
    if not current_user.is_booking_writer:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Requires '{BookingScope.ADMIN_WRITE}' scope.",
        )
    return current_user


def _forward_headers(user: CurrentUser) -> dict[str, str]:
    """Traefik-style identity headers so upstream auth deps work normally."""
    return {
        "X-User-Id": str(user.id),
        "X-Username": quote(user.username),
        "X-User-Scopes": " ".join(user.scopes),
    }


# ---------------------------------------------------------------------------
# ResourcesClient — thin async wrapper around resources-ms internal API
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _get_resources_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.resources_ms_url,
        timeout=httpx.Timeout(5.0),
        follow_redirects=True,
    )


class ResourcesClient:
    """Rentable spaces and machines: price per hour and active flag."""

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_resources_http_client()

    def _headers(self, user: CurrentUser) -> dict[str, str]:
        return _forward_headers(user)

    async def get_resource(self, resource_id: UUID, user: CurrentUser) -> dict | None:
        """Returns resource dict or None if 404. Raises HTTPException on other errors."""
        resp = await self._client.get(
            f"/resources/{resource_id}", headers=self._headers(user)
        )
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"resources-ms returned {resp.status_code}",
            )
        return resp.json()

    async def get_by_ids(
        self, resource_ids: set[UUID], user: CurrentUser
    ) -> list[dict]:
        """Bulk-fetch resources by ID for name enrichment. Fails silently."""
        if not resource_ids:
            return []
        try:
            params = [("ids", str(rid)) for rid in resource_ids]
            resp = await self._client.get(
                "/resources/bulk", params=params, headers=self._headers(user)
            )
            if resp.status_code >= 400 or not resp.content:
                return []
            return resp.json()
        except (httpx.RequestError, ValueError):
            return []


_resources_client = ResourcesClient()


def get_resources_client() -> ResourcesClient:
    return _resources_client


# ---------------------------------------------------------------------------
# UsersClient — thin async wrapper around users-ms internal API
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _get_users_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.users_ms_url,
        timeout=httpx.Timeout(5.0),
        follow_redirects=True,
    )


class UsersClient:
    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_users_http_client()

    def _headers(self, user: CurrentUser) -> dict[str, str]:
        return _forward_headers(user)

    async def get_by_ids(self, user_ids: set[UUID], user: CurrentUser) -> list[dict]:
        """Bulk-fetch users by ID for name enrichment. Fails silently."""
        if not user_ids:
            return []
        try:
            params = [("ids", str(uid)) for uid in user_ids]
            resp = await self._client.get(
                "/users/bulk", params=params, headers=self._headers(user)
            )
            if resp.status_code >= 400 or not resp.content:
                return []
            return resp.json()
        except (httpx.RequestError, ValueError):
            return []


_users_client = UsersClient()


def get_users_client() -> UsersClient:
    return _users_client


# ---------------------------------------------------------------------------
# NotificationsClient: hands booking events to notifications-ms
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _get_notifications_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.notifications_ms_url,
        timeout=httpx.Timeout(5.0),
        follow_redirects=True,
    )


class NotificationsClient:
    """
    notifications-ms stores the in-app notification and fans it out to the
    user's push devices. Called from request handlers and from the sweep, so
    there is no caller identity to forward.
    Failures are logged and swallowed; a lost notification must not fail a booking.
    """

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_notifications_http_client()

    async def dispatch(self, event: BookingEvent) -> bool:
        """Returns True on success, False on any error (silently degraded)."""
        try:
            resp = await self._client.post(
                "/notifications/internal",
                json=event.model_dump(mode="json"),
                headers={"X-Internal-Service": "bookings-ms"},
            )
            if resp.status_code >= 400:
                logger.warning(
                    "notifications-ms returned {} for booking {}",
                    resp.status_code,
                    event.booking_id,
                )
                return False
            return True
        except Exception:
            logger.opt(exception=True).warning(
                "Notification dispatch failed for booking {}",
                event.booking_id,
            )
            return False


_notifications_client = NotificationsClient()


def get_notifications_client() -> NotificationsClient:
    return _notifications_client


async def close_http_clients() -> None:
    for factory in (
        _get_resources_http_client,
        _get_users_http_client,
        _get_notifications_http_client,
    ):
        if factory.cache_info().currsize:
            await factory().aclose()
            factory.cache_clear()
