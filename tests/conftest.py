"""
Shared pytest fixtures available to every test file automatically.
No imports needed in test files — pytest discovers this by convention.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.deps import (
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
from app.routers.booking import router

from .factories import NOW, make_admin, make_customer

ROUTER_PATH = "app.routers.booking"

# ---------------------------------------------------------------------------
# Default no-op client mocks — prevent real HTTP calls in tests
# ---------------------------------------------------------------------------


def _noop_resources_client():
    mock = MagicMock()
    mock.get_resource = AsyncMock(return_value=None)
    mock.get_by_ids = AsyncMock(return_value=[])
    return mock


def _noop_users_client():
    mock = MagicMock()
    mock.get_by_ids = AsyncMock(return_value=[])
    return mock


def _noop_notifications_client():
    mock = MagicMock()
    mock.dispatch = AsyncMock(return_value=True)
    return mock


# ---------------------------------------------------------------------------
# App builder — used by all client fixtures
# ---------------------------------------------------------------------------


def build_app(
    current_user,
    resources_client=None,
    users_client=None,
    notifications_client=None,
    now=NOW,
) -> FastAPI:
    """
    Fresh FastAPI app with auth/scope dependencies overridden to return
    `current_user` unconditionally and the clock pinned to `now`.

    Pass client mocks to inject custom behaviour.
    Defaults to no-op mocks that return empty lists, avoiding real HTTP calls.
    """
    app = FastAPI()
    app.include_router(router)

    async def _user():
        return current_user

    for dep in (
        can_read_booking,
        can_write_booking,
        can_cancel_booking,
        require_booking_admin,
        get_current_user,
    ):
        app.dependency_overrides[dep] = _user

    rc = resources_client if resources_client is not None else _noop_resources_client()
    uc = users_client if users_client is not None else _noop_users_client()
    nc = (
        notifications_client
        if notifications_client is not None
        else _noop_notifications_client()
    )
    app.dependency_overrides[get_resources_client] = lambda: rc
    app.dependency_overrides[get_users_client] = lambda: uc
    app.dependency_overrides[get_notifications_client] = lambda: nc
    app.dependency_overrides[get_now] = lambda: now

    return app


# ---------------------------------------------------------------------------
# Redis: never reached from router tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def slots_cache():
    with (
        patch(f"{ROUTER_PATH}.get_slots_cache", AsyncMock(return_value=None)) as get_,
        patch(f"{ROUTER_PATH}.set_slots_cache", AsyncMock()) as set_,
        patch(f"{ROUTER_PATH}.invalidate_slots_cache", AsyncMock()) as invalidate,
    ):
        yield SimpleNamespace(get=get_, set=set_, invalidate=invalidate)


# ---------------------------------------------------------------------------
# Reusable client fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def customer_client():
    return TestClient(build_app(make_customer()), raise_server_exceptions=True)


@pytest.fixture()
def admin_client():
    return TestClient(build_app(make_admin()), raise_server_exceptions=True)


@pytest.fixture()
def anon_app():
    """
    Bare app with NO dependency overrides besides the clock.
    Use this when you want real scope/auth deps to run so you can assert 401/403/422.
    """
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_now] = lambda: NOW
    return app


@pytest.fixture()
def client_factory():
    def _make(
        current_user,
        resources_client=None,
        users_client=None,
        notifications_client=None,
        now=NOW,
    ) -> TestClient:
        return TestClient(
            build_app(
                current_user,
                resources_client=resources_client,
                users_client=users_client,
                notifications_client=notifications_client,
                now=now,
            ),
            raise_server_exceptions=True,
        )

    return _make
