import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

from fastapi import HTTPException, status
from loguru import logger
from redis.asyncio import Redis

from app.settings import REDIS_URL

_redis: Redis | None = None
SLOTS_TTL = 60  # 1 minute
LOCK_TTL = 10  # seconds a create lock may be held
LOCK_WAIT = 5  # seconds to wait for a busy lock


def get_redis() -> Redis:
    global _redis
    if _redis is None:
        _redis = Redis.from_url(REDIS_URL, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def _slots_key(resource_id: UUID) -> str:
    return f"slots:{resource_id}"


def _lock_key(resource_id: UUID) -> str:
    return f"lock:resource:{resource_id}"


async def get_slots_cache(resource_id: UUID) -> list | None:
    try:
        data = await get_redis().get(_slots_key(resource_id))
        return json.loads(data) if data else None
    except Exception:
        logger.opt(exception=True).warning("Redis get failed, skipping slots cache")
        return None


async def set_slots_cache(resource_id: UUID, slots: list) -> None:
    try:
        await get_redis().setex(
            _slots_key(resource_id), SLOTS_TTL, json.dumps(slots)
        )
    except Exception:
        logger.opt(exception=True).warning("Redis set failed, skipping slots cache")


async def invalidate_slots_cache(resource_id: UUID) -> None:
    try:
        await get_redis().delete(_slots_key(resource_id))
    except Exception:
        logger.opt(exception=True).warning("Redis invalidate failed for slots cache")


@asynccontextmanager
async def resource_lock(resource_id: UUID) -> AsyncIterator[None]:
    """
    Serialize booking creation per resource.

    Falls back to running unlocked when Redis is unreachable; the database
    transaction in BookingCRUD.create_booking still guards the insert.
    Raises 409 if another creation holds the lock past LOCK_WAIT.
    """
    lock = get_redis().lock(
        _lock_key(resource_id), timeout=LOCK_TTL, blocking_timeout=LOCK_WAIT
    )
    try:
        acquired = await lock.acquire()
    except Exception:
        logger.opt(exception=True).warning(
            "Redis lock unavailable for resource {}, continuing unlocked",
            resource_id,
        )
        acquired = None

    if acquired is None:
        yield
        return

    if not acquired:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Another booking for this resource is being processed, retry",
        )

    try:
        yield
    finally:
        try:
            await lock.release()
        except Exception:
            logger.opt(exception=True).warning("Releasing resource lock failed")
