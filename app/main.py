import asyncio
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger
from tortoise.contrib.fastapi import RegisterTortoise

from app import settings
from app.cache import close_redis
from app.crud import booking_crud
from app.deps import close_http_clients, get_notifications_client, get_now
from app.routers.booking import router as booking_router
from app.sweep import sweep_loop

logger.remove()
logger.add(sys.stderr, level=settings.log_level)

TORTOISE_MODULES = {"models": ["app.models"]}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    stop_event = asyncio.Event()
    sweep_task: asyncio.Task | None = None

    async with RegisterTortoise(
        app,
        db_url=settings.db_url,
        modules=TORTOISE_MODULES,
        generate_schemas=settings.generate_schemas,
    ):
        if settings.sweep_enabled:
            sweep_task = asyncio.create_task(
                sweep_loop(
                    stop_event,
                    settings.sweep_interval_seconds,
                    booking_crud,
                    get_notifications_client(),
                    get_now,
                )
            )
            logger.info(
                "Booking sweep every {}s", settings.sweep_interval_seconds
            )

        yield

        stop_event.set()
        if sweep_task is not None:
            await sweep_task

    await close_redis()
    await close_http_clients()


app = FastAPI(title="bookings-ms", lifespan=lifespan)
app.include_router(booking_router)


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    return {"status": "ok"}
