import os
import logging
import asyncio
from typing import AsyncGenerator, Awaitable, Callable
from fastapi import FastAPI
from contextlib import asynccontextmanager

import aiohttp

from utils.cancellation_manager import CancellationManager

from .config import setup_auth
from .container import ServiceContainer, build_container, create_storage
from .redis_client import close_redis_clients

logger = logging.getLogger("modelmix.service.lifecycle")

ContainerFactory = Callable[[], Awaitable[ServiceContainer]]


async def default_container_factory() -> ServiceContainer:
    http_session = aiohttp.ClientSession()
    return build_container(
        storage=create_storage(),
        auth_config=setup_auth(http_session),
        http_session=http_session,
    )


async def periodic_cancellation_cleanup(cancellation_manager: CancellationManager, interval_seconds: int = 300):
    """Periodically drop cancellation tokens left behind by abandoned comparisons"""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = await cancellation_manager.cleanup_old_flags(max_age_minutes=10)
            if removed > 0:
                logger.info(f"Cancellation cleanup completed: removed {removed} stale tokens")
        except Exception as e:
            logger.error(f"Error during cancellation cleanup: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    factory: ContainerFactory = getattr(app.state, "container_factory", None) or default_container_factory
    services = await factory()
    app.state.services = services
    logger.info(f"Services ready with storage backend {type(services.storage).__name__}")

    interval = int(os.getenv("CANCELLATION_CLEANUP_INTERVAL", 300))
    cancellation_cleanup_task = asyncio.create_task(
        periodic_cancellation_cleanup(services.cancellation_manager, interval)
    )

    try:
        yield
    finally:
        cancellation_cleanup_task.cancel()
        try:
            await cancellation_cleanup_task
        except asyncio.CancelledError:
            logger.info("Cancellation cleanup task cancelled during shutdown")

        await services.close()
        await close_redis_clients()
