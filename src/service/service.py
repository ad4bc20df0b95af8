import logging
from typing import Optional

from fastapi import FastAPI

from .config import get_cors_config, setup_rate_limiting
from .lifecycle import ContainerFactory, lifespan
from .middleware import setup_middleware
from .routers import admin, analytics, chat, misc, session, settings, usage

logger = logging.getLogger('modelmix.service')


def create_app(container_factory: Optional[ContainerFactory] = None) -> FastAPI:
    """
    Build the ModelMix API.

    ``container_factory`` replaces the default service wiring, which is how
    tests run the app against in-memory storage and fake providers.
    """
    app = FastAPI(title="ModelMix", lifespan=lifespan)
    app.state.container_factory = container_factory

    setup_rate_limiting(app)
    cors_allowed_origins, cors_allowed_methods, cors_allowed_headers = get_cors_config()
    setup_middleware(app, cors_allowed_origins, cors_allowed_methods, cors_allowed_headers)

    app.include_router(session.router)
    app.include_router(chat.router)
    app.include_router(usage.router)
    app.include_router(settings.router)
    app.include_router(analytics.router)
    app.include_router(admin.router)
    app.include_router(misc.router)

    logger.info("ModelMix app created")
    return app


app = create_app()
