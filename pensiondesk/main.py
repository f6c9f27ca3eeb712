from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from pensiondesk.cache.client import build_cache_client
from pensiondesk.db import filters as _filters  # noqa: F401  (register SQLAlchemy filters)
from pensiondesk.db.init_db import init_db
from pensiondesk.db.session import build_engine, build_session_factory
from pensiondesk.errors import AppError, app_error_handler
from pensiondesk.logging_config import configure_app_logging
from pensiondesk.routers import admin, branches, health, territory
from pensiondesk.security.permissions import PermissionEngine
from pensiondesk.security.territory import TerritoryEngine
from pensiondesk.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        resolved = settings or get_settings()
        configure_app_logging(resolved.log_level)
        logger.info("App startup beginning")

        engine = build_engine(resolved)
        session_factory = build_session_factory(engine)
        cache = build_cache_client(resolved)
        permission_engine = PermissionEngine(cache, session_factory)

        app.state.settings = resolved
        app.state.session_factory = session_factory
        app.state.permission_engine = permission_engine
        app.state.territory_engine = TerritoryEngine(cache, session_factory, permission_engine)
        logger.info("Cache backend=%s available=%s", resolved.cache_backend, cache.is_available())

        await init_db(engine, session_factory, resolved.resolved_permission_catalog_path())
        logger.info("Database initialized (tables ensured + seed if needed)")

        yield

        # Shutdown
        close = getattr(cache, "close", None)
        if close is not None:
            await close()
        await engine.dispose()

    app = FastAPI(lifespan=lifespan)
    app.add_exception_handler(AppError, app_error_handler)

    app.include_router(health.router)
    app.include_router(territory.router)
    app.include_router(branches.router)
    app.include_router(admin.router)

    return app


app = create_app()
