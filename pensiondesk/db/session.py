from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pensiondesk.settings import Settings


def build_engine(settings: Settings) -> AsyncEngine:
    url = settings.resolved_db_url()
    if url.startswith("sqlite") and ":memory:" in url:
        # One shared connection, otherwise every session sees its own empty database.
        return create_async_engine(url, poolclass=StaticPool)
    return create_async_engine(url)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, class_=AsyncSession)


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Main DB dependency.

    Key design goal (minimal disruption):
    - Route code that does `select(Branch)` is territory-scoped without changes.
    - We achieve this via the SQLAlchemy `do_orm_execute` filter that reads `Session.info["territory"]`.
    """

    session_factory = request.app.state.session_factory
    async with session_factory() as db:
        territory = getattr(getattr(request, "state", None), "territory", None)
        if territory is not None:
            db.info["territory"] = territory
        yield db
