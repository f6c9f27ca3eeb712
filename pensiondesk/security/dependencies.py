from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager

from fastapi import Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from pensiondesk.cache.result import CacheError
from pensiondesk.errors import ForbiddenError
from pensiondesk.security.auth import load_identity
from pensiondesk.security.context import RequestIdentity, TerritoryFilter
from pensiondesk.security.permissions import PermissionEngine
from pensiondesk.security.territory import TerritoryEngine
from pensiondesk.settings import Settings

logger = logging.getLogger(__name__)


def _app_state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise RuntimeError(f"{name} not configured. Did app startup run?")
    return value


def get_app_settings(request: Request) -> Settings:
    return _app_state(request, "settings")


def get_permission_engine(request: Request) -> PermissionEngine:
    return _app_state(request, "permission_engine")


def get_territory_engine(request: Request) -> TerritoryEngine:
    return _app_state(request, "territory_engine")


async def get_identity(request: Request, settings: Settings = Depends(get_app_settings)) -> RequestIdentity:
    """Resolve (user, company) for the request and remember it on request.state."""

    identity = getattr(request.state, "identity", None)
    if identity is not None:
        return identity

    session_factory = _app_state(request, "session_factory")
    async with session_factory() as db:
        identity = await load_identity(db, request, settings.company_header)

    request.state.identity = identity
    return identity


def require_permission(resource: str, action: str) -> Callable[..., Awaitable[RequestIdentity]]:
    """
    Route dependency factory.

    Usage:
        @router.post("/admin/users/{user_id}/permissions",
                     dependencies=[Depends(require_permission("users", "write"))])
    """

    async def _require(
        identity: RequestIdentity = Depends(get_identity),
        permissions: PermissionEngine = Depends(get_permission_engine),
    ) -> RequestIdentity:
        allowed = await permissions.has_permission(identity.user_id, identity.company_id, resource, action)
        if not allowed:
            raise ForbiddenError(f"Missing permission {resource}.{action}")
        return identity

    return _require


@contextmanager
def deny_on_territory_error(identity: RequestIdentity) -> Iterator[None]:
    """
    Turn a failed territory lookup into a 403.

    The territory engine lets cache and store errors through; handlers wrap
    their territory calls in this so the client gets a structured denial.
    """

    try:
        yield
    except (CacheError, SQLAlchemyError) as e:
        logger.exception(
            "Territory lookup failed; denying user_id=%s company_id=%s", identity.user_id, identity.company_id
        )
        raise ForbiddenError("Territory could not be resolved") from e


async def apply_territory_scope(
    request: Request,
    identity: RequestIdentity = Depends(get_identity),
    territory: TerritoryEngine = Depends(get_territory_engine),
) -> TerritoryFilter:
    """
    Compute the caller's territory and stash it on request.state.

    ``get_db`` picks it up so every ``select(Branch)`` in the handler is scoped.
    Declare it in the route's ``dependencies=[...]`` so it runs before ``get_db``.
    """

    with deny_on_territory_error(identity):
        territory_filter = await territory.get_user_branch_filter(identity.user_id, identity.company_id)
    request.state.territory = territory_filter
    return territory_filter
