"""
Permission resolution engine: RBAC with scopes, read through a cache.

Key ideas:
- A user's grants are materialised as a list of ``CachedPermission`` and cached
  under ``user:{user_id}:permissions`` for five minutes. The cached value is the
  user's full cross-company set; company filtering happens after the read.
- When several grants match one (resource, action), the broadest scope wins
  (self < branch < area < all).
- ``has_permission`` fails closed: any error while resolving means "denied".
- A broken cache is never fatal here; reads fall back to the store and
  invalidations are logged and skipped.

This module has no FastAPI dependency; route handlers use it through
``pensiondesk.security.dependencies``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pensiondesk.cache.client import CacheClient
from pensiondesk.cache.keys import ALL_USER_PERMISSIONS_PATTERN, USER_PERMISSIONS_TTL, user_permissions_key
from pensiondesk.cache.result import CacheError, CacheResult
from pensiondesk.db.queries.permissions import get_user_permissions
from pensiondesk.security.context import CachedPermission, PermissionCheckContext
from pensiondesk.security.scope import Scope, broadest_scope

logger = logging.getLogger(__name__)

PermissionLoader = Callable[[AsyncSession, str, str | None], Awaitable[list[CachedPermission]]]


def _filter_company(permissions: Sequence[CachedPermission], company_id: str | None) -> list[CachedPermission]:
    if company_id:
        return [p for p in permissions if p.company_id == company_id]
    return list(permissions)


def decide_scope(scope: Scope, user_id: str, context: PermissionCheckContext | None) -> bool:
    """
    Decision for the broadest matching scope.

    | scope         | context                              | result |
    |---------------|--------------------------------------|--------|
    | all           | any                                  | True   |
    | area          | area_ids non-empty                   | True   |
    | branch        | branch_ids non-empty                 | True   |
    | self          | resource_owner_id == user_id         | True   |
    | self          | owner missing or different           | False  |
    | branch / area | no usable context                    | True   |

    The branch/area rows only check that ids were supplied, not that the
    resource lies inside them. Row-level containment is the territory engine's job.
    """

    if scope is Scope.ALL:
        return True

    if context is not None:
        if scope is Scope.AREA and context.area_ids:
            return True
        if scope is Scope.BRANCH and context.branch_ids:
            return True
        if scope is Scope.SELF and context.resource_owner_id:
            return context.resource_owner_id == user_id

    return scope is not Scope.SELF


class PermissionEngine:
    """
    Answers permission questions for (user, company, resource, action).

    Usage:
        engine = PermissionEngine(cache, session_factory)
        allowed = await engine.has_permission(user_id, company_id, "clients", "write")
    """

    def __init__(
        self,
        cache: CacheClient,
        session_factory: async_sessionmaker[AsyncSession],
        loader: PermissionLoader = get_user_permissions,
    ) -> None:
        self._cache = cache
        self._session_factory = session_factory
        self._loader = loader

    @property
    def cache(self) -> CacheClient:
        return self._cache

    # ---- Store / cache helpers ------------------------------------------------------

    async def _load_from_store(self, user_id: str, company_id: str | None) -> list[CachedPermission]:
        async with self._session_factory() as db:
            return await self._loader(db, user_id, company_id)

    async def _read_cache(self, key: str) -> CacheResult[Any]:
        try:
            return await self._cache.get(key)
        except Exception as e:
            return CacheResult.failure(CacheError("get", key, str(e)))

    # ---- Read-through ---------------------------------------------------------------

    async def get_cached_permissions(self, user_id: str, company_id: str | None = None) -> list[CachedPermission]:
        """
        Return the user's permissions, optionally restricted to one company.

        Cache hit: filter the cached set by company. Cache miss: load the full
        set from the store, cache it, then filter. Cache read failure: load
        straight from the store (no repopulation); a store error on that path
        propagates.
        """

        key = user_permissions_key(user_id)
        cached = await self._read_cache(key)

        if not cached.ok:
            logger.warning(
                "Permission cache read failed; loading from store user_id=%s company_id=%s error=%s",
                user_id,
                company_id,
                cached.error,
            )
            try:
                return await self._load_from_store(user_id, company_id)
            except Exception:
                logger.exception("Store fallback failed for permissions user_id=%s company_id=%s", user_id, company_id)
                raise

        if cached.value is not None:
            try:
                permissions = [CachedPermission.from_dict(item) for item in cached.value]
            except (KeyError, TypeError, ValueError):
                logger.warning("Discarding undecodable permission cache entry user_id=%s", user_id)
            else:
                logger.info("Cache hit for user permissions user_id=%s company_id=%s", user_id, company_id)
                return _filter_company(permissions, company_id)

        logger.info("Cache miss for user permissions user_id=%s company_id=%s", user_id, company_id)
        permissions = await self._load_from_store(user_id, None)

        stored = await self._cache.set(key, [p.to_dict() for p in permissions], USER_PERMISSIONS_TTL)
        if stored.ok:
            logger.info(
                "Cached user permissions user_id=%s count=%d ttl=%d", user_id, len(permissions), USER_PERMISSIONS_TTL
            )
        else:
            logger.warning("Could not cache user permissions user_id=%s error=%s", user_id, stored.error)

        return _filter_company(permissions, company_id)

    async def get_all_user_permissions(self, user_id: str) -> list[CachedPermission]:
        """Permissions across every company."""
        return await self.get_cached_permissions(user_id)

    # ---- Decisions ------------------------------------------------------------------

    async def has_permission(
        self,
        user_id: str,
        company_id: str,
        resource: str,
        action: str,
        context: PermissionCheckContext | None = None,
    ) -> bool:
        """
        Decide whether the user may perform ``action`` on ``resource`` in ``company_id``.

        Algorithm:
        1. Load the user's permissions for the company (cached).
        2. Keep the grants matching (resource, action, company).
        3. No match -> deny.
        4. Otherwise apply ``decide_scope`` to the broadest matching scope.

        Never raises: any error is logged and treated as a denial.
        """

        try:
            permissions = await self.get_cached_permissions(user_id, company_id)
            matching = [
                p
                for p in permissions
                if p.permission.resource == resource and p.permission.action == action and p.company_id == company_id
            ]

            highest = broadest_scope(p.scope for p in matching)
            if highest is None:
                logger.debug(
                    "Permission denied (no grant) user_id=%s company_id=%s resource=%s action=%s",
                    user_id,
                    company_id,
                    resource,
                    action,
                )
                return False

            allowed = decide_scope(highest, user_id, context)
            logger.debug(
                "Permission %s user_id=%s company_id=%s resource=%s action=%s scope=%s",
                "allowed" if allowed else "denied",
                user_id,
                company_id,
                resource,
                action,
                highest.value,
            )
            return allowed
        except Exception:
            logger.exception(
                "Permission check failed; denying user_id=%s company_id=%s resource=%s action=%s",
                user_id,
                company_id,
                resource,
                action,
            )
            return False

    async def has_any_permission_for_resource(self, user_id: str, company_id: str, resource: str) -> bool:
        """True if the user holds any action on ``resource`` in the company. False on error."""

        try:
            permissions = await self.get_cached_permissions(user_id, company_id)
        except Exception:
            logger.exception(
                "Resource permission check failed; denying user_id=%s company_id=%s resource=%s",
                user_id,
                company_id,
                resource,
            )
            return False

        found = any(p.permission.resource == resource and p.company_id == company_id for p in permissions)
        logger.debug(
            "Checked any permission for resource user_id=%s company_id=%s resource=%s found=%s",
            user_id,
            company_id,
            resource,
            found,
        )
        return found

    # ---- Invalidation ---------------------------------------------------------------

    async def invalidate_user_permissions(self, user_id: str) -> None:
        """Drop the user's cached permissions. Call after any grant/revoke for the user."""

        key = user_permissions_key(user_id)
        try:
            result = await self._cache.delete(key)
        except Exception as e:
            result = CacheResult.failure(CacheError("delete", key, str(e)))

        if result.ok:
            logger.info("Invalidated user permissions cache user_id=%s", user_id)
        else:
            logger.warning("Failed to invalidate user permissions cache user_id=%s error=%s", user_id, result.error)

    async def invalidate_all_user_permissions(self) -> None:
        """Drop every user's cached permissions (bulk grant changes, catalog reseed)."""

        try:
            result = await self._cache.delete_pattern(ALL_USER_PERMISSIONS_PATTERN)
        except Exception as e:
            result = CacheResult.failure(CacheError("delete_pattern", ALL_USER_PERMISSIONS_PATTERN, str(e)))

        if result.ok:
            logger.info("Invalidated all user permissions caches")
        else:
            logger.warning("Failed to invalidate all user permissions caches error=%s", result.error)
