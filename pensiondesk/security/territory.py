"""
Territory resolution engine.

A user's territory is the set of branches they may work in:

    direct branch assignments  ∪  branches of every area assigned to the user

de-duplicated with direct assignments first. The id list is cached under
``user:{user_id}:branches`` for five minutes.

On top of that, ``get_user_branch_filter`` classifies the user:

    START -> holds clients:read?  -> ALL
          -> load branch ids      -> NONE (empty) | TERRITORY (branch_ids)

Unlike the permission engine, lookups here do not fail closed: cache and store
errors propagate so the caller (a route handler) decides how to respond.
Invalidation is best effort.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pensiondesk.cache.client import CacheClient
from pensiondesk.cache.keys import ALL_USER_BRANCHES_PATTERN, USER_BRANCHES_TTL, user_branches_key
from pensiondesk.cache.result import CacheError, CacheResult
from pensiondesk.db.queries.territories import get_area_branch_ids, get_direct_branch_ids
from pensiondesk.security.context import TerritoryFilter
from pensiondesk.security.permissions import PermissionEngine
from pensiondesk.security.scope import BranchScope

logger = logging.getLogger(__name__)

CLIENTS_RESOURCE = "clients"
READ_ACTION = "read"


class TerritoryEngine:
    """Computes and caches which branches a user may access."""

    def __init__(
        self,
        cache: CacheClient,
        session_factory: async_sessionmaker[AsyncSession],
        permissions: PermissionEngine,
    ) -> None:
        self._cache = cache
        self._session_factory = session_factory
        self._permissions = permissions

    async def _load_branch_ids(self, user_id: str) -> list[str]:
        async with self._session_factory() as db:
            direct = await get_direct_branch_ids(db, user_id)
            via_area = await get_area_branch_ids(db, user_id)
        # dict preserves first-seen order, so direct assignments stay in front.
        return list(dict.fromkeys([*direct, *via_area]))

    async def get_user_branch_ids(self, user_id: str, company_id: str) -> list[str]:
        key = user_branches_key(user_id)

        cached = (await self._cache.get(key)).unwrap()
        if cached is not None:
            logger.info("Cache hit for user branches user_id=%s company_id=%s count=%d", user_id, company_id, len(cached))
            return [str(branch_id) for branch_id in cached]

        logger.info("Cache miss for user branches user_id=%s company_id=%s", user_id, company_id)
        branch_ids = await self._load_branch_ids(user_id)

        (await self._cache.set(key, branch_ids, USER_BRANCHES_TTL)).unwrap()
        logger.info(
            "Cached user branches user_id=%s count=%d ttl=%d", user_id, len(branch_ids), USER_BRANCHES_TTL
        )
        return branch_ids

    async def get_user_branch_filter(self, user_id: str, company_id: str) -> TerritoryFilter:
        if await self._permissions.has_permission(user_id, company_id, CLIENTS_RESOURCE, READ_ACTION):
            logger.info("User has all access to clients user_id=%s company_id=%s", user_id, company_id)
            return TerritoryFilter(scope=BranchScope.ALL)

        branch_ids = await self.get_user_branch_ids(user_id, company_id)
        if not branch_ids:
            logger.info("User has no branch access user_id=%s company_id=%s", user_id, company_id)
            return TerritoryFilter(scope=BranchScope.NONE)

        logger.info(
            "User has territory access user_id=%s company_id=%s branch_count=%d", user_id, company_id, len(branch_ids)
        )
        return TerritoryFilter(scope=BranchScope.TERRITORY, branch_ids=tuple(branch_ids))

    async def can_access_branch(self, user_id: str, company_id: str, branch_id: str) -> bool:
        territory = await self.get_user_branch_filter(user_id, company_id)
        if territory.scope is BranchScope.ALL:
            allowed = True
        elif territory.scope is BranchScope.TERRITORY:
            allowed = branch_id in territory.branch_ids
        else:
            allowed = False

        logger.debug(
            "Branch access check user_id=%s company_id=%s branch_id=%s scope=%s allowed=%s",
            user_id,
            company_id,
            branch_id,
            territory.scope.value,
            allowed,
        )
        return allowed

    async def filter_clients_by_territory(
        self,
        user_id: str,
        company_id: str,
        candidate_branch_ids: Sequence[str],
    ) -> list[str]:
        """
        Restrict client branch ids to the user's territory.

        ``all`` returns the input unchanged, ``none`` returns nothing, and
        ``territory`` keeps the inputs inside the territory in their input order.
        """

        territory = await self.get_user_branch_filter(user_id, company_id)
        if territory.scope is BranchScope.ALL:
            return list(candidate_branch_ids)
        if territory.scope is BranchScope.NONE:
            return []

        allowed = set(territory.branch_ids)
        filtered = [branch_id for branch_id in candidate_branch_ids if branch_id in allowed]
        logger.info(
            "Filtered clients by territory user_id=%s company_id=%s original=%d filtered=%d",
            user_id,
            company_id,
            len(candidate_branch_ids),
            len(filtered),
        )
        return filtered

    async def invalidate_user_branch_cache(self, user_id: str) -> None:
        """Drop the user's cached branch ids. Call after changing their branch or area assignments."""

        key = user_branches_key(user_id)
        try:
            result = await self._cache.delete(key)
        except Exception as e:
            result = CacheResult.failure(CacheError("delete", key, str(e)))

        if result.ok:
            logger.info("Invalidated user branch cache user_id=%s", user_id)
        else:
            logger.warning("Failed to invalidate user branch cache user_id=%s error=%s", user_id, result.error)

    async def invalidate_all_user_branch_cache(self) -> None:
        """Drop every user's cached branch ids (e.g. after an area's branches change)."""

        try:
            result = await self._cache.delete_pattern(ALL_USER_BRANCHES_PATTERN)
        except Exception as e:
            result = CacheResult.failure(CacheError("delete_pattern", ALL_USER_BRANCHES_PATTERN, str(e)))

        if result.ok:
            logger.info("Invalidated all user branch caches")
        else:
            logger.warning("Failed to invalidate all user branch caches error=%s", result.error)
