"""
Tests for PermissionEngine.

Most tests inject a loader (AsyncMock) instead of the real store query so they
can count store round-trips and inject failures. The last group runs against
the seeded in-memory database from conftest.
"""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from pensiondesk.cache.client import MemoryCacheClient, NullCacheClient
from pensiondesk.cache.keys import user_permissions_key
from pensiondesk.cache.result import CacheError, CacheResult
from pensiondesk.security.context import CachedPermission, PermissionCheckContext, PermissionRef
from pensiondesk.security.permissions import PermissionEngine
from pensiondesk.security.scope import Scope

USER = "u1"
COMPANY = "c1"


def grant(resource, action, scope, company_id=COMPANY):
    return CachedPermission(
        permission=PermissionRef(id=f"p-{resource}-{action}", code=f"{resource}.{action}", resource=resource, action=action),
        scope=scope,
        company_id=company_id,
    )


def make_engine(grants=(), cache=None, loader=None):
    loader = loader or AsyncMock(return_value=list(grants))
    engine = PermissionEngine(cache or MemoryCacheClient(), MagicMock(), loader=loader)
    return engine, loader


class BrokenCache(NullCacheClient):
    """Every operation fails the way a broken backend would."""

    async def get(self, key):
        return CacheResult.failure(CacheError("get", key, "connection refused"))

    async def set(self, key, value, ttl_seconds):
        return CacheResult.failure(CacheError("set", key, "connection refused"))

    async def delete(self, key):
        return CacheResult.failure(CacheError("delete", key, "connection refused"))

    async def delete_pattern(self, pattern):
        return CacheResult.failure(CacheError("delete_pattern", pattern, "connection refused"))


class RaisingCache(NullCacheClient):
    """A client that raises instead of returning a failed result."""

    async def get(self, key):
        raise RuntimeError("cache exploded")

    async def delete(self, key):
        raise RuntimeError("cache exploded")

    async def delete_pattern(self, pattern):
        raise RuntimeError("cache exploded")


# ---- Decisions ------------------------------------------------------------------------


@pytest.mark.parametrize(
    "context",
    [None, PermissionCheckContext(), PermissionCheckContext(resource_owner_id="someone-else")],
)
async def test_all_scope_allows_regardless_of_context(context):
    engine, _ = make_engine([grant("clients", "write", Scope.ALL)])
    assert await engine.has_permission(USER, COMPANY, "clients", "write", context) is True


async def test_self_scope_only_allows_the_owner():
    engine, _ = make_engine([grant("clients", "delete", Scope.SELF)])

    assert await engine.has_permission(USER, COMPANY, "clients", "delete", PermissionCheckContext(resource_owner_id=USER))
    assert not await engine.has_permission(USER, COMPANY, "clients", "delete", PermissionCheckContext(resource_owner_id="u2"))
    assert not await engine.has_permission(USER, COMPANY, "clients", "delete")


async def test_broadest_scope_wins():
    engine, _ = make_engine([grant("clients", "delete", Scope.SELF), grant("clients", "delete", Scope.ALL)])
    assert await engine.has_permission(USER, COMPANY, "clients", "delete") is True


async def test_branch_scope_examples():
    engine, _ = make_engine([grant("clients", "write", Scope.BRANCH)])

    assert await engine.has_permission(USER, COMPANY, "clients", "write", PermissionCheckContext(branch_ids=("b1",)))
    assert await engine.has_permission(USER, COMPANY, "clients", "write")


async def test_no_matching_grant_denies():
    engine, _ = make_engine([grant("clients", "write", Scope.ALL)])

    assert not await engine.has_permission(USER, COMPANY, "clients", "delete")
    assert not await engine.has_permission(USER, COMPANY, "reports", "write")


async def test_grant_in_another_company_does_not_count():
    engine, _ = make_engine([grant("clients", "write", Scope.ALL, company_id="c2")])
    assert not await engine.has_permission(USER, COMPANY, "clients", "write")
    assert await engine.has_permission(USER, "c2", "clients", "write")


async def test_has_any_permission_for_resource():
    engine, _ = make_engine([grant("clients", "read", Scope.SELF), grant("users", "read", Scope.ALL, company_id="c2")])

    assert await engine.has_any_permission_for_resource(USER, COMPANY, "clients") is True
    assert await engine.has_any_permission_for_resource(USER, COMPANY, "users") is False


# ---- Read-through caching -------------------------------------------------------------


async def test_second_call_is_a_cache_hit():
    engine, loader = make_engine([grant("clients", "read", Scope.ALL)])

    first = await engine.get_cached_permissions(USER, COMPANY)
    second = await engine.get_cached_permissions(USER, COMPANY)

    assert first == second
    assert loader.await_count == 1


async def test_cache_holds_the_full_cross_company_set():
    cache = MemoryCacheClient()
    grants = [grant("clients", "read", Scope.ALL), grant("clients", "read", Scope.SELF, company_id="c2")]
    engine, loader = make_engine(grants, cache=cache)

    assert await engine.get_cached_permissions(USER, COMPANY) == [grants[0]]
    assert await engine.get_cached_permissions(USER, "c2") == [grants[1]]
    assert await engine.get_all_user_permissions(USER) == grants

    assert loader.await_count == 1
    assert loader.await_args.args[1:] == (USER, None)
    assert len((await cache.get(user_permissions_key(USER))).value) == 2


async def test_invalidation_forces_a_reload():
    engine, loader = make_engine([grant("clients", "read", Scope.ALL)])

    await engine.get_cached_permissions(USER, COMPANY)
    await engine.invalidate_user_permissions(USER)
    await engine.get_cached_permissions(USER, COMPANY)

    assert loader.await_count == 2


async def test_invalidate_all_drops_every_user():
    engine, loader = make_engine([grant("clients", "read", Scope.ALL)])

    await engine.get_cached_permissions("u1")
    await engine.get_cached_permissions("u2")
    await engine.invalidate_all_user_permissions()
    await engine.get_cached_permissions("u1")
    await engine.get_cached_permissions("u2")

    assert loader.await_count == 4


async def test_undecodable_cache_entry_is_reloaded():
    cache = MemoryCacheClient()
    await cache.set(user_permissions_key(USER), [{"unexpected": True}], 300)
    engine, loader = make_engine([grant("clients", "read", Scope.ALL)], cache=cache)

    permissions = await engine.get_cached_permissions(USER, COMPANY)

    assert [p.permission.code for p in permissions] == ["clients.read"]
    assert loader.await_count == 1


async def test_null_cache_always_loads_from_store():
    engine, loader = make_engine([grant("clients", "read", Scope.ALL)], cache=NullCacheClient())

    await engine.get_cached_permissions(USER, COMPANY)
    await engine.get_cached_permissions(USER, COMPANY)

    assert loader.await_count == 2


# ---- Failure policy -------------------------------------------------------------------


@pytest.mark.parametrize("cache", [BrokenCache(), RaisingCache()])
async def test_cache_read_failure_falls_back_to_store(cache):
    grants = [grant("clients", "read", Scope.ALL)]
    engine, loader = make_engine(grants, cache=cache)

    assert await engine.get_cached_permissions(USER, COMPANY) == grants
    assert loader.await_count == 1


async def test_cache_and_store_failure_raises_store_error():
    loader = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("db down")))
    engine, _ = make_engine(cache=BrokenCache(), loader=loader)

    with pytest.raises(OperationalError):
        await engine.get_cached_permissions(USER, COMPANY)


async def test_has_permission_fails_closed():
    loader = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("db down")))
    engine, _ = make_engine(cache=BrokenCache(), loader=loader)

    assert await engine.has_permission(USER, COMPANY, "clients", "read") is False
    assert await engine.has_any_permission_for_resource(USER, COMPANY, "clients") is False


async def test_store_failure_on_miss_denies():
    loader = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("db down")))
    engine, _ = make_engine(loader=loader)

    assert await engine.has_permission(USER, COMPANY, "clients", "read") is False


async def test_cache_write_failure_still_returns_permissions():
    grants = [grant("clients", "read", Scope.ALL)]
    cache = MemoryCacheClient()
    cache.set = AsyncMock(return_value=CacheResult.failure(CacheError("set", "k", "full")))
    engine, _ = make_engine(grants, cache=cache)

    assert await engine.get_cached_permissions(USER, COMPANY) == grants


@pytest.mark.parametrize("cache", [BrokenCache(), RaisingCache()])
async def test_invalidation_failures_are_swallowed(cache):
    engine, _ = make_engine(cache=cache)

    await engine.invalidate_user_permissions(USER)
    await engine.invalidate_all_user_permissions()


# ---- Against the seeded store ---------------------------------------------------------


async def test_seeded_users(org, permission_engine):
    company = org.company_id

    assert await permission_engine.has_permission("user-admin", company, "clients", "read")
    assert await permission_engine.has_permission("user-manager", company, "clients", "write")
    assert not await permission_engine.has_permission("user-manager", company, "clients", "read")
    assert not await permission_engine.has_permission(
        "user-officer", company, "clients", "delete", PermissionCheckContext(resource_owner_id="user-admin")
    )
    assert await permission_engine.has_permission(
        "user-officer", company, "clients", "delete", PermissionCheckContext(resource_owner_id="user-officer")
    )
    assert not await permission_engine.has_permission("user-admin", "company-2", "clients", "read")
    assert await permission_engine.get_cached_permissions("user-nobody", company) == []
