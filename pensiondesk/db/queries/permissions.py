"""
Permission store adapter.

Loads and mutates permission grants in the relational store. There is no
caching here: the permission engine reads through the cache to
``get_user_permissions`` and mutation callers invalidate the cache after they
commit.

Mutations only flush; the caller owns the transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from pensiondesk.errors import NotFoundError, ValidationError
from pensiondesk.models.security import Permission, User, UserPermission
from pensiondesk.security.context import CachedPermission, PermissionRef
from pensiondesk.security.scope import Scope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GrantSpec:
    """One grant for ``set_user_permissions``."""

    permission_id: str
    company_id: str | None
    scope: Scope = Scope.SELF


@dataclass(frozen=True)
class CatalogEntry:
    """One permission definition from the catalog file."""

    code: str
    resource: str
    action: str
    description: str | None = None


def _to_cached(permission: Permission, scope: Scope, company_id: str | None) -> CachedPermission:
    return CachedPermission(
        permission=PermissionRef(
            id=permission.id,
            code=permission.code,
            resource=permission.resource,
            action=permission.action,
            description=permission.description,
        ),
        scope=Scope(scope),
        company_id=company_id,
    )


async def get_all_permissions(db: AsyncSession) -> list[Permission]:
    stmt = select(Permission).order_by(Permission.resource, Permission.action)
    return list((await db.scalars(stmt)).all())


async def get_permissions_by_resource(db: AsyncSession, resource: str) -> list[Permission]:
    stmt = select(Permission).where(Permission.resource == resource).order_by(Permission.action)
    return list((await db.scalars(stmt)).all())


async def get_permission_by_code(db: AsyncSession, code: str) -> Permission | None:
    return (await db.scalars(select(Permission).where(Permission.code == code))).first()


async def get_user_permissions(
    db: AsyncSession,
    user_id: str,
    company_id: str | None = None,
) -> list[CachedPermission]:
    """
    Return the user's grants joined with their permission rows.

    With ``company_id`` the result is restricted to that company; without it
    the user's full cross-company set is returned.
    """

    stmt = (
        select(Permission, UserPermission.scope, UserPermission.company_id)
        .join(UserPermission, UserPermission.permission_id == Permission.id)
        .where(UserPermission.user_id == user_id)
        .order_by(Permission.resource, Permission.action, UserPermission.granted_at)
    )
    if company_id:
        stmt = stmt.where(UserPermission.company_id == company_id)

    rows = (await db.execute(stmt)).all()
    result = [_to_cached(permission, scope, grant_company) for permission, scope, grant_company in rows]

    logger.debug("Retrieved user permissions user_id=%s company_id=%s count=%d", user_id, company_id, len(result))
    return result


async def user_has_permission(
    db: AsyncSession,
    user_id: str,
    resource: str,
    action: str,
    company_id: str | None = None,
) -> bool:
    """Uncached existence check, ignoring scope. Prefer the permission engine for decisions."""

    stmt = (
        select(UserPermission.id)
        .join(Permission, UserPermission.permission_id == Permission.id)
        .where(
            UserPermission.user_id == user_id,
            Permission.resource == resource,
            Permission.action == action,
        )
        .limit(1)
    )
    if company_id:
        stmt = stmt.where(UserPermission.company_id == company_id)
    return (await db.execute(stmt)).first() is not None


async def assign_permission_to_user(
    db: AsyncSession,
    user_id: str,
    permission_id: str,
    company_id: str,
    scope: Scope = Scope.SELF,
) -> UserPermission:
    if not company_id:
        raise ValidationError("A permission grant needs a company")
    if await db.get(User, user_id) is None:
        raise NotFoundError(f'User with ID "{user_id}" not found')
    if await db.get(Permission, permission_id) is None:
        raise NotFoundError(f'Permission with ID "{permission_id}" not found')

    grant = UserPermission(user_id=user_id, permission_id=permission_id, company_id=company_id, scope=Scope(scope))
    db.add(grant)
    await db.flush()

    logger.info(
        "Assigned permission to user user_id=%s permission_id=%s company_id=%s scope=%s",
        user_id,
        permission_id,
        company_id,
        grant.scope.value,
    )
    return grant


async def remove_permission_from_user(
    db: AsyncSession,
    user_id: str,
    permission_id: str,
    company_id: str | None = None,
) -> int:
    """Delete the user's grants of ``permission_id`` (all scopes). Returns the number removed."""

    stmt = delete(UserPermission).where(
        UserPermission.user_id == user_id,
        UserPermission.permission_id == permission_id,
    )
    if company_id:
        stmt = stmt.where(UserPermission.company_id == company_id)

    removed = (await db.execute(stmt)).rowcount or 0
    logger.info(
        "Removed permission from user user_id=%s permission_id=%s company_id=%s removed=%d",
        user_id,
        permission_id,
        company_id,
        removed,
    )
    return removed


async def set_user_permissions(db: AsyncSession, user_id: str, grants: Iterable[GrantSpec]) -> list[UserPermission]:
    """Replace every grant the user holds with ``grants``."""

    await db.execute(delete(UserPermission).where(UserPermission.user_id == user_id))

    rows = [
        UserPermission(user_id=user_id, permission_id=g.permission_id, company_id=g.company_id, scope=Scope(g.scope))
        for g in grants
    ]
    db.add_all(rows)
    await db.flush()

    logger.info("Set user permissions user_id=%s count=%d", user_id, len(rows))
    return rows


async def sync_permission_catalog(db: AsyncSession, entries: Sequence[CatalogEntry]) -> int:
    """
    Upsert catalog entries by code. Permissions missing from the catalog are kept
    (grants may still reference them). Returns the number of new rows.
    """

    existing = {p.code: p for p in await get_all_permissions(db)}
    created = 0
    for entry in entries:
        current = existing.get(entry.code)
        if current is None:
            db.add(
                Permission(
                    code=entry.code,
                    resource=entry.resource,
                    action=entry.action,
                    description=entry.description,
                )
            )
            created += 1
            continue
        current.resource = entry.resource
        current.action = entry.action
        current.description = entry.description

    await db.flush()
    logger.info("Synced permission catalog entries=%d created=%d", len(entries), created)
    return created
