"""
Territory store queries: user <-> branch and user <-> area assignments.

The territory engine only needs ``get_direct_branch_ids`` and
``get_area_branch_ids``; the rest serve the admin routes. Callers that mutate
assignments must invalidate the user's branch cache after committing.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from pensiondesk.errors import NotFoundError
from pensiondesk.models.organization import Area, AreaBranch, Branch
from pensiondesk.models.security import User, UserArea, UserBranch

logger = logging.getLogger(__name__)


async def get_direct_branch_ids(db: AsyncSession, user_id: str) -> list[str]:
    stmt = (
        select(UserBranch.branch_id)
        .where(UserBranch.user_id == user_id)
        .order_by(UserBranch.granted_at, UserBranch.branch_id)
    )
    return list((await db.scalars(stmt)).all())


async def get_area_branch_ids(db: AsyncSession, user_id: str) -> list[str]:
    """Branch ids reachable through the user's areas. May contain duplicates."""

    stmt = (
        select(AreaBranch.branch_id)
        .join(UserArea, UserArea.area_id == AreaBranch.area_id)
        .where(UserArea.user_id == user_id)
        .order_by(UserArea.granted_at, AreaBranch.assigned_at, AreaBranch.branch_id)
    )
    return list((await db.scalars(stmt)).all())


async def get_all_areas(db: AsyncSession, company_id: str) -> list[Area]:
    stmt = (
        select(Area)
        .where(Area.company_id == company_id, Area.deleted_at.is_(None))
        .order_by(Area.sort_order, Area.name)
    )
    return list((await db.scalars(stmt)).all())


async def get_all_branches(db: AsyncSession) -> list[Branch]:
    stmt = select(Branch).where(Branch.deleted_at.is_(None)).order_by(Branch.sort_order, Branch.name)
    return list((await db.scalars(stmt)).all())


async def _require_user(db: AsyncSession, user_id: str) -> None:
    if await db.get(User, user_id) is None:
        raise NotFoundError(f'User with ID "{user_id}" not found')


async def assign_branches_to_user(db: AsyncSession, user_id: str, branch_ids: Sequence[str]) -> list[UserBranch]:
    """Grant direct branch access. Already-assigned branches are skipped."""

    if not branch_ids:
        return []
    await _require_user(db, user_id)

    found = set(
        (await db.scalars(select(Branch.id).where(Branch.id.in_(branch_ids), Branch.deleted_at.is_(None)))).all()
    )
    missing = [b for b in branch_ids if b not in found]
    if missing:
        raise NotFoundError(f"Branches not found or deleted: {missing}")

    existing = set(await get_direct_branch_ids(db, user_id))
    rows = [UserBranch(user_id=user_id, branch_id=b) for b in dict.fromkeys(branch_ids) if b not in existing]
    db.add_all(rows)
    await db.flush()

    logger.info("Assigned branches to user user_id=%s count=%d", user_id, len(rows))
    return rows


async def assign_areas_to_user(db: AsyncSession, user_id: str, area_ids: Sequence[str]) -> list[UserArea]:
    """Grant area access (and through it, every branch of the area). Already-assigned areas are skipped."""

    if not area_ids:
        return []
    await _require_user(db, user_id)

    found = set((await db.scalars(select(Area.id).where(Area.id.in_(area_ids), Area.deleted_at.is_(None)))).all())
    missing = [a for a in area_ids if a not in found]
    if missing:
        raise NotFoundError(f"Areas not found or deleted: {missing}")

    existing = set((await db.scalars(select(UserArea.area_id).where(UserArea.user_id == user_id))).all())
    rows = [UserArea(user_id=user_id, area_id=a) for a in dict.fromkeys(area_ids) if a not in existing]
    db.add_all(rows)
    await db.flush()

    logger.info("Assigned areas to user user_id=%s count=%d", user_id, len(rows))
    return rows


async def remove_branches_from_user(db: AsyncSession, user_id: str, branch_ids: Sequence[str]) -> int:
    if not branch_ids:
        return 0
    stmt = delete(UserBranch).where(UserBranch.user_id == user_id, UserBranch.branch_id.in_(branch_ids))
    removed = (await db.execute(stmt)).rowcount or 0
    logger.info("Removed branches from user user_id=%s removed=%d", user_id, removed)
    return removed


async def remove_areas_from_user(db: AsyncSession, user_id: str, area_ids: Sequence[str]) -> int:
    if not area_ids:
        return 0
    stmt = delete(UserArea).where(UserArea.user_id == user_id, UserArea.area_id.in_(area_ids))
    removed = (await db.execute(stmt)).rowcount or 0
    logger.info("Removed areas from user user_id=%s removed=%d", user_id, removed)
    return removed


async def get_user_accessible_branches(db: AsyncSession, user_id: str) -> list[Branch]:
    """
    Full branch rows the user can reach (direct first, then via areas), de-duplicated.

    Unlike the id lookups used by the territory engine, soft-deleted branches are excluded.
    """

    direct_stmt = (
        select(Branch)
        .join(UserBranch, UserBranch.branch_id == Branch.id)
        .where(UserBranch.user_id == user_id, Branch.deleted_at.is_(None))
        .order_by(Branch.sort_order, Branch.name)
    )
    via_area_stmt = (
        select(Branch)
        .join(AreaBranch, AreaBranch.branch_id == Branch.id)
        .join(UserArea, UserArea.area_id == AreaBranch.area_id)
        .where(UserArea.user_id == user_id, Branch.deleted_at.is_(None))
        .order_by(Branch.sort_order, Branch.name)
    )

    unique: dict[str, Branch] = {}
    for stmt in (direct_stmt, via_area_stmt):
        for branch in (await db.scalars(stmt)).all():
            unique.setdefault(branch.id, branch)

    logger.debug("Retrieved user accessible branches user_id=%s count=%d", user_id, len(unique))
    return list(unique.values())
