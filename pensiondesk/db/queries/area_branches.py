"""
Area <-> branch assignment queries.

Changing an area's branches changes the territory of every user assigned to
that area, so callers should invalidate all user branch caches after committing.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pensiondesk.errors import NotFoundError
from pensiondesk.models.organization import Area, AreaBranch, Branch

logger = logging.getLogger(__name__)


async def _get_live_area(db: AsyncSession, area_id: str) -> Area:
    area = (await db.scalars(select(Area).where(Area.id == area_id, Area.deleted_at.is_(None)))).first()
    if area is None:
        raise NotFoundError(f'Area with ID "{area_id}" not found')
    return area


async def _get_assignment(db: AsyncSession, area_id: str, branch_id: str) -> AreaBranch | None:
    stmt = select(AreaBranch).where(AreaBranch.area_id == area_id, AreaBranch.branch_id == branch_id)
    return (await db.scalars(stmt)).first()


async def get_branches_for_area(db: AsyncSession, area_id: str) -> list[Branch]:
    await _get_live_area(db, area_id)
    stmt = (
        select(Branch)
        .join(AreaBranch, AreaBranch.branch_id == Branch.id)
        .where(AreaBranch.area_id == area_id, Branch.deleted_at.is_(None))
        .order_by(AreaBranch.is_primary.desc(), Branch.sort_order, Branch.name)
    )
    return list((await db.scalars(stmt)).all())


async def get_areas_for_branch(db: AsyncSession, branch_id: str) -> list[Area]:
    branch = (await db.scalars(select(Branch).where(Branch.id == branch_id, Branch.deleted_at.is_(None)))).first()
    if branch is None:
        raise NotFoundError(f'Branch with ID "{branch_id}" not found')

    stmt = (
        select(Area)
        .join(AreaBranch, AreaBranch.area_id == Area.id)
        .where(AreaBranch.branch_id == branch_id, Area.deleted_at.is_(None))
        .order_by(Area.sort_order, Area.name)
    )
    return list((await db.scalars(stmt)).all())


async def assign_branches_to_area(
    db: AsyncSession,
    area_id: str,
    branch_ids: Sequence[str],
    replace_existing: bool = False,
) -> list[AreaBranch]:
    """
    Attach branches to an area.

    Existing pairs are returned unchanged (primary flag kept); new pairs are
    created non-primary. With ``replace_existing`` every current assignment of
    the area is removed first.
    """

    await _get_live_area(db, area_id)

    unique_ids = list(dict.fromkeys(branch_ids))
    found = set(
        (await db.scalars(select(Branch.id).where(Branch.id.in_(unique_ids), Branch.deleted_at.is_(None)))).all()
    )
    if len(found) != len(unique_ids):
        raise NotFoundError("One or more branches not found or deleted")

    if replace_existing:
        await db.execute(delete(AreaBranch).where(AreaBranch.area_id == area_id))

    assignments: list[AreaBranch] = []
    for branch_id in unique_ids:
        existing = await _get_assignment(db, area_id, branch_id)
        if existing is not None:
            assignments.append(existing)
            continue
        assignment = AreaBranch(area_id=area_id, branch_id=branch_id, is_primary=False)
        db.add(assignment)
        assignments.append(assignment)

    await db.flush()
    logger.info(
        "Assigned branches to area area_id=%s count=%d replace_existing=%s",
        area_id,
        len(assignments),
        replace_existing,
    )
    return assignments


async def remove_branch_from_area(db: AsyncSession, area_id: str, branch_id: str) -> None:
    if await _get_assignment(db, area_id, branch_id) is None:
        raise NotFoundError(f'Assignment not found for area "{area_id}" and branch "{branch_id}"')

    await db.execute(delete(AreaBranch).where(AreaBranch.area_id == area_id, AreaBranch.branch_id == branch_id))
    logger.info("Removed branch from area area_id=%s branch_id=%s", area_id, branch_id)


async def set_primary_branch(db: AsyncSession, area_id: str, branch_id: str) -> None:
    """Make ``branch_id`` the single primary branch of the area."""

    await _get_live_area(db, area_id)
    if await _get_assignment(db, area_id, branch_id) is None:
        raise NotFoundError(f'Branch "{branch_id}" is not assigned to area "{area_id}"')

    await db.execute(update(AreaBranch).where(AreaBranch.area_id == area_id).values(is_primary=False))
    await db.execute(
        update(AreaBranch)
        .where(AreaBranch.area_id == area_id, AreaBranch.branch_id == branch_id)
        .values(is_primary=True)
    )
    logger.info("Set primary branch for area area_id=%s branch_id=%s", area_id, branch_id)


async def get_unassigned_branches(db: AsyncSession) -> list[Branch]:
    """Live branches that belong to no area."""

    assigned = select(AreaBranch.branch_id).distinct()
    stmt = (
        select(Branch)
        .where(Branch.deleted_at.is_(None), Branch.id.not_in(assigned))
        .order_by(Branch.sort_order, Branch.name)
    )
    return list((await db.scalars(stmt)).all())
