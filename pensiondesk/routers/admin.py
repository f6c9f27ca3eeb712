from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pensiondesk.db.queries import area_branches as area_queries
from pensiondesk.db.queries import territories as territory_queries
from pensiondesk.db.queries.permissions import (
    assign_permission_to_user,
    get_all_permissions,
    remove_permission_from_user,
)
from pensiondesk.db.session import get_db
from pensiondesk.errors import ConflictError
from pensiondesk.models.organization import AreaBranch, Branch
from pensiondesk.models.security import Permission, UserPermission
from pensiondesk.schemas.organization import AreaBranchesIn, AreaBranchOut, AreaIdsIn, BranchIdsIn, BranchOut
from pensiondesk.schemas.security import CountOut, GrantIn, GrantOut, PermissionOut, UserPermissionOut
from pensiondesk.security.context import CachedPermission
from pensiondesk.security.dependencies import get_permission_engine, get_territory_engine, require_permission
from pensiondesk.security.permissions import PermissionEngine
from pensiondesk.security.territory import TerritoryEngine

router = APIRouter(prefix="/admin", tags=["admin"])

can_read_users = Depends(require_permission("users", "read"))
can_write_users = Depends(require_permission("users", "write"))
can_write_areas = Depends(require_permission("areas", "write"))


# ---- Permissions ----------------------------------------------------------------------


@router.get("/permissions", response_model=list[PermissionOut], dependencies=[can_read_users])
async def list_permissions(db: AsyncSession = Depends(get_db)) -> list[Permission]:
    return await get_all_permissions(db)


@router.get("/users/{user_id}/permissions", response_model=list[UserPermissionOut], dependencies=[can_read_users])
async def list_user_permissions(
    user_id: str,
    permissions: PermissionEngine = Depends(get_permission_engine),
) -> list[CachedPermission]:
    return await permissions.get_all_user_permissions(user_id)


@router.post(
    "/users/{user_id}/permissions",
    response_model=GrantOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[can_write_users],
)
async def grant_permission(
    user_id: str,
    body: GrantIn,
    db: AsyncSession = Depends(get_db),
    permissions: PermissionEngine = Depends(get_permission_engine),
) -> UserPermission:
    try:
        grant = await assign_permission_to_user(db, user_id, body.permission_id, body.company_id, body.scope)
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("User already holds this grant") from exc

    await permissions.invalidate_user_permissions(user_id)
    return grant


@router.delete("/users/{user_id}/permissions/{permission_id}", response_model=CountOut, dependencies=[can_write_users])
async def revoke_permission(
    user_id: str,
    permission_id: str,
    company_id: str | None = None,
    db: AsyncSession = Depends(get_db),
    permissions: PermissionEngine = Depends(get_permission_engine),
) -> CountOut:
    removed = await remove_permission_from_user(db, user_id, permission_id, company_id)
    await db.commit()

    await permissions.invalidate_user_permissions(user_id)
    return CountOut(count=removed)


# ---- User territory -------------------------------------------------------------------


@router.get("/users/{user_id}/branches", response_model=list[BranchOut], dependencies=[can_read_users])
async def list_user_branches(user_id: str, db: AsyncSession = Depends(get_db)) -> list[Branch]:
    return await territory_queries.get_user_accessible_branches(db, user_id)


@router.post("/users/{user_id}/branches", response_model=CountOut, dependencies=[can_write_users])
async def assign_user_branches(
    user_id: str,
    body: BranchIdsIn,
    db: AsyncSession = Depends(get_db),
    territory: TerritoryEngine = Depends(get_territory_engine),
) -> CountOut:
    created = await territory_queries.assign_branches_to_user(db, user_id, body.branch_ids)
    await db.commit()

    await territory.invalidate_user_branch_cache(user_id)
    return CountOut(count=len(created))


@router.delete("/users/{user_id}/branches/{branch_id}", response_model=CountOut, dependencies=[can_write_users])
async def remove_user_branch(
    user_id: str,
    branch_id: str,
    db: AsyncSession = Depends(get_db),
    territory: TerritoryEngine = Depends(get_territory_engine),
) -> CountOut:
    removed = await territory_queries.remove_branches_from_user(db, user_id, [branch_id])
    await db.commit()

    await territory.invalidate_user_branch_cache(user_id)
    return CountOut(count=removed)


@router.post("/users/{user_id}/areas", response_model=CountOut, dependencies=[can_write_users])
async def assign_user_areas(
    user_id: str,
    body: AreaIdsIn,
    db: AsyncSession = Depends(get_db),
    territory: TerritoryEngine = Depends(get_territory_engine),
) -> CountOut:
    created = await territory_queries.assign_areas_to_user(db, user_id, body.area_ids)
    await db.commit()

    await territory.invalidate_user_branch_cache(user_id)
    return CountOut(count=len(created))


@router.delete("/users/{user_id}/areas/{area_id}", response_model=CountOut, dependencies=[can_write_users])
async def remove_user_area(
    user_id: str,
    area_id: str,
    db: AsyncSession = Depends(get_db),
    territory: TerritoryEngine = Depends(get_territory_engine),
) -> CountOut:
    removed = await territory_queries.remove_areas_from_user(db, user_id, [area_id])
    await db.commit()

    await territory.invalidate_user_branch_cache(user_id)
    return CountOut(count=removed)


# ---- Areas ----------------------------------------------------------------------------


@router.get("/areas/{area_id}/branches", response_model=list[BranchOut], dependencies=[can_write_areas])
async def list_area_branches(area_id: str, db: AsyncSession = Depends(get_db)) -> list[Branch]:
    return await area_queries.get_branches_for_area(db, area_id)


@router.post("/areas/{area_id}/branches", response_model=list[AreaBranchOut], dependencies=[can_write_areas])
async def assign_area_branches(
    area_id: str,
    body: AreaBranchesIn,
    db: AsyncSession = Depends(get_db),
    territory: TerritoryEngine = Depends(get_territory_engine),
) -> list[AreaBranch]:
    assignments = await area_queries.assign_branches_to_area(db, area_id, body.branch_ids, body.replace_existing)
    await db.commit()

    # Every user holding this area sees a different territory now.
    await territory.invalidate_all_user_branch_cache()
    return assignments


@router.delete("/areas/{area_id}/branches/{branch_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[can_write_areas])
async def remove_area_branch(
    area_id: str,
    branch_id: str,
    db: AsyncSession = Depends(get_db),
    territory: TerritoryEngine = Depends(get_territory_engine),
) -> None:
    await area_queries.remove_branch_from_area(db, area_id, branch_id)
    await db.commit()

    await territory.invalidate_all_user_branch_cache()


@router.put("/areas/{area_id}/primary-branch/{branch_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[can_write_areas])
async def set_area_primary_branch(area_id: str, branch_id: str, db: AsyncSession = Depends(get_db)) -> None:
    await area_queries.set_primary_branch(db, area_id, branch_id)
    await db.commit()


@router.get("/branches/unassigned", response_model=list[BranchOut], dependencies=[can_write_areas])
async def list_unassigned_branches(db: AsyncSession = Depends(get_db)) -> list[Branch]:
    return await area_queries.get_unassigned_branches(db)
