from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pensiondesk.db.session import get_db
from pensiondesk.errors import ForbiddenError, NotFoundError
from pensiondesk.models.organization import Branch
from pensiondesk.schemas.organization import BranchOut
from pensiondesk.security.context import RequestIdentity
from pensiondesk.security.dependencies import (
    apply_territory_scope,
    deny_on_territory_error,
    get_identity,
    get_territory_engine,
)
from pensiondesk.security.territory import TerritoryEngine

router = APIRouter(tags=["branches"])


@router.get("/branches", response_model=list[BranchOut], dependencies=[Depends(apply_territory_scope)])
async def list_branches(db: AsyncSession = Depends(get_db)) -> list[Branch]:
    # Territory scoping is applied transparently via pensiondesk/db/filters.py.
    stmt = select(Branch).where(Branch.deleted_at.is_(None)).order_by(Branch.sort_order, Branch.name)
    return list((await db.scalars(stmt)).all())


@router.get("/branches/{branch_id}", response_model=BranchOut)
async def get_branch(
    branch_id: str,
    identity: RequestIdentity = Depends(get_identity),
    territory: TerritoryEngine = Depends(get_territory_engine),
    db: AsyncSession = Depends(get_db),
) -> Branch:
    branch = (await db.scalars(select(Branch).where(Branch.id == branch_id, Branch.deleted_at.is_(None)))).first()
    if branch is None:
        raise NotFoundError(f'Branch "{branch_id}" not found')

    with deny_on_territory_error(identity):
        allowed = await territory.can_access_branch(identity.user_id, identity.company_id, branch_id)
    if not allowed:
        raise ForbiddenError("Branch is outside your territory")
    return branch
