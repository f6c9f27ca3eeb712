from __future__ import annotations

from fastapi import APIRouter, Depends

from pensiondesk.schemas.security import TerritoryFilterIn, TerritoryFilterOut, TerritoryOut, UserPermissionOut
from pensiondesk.security.context import RequestIdentity
from pensiondesk.security.dependencies import (
    deny_on_territory_error,
    get_identity,
    get_permission_engine,
    get_territory_engine,
)
from pensiondesk.security.permissions import PermissionEngine
from pensiondesk.security.territory import TerritoryEngine

router = APIRouter(tags=["territory"])


@router.get("/me/permissions", response_model=list[UserPermissionOut])
async def my_permissions(
    identity: RequestIdentity = Depends(get_identity),
    permissions: PermissionEngine = Depends(get_permission_engine),
):
    return await permissions.get_cached_permissions(identity.user_id, identity.company_id)


@router.get("/territory", response_model=TerritoryOut)
async def my_territory(
    identity: RequestIdentity = Depends(get_identity),
    territory: TerritoryEngine = Depends(get_territory_engine),
) -> TerritoryOut:
    with deny_on_territory_error(identity):
        territory_filter = await territory.get_user_branch_filter(identity.user_id, identity.company_id)
    return TerritoryOut(**territory_filter.to_dict())


@router.post("/territory/filter", response_model=TerritoryFilterOut)
async def filter_by_territory(
    body: TerritoryFilterIn,
    identity: RequestIdentity = Depends(get_identity),
    territory: TerritoryEngine = Depends(get_territory_engine),
) -> TerritoryFilterOut:
    with deny_on_territory_error(identity):
        branch_ids = await territory.filter_clients_by_territory(identity.user_id, identity.company_id, body.branch_ids)
    return TerritoryFilterOut(branch_ids=branch_ids)
