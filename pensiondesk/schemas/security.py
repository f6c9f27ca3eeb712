from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from pensiondesk.security.scope import BranchScope, Scope


class PermissionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    resource: str
    action: str
    description: str | None


class UserPermissionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    permission: PermissionOut
    scope: Scope
    company_id: str | None


class GrantIn(BaseModel):
    permission_id: str
    scope: Scope = Scope.SELF
    company_id: str = Field(min_length=1)


class GrantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    permission_id: str
    company_id: str | None
    scope: Scope


class TerritoryOut(BaseModel):
    scope: BranchScope
    branch_ids: list[str]


class TerritoryFilterIn(BaseModel):
    branch_ids: list[str]


class TerritoryFilterOut(BaseModel):
    branch_ids: list[str]


class CountOut(BaseModel):
    count: int
