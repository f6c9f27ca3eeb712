from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class BranchOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    name: str
    location: str | None
    category: str | None
    is_active: bool
    sort_order: int


class AreaOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    name: str
    company_id: str
    is_active: bool
    sort_order: int


class AreaBranchOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    area_id: str
    branch_id: str
    is_primary: bool
    assigned_at: datetime


class BranchIdsIn(BaseModel):
    branch_ids: list[str] = Field(min_length=1)


class AreaIdsIn(BaseModel):
    area_ids: list[str] = Field(min_length=1)


class AreaBranchesIn(BaseModel):
    branch_ids: list[str] = Field(min_length=1)
    replace_existing: bool = False
