"""Tests for user <-> branch and user <-> area assignment queries."""
from __future__ import annotations

from datetime import datetime

import pytest

from pensiondesk.db.queries.territories import (
    assign_areas_to_user,
    assign_branches_to_user,
    get_all_areas,
    get_all_branches,
    get_area_branch_ids,
    get_direct_branch_ids,
    get_user_accessible_branches,
    remove_areas_from_user,
    remove_branches_from_user,
)
from pensiondesk.errors import NotFoundError
from pensiondesk.models.organization import Branch


async def test_direct_and_area_branch_ids(org, db_session):
    assert await get_direct_branch_ids(db_session, "user-manager") == ["branch-2"]
    assert await get_area_branch_ids(db_session, "user-manager") == ["branch-1", "branch-2"]
    assert await get_direct_branch_ids(db_session, "user-nobody") == []
    assert await get_area_branch_ids(db_session, "user-nobody") == []


async def test_get_all_areas_and_branches(org, db_session):
    assert [a.code for a in await get_all_areas(db_session, org.company_id)] == ["NORTH", "SOUTH"]
    assert await get_all_areas(db_session, "company-2") == []
    assert [b.id for b in await get_all_branches(db_session)] == ["branch-1", "branch-2", "branch-3", "branch-4"]


async def test_assign_branches_skips_existing(org, db_session):
    created = await assign_branches_to_user(db_session, "user-officer", ["branch-3", "branch-4", "branch-4"])
    await db_session.commit()

    assert [row.branch_id for row in created] == ["branch-4"]
    assert await get_direct_branch_ids(db_session, "user-officer") == ["branch-3", "branch-4"]


async def test_assign_branches_validates_input(org, db_session):
    assert await assign_branches_to_user(db_session, "user-officer", []) == []
    with pytest.raises(NotFoundError):
        await assign_branches_to_user(db_session, "missing-user", ["branch-1"])
    with pytest.raises(NotFoundError):
        await assign_branches_to_user(db_session, "user-officer", ["branch-1", "branch-404"])


async def test_assign_areas(org, db_session):
    created = await assign_areas_to_user(db_session, "user-officer", ["area-south"])
    await db_session.commit()

    assert [row.area_id for row in created] == ["area-south"]
    assert await get_area_branch_ids(db_session, "user-officer") == ["branch-3", "branch-4"]

    with pytest.raises(NotFoundError):
        await assign_areas_to_user(db_session, "user-officer", ["area-west"])


async def test_remove_branches_and_areas(org, db_session):
    assert await remove_branches_from_user(db_session, "user-manager", ["branch-2"]) == 1
    assert await remove_areas_from_user(db_session, "user-manager", ["area-north"]) == 1
    assert await remove_areas_from_user(db_session, "user-manager", ["area-north"]) == 0
    assert await remove_branches_from_user(db_session, "user-manager", []) == 0
    await db_session.commit()

    assert await get_direct_branch_ids(db_session, "user-manager") == []
    assert await get_area_branch_ids(db_session, "user-manager") == []


async def test_accessible_branches_are_deduplicated_and_skip_deleted(org, db_session):
    branches = await get_user_accessible_branches(db_session, "user-manager")
    assert [b.id for b in branches] == ["branch-2", "branch-1"]

    branch_1 = await db_session.get(Branch, "branch-1")
    branch_1.deleted_at = datetime.utcnow()
    await db_session.commit()

    assert [b.id for b in await get_user_accessible_branches(db_session, "user-manager")] == ["branch-2"]
