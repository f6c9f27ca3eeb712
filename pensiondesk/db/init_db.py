from __future__ import annotations

from pathlib import Path

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from pensiondesk.db.base import Base
from pensiondesk.db.queries.permissions import get_permission_by_code, sync_permission_catalog
from pensiondesk.models.organization import Area, AreaBranch, Branch
from pensiondesk.models.security import User, UserArea, UserBranch, UserPermission
from pensiondesk.security.catalog import load_permission_catalog
from pensiondesk.security.scope import Scope

DEMO_COMPANY_ID = "acme-pensions"


async def init_db(
    engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
    catalog_path: Path,
) -> None:
    """
    Create tables, sync the permission catalog, and seed demo data.

    The catalog is upserted on every start. Demo branches, areas, users and
    grants are only written to an empty database.
    """

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    entries = load_permission_catalog(catalog_path)
    async with session_factory() as db:
        await sync_permission_catalog(db, entries)
        await db.commit()

        if await _has_seed_data(db):
            return
        await _seed(db)


async def _has_seed_data(db: AsyncSession) -> bool:
    return (await db.execute(select(Branch.id).limit(1))).first() is not None


async def _seed(db: AsyncSession) -> None:
    # Branches
    mnl1 = Branch(code="MNL-01", name="Manila Main", location="Manila", category="main", sort_order=1)
    mnl2 = Branch(code="MNL-02", name="Quezon City", location="Quezon City", category="satellite", sort_order=2)
    ceb1 = Branch(code="CEB-01", name="Cebu", location="Cebu City", category="main", sort_order=3)
    dav1 = Branch(code="DAV-01", name="Davao", location="Davao City", category="main", sort_order=4)
    db.add_all([mnl1, mnl2, ceb1, dav1])
    await db.flush()

    # Areas
    north = Area(code="NORTH", name="North Luzon", company_id=DEMO_COMPANY_ID, sort_order=1)
    south = Area(code="SOUTH", name="Visayas & Mindanao", company_id=DEMO_COMPANY_ID, sort_order=2)
    db.add_all([north, south])
    await db.flush()

    db.add_all(
        [
            AreaBranch(area_id=north.id, branch_id=mnl1.id, is_primary=True),
            AreaBranch(area_id=north.id, branch_id=mnl2.id),
            AreaBranch(area_id=south.id, branch_id=ceb1.id, is_primary=True),
            AreaBranch(area_id=south.id, branch_id=dav1.id),
        ]
    )

    # Users (fixed ids so the demo bearer tokens are predictable)
    alice = User(id="user-alice", email="alice.admin@example.com", first_name="Alice", last_name="Admin")
    bob = User(id="user-bob", email="bob.area@example.com", first_name="Bob", last_name="Area")
    carol = User(id="user-carol", email="carol.branch@example.com", first_name="Carol", last_name="Branch")
    dan = User(id="user-dan", email="dan.officer@example.com", first_name="Dan", last_name="Officer")
    db.add_all([alice, bob, carol, dan])
    await db.flush()

    # Territory
    db.add_all(
        [
            UserArea(user_id=bob.id, area_id=north.id),
            UserBranch(user_id=carol.id, branch_id=ceb1.id),
            UserBranch(user_id=dan.id, branch_id=dav1.id),
        ]
    )

    # Grants
    grants = [
        (alice, "clients.read", Scope.ALL),
        (alice, "clients.write", Scope.ALL),
        (alice, "users.read", Scope.ALL),
        (alice, "users.write", Scope.ALL),
        (alice, "areas.write", Scope.ALL),
        (bob, "clients.write", Scope.AREA),
        (bob, "branches.read", Scope.AREA),
        (carol, "clients.write", Scope.BRANCH),
        (carol, "branches.read", Scope.BRANCH),
        (dan, "clients.delete", Scope.SELF),
    ]
    for user, code, scope in grants:
        permission = await get_permission_by_code(db, code)
        if permission is None:
            continue
        db.add(UserPermission(user_id=user.id, permission_id=permission.id, company_id=DEMO_COMPANY_ID, scope=scope))

    await db.commit()
