"""
Pytest fixtures for the test suite.

Every test gets a fresh in-memory SQLite database (aiosqlite + StaticPool, so all
sessions share one connection), an in-process cache driven by a fake clock, and
both resolution engines wired to them. The ``org`` fixture seeds a small
organisation that most engine and API tests build on.
"""
from __future__ import annotations

from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from pensiondesk.cache.client import MemoryCacheClient
from pensiondesk.db import filters as _filters  # noqa: F401  (register SQLAlchemy filters)
from pensiondesk.db.base import Base
from pensiondesk.db.queries.permissions import CatalogEntry, get_permission_by_code, sync_permission_catalog
from pensiondesk.db.session import build_session_factory
from pensiondesk.models.organization import Area, AreaBranch, Branch
from pensiondesk.models.security import User, UserArea, UserBranch, UserPermission
from pensiondesk.security.permissions import PermissionEngine
from pensiondesk.security.scope import Scope
from pensiondesk.security.territory import TerritoryEngine

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"
COMPANY_ID = "company-1"
OTHER_COMPANY_ID = "company-2"

CATALOG = (
    CatalogEntry(code="clients.read", resource="clients", action="read"),
    CatalogEntry(code="clients.write", resource="clients", action="write"),
    CatalogEntry(code="clients.delete", resource="clients", action="delete"),
    CatalogEntry(code="branches.read", resource="branches", action="read"),
    CatalogEntry(code="users.read", resource="users", action="read"),
    CatalogEntry(code="users.write", resource="users", action="write"),
    CatalogEntry(code="areas.write", resource="areas", action="write"),
)


class FakeClock:
    """Monotonic clock the tests can move forward."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
async def engine():
    """Create a fresh in-memory SQLite engine for each test."""
    engine = create_async_engine(TEST_DB_URL, poolclass=StaticPool, echo=False)
    yield engine
    await engine.dispose()


@pytest.fixture
async def tables(engine):
    """Create all ORM tables on the test engine."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


@pytest.fixture
def session_factory(tables):
    return build_session_factory(tables)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return MemoryCacheClient(clock=clock)


@pytest.fixture
def permission_engine(cache, session_factory):
    return PermissionEngine(cache, session_factory)


@pytest.fixture
def territory_engine(cache, session_factory, permission_engine):
    return TerritoryEngine(cache, session_factory, permission_engine)


@pytest.fixture
async def org(db_session):
    """
    Seed a small organisation:

    - branches branch-1 .. branch-4
    - area-north (branch-1 primary, branch-2), area-south (branch-3 primary, branch-4)
    - user-admin:   clients.read/users.*/areas.write at ALL scope
    - user-manager: clients.write at AREA scope, area-north + direct branch-2
    - user-officer: clients.write at BRANCH scope, clients.delete at SELF scope, direct branch-3
    - user-nobody:  no grants, no territory
    """

    await sync_permission_catalog(db_session, CATALOG)

    branches = [
        Branch(id=f"branch-{n}", code=f"BR-0{n}", name=f"Branch {n}", location="Manila", sort_order=n)
        for n in range(1, 5)
    ]
    db_session.add_all(branches)
    db_session.add_all(
        [
            Area(id="area-north", code="NORTH", name="North", company_id=COMPANY_ID, sort_order=1),
            Area(id="area-south", code="SOUTH", name="South", company_id=COMPANY_ID, sort_order=2),
        ]
    )
    await db_session.flush()

    db_session.add_all(
        [
            AreaBranch(area_id="area-north", branch_id="branch-1", is_primary=True),
            AreaBranch(area_id="area-north", branch_id="branch-2"),
            AreaBranch(area_id="area-south", branch_id="branch-3", is_primary=True),
            AreaBranch(area_id="area-south", branch_id="branch-4"),
        ]
    )

    db_session.add_all(
        [
            User(id="user-admin", email="admin@example.com", first_name="Ada"),
            User(id="user-manager", email="manager@example.com", first_name="Mo"),
            User(id="user-officer", email="officer@example.com", first_name="Ola"),
            User(id="user-nobody", email="nobody@example.com", first_name="Nia"),
        ]
    )
    await db_session.flush()

    db_session.add_all(
        [
            UserArea(user_id="user-manager", area_id="area-north"),
            UserBranch(user_id="user-manager", branch_id="branch-2"),
            UserBranch(user_id="user-officer", branch_id="branch-3"),
        ]
    )

    grants = [
        ("user-admin", "clients.read", Scope.ALL),
        ("user-admin", "users.read", Scope.ALL),
        ("user-admin", "users.write", Scope.ALL),
        ("user-admin", "areas.write", Scope.ALL),
        ("user-manager", "clients.write", Scope.AREA),
        ("user-officer", "clients.write", Scope.BRANCH),
        ("user-officer", "clients.delete", Scope.SELF),
    ]
    permission_ids = {}
    for user_id, code, scope in grants:
        permission = await get_permission_by_code(db_session, code)
        permission_ids[code] = permission.id
        db_session.add(UserPermission(user_id=user_id, permission_id=permission.id, company_id=COMPANY_ID, scope=scope))

    for entry in CATALOG:
        if entry.code not in permission_ids:
            permission_ids[entry.code] = (await get_permission_by_code(db_session, entry.code)).id

    await db_session.commit()
    return SimpleNamespace(company_id=COMPANY_ID, permission_ids=permission_ids)
