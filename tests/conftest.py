"""
Pytest fixtures for testing.

Provides:
- Async database session on an in-memory SQLite engine
- Test client with the database and admin policy overridden
- Factory fixture for tenants, categories, courses, principals and memberships
- A settable clock for expiry tests
"""

import os

# Settings are read once at import time; pin them before tokenscope loads
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SITE_ADMIN_IDS"] = "[]"
os.environ["ALLOWSET_CACHE_TTL_SECONDS"] = "0"
os.environ["DEFAULT_VALIDITY_DAYS"] = "0"

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from main import app
from tokenscope.core.context import RequestContext
from tokenscope.db.session import get_db
from tokenscope.dependencies import get_admin_policy
from tokenscope.models import (
    Activity,
    ActivityProgress,
    Base,
    Category,
    Course,
    Enrollment,
    Principal,
    Service,
    Tenant,
    TenantCourse,
    TenantUser,
)
from tokenscope.schemas.tenant import TenantCreate
from tokenscope.services.allowset_cache import allowset_cache
from tokenscope.services.lookups import SiteAdminPolicy
from tokenscope.services.tenant_service import TenantService
from tokenscope.services.token_registry import TokenRegistry

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db(db_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
def clear_allowset_cache():
    # IDs restart with every in-memory database
    allowset_cache.invalidate()
    yield
    allowset_cache.invalidate()


# ============ Clock ============


class FixedClock:
    """Settable clock for RequestContext."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


# ============ Factory Fixtures ============


class Factory:
    """Creates test rows; everything is flushed, never committed."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _add(self, obj):
        self.db.add(obj)
        await self.db.flush()
        await self.db.refresh(obj)
        return obj

    async def category(self, name: str = "Category", parent: Optional[Category] = None) -> Category:
        return await TenantService.create_category(
            self.db, name, parent.id if parent is not None else None
        )

    async def tenant(self, shortname: Optional[str] = None, parent: Optional[Category] = None) -> Tenant:
        shortname = shortname or f"T{uuid4().hex[:6]}"
        return await TenantService.create_tenant(
            self.db,
            TenantCreate(
                name=f"{shortname} Corp",
                shortname=shortname,
                parent_category_id=parent.id if parent is not None else None,
            ),
        )

    async def course(self, category_id: int, shortname: Optional[str] = None) -> Course:
        shortname = shortname or f"C{uuid4().hex[:6]}"
        return await self._add(
            Course(fullname=f"Course {shortname}", shortname=shortname, category_id=category_id)
        )

    async def principal(
        self,
        firstname: str = "Test",
        lastname: str = "User",
        suspended: bool = False,
    ) -> Principal:
        username = f"user-{uuid4().hex[:8]}"
        return await self._add(
            Principal(
                username=username,
                email=f"{username}@example.com",
                firstname=firstname,
                lastname=lastname,
                suspended=suspended,
            )
        )

    async def service(self, shortname: Optional[str] = None, enabled: bool = True) -> Service:
        shortname = shortname or f"svc-{uuid4().hex[:6]}"
        return await self._add(Service(name=shortname, shortname=shortname, enabled=enabled))

    async def member(
        self, tenant: Tenant, principal: Principal, department_id: Optional[int] = None
    ) -> TenantUser:
        return await self._add(
            TenantUser(tenant_id=tenant.id, user_id=principal.id, department_id=department_id)
        )

    async def assign_course(self, tenant: Tenant, course: Course) -> TenantCourse:
        return await self._add(TenantCourse(tenant_id=tenant.id, course_id=course.id))

    async def enroll(self, principal: Principal, course: Course, active: bool = True) -> Enrollment:
        return await self._add(Enrollment(user_id=principal.id, course_id=course.id, active=active))

    async def activity(
        self,
        course: Course,
        kind: str,
        item_count: int = 0,
        max_score: Optional[float] = None,
    ) -> Activity:
        return await self._add(
            Activity(
                course_id=course.id,
                kind=kind,
                name=f"{kind} activity",
                item_count=item_count,
                max_score=max_score,
            )
        )

    async def progress(self, activity: Activity, principal: Principal, **values) -> ActivityProgress:
        return await self._add(
            ActivityProgress(activity_id=activity.id, user_id=principal.id, **values)
        )


@pytest_asyncio.fixture
async def factory(db: AsyncSession) -> Factory:
    return Factory(db)


@dataclass
class Org:
    """A tenant rooted at R, with children C1 and C2 and grandchild C3 under C1."""

    tenant: Tenant
    root: Category
    c1: Category
    c2: Category
    c3: Category
    course: Course
    member: Principal
    service: Service


@pytest_asyncio.fixture
async def org(factory: Factory) -> Org:
    tenant = await factory.tenant("ACME")
    root = await factory.db.get(Category, tenant.category_id)
    c1 = await factory.category("C1", root)
    c2 = await factory.category("C2", root)
    c3 = await factory.category("C3", c1)
    course = await factory.course(c3.id)
    member = await factory.principal("Ana", "Gomez")
    await factory.member(tenant, member)
    await factory.enroll(member, course)
    service = await factory.service()
    return Org(
        tenant=tenant,
        root=root,
        c1=c1,
        c2=c2,
        c3=c3,
        course=course,
        member=member,
        service=service,
    )


# ============ Registry Helpers ============


@pytest_asyncio.fixture
async def admin(factory: Factory) -> Principal:
    return await factory.principal("Site", "Admin")


@pytest.fixture
def admin_policy(admin: Principal) -> SiteAdminPolicy:
    return SiteAdminPolicy([admin.id])


@pytest.fixture
def registry(admin_policy: SiteAdminPolicy) -> TokenRegistry:
    return TokenRegistry(admin_policy=admin_policy, cache=None)


@pytest.fixture
def ctx(db: AsyncSession, admin: Principal, clock: FixedClock) -> RequestContext:
    return RequestContext(db=db, caller_id=admin.id, clock=clock)


# ============ HTTP ============


@pytest_asyncio.fixture(scope="function")
async def client(
    db: AsyncSession, admin_policy: SiteAdminPolicy
) -> AsyncGenerator[AsyncClient, None]:
    """Test client with database session and admin policy overrides."""

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_admin_policy] = lambda: admin_policy

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def admin_headers(db: AsyncSession, admin: Principal, factory: Factory) -> dict[str, str]:
    """Bearer headers for an administrative token (real clock)."""
    service = await factory.service("admin-api")
    registry = TokenRegistry(admin_policy=SiteAdminPolicy([admin.id]), cache=None)
    issued = await registry.issue_admin(
        RequestContext(db=db, caller_id=admin.id), admin.id, service.id
    )
    return {"Authorization": f"Bearer {issued.token}"}
