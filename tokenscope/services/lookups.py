"""
services/lookups.py
-------------------
Read-only collaborator interfaces consumed by the scope resolver, plus
their SQLAlchemy-backed implementations.

The resolver only ever talks to these protocols, so it can be exercised
against in-memory fakes and embedded behind any data store.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenscope.models.course import Course, Enrollment
from tokenscope.models.hierarchy import Category
from tokenscope.models.principal import Principal
from tokenscope.models.tenant import Tenant, TenantCourse, TenantUser


@dataclass(frozen=True)
class Node:
    id: int
    parent_id: Optional[int]
    path: str


@dataclass(frozen=True)
class TenantRef:
    id: int
    shortname: str
    category_id: int


# ── Protocols ─────────────────────────────────────────────────────────────────

class HierarchyLookup(Protocol):
    async def get_node(self, node_id: int) -> Optional[Node]: ...

    async def find_nodes_by_path_prefix(self, prefix: str) -> list[Node]: ...


class TenantDirectory(Protocol):
    async def get_tenant(self, tenant_id: int) -> Optional[TenantRef]: ...


class TenantCourseMembership(Protocol):
    async def list_course_ids(self, tenant_id: int) -> list[int]: ...

    async def list_course_ids_in_categories(self, category_ids: Iterable[int]) -> list[int]: ...


class TenantUserMembership(Protocol):
    async def list_user_ids(
        self, tenant_id: int, department_id: Optional[int] = None
    ) -> list[int]: ...


class EnrollmentLookup(Protocol):
    async def list_enrolled_course_ids(self, user_id: int) -> list[int]: ...


class AdminPolicy(Protocol):
    def is_administrative(self, user_id: int) -> bool: ...


# ── Admin policy ──────────────────────────────────────────────────────────────

class SiteAdminPolicy:
    """Administrative principals are the configured site administrators."""

    def __init__(self, admin_ids: Iterable[int]) -> None:
        self._admin_ids = frozenset(admin_ids)

    def is_administrative(self, user_id: Optional[int]) -> bool:
        return user_id is not None and user_id in self._admin_ids


# ── SQLAlchemy implementations ────────────────────────────────────────────────

class SqlHierarchyLookup:

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_node(self, node_id: int) -> Optional[Node]:
        category = await self.db.get(Category, node_id)
        if category is None:
            return None
        return Node(id=category.id, parent_id=category.parent_id, path=category.path)

    async def find_nodes_by_path_prefix(self, prefix: str) -> list[Node]:
        # Escape LIKE wildcards; paths only contain digits and "/" but stay safe
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        result = await self.db.execute(
            select(Category.id, Category.parent_id, Category.path).where(
                Category.path.like(f"{escaped}%", escape="\\")
            )
        )
        return [Node(id=row.id, parent_id=row.parent_id, path=row.path) for row in result]


class SqlTenantDirectory:

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_tenant(self, tenant_id: int) -> Optional[TenantRef]:
        tenant = await self.db.get(Tenant, tenant_id)
        if tenant is None:
            return None
        return TenantRef(id=tenant.id, shortname=tenant.shortname, category_id=tenant.category_id)


class SqlTenantCourseMembership:

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def list_course_ids(self, tenant_id: int) -> list[int]:
        result = await self.db.execute(
            select(TenantCourse.course_id).where(TenantCourse.tenant_id == tenant_id)
        )
        return list(result.scalars().all())

    async def list_course_ids_in_categories(self, category_ids: Iterable[int]) -> list[int]:
        category_ids = list(category_ids)
        if not category_ids:
            return []
        result = await self.db.execute(
            select(Course.id).where(Course.category_id.in_(category_ids))
        )
        return list(result.scalars().all())


class SqlTenantUserMembership:

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def list_user_ids(
        self, tenant_id: int, department_id: Optional[int] = None
    ) -> list[int]:
        stmt = (
            select(TenantUser.user_id)
            .join(Principal, Principal.id == TenantUser.user_id)
            .where(TenantUser.tenant_id == tenant_id, Principal.suspended.is_(False))
        )
        if department_id is not None:
            stmt = stmt.where(TenantUser.department_id == department_id)
        result = await self.db.execute(stmt.distinct())
        return list(result.scalars().all())


class SqlEnrollmentLookup:

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def list_enrolled_course_ids(self, user_id: int) -> list[int]:
        result = await self.db.execute(
            select(Enrollment.course_id).where(
                Enrollment.user_id == user_id, Enrollment.active.is_(True)
            )
        )
        return list(result.scalars().all())
