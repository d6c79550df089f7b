"""
services/scope_resolver.py
--------------------------
Turns a token Restriction into concrete allow-sets by walking the tenant's
category subtree.

Critical invariant:
  An empty allow-set means "nothing is visible". Only an unscoped
  restriction (restrict_to_tenant off, or no tenant) means "everything".
  AllowSet keeps the two apart with an explicit `unrestricted` flag; never
  use None or an empty set to signal "unscoped".
"""

from dataclasses import dataclass
from enum import Enum as PyEnum
from typing import Any, Callable, Iterable, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from tokenscope.core.config import settings
from tokenscope.core.exceptions import TenantNotFound
from tokenscope.core.logging import get_logger
from tokenscope.schemas.token import Restriction
from tokenscope.services.allowset_cache import AllowSetCache, allowset_cache
from tokenscope.services.lookups import (
    AdminPolicy,
    EnrollmentLookup,
    HierarchyLookup,
    SiteAdminPolicy,
    SqlEnrollmentLookup,
    SqlHierarchyLookup,
    SqlTenantCourseMembership,
    SqlTenantDirectory,
    SqlTenantUserMembership,
    TenantCourseMembership,
    TenantDirectory,
    TenantUserMembership,
)

logger = get_logger(__name__)


class EntityKind(str, PyEnum):
    user = "user"
    course = "course"
    category = "category"


@dataclass(frozen=True)
class AllowSet:
    """Request-scoped set of entity IDs a restriction permits touching."""

    kind: EntityKind
    ids: frozenset = frozenset()
    unrestricted: bool = False

    @classmethod
    def everything(cls, kind: EntityKind) -> "AllowSet":
        return cls(kind=kind, unrestricted=True)

    @property
    def is_empty(self) -> bool:
        return not self.unrestricted and not self.ids

    def permits(self, entity_id: int) -> bool:
        return self.unrestricted or entity_id in self.ids

    def filter(self, items: Iterable[Any], key: Callable[[Any], int] = lambda item: item.id) -> list:
        """Keep the items whose key is permitted, preserving order."""
        if self.unrestricted:
            return list(items)
        return [item for item in items if key(item) in self.ids]


class ScopeResolver:

    def __init__(
        self,
        tenants: TenantDirectory,
        hierarchy: HierarchyLookup,
        courses: TenantCourseMembership,
        users: TenantUserMembership,
        admin_policy: AdminPolicy,
        enrollments: Optional[EnrollmentLookup] = None,
        cache: Optional[AllowSetCache] = None,
    ) -> None:
        self.tenants = tenants
        self.hierarchy = hierarchy
        self.courses = courses
        self.users = users
        self.admin_policy = admin_policy
        self.enrollments = enrollments
        self.cache = cache

    @classmethod
    def from_session(
        cls,
        db: AsyncSession,
        admin_policy: Optional[AdminPolicy] = None,
        cache: Optional[AllowSetCache] = allowset_cache,
    ) -> "ScopeResolver":
        return cls(
            tenants=SqlTenantDirectory(db),
            hierarchy=SqlHierarchyLookup(db),
            courses=SqlTenantCourseMembership(db),
            users=SqlTenantUserMembership(db),
            admin_policy=admin_policy or SiteAdminPolicy(settings.SITE_ADMIN_IDS),
            enrollments=SqlEnrollmentLookup(db),
            cache=cache,
        )

    async def _cached(self, key, loader) -> frozenset:
        if self.cache is None:
            return await loader()
        return await self.cache.get_or_load(key, loader)

    async def _root_category_id(self, tenant_id: int) -> int:
        tenant = await self.tenants.get_tenant(tenant_id)
        if tenant is None:
            raise TenantNotFound(tenant_id)
        return tenant.category_id

    # ── Tenant allow-sets ─────────────────────────────────────────────────────

    async def tenant_category_ids(self, tenant_id: int) -> set[int]:
        """The tenant's root category plus every descendant by path prefix."""
        root_id = await self._root_category_id(tenant_id)

        async def load() -> frozenset:
            ids = {root_id}
            root = await self.hierarchy.get_node(root_id)
            if root is not None:
                descendants = await self.hierarchy.find_nodes_by_path_prefix(root.path + "/")
                ids.update(node.id for node in descendants)
            return frozenset(ids)

        return set(await self._cached((tenant_id, EntityKind.category.value, None), load))

    async def tenant_course_ids(self, tenant_id: int) -> set[int]:
        """
        Union of explicitly assigned courses and courses living under the
        tenant's category subtree. The two sources may disagree; both count.
        """
        category_ids = await self.tenant_category_ids(tenant_id)

        async def load() -> frozenset:
            assigned = await self.courses.list_course_ids(tenant_id)
            in_subtree = await self.courses.list_course_ids_in_categories(category_ids)
            return frozenset(assigned) | frozenset(in_subtree)

        return set(await self._cached((tenant_id, EntityKind.course.value, None), load))

    async def tenant_user_ids(
        self, tenant_id: int, department_id: Optional[int] = None
    ) -> set[int]:
        """Tenant members (optionally one department), administrators excluded."""
        await self._root_category_id(tenant_id)

        async def load() -> frozenset:
            member_ids = await self.users.list_user_ids(tenant_id, department_id)
            return frozenset(
                uid for uid in member_ids if not self.admin_policy.is_administrative(uid)
            )

        return set(await self._cached((tenant_id, EntityKind.user.value, department_id), load))

    # ── Restriction checks ────────────────────────────────────────────────────

    async def is_allowed(
        self,
        restriction: Restriction,
        entity_kind: Union[EntityKind, str],
        entity_id: int,
    ) -> bool:
        """
        Membership test for a single entity. Unscoped restrictions see
        everything; callers apply their own authorization in that case.
        """
        if not restriction.is_scoped:
            return True
        kind = EntityKind(entity_kind)
        if kind is EntityKind.category:
            ids = await self.tenant_category_ids(restriction.tenant_id)
        elif kind is EntityKind.course:
            ids = await self.tenant_course_ids(restriction.tenant_id)
        else:
            ids = await self.tenant_user_ids(restriction.tenant_id)
        return entity_id in ids

    async def allow_set(
        self,
        restriction: Restriction,
        entity_kind: Union[EntityKind, str],
        department_id: Optional[int] = None,
    ) -> AllowSet:
        """
        The allow-set a caller should intersect its results with.

        For courses, restrict_to_enrollment further narrows the tenant's
        courses to the ones the token owner is actively enrolled in.
        """
        kind = EntityKind(entity_kind)
        if not restriction.is_scoped:
            return AllowSet.everything(kind)

        if kind is EntityKind.category:
            ids = await self.tenant_category_ids(restriction.tenant_id)
        elif kind is EntityKind.user:
            ids = await self.tenant_user_ids(restriction.tenant_id, department_id)
        else:
            ids = await self.tenant_course_ids(restriction.tenant_id)
            if restriction.restrict_to_enrollment and self.enrollments is not None:
                enrolled = await self.enrollments.list_enrolled_course_ids(
                    restriction.principal_id
                )
                ids &= set(enrolled)

        logger.debug(
            "Allow-set resolved",
            tenant_id=restriction.tenant_id,
            kind=kind.value,
            size=len(ids),
        )
        return AllowSet(kind=kind, ids=frozenset(ids))

    def invalidate(self, tenant_id: Optional[int] = None) -> None:
        if self.cache is not None:
            self.cache.invalidate(tenant_id)
