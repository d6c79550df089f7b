"""
services/tenant_service.py
--------------------------
Business logic for tenants and their category tree.

Every tenant is created together with its root category, so the
"exactly one root node per tenant" rule holds from the first insert.
Category paths are materialised on insert: parent.path + "/" + id.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tokenscope.core.exceptions import AlreadyExists, NotFound, TenantNotFound
from tokenscope.core.logging import get_logger
from tokenscope.models.hierarchy import Category
from tokenscope.models.tenant import Tenant
from tokenscope.schemas.tenant import TenantCreate
from tokenscope.services.allowset_cache import allowset_cache

logger = get_logger(__name__)


class TenantService:

    @staticmethod
    async def create_category(
        db: AsyncSession, name: str, parent_id: Optional[int] = None
    ) -> Category:
        """
        Insert a category and materialise its path.
        Raises NotFound if parent_id does not exist.
        """
        parent = None
        if parent_id is not None:
            parent = await db.get(Category, parent_id)
            if parent is None:
                raise NotFound(f"Category '{parent_id}' not found", category_id=parent_id)

        category = Category(name=name, parent_id=parent_id, path="")
        db.add(category)
        await db.flush()  # assigns the id the path is built from
        category.path = f"{parent.path if parent else ''}/{category.id}"
        await db.flush()
        await db.refresh(category)
        # A new node changes the subtree of every tenant above it
        allowset_cache.invalidate()
        return category

    @staticmethod
    async def create_tenant(db: AsyncSession, data: TenantCreate) -> Tenant:
        """
        Create a tenant and its root category.
        Raises AlreadyExists if the name or shortname is taken.
        """
        existing = await db.execute(
            select(Tenant.id).where(
                (Tenant.name == data.name) | (Tenant.shortname == data.shortname)
            )
        )
        if existing.first() is not None:
            raise AlreadyExists(f"Tenant '{data.name}' already exists")

        root = await TenantService.create_category(db, data.name, data.parent_category_id)
        tenant = Tenant(name=data.name, shortname=data.shortname, category_id=root.id)
        db.add(tenant)
        try:
            await db.flush()  # Trigger DB constraints before commit
        except IntegrityError:
            await db.rollback()
            raise AlreadyExists(f"Tenant '{data.name}' already exists")
        await db.refresh(tenant)
        logger.info(
            "Tenant created",
            tenant_id=tenant.id,
            shortname=tenant.shortname,
            category_id=root.id,
        )
        return tenant

    @staticmethod
    async def get_tenant_by_id(db: AsyncSession, tenant_id: int) -> Tenant:
        tenant = await db.get(Tenant, tenant_id)
        if tenant is None:
            raise TenantNotFound(tenant_id)
        return tenant

    @staticmethod
    async def create_tenant_category(
        db: AsyncSession, tenant_id: int, name: str, parent_id: Optional[int] = None
    ) -> Category:
        """
        Add a category inside a tenant's subtree (default: under its root).
        Raises NotFound if parent_id lies outside the tenant.
        """
        tenant = await TenantService.get_tenant_by_id(db, tenant_id)
        if parent_id is None:
            parent_id = tenant.category_id
        else:
            root = await db.get(Category, tenant.category_id)
            parent = await db.get(Category, parent_id)
            in_subtree = (
                parent is not None
                and root is not None
                and (parent.id == root.id or parent.path.startswith(root.path + "/"))
            )
            if not in_subtree:
                raise NotFound(
                    f"Category '{parent_id}' not found in tenant '{tenant_id}'",
                    category_id=parent_id,
                )
        return await TenantService.create_category(db, name, parent_id)
