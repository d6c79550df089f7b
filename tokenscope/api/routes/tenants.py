"""
api/routes/tenants.py
---------------------
Tenant management endpoints (admin only).

POST /tenants                     - Create a tenant and its root category.
POST /tenants/{tenant_id}/categories - Add a category inside a tenant.
POST /tenants/{tenant_id}/access  - Suspend or reactivate a tenant and its tokens.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from tokenscope.core.context import RequestContext, as_utc
from tokenscope.db.session import get_db
from tokenscope.dependencies import get_context, get_current_admin, get_registry
from tokenscope.schemas.tenant import (
    CategoryCreate,
    CategoryRead,
    TenantAccessResponse,
    TenantAccessUpdate,
    TenantCreate,
    TenantRead,
)
from tokenscope.schemas.token import Restriction
from tokenscope.services.tenant_service import TenantService
from tokenscope.services.token_registry import TokenRegistry

router = APIRouter(prefix="/tenants", tags=["Tenants"])

Admin = Annotated[Restriction, Depends(get_current_admin)]


@router.post(
    "",
    response_model=TenantRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a tenant (company) with its root category",
)
async def create_tenant(
    body: TenantCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Admin,
) -> TenantRead:
    tenant = await TenantService.create_tenant(db, body)
    return TenantRead.model_validate(tenant)


@router.post(
    "/{tenant_id}/categories",
    response_model=CategoryRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add a category to a tenant's subtree",
)
async def create_tenant_category(
    tenant_id: int,
    body: CategoryCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Admin,
) -> CategoryRead:
    category = await TenantService.create_tenant_category(
        db, tenant_id, body.name, body.parent_id
    )
    return CategoryRead.model_validate(category)


@router.post(
    "/{tenant_id}/access",
    response_model=TenantAccessResponse,
    summary="Suspend or reactivate a tenant and every one of its tokens",
)
async def set_tenant_access(
    tenant_id: int,
    body: TenantAccessUpdate,
    ctx: Annotated[RequestContext, Depends(get_context)],
    registry: Annotated[TokenRegistry, Depends(get_registry)],
    admin: Admin,
) -> TenantAccessResponse:
    """Tokens issued while the tenant is suspended are created inactive."""
    affected = await registry.set_tenant_access(ctx, tenant_id, body.enabled, body.expires_at)
    return TenantAccessResponse(
        tenant_id=tenant_id,
        enabled=body.enabled,
        access_expires_at=as_utc(body.expires_at),
        tokens_affected=affected,
    )
