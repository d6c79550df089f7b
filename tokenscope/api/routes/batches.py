"""
api/routes/batches.py
---------------------
Bulk-issuance history and the token removal audit trail.

GET /batches                    - Recent batches
GET /batches/{batch_id}         - One batch with its per-principal items
GET /batches/{batch_id}/deletions - Tokens of a batch that were removed
GET /deletions                  - Recent token removals

Administrators see every tenant; tenant-scoped callers only their own.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tokenscope.core.config import settings
from tokenscope.core.exceptions import BatchNotFound
from tokenscope.db.session import get_db
from tokenscope.dependencies import (
    get_admin_policy,
    get_restriction,
    visible_tenant_ids,
)
from tokenscope.schemas.batch import BatchRead, BatchSummaryRead, TokenDeletionRead
from tokenscope.schemas.token import Restriction
from tokenscope.services.batch_service import BatchService
from tokenscope.services.lookups import AdminPolicy

router = APIRouter(tags=["Batches"])

Db = Annotated[AsyncSession, Depends(get_db)]


async def get_visible_tenants(
    restriction: Annotated[Restriction, Depends(get_restriction)],
    admin_policy: Annotated[AdminPolicy, Depends(get_admin_policy)],
) -> Optional[list[int]]:
    return visible_tenant_ids(restriction, admin_policy)


VisibleTenants = Annotated[Optional[list[int]], Depends(get_visible_tenants)]


def _ensure_visible(batch_id: str, tenant_id: Optional[int], tenant_ids: Optional[list[int]]) -> None:
    if tenant_ids is not None and tenant_id not in tenant_ids:
        # Same answer as a missing batch: other tenants' IDs are not confirmed
        raise BatchNotFound(batch_id)


@router.get("/batches", response_model=list[BatchSummaryRead], summary="Recent batches")
async def list_batches(
    db: Db,
    tenant_ids: VisibleTenants,
    limit: int = Query(default=settings.BATCH_HISTORY_LIMIT, ge=1, le=500),
) -> list[BatchSummaryRead]:
    batches = await BatchService.get_batch_history(db, tenant_ids, limit)
    return [BatchSummaryRead.model_validate(b) for b in batches]


@router.get("/batches/{batch_id}", response_model=BatchRead, summary="Batch details")
async def get_batch(batch_id: str, db: Db, tenant_ids: VisibleTenants) -> BatchRead:
    batch = await BatchService.get_batch(db, batch_id)
    _ensure_visible(batch_id, batch.tenant_id, tenant_ids)
    return BatchRead.model_validate(batch)


@router.get(
    "/batches/{batch_id}/deletions",
    response_model=list[TokenDeletionRead],
    summary="Removed tokens of a batch",
)
async def get_batch_deletions(
    batch_id: str, db: Db, tenant_ids: VisibleTenants
) -> list[TokenDeletionRead]:
    batch = await BatchService.get_batch(db, batch_id)
    _ensure_visible(batch_id, batch.tenant_id, tenant_ids)
    deletions = await BatchService.get_batch_deletions(db, batch_id)
    return [TokenDeletionRead.model_validate(d) for d in deletions]


@router.get("/deletions", response_model=list[TokenDeletionRead], summary="Recent removals")
async def list_deletions(
    db: Db,
    tenant_ids: VisibleTenants,
    limit: int = Query(default=100, ge=1, le=1000),
) -> list[TokenDeletionRead]:
    deletions = await BatchService.get_recent_deletions(db, tenant_ids, limit)
    return [TokenDeletionRead.model_validate(d) for d in deletions]
