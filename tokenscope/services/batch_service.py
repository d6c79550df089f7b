"""
services/batch_service.py
-------------------------
Bulk-issuance bookkeeping and the removal audit trail.

A Batch row and its items are written once, after every item was
attempted. History queries accept an optional list of tenant IDs so
tenant-scoped callers only ever see their own tenant's records.
"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenscope.core.exceptions import BatchNotFound
from tokenscope.core.logging import get_logger
from tokenscope.models.batch import Batch, BatchItem, TokenDeletion

logger = get_logger(__name__)


class BatchService:

    @staticmethod
    async def record_batch(
        db: AsyncSession,
        *,
        batch_id: str,
        tenant_id: Optional[int],
        service_id: int,
        source: str,
        items: list[BatchItem],
        created_by: Optional[int],
        created_at: datetime,
    ) -> Batch:
        success_count = sum(1 for item in items if item.success)
        batch = Batch(
            id=batch_id,
            tenant_id=tenant_id,
            service_id=service_id,
            source=source,
            total_count=len(items),
            success_count=success_count,
            fail_count=len(items) - success_count,
            created_by=created_by,
            created_at=created_at,
            items=items,
        )
        db.add(batch)
        await db.flush()
        logger.info(
            "Batch recorded",
            batch_id=batch_id,
            tenant_id=tenant_id,
            total=batch.total_count,
            success=batch.success_count,
            failed=batch.fail_count,
        )
        return batch

    @staticmethod
    async def get_batch(db: AsyncSession, batch_id: str) -> Batch:
        batch = await db.get(Batch, batch_id)
        if batch is None:
            raise BatchNotFound(batch_id)
        return batch

    @staticmethod
    async def get_batch_history(
        db: AsyncSession,
        tenant_ids: Optional[Iterable[int]] = None,
        limit: int = 50,
    ) -> list[Batch]:
        """Newest first. tenant_ids=None → all tenants."""
        stmt = select(Batch)
        if tenant_ids is not None:
            stmt = stmt.where(Batch.tenant_id.in_(list(tenant_ids)))
        result = await db.execute(stmt.order_by(Batch.created_at.desc()).limit(limit))
        return list(result.scalars().all())

    @staticmethod
    async def get_batch_deletions(db: AsyncSession, batch_id: str) -> list[TokenDeletion]:
        result = await db.execute(
            select(TokenDeletion)
            .where(TokenDeletion.batch_id == batch_id)
            .order_by(TokenDeletion.deleted_at.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_recent_deletions(
        db: AsyncSession,
        tenant_ids: Optional[Iterable[int]] = None,
        limit: int = 100,
    ) -> list[TokenDeletion]:
        stmt = select(TokenDeletion)
        if tenant_ids is not None:
            stmt = stmt.where(TokenDeletion.tenant_id.in_(list(tenant_ids)))
        result = await db.execute(
            stmt.order_by(TokenDeletion.deleted_at.desc(), TokenDeletion.id.desc()).limit(limit)
        )
        return list(result.scalars().all())
