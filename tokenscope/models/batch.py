"""
models/batch.py
---------------
Audit records for bulk issuance and token removal.

Batch rows are written exactly once, after every item of the bulk
operation has been attempted, and are never updated afterwards.
TokenDeletion rows survive the token they describe.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tokenscope.db.base import Base


class Batch(Base):
    __tablename__ = "token_batches"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    service_id: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(50), nullable=False, default="api")
    total_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    fail_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    items: Mapped[list["BatchItem"]] = relationship(
        "BatchItem",
        back_populates="batch",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="BatchItem.id",
    )

    def __repr__(self) -> str:
        return (
            f"<Batch id={self.id} success={self.success_count} "
            f"fail={self.fail_count}>"
        )


class BatchItem(Base):
    __tablename__ = "token_batch_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("token_batches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    principal_id: Mapped[int] = mapped_column(Integer, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    token_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    error_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    batch: Mapped["Batch"] = relationship("Batch", back_populates="items")


class TokenDeletion(Base):
    __tablename__ = "token_deletions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token_id: Mapped[str] = mapped_column(String(36), nullable=False)
    batch_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    token_name: Mapped[str] = mapped_column(String(255), nullable=False)
    principal_id: Mapped[int] = mapped_column(Integer, nullable=False)
    tenant_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    reason: Mapped[str] = mapped_column(String(20), nullable=False)  # revoked | expired
    deleted_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # NULL → system
    deleted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
