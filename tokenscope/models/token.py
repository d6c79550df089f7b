"""
models/token.py
---------------
Bearer token ORM model.

One row carries both the credential (hash + display prefix) and its
restriction attributes. The plain token string is returned once at issuance
and never stored.

A token with restrict_to_tenant=True always has a tenant_id; the registry
refuses to create anything else.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tokenscope.db.base import Base, TimestampMixin, generate_uuid


class Token(Base, TimestampMixin):
    __tablename__ = "tokens"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    token_prefix: Mapped[str] = mapped_column(String(10), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    principal_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("principals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("services.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # NULL → unscoped / administrative token
    tenant_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    # Plain column: the batch row is written after its tokens
    batch_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)

    restrict_to_tenant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    restrict_to_enrollment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    ip_restriction: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    valid_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # False while the tenant's access is suspended
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<Token id={self.id} prefix={self.token_prefix}*** tenant_id={self.tenant_id}>"
