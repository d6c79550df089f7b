"""
schemas/tenant.py
-----------------
Pydantic request/response models for tenants and their category tree.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class TenantCreate(BaseModel):
    name: str = Field(
        ...,
        min_length=2,
        max_length=255,
        examples=["Acme Corp"],
        description="Unique company / tenant name",
    )
    shortname: str = Field(..., min_length=1, max_length=100, examples=["ACME"])
    parent_category_id: Optional[int] = Field(
        default=None,
        description="Category to nest the tenant's root category under",
    )

    @field_validator("name", "shortname")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class TenantRead(BaseModel):
    id: int
    name: str
    shortname: str
    category_id: int
    access_enabled: bool
    access_expires_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    parent_id: Optional[int] = Field(
        default=None, description="Defaults to the tenant's root category"
    )


class CategoryRead(BaseModel):
    id: int
    name: str
    parent_id: Optional[int] = None
    path: str

    model_config = {"from_attributes": True}


class TenantAccessUpdate(BaseModel):
    enabled: bool
    expires_at: Optional[datetime] = Field(
        default=None,
        description="When enabling, suspend the tenant automatically at this time",
    )


class TenantAccessResponse(BaseModel):
    tenant_id: int
    enabled: bool
    access_expires_at: Optional[datetime] = None
    tokens_affected: int
