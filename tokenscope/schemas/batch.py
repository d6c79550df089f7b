"""
schemas/batch.py
----------------
Pydantic models for bulk issuance results and audit history.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from tokenscope.schemas.token import IssuedToken


class BatchItemError(BaseModel):
    """Typed per-item failure; callers branch on `code`."""

    principal_id: int
    code: str
    message: str


class BatchResult(BaseModel):
    batch_id: str
    success_count: int
    fail_count: int
    tokens: list[IssuedToken]
    errors: list[BatchItemError]


class BatchItemRead(BaseModel):
    principal_id: int
    success: bool
    token_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    model_config = {"from_attributes": True}


class BatchSummaryRead(BaseModel):
    id: str
    tenant_id: Optional[int] = None
    service_id: int
    source: str
    total_count: int
    success_count: int
    fail_count: int
    created_by: Optional[int] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class BatchRead(BatchSummaryRead):
    items: list[BatchItemRead]


class TokenDeletionRead(BaseModel):
    token_id: str
    batch_id: Optional[str] = None
    token_name: str
    principal_id: int
    tenant_id: Optional[int] = None
    reason: str
    deleted_by: Optional[int] = None
    deleted_at: datetime

    model_config = {"from_attributes": True}
