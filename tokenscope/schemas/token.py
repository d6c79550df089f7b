"""
schemas/token.py
----------------
Pydantic models for token issuance, resolution and listing.

Naming convention:
  *Request   → inbound request body
  *Read      → outbound response body (never exposes token_hash)

Optional options distinguish "omitted" from "explicit null" through
`model_fields_set`: an omitted valid_until falls back to the configured
default validity, an explicit null means "never expires".
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tokenscope.core.security import normalise_ip_restriction


class IssueOptions(BaseModel):
    restrict_to_tenant: Optional[bool] = Field(
        default=None,
        description="Scope the token to its tenant (default: true when a tenant is given)",
    )
    restrict_to_enrollment: Optional[bool] = Field(
        default=None,
        description="Limit course access to the owner's enrolments (default: true)",
    )
    ip_restriction: Optional[str] = Field(
        default=None,
        max_length=1024,
        examples=["10.0.0.1, 192.168.0.0/24"],
        description="Comma-separated IP addresses or CIDR networks",
    )
    valid_until: Optional[datetime] = Field(
        default=None,
        description="Expiry; omit for the configured default, null for never",
    )
    note: Optional[str] = Field(default=None, max_length=2000)
    single_token_per_principal: bool = Field(
        default=False,
        description="Fail with already_has_token if the principal holds one already",
    )

    @field_validator("ip_restriction")
    @classmethod
    def validate_ip_restriction(cls, v: Optional[str]) -> Optional[str]:
        return normalise_ip_restriction(v)

    @property
    def valid_until_given(self) -> bool:
        return "valid_until" in self.model_fields_set


class IssueRequest(BaseModel):
    principal_id: int
    tenant_id: Optional[int] = None
    service_id: int
    options: IssueOptions = Field(default_factory=IssueOptions)


class AdminIssueRequest(BaseModel):
    principal_id: int
    service_id: int
    options: IssueOptions = Field(default_factory=IssueOptions)


class BatchIssueRequest(BaseModel):
    principal_ids: list[int] = Field(..., min_length=1, max_length=5000)
    tenant_id: Optional[int] = None
    service_id: int
    options: IssueOptions = Field(default_factory=IssueOptions)
    source: str = Field(default="api", max_length=50)


class Restriction(BaseModel):
    """Resolved scoping rules attached to a token."""

    model_config = ConfigDict(frozen=True)

    token_id: str
    principal_id: int
    service_id: int
    tenant_id: Optional[int] = None
    restrict_to_tenant: bool = False
    restrict_to_enrollment: bool = False
    ip_restriction: Optional[str] = None
    valid_until: Optional[datetime] = None

    @model_validator(mode="after")
    def tenant_required_when_restricted(self) -> "Restriction":
        if self.restrict_to_tenant and self.tenant_id is None:
            raise ValueError("restrict_to_tenant requires a tenant_id")
        return self

    @property
    def is_scoped(self) -> bool:
        """False for unscoped / administrative tokens."""
        return self.restrict_to_tenant and self.tenant_id is not None


class IssuedToken(BaseModel):
    """Returned once at issuance, the only time the token string is visible."""

    token: str
    token_id: str
    name: str
    principal_id: int
    service_id: int
    tenant_id: Optional[int] = None
    batch_id: Optional[str] = None
    restrict_to_tenant: bool
    restrict_to_enrollment: bool
    valid_until: Optional[datetime] = None


class TokenRead(BaseModel):
    id: str
    token_prefix: str
    name: str
    principal_id: int
    service_id: int
    tenant_id: Optional[int] = None
    batch_id: Optional[str] = None
    restrict_to_tenant: bool
    restrict_to_enrollment: bool
    ip_restriction: Optional[str] = None
    valid_until: Optional[datetime] = None
    note: Optional[str] = None
    active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class RevokeRequest(BaseModel):
    token: str = Field(..., min_length=1)


class RevokeManyRequest(BaseModel):
    token_ids: list[str] = Field(..., min_length=1)


class RevokeManyResponse(BaseModel):
    revoked: int


class TokenUpdate(BaseModel):
    """
    Partial update. Only fields present in the body change; an explicit
    null clears ip_restriction, valid_until or note.
    """

    restrict_to_tenant: Optional[bool] = None
    restrict_to_enrollment: Optional[bool] = None
    ip_restriction: Optional[str] = Field(default=None, max_length=1024)
    valid_until: Optional[datetime] = None
    note: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("restrict_to_tenant", "restrict_to_enrollment")
    @classmethod
    def flags_not_null(cls, v: Optional[bool]) -> bool:
        if v is None:
            raise ValueError("must be true or false")
        return v

    @field_validator("ip_restriction")
    @classmethod
    def validate_ip_restriction(cls, v: Optional[str]) -> Optional[str]:
        return normalise_ip_restriction(v)

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)
