"""
schemas/scope.py
----------------
Response models for allow-set inspection.
"""

from typing import Optional

from pydantic import BaseModel

from tokenscope.services.scope_resolver import AllowSet, EntityKind


class AllowSetRead(BaseModel):
    kind: EntityKind
    unrestricted: bool
    tenant_id: Optional[int] = None
    ids: list[int]

    @classmethod
    def from_allow_set(cls, allow_set: AllowSet, tenant_id: Optional[int]) -> "AllowSetRead":
        return cls(
            kind=allow_set.kind,
            unrestricted=allow_set.unrestricted,
            tenant_id=tenant_id,
            ids=sorted(allow_set.ids),
        )


class ScopeCheckResponse(BaseModel):
    kind: EntityKind
    entity_id: int
    allowed: bool
