"""
api/routes/scope.py
-------------------
Allow-set inspection for the calling token.

GET /scope/categories - categories the token may touch
GET /scope/courses    - courses the token may touch
GET /scope/users      - users the token may touch (optionally one department)
GET /scope/check      - single-entity membership test
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from tokenscope.dependencies import get_resolver, get_restriction
from tokenscope.schemas.scope import AllowSetRead, ScopeCheckResponse
from tokenscope.schemas.token import Restriction
from tokenscope.services.scope_resolver import EntityKind, ScopeResolver

router = APIRouter(prefix="/scope", tags=["Scope"])

Resolver = Annotated[ScopeResolver, Depends(get_resolver)]
Caller = Annotated[Restriction, Depends(get_restriction)]


async def _allow_set(
    resolver: ScopeResolver,
    restriction: Restriction,
    kind: EntityKind,
    department_id: Optional[int] = None,
) -> AllowSetRead:
    allow_set = await resolver.allow_set(restriction, kind, department_id)
    return AllowSetRead.from_allow_set(allow_set, restriction.tenant_id)


@router.get("/categories", response_model=AllowSetRead, summary="Allowed categories")
async def allowed_categories(resolver: Resolver, restriction: Caller) -> AllowSetRead:
    return await _allow_set(resolver, restriction, EntityKind.category)


@router.get("/courses", response_model=AllowSetRead, summary="Allowed courses")
async def allowed_courses(resolver: Resolver, restriction: Caller) -> AllowSetRead:
    """Narrowed to the owner's active enrolments when the token asks for it."""
    return await _allow_set(resolver, restriction, EntityKind.course)


@router.get("/users", response_model=AllowSetRead, summary="Allowed users")
async def allowed_users(
    resolver: Resolver,
    restriction: Caller,
    department_id: Optional[int] = Query(default=None),
) -> AllowSetRead:
    return await _allow_set(resolver, restriction, EntityKind.user, department_id)


@router.get("/check", response_model=ScopeCheckResponse, summary="Is one entity in scope?")
async def check_entity(
    resolver: Resolver,
    restriction: Caller,
    kind: EntityKind = Query(...),
    entity_id: int = Query(...),
) -> ScopeCheckResponse:
    allowed = await resolver.is_allowed(restriction, kind, entity_id)
    return ScopeCheckResponse(kind=kind, entity_id=entity_id, allowed=allowed)
