"""
api/routes/tokens.py
--------------------
Token issuance and maintenance endpoints.

POST  /tokens                 - Admin: issue one token
POST  /tokens/admin           - Admin: issue an unscoped administrative token
POST  /tokens/batch           - Admin: issue tokens for many principals
POST  /tokens/revoke          - Admin: revoke by token string (idempotent)
POST  /tokens/revoke-many     - Admin: revoke by token IDs
GET   /tokens                 - Admin: list tokens
PATCH /tokens/{id}            - Admin: change restrictions, expiry or note
GET   /tokens/me              - The caller's own restriction
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, status

from tokenscope.core.context import RequestContext
from tokenscope.dependencies import (
    get_context,
    get_current_admin,
    get_registry,
    get_restriction,
)
from tokenscope.schemas.batch import BatchResult
from tokenscope.schemas.token import (
    AdminIssueRequest,
    BatchIssueRequest,
    IssuedToken,
    IssueRequest,
    Restriction,
    RevokeManyRequest,
    RevokeManyResponse,
    RevokeRequest,
    TokenRead,
    TokenUpdate,
)
from tokenscope.services.token_registry import TokenRegistry

router = APIRouter(prefix="/tokens", tags=["Tokens"])

Registry = Annotated[TokenRegistry, Depends(get_registry)]
Context = Annotated[RequestContext, Depends(get_context)]
Admin = Annotated[Restriction, Depends(get_current_admin)]


@router.post(
    "",
    response_model=IssuedToken,
    status_code=status.HTTP_201_CREATED,
    summary="Issue a token for one principal",
)
async def issue_token(
    body: IssueRequest, ctx: Context, registry: Registry, admin: Admin
) -> IssuedToken:
    """The token string is only ever returned here; store it client-side."""
    return await registry.issue(
        ctx, body.principal_id, body.tenant_id, body.service_id, body.options
    )


@router.post(
    "/admin",
    response_model=IssuedToken,
    status_code=status.HTTP_201_CREATED,
    summary="Issue an unscoped administrative token",
)
async def issue_admin_token(
    body: AdminIssueRequest, ctx: Context, registry: Registry
) -> IssuedToken:
    return await registry.issue_admin(ctx, body.principal_id, body.service_id, body.options)


@router.post(
    "/batch",
    response_model=BatchResult,
    status_code=status.HTTP_201_CREATED,
    summary="Issue tokens for many principals",
)
async def issue_batch(
    body: BatchIssueRequest, ctx: Context, registry: Registry, admin: Admin
) -> BatchResult:
    """
    Per-principal failures are reported in `errors` and do not fail the
    request; only tenant, service or option problems do.
    """
    return await registry.issue_batch(
        ctx,
        body.principal_ids,
        body.tenant_id,
        body.service_id,
        body.options,
        source=body.source,
    )


@router.post(
    "/revoke",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Revoke a token by its string",
)
async def revoke_token(
    body: RevokeRequest, ctx: Context, registry: Registry, admin: Admin
) -> None:
    await registry.revoke(ctx, body.token)


@router.post(
    "/revoke-many",
    response_model=RevokeManyResponse,
    summary="Revoke tokens by ID",
)
async def revoke_many(
    body: RevokeManyRequest, ctx: Context, registry: Registry, admin: Admin
) -> RevokeManyResponse:
    revoked = await registry.revoke_by_ids(ctx, body.token_ids)
    return RevokeManyResponse(revoked=revoked)


@router.get(
    "",
    response_model=list[TokenRead],
    summary="List tokens, newest first",
)
async def list_tokens(
    ctx: Context,
    registry: Registry,
    admin: Admin,
    tenant_id: Optional[int] = Query(default=None),
    service_id: Optional[int] = Query(default=None),
    principal_id: Optional[int] = Query(default=None),
    batch_id: Optional[str] = Query(default=None),
) -> list[TokenRead]:
    tokens = await registry.list_tokens(
        ctx,
        tenant_ids=[tenant_id] if tenant_id is not None else None,
        service_id=service_id,
        principal_id=principal_id,
        batch_id=batch_id,
    )
    return [TokenRead.model_validate(t) for t in tokens]


@router.patch(
    "/{token_id}",
    response_model=TokenRead,
    summary="Change a token's restrictions, expiry or note",
)
async def update_token(
    token_id: str, body: TokenUpdate, ctx: Context, registry: Registry, admin: Admin
) -> TokenRead:
    """
    Only fields present in the body change. `"valid_until": null` makes the
    token never expire; omitting it leaves the expiry alone.
    """
    token = await registry.update_token(ctx, token_id, body)
    return TokenRead.model_validate(token)


@router.get(
    "/me",
    response_model=Restriction,
    summary="Restriction attached to the calling token",
)
async def who_am_i(
    restriction: Annotated[Restriction, Depends(get_restriction)],
) -> Restriction:
    return restriction
