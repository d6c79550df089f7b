"""
dependencies.py
---------------
FastAPI dependency injection functions for authentication and authorisation.

Flow:
  1. HTTPBearer extracts the Bearer token from the Authorization header.
  2. get_restriction resolves it through the TokenRegistry, checking expiry,
     suspension and the client address against the token's IP allowlist.
  3. get_context builds the explicit RequestContext services expect, with
     the token owner as caller.
  4. get_current_admin layers the administrative check on top.

Services raise ScopeErrors; the application-wide handler in main.py turns
them into responses using status_for.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from tokenscope.core.config import settings
from tokenscope.core.context import RequestContext
from tokenscope.core.exceptions import (
    AlreadyExists,
    InvalidConfiguration,
    NotFound,
    ScopeError,
    TokenNotFound,
    Unauthorized,
)
from tokenscope.core.logging import bind_caller, get_logger
from tokenscope.db.session import get_db
from tokenscope.schemas.token import Restriction
from tokenscope.services.lookups import AdminPolicy, SiteAdminPolicy
from tokenscope.services.scope_resolver import ScopeResolver
from tokenscope.services.token_registry import TokenRegistry

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

_CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials",
    headers={"WWW-Authenticate": "Bearer"},
)

_STATUS_BY_ERROR = (
    (NotFound, status.HTTP_404_NOT_FOUND),
    (AlreadyExists, status.HTTP_409_CONFLICT),
    (Unauthorized, status.HTTP_403_FORBIDDEN),
    (InvalidConfiguration, status.HTTP_422_UNPROCESSABLE_CONTENT),
)


def status_for(exc: ScopeError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


def get_admin_policy() -> AdminPolicy:
    return SiteAdminPolicy(settings.SITE_ADMIN_IDS)


def get_registry(
    admin_policy: Annotated[AdminPolicy, Depends(get_admin_policy)],
) -> TokenRegistry:
    return TokenRegistry(admin_policy=admin_policy)


def get_resolver(
    db: Annotated[AsyncSession, Depends(get_db)],
    admin_policy: Annotated[AdminPolicy, Depends(get_admin_policy)],
) -> ScopeResolver:
    return ScopeResolver.from_session(db, admin_policy)


async def get_restriction(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
    registry: Annotated[TokenRegistry, Depends(get_registry)],
) -> Restriction:
    """
    Resolve the bearer token to its Restriction.
    Raises 401 for every kind of invalid token.
    """
    if credentials is None:
        raise _CREDENTIALS_EXCEPTION
    remote_addr = request.client.host if request.client else None
    try:
        restriction = await registry.resolve(
            RequestContext(db=db), credentials.credentials, remote_addr
        )
    except TokenNotFound:
        logger.warning("Bearer token rejected", remote_addr=remote_addr)
        raise _CREDENTIALS_EXCEPTION
    bind_caller(restriction.token_id, restriction.principal_id, restriction.tenant_id)
    return restriction


def get_context(
    db: Annotated[AsyncSession, Depends(get_db)],
    restriction: Annotated[Restriction, Depends(get_restriction)],
) -> RequestContext:
    return RequestContext(db=db, caller_id=restriction.principal_id)


def get_current_admin(
    restriction: Annotated[Restriction, Depends(get_restriction)],
    admin_policy: Annotated[AdminPolicy, Depends(get_admin_policy)],
) -> Restriction:
    """
    Extends get_restriction with an administrative check.
    Raises 403 if the token owner is not a site administrator.
    """
    if not admin_policy.is_administrative(restriction.principal_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return restriction


def visible_tenant_ids(
    restriction: Restriction, admin_policy: AdminPolicy
) -> Optional[list[int]]:
    """None → every tenant (administrators); otherwise the caller's own tenant."""
    if admin_policy.is_administrative(restriction.principal_id):
        return None
    if restriction.tenant_id is None:
        return []
    return [restriction.tenant_id]
