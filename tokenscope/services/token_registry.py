"""
services/token_registry.py
--------------------------
Issues, resolves and revokes tenant-scoped bearer tokens.

Service layer is responsible for:
  - Enforcing issuance rules (tenant exists, principal belongs to tenant,
    restriction flags are consistent)
  - Persisting tokens and their audit trail
  - Raising typed ScopeErrors, never HTTP responses

Security invariant:
  resolve() answers every failure (unknown, expired, revoked, suspended,
  wrong IP) with the same TokenNotFound. Do not add distinguishing
  messages.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import exists, select, update

from tokenscope.core.config import settings
from tokenscope.core.context import RequestContext, as_utc
from tokenscope.core.exceptions import (
    AlreadyHasToken,
    InvalidConfiguration,
    PrincipalNotFound,
    PrincipalNotInTenant,
    ScopeError,
    ServiceNotFound,
    TenantNotFound,
    TokenNotFound,
    Unauthorized,
)
from tokenscope.core.logging import get_logger
from tokenscope.core.security import (
    generate_token,
    generate_token_name,
    hash_token,
    ip_allowed,
)
from tokenscope.db.base import generate_uuid
from tokenscope.models.batch import BatchItem, TokenDeletion
from tokenscope.models.course import Enrollment
from tokenscope.models.principal import Principal, Service
from tokenscope.models.tenant import Tenant, TenantUser
from tokenscope.models.token import Token
from tokenscope.schemas.batch import BatchItemError, BatchResult
from tokenscope.schemas.token import IssuedToken, IssueOptions, Restriction, TokenUpdate
from tokenscope.services.allowset_cache import AllowSetCache, allowset_cache
from tokenscope.services.batch_service import BatchService
from tokenscope.services.lookups import AdminPolicy, SiteAdminPolicy
from tokenscope.services.scope_resolver import ScopeResolver

logger = get_logger(__name__)

ADMIN_SUFFIX = "ADMIN"
UNSCOPED_SUFFIX = "TOKEN"


def tenant_access_open(tenant: Tenant, now: datetime) -> bool:
    if not tenant.access_enabled:
        return False
    expires_at = as_utc(tenant.access_expires_at)
    return expires_at is None or expires_at > now


def restriction_for(token: Token) -> Restriction:
    return Restriction(
        token_id=token.id,
        principal_id=token.principal_id,
        service_id=token.service_id,
        tenant_id=token.tenant_id,
        restrict_to_tenant=token.restrict_to_tenant,
        restrict_to_enrollment=token.restrict_to_enrollment,
        ip_restriction=token.ip_restriction,
        valid_until=as_utc(token.valid_until),
    )


class TokenRegistry:

    def __init__(
        self,
        admin_policy: Optional[AdminPolicy] = None,
        cache: Optional[AllowSetCache] = allowset_cache,
    ) -> None:
        self.admin_policy = admin_policy or SiteAdminPolicy(settings.SITE_ADMIN_IDS)
        self.cache = cache

    # ── Resolution ────────────────────────────────────────────────────────────

    async def resolve(
        self,
        ctx: RequestContext,
        token: str,
        remote_addr: Optional[str] = None,
    ) -> Restriction:
        """
        Map a bearer token to its Restriction.

        Raises:
            TokenNotFound: unknown, expired, revoked or suspended token, a
                token of a suspended tenant, or remote_addr outside the
                token's IP allowlist.
        """
        if not token:
            raise TokenNotFound()
        row = await self._get_by_token(ctx, token)
        if row is None or not row.active:
            raise TokenNotFound()
        valid_until = as_utc(row.valid_until)
        if valid_until is not None and valid_until <= ctx.now():
            raise TokenNotFound()
        if row.tenant_id is not None:
            tenant = await ctx.db.get(Tenant, row.tenant_id)
            if tenant is None or not tenant_access_open(tenant, ctx.now()):
                raise TokenNotFound()
        if remote_addr is not None and not ip_allowed(row.ip_restriction, remote_addr):
            logger.warning("Token used from disallowed address", token_id=row.id)
            raise TokenNotFound()
        return restriction_for(row)

    # ── Issuance ──────────────────────────────────────────────────────────────

    async def issue(
        self,
        ctx: RequestContext,
        principal_id: int,
        tenant_id: Optional[int],
        service_id: int,
        options: Optional[IssueOptions] = None,
    ) -> IssuedToken:
        """
        Create one token.

        Raises:
            TenantNotFound, ServiceNotFound, PrincipalNotFound,
            PrincipalNotInTenant, AlreadyHasToken, InvalidConfiguration.
        """
        options = options or IssueOptions()
        restrict_to_tenant, restrict_to_enrollment = self._resolve_flags(options, tenant_id)
        valid_until = self._resolve_expiry(ctx, options)
        tenant = await self._load_tenant(ctx, tenant_id)
        service = await self._load_service(ctx, service_id)
        return await self._issue_one(
            ctx,
            principal_id,
            tenant=tenant,
            service=service,
            options=options,
            restrict_to_tenant=restrict_to_tenant,
            restrict_to_enrollment=restrict_to_enrollment,
            valid_until=valid_until,
        )

    async def issue_admin(
        self,
        ctx: RequestContext,
        principal_id: int,
        service_id: int,
        options: Optional[IssueOptions] = None,
    ) -> IssuedToken:
        """
        Create an unscoped token. The caller must be administrative;
        any tenant or restriction flags in options are ignored.
        """
        if not self.admin_policy.is_administrative(ctx.caller_id):
            raise Unauthorized("Administrative rights required to issue admin tokens")
        options = options or IssueOptions()
        valid_until = self._resolve_expiry(ctx, options)
        service = await self._load_service(ctx, service_id)
        issued = await self._issue_one(
            ctx,
            principal_id,
            tenant=None,
            service=service,
            options=options,
            restrict_to_tenant=False,
            restrict_to_enrollment=False,
            valid_until=valid_until,
            name_suffix=ADMIN_SUFFIX,
        )
        logger.info("Admin token issued", token_id=issued.token_id, principal_id=principal_id)
        return issued

    async def issue_batch(
        self,
        ctx: RequestContext,
        principal_ids: list[int],
        tenant_id: Optional[int],
        service_id: int,
        options: Optional[IssueOptions] = None,
        source: str = "api",
    ) -> BatchResult:
        """
        Issue a token per principal without letting one failure abort the
        rest. Tenant, service and option problems are request-level errors
        raised before any item is attempted; per-principal problems are
        returned in `errors`.
        """
        options = options or IssueOptions()
        restrict_to_tenant, restrict_to_enrollment = self._resolve_flags(options, tenant_id)
        valid_until = self._resolve_expiry(ctx, options)
        tenant = await self._load_tenant(ctx, tenant_id)
        service = await self._load_service(ctx, service_id)

        batch_id = generate_uuid()
        tokens: list[IssuedToken] = []
        errors: list[BatchItemError] = []
        items: list[BatchItem] = []

        for principal_id in principal_ids:
            try:
                issued = await self._issue_one(
                    ctx,
                    principal_id,
                    tenant=tenant,
                    service=service,
                    options=options,
                    restrict_to_tenant=restrict_to_tenant,
                    restrict_to_enrollment=restrict_to_enrollment,
                    valid_until=valid_until,
                    batch_id=batch_id,
                )
            except ScopeError as exc:
                errors.append(
                    BatchItemError(principal_id=principal_id, code=exc.code, message=exc.message)
                )
                items.append(
                    BatchItem(
                        principal_id=principal_id,
                        success=False,
                        error_code=exc.code,
                        error_message=exc.message,
                    )
                )
                continue
            tokens.append(issued)
            items.append(
                BatchItem(principal_id=principal_id, success=True, token_id=issued.token_id)
            )

        await BatchService.record_batch(
            ctx.db,
            batch_id=batch_id,
            tenant_id=tenant_id,
            service_id=service_id,
            source=source,
            items=items,
            created_by=ctx.caller_id,
            created_at=ctx.now(),
        )
        return BatchResult(
            batch_id=batch_id,
            success_count=len(tokens),
            fail_count=len(errors),
            tokens=tokens,
            errors=errors,
        )

    # ── Revocation ────────────────────────────────────────────────────────────

    async def revoke(self, ctx: RequestContext, token: str) -> None:
        """Idempotent: unknown or already-revoked tokens are not an error."""
        if not token:
            return
        row = await self._get_by_token(ctx, token)
        if row is None:
            return
        await self._delete(ctx, row, reason="revoked", deleted_by=ctx.caller_id)

    async def revoke_by_ids(self, ctx: RequestContext, token_ids: Iterable[str]) -> int:
        count = 0
        for token_id in token_ids:
            row = await ctx.db.get(Token, token_id)
            if row is None:
                continue
            await self._delete(ctx, row, reason="revoked", deleted_by=ctx.caller_id)
            count += 1
        return count

    async def cleanup_expired(self, ctx: RequestContext) -> int:
        """Delete every token whose validity has passed; audited as 'expired'."""
        now = ctx.now()
        result = await ctx.db.execute(
            select(Token).where(Token.valid_until.is_not(None), Token.valid_until <= now)
        )
        expired = list(result.scalars().all())
        for row in expired:
            await self._delete(ctx, row, reason="expired", deleted_by=None)
        if expired:
            logger.info("Expired tokens removed", count=len(expired))
        return len(expired)

    # ── Maintenance ───────────────────────────────────────────────────────────

    async def list_tokens(
        self,
        ctx: RequestContext,
        tenant_ids: Optional[Iterable[int]] = None,
        service_id: Optional[int] = None,
        principal_id: Optional[int] = None,
        batch_id: Optional[str] = None,
    ) -> list[Token]:
        """Newest first. tenant_ids=None → every tenant, including unscoped tokens."""
        stmt = select(Token)
        if tenant_ids is not None:
            stmt = stmt.where(Token.tenant_id.in_(list(tenant_ids)))
        if service_id is not None:
            stmt = stmt.where(Token.service_id == service_id)
        if principal_id is not None:
            stmt = stmt.where(Token.principal_id == principal_id)
        if batch_id is not None:
            stmt = stmt.where(Token.batch_id == batch_id)
        result = await ctx.db.execute(stmt.order_by(Token.created_at.desc()))
        return list(result.scalars().all())

    async def get_token(self, ctx: RequestContext, token_id: str) -> Token:
        row = await ctx.db.get(Token, token_id)
        if row is None:
            raise TokenNotFound()
        return row

    async def update_token(
        self,
        ctx: RequestContext,
        token_id: str,
        changes: TokenUpdate,
    ) -> Token:
        """
        Apply the fields present in `changes`; omitted fields keep their value.

        Raises:
            TokenNotFound, InvalidConfiguration.
        """
        row = await self.get_token(ctx, token_id)
        fields = changes.changes()
        if fields.get("restrict_to_tenant", row.restrict_to_tenant) and row.tenant_id is None:
            raise InvalidConfiguration("restrict_to_tenant requires a tenant_id")
        if "valid_until" in fields:
            valid_until = as_utc(fields["valid_until"])
            if valid_until is not None and valid_until <= ctx.now():
                raise InvalidConfiguration("valid_until must be in the future")
            fields["valid_until"] = valid_until

        for name, value in fields.items():
            setattr(row, name, value)
        row.updated_at = ctx.now()
        await ctx.db.flush()
        await ctx.db.refresh(row)
        logger.info("Token updated", token_id=token_id, fields=sorted(fields))
        return row

    async def set_tenant_access(
        self,
        ctx: RequestContext,
        tenant_id: int,
        enabled: bool,
        expires_at: Optional[datetime] = None,
    ) -> int:
        """
        Suspend or reactivate a tenant and every one of its tokens.
        expires_at schedules an automatic suspension (see expire_tenant_access).
        Returns the number of tokens changed.
        """
        tenant = await self._load_tenant(ctx, tenant_id)
        expires_at = as_utc(expires_at)
        if enabled and expires_at is not None and expires_at <= ctx.now():
            raise InvalidConfiguration("expires_at must be in the future")
        tenant.access_expires_at = expires_at
        return await self._apply_tenant_access(ctx, tenant, enabled)

    async def expire_tenant_access(self, ctx: RequestContext) -> int:
        """Suspend every enabled tenant whose access_expires_at has passed."""
        result = await ctx.db.execute(
            select(Tenant).where(
                Tenant.access_enabled.is_(True),
                Tenant.access_expires_at.is_not(None),
                Tenant.access_expires_at <= ctx.now(),
            )
        )
        expired = list(result.scalars().all())
        for tenant in expired:
            await self._apply_tenant_access(ctx, tenant, False)
        if expired:
            logger.info("Tenant access expired", tenants=[t.id for t in expired])
        return len(expired)

    # ── Internals ─────────────────────────────────────────────────────────────

    @staticmethod
    async def _apply_tenant_access(ctx: RequestContext, tenant: Tenant, enabled: bool) -> int:
        tenant.access_enabled = enabled
        result = await ctx.db.execute(
            update(Token)
            .where(Token.tenant_id == tenant.id, Token.active == (not enabled))
            .values(active=enabled)
        )
        await ctx.db.flush()
        logger.info(
            "Tenant token access changed",
            tenant_id=tenant.id,
            enabled=enabled,
            tokens=result.rowcount,
        )
        return result.rowcount

    @staticmethod
    async def _get_by_token(ctx: RequestContext, token: str) -> Optional[Token]:
        result = await ctx.db.execute(select(Token).where(Token.token_hash == hash_token(token)))
        return result.scalar_one_or_none()

    @staticmethod
    def _resolve_flags(options: IssueOptions, tenant_id: Optional[int]) -> tuple[bool, bool]:
        restrict_to_tenant = options.restrict_to_tenant
        if restrict_to_tenant is None:
            restrict_to_tenant = settings.DEFAULT_RESTRICT_TO_TENANT and tenant_id is not None
        if restrict_to_tenant and tenant_id is None:
            raise InvalidConfiguration("restrict_to_tenant requires a tenant_id")
        restrict_to_enrollment = options.restrict_to_enrollment
        if restrict_to_enrollment is None:
            restrict_to_enrollment = settings.DEFAULT_RESTRICT_TO_ENROLLMENT
        return restrict_to_tenant, restrict_to_enrollment

    @staticmethod
    def _resolve_expiry(ctx: RequestContext, options: IssueOptions) -> Optional[datetime]:
        if options.valid_until_given:
            valid_until = as_utc(options.valid_until)
            if valid_until is not None and valid_until <= ctx.now():
                raise InvalidConfiguration("valid_until must be in the future")
            return valid_until
        if settings.DEFAULT_VALIDITY_DAYS > 0:
            return ctx.now() + timedelta(days=settings.DEFAULT_VALIDITY_DAYS)
        return None

    @staticmethod
    async def _load_tenant(ctx: RequestContext, tenant_id: Optional[int]) -> Optional[Tenant]:
        if tenant_id is None:
            return None
        tenant = await ctx.db.get(Tenant, tenant_id)
        if tenant is None:
            raise TenantNotFound(tenant_id)
        return tenant

    @staticmethod
    async def _load_service(ctx: RequestContext, service_id: int) -> Service:
        service = await ctx.db.get(Service, service_id)
        if service is None or not service.enabled:
            raise ServiceNotFound(service_id)
        return service

    async def _is_tenant_member(self, ctx: RequestContext, principal_id: int, tenant_id: int) -> bool:
        """Direct tenant membership, or an active enrolment in one of its courses."""
        direct = await ctx.db.execute(
            select(
                exists().where(
                    TenantUser.tenant_id == tenant_id, TenantUser.user_id == principal_id
                )
            )
        )
        if direct.scalar():
            return True
        resolver = ScopeResolver.from_session(ctx.db, self.admin_policy, self.cache)
        course_ids = await resolver.tenant_course_ids(tenant_id)
        if not course_ids:
            return False
        enrolled = await ctx.db.execute(
            select(
                exists().where(
                    Enrollment.user_id == principal_id,
                    Enrollment.course_id.in_(sorted(course_ids)),
                    Enrollment.active.is_(True),
                )
            )
        )
        return bool(enrolled.scalar())

    async def _has_token(
        self, ctx: RequestContext, principal_id: int, service_id: int, tenant_id: Optional[int]
    ) -> bool:
        tenant_clause = Token.tenant_id.is_(None) if tenant_id is None else Token.tenant_id == tenant_id
        result = await ctx.db.execute(
            select(
                exists().where(
                    Token.principal_id == principal_id,
                    Token.service_id == service_id,
                    tenant_clause,
                )
            )
        )
        return bool(result.scalar())

    async def _issue_one(
        self,
        ctx: RequestContext,
        principal_id: int,
        *,
        tenant: Optional[Tenant],
        service: Service,
        options: IssueOptions,
        restrict_to_tenant: bool,
        restrict_to_enrollment: bool,
        valid_until: Optional[datetime],
        batch_id: Optional[str] = None,
        name_suffix: Optional[str] = None,
    ) -> IssuedToken:
        # All checks run before anything is added to the session, so a
        # failing item leaves no partial rows behind.
        principal = await ctx.db.get(Principal, principal_id)
        if principal is None:
            raise PrincipalNotFound(principal_id)
        tenant_id = tenant.id if tenant is not None else None
        if (
            tenant is not None
            and settings.REQUIRE_TENANT_MEMBERSHIP
            and not await self._is_tenant_member(ctx, principal_id, tenant.id)
        ):
            raise PrincipalNotInTenant(principal_id, tenant.id)
        if options.single_token_per_principal and await self._has_token(
            ctx, principal_id, service.id, tenant_id
        ):
            raise AlreadyHasToken(principal_id)

        if name_suffix is None:
            name_suffix = tenant.shortname if tenant is not None else UNSCOPED_SUFFIX
        name = generate_token_name(principal.firstname, principal.lastname, name_suffix)
        token, prefix, token_hash = generate_token()

        row = Token(
            token_hash=token_hash,
            token_prefix=prefix,
            name=name,
            principal_id=principal_id,
            service_id=service.id,
            tenant_id=tenant_id,
            batch_id=batch_id,
            restrict_to_tenant=restrict_to_tenant,
            restrict_to_enrollment=restrict_to_enrollment,
            ip_restriction=options.ip_restriction,
            valid_until=valid_until,
            note=f"{name}\n{options.note}" if options.note else name,
            active=tenant is None or tenant_access_open(tenant, ctx.now()),
            created_by=ctx.caller_id,
            created_at=ctx.now(),
            updated_at=ctx.now(),
        )
        ctx.db.add(row)
        await ctx.db.flush()

        logger.info(
            "Token issued",
            token_id=row.id,
            token_prefix=prefix,
            principal_id=principal_id,
            tenant_id=tenant_id,
            service_id=service.id,
            batch_id=batch_id,
        )
        return IssuedToken(
            token=token,
            token_id=row.id,
            name=name,
            principal_id=principal_id,
            service_id=service.id,
            tenant_id=tenant_id,
            batch_id=batch_id,
            restrict_to_tenant=restrict_to_tenant,
            restrict_to_enrollment=restrict_to_enrollment,
            valid_until=valid_until,
        )

    async def _delete(
        self,
        ctx: RequestContext,
        row: Token,
        *,
        reason: str,
        deleted_by: Optional[int],
    ) -> None:
        ctx.db.add(
            TokenDeletion(
                token_id=row.id,
                batch_id=row.batch_id,
                token_name=row.name,
                principal_id=row.principal_id,
                tenant_id=row.tenant_id,
                reason=reason,
                deleted_by=deleted_by,
                deleted_at=ctx.now(),
            )
        )
        await ctx.db.delete(row)
        await ctx.db.flush()
        logger.info(
            "Token removed",
            token_id=row.id,
            tenant_id=row.tenant_id,
            reason=reason,
        )
