"""
Tests for token issuance, resolution and revocation.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from tokenscope.core.config import settings
from tokenscope.core.context import RequestContext, as_utc
from tokenscope.core.exceptions import (
    AlreadyHasToken,
    InvalidConfiguration,
    PrincipalNotFound,
    PrincipalNotInTenant,
    ServiceNotFound,
    TenantNotFound,
    TokenNotFound,
    Unauthorized,
)
from tokenscope.core.security import hash_token
from tokenscope.models import Token, TokenDeletion
from tokenscope.schemas.token import IssueOptions, TokenUpdate


# ============ Round trip ============


@pytest.mark.asyncio
async def test_issue_then_resolve_defaults_to_restricted(registry, ctx, org):
    issued = await registry.issue(ctx, org.member.id, org.tenant.id, org.service.id)

    restriction = await registry.resolve(ctx, issued.token)

    assert restriction.tenant_id == org.tenant.id
    assert restriction.principal_id == org.member.id
    assert restriction.restrict_to_tenant is True
    assert restriction.restrict_to_enrollment is True
    assert restriction.is_scoped


@pytest.mark.asyncio
@pytest.mark.parametrize("to_tenant,to_enrollment", [(False, False), (True, False), (False, True)])
async def test_resolve_returns_supplied_flags(registry, ctx, org, to_tenant, to_enrollment):
    options = IssueOptions(restrict_to_tenant=to_tenant, restrict_to_enrollment=to_enrollment)
    issued = await registry.issue(ctx, org.member.id, org.tenant.id, org.service.id, options)

    restriction = await registry.resolve(ctx, issued.token)

    assert restriction.tenant_id == org.tenant.id
    assert restriction.restrict_to_tenant is to_tenant
    assert restriction.restrict_to_enrollment is to_enrollment


@pytest.mark.asyncio
async def test_only_hash_and_prefix_are_stored(registry, ctx, org):
    issued = await registry.issue(ctx, org.member.id, org.tenant.id, org.service.id)

    row = await ctx.db.get(Token, issued.token_id)

    assert row.token_hash == hash_token(issued.token)
    assert row.token_hash != issued.token
    assert row.token_prefix == issued.token[:8]
    assert row.name == "ANA_GOMEZ_ACME"
    assert row.created_by == ctx.caller_id


@pytest.mark.asyncio
async def test_note_is_appended_to_name(registry, ctx, org):
    issued = await registry.issue(
        ctx, org.member.id, org.tenant.id, org.service.id, IssueOptions(note="for the LMS app")
    )

    row = await ctx.db.get(Token, issued.token_id)

    assert row.note == "ANA_GOMEZ_ACME\nfor the LMS app"


# ============ Resolution failures ============


@pytest.mark.asyncio
async def test_resolve_after_revoke_is_not_found(registry, ctx, org):
    issued = await registry.issue(ctx, org.member.id, org.tenant.id, org.service.id)

    await registry.revoke(ctx, issued.token)

    with pytest.raises(TokenNotFound):
        await registry.resolve(ctx, issued.token)


@pytest.mark.asyncio
@pytest.mark.parametrize("token", ["", "not-a-real-token"])
async def test_resolve_unknown_token(registry, ctx, token):
    with pytest.raises(TokenNotFound) as excinfo:
        await registry.resolve(ctx, token)

    assert excinfo.value.message == "Invalid token"


@pytest.mark.asyncio
async def test_expired_token_is_not_found(registry, ctx, org, clock):
    options = IssueOptions(valid_until=clock.now + timedelta(days=1))
    issued = await registry.issue(ctx, org.member.id, org.tenant.id, org.service.id, options)

    await registry.resolve(ctx, issued.token)
    clock.advance(days=2)

    with pytest.raises(TokenNotFound):
        await registry.resolve(ctx, issued.token)


@pytest.mark.asyncio
async def test_ip_allowlist(registry, ctx, org):
    options = IssueOptions(ip_restriction="10.0.0.0/8, 192.168.1.5")
    issued = await registry.issue(ctx, org.member.id, org.tenant.id, org.service.id, options)

    await registry.resolve(ctx, issued.token, remote_addr="10.20.30.40")
    await registry.resolve(ctx, issued.token, remote_addr="192.168.1.5")
    with pytest.raises(TokenNotFound):
        await registry.resolve(ctx, issued.token, remote_addr="192.168.1.6")


def test_invalid_ip_restriction_is_rejected():
    with pytest.raises(ValueError):
        IssueOptions(ip_restriction="10.0.0.0/8, not-an-ip")


@pytest.mark.asyncio
async def test_suspended_tenant_tokens_are_not_found(registry, ctx, org):
    issued = await registry.issue(ctx, org.member.id, org.tenant.id, org.service.id)

    suspended = await registry.set_tenant_access(ctx, org.tenant.id, enabled=False)
    with pytest.raises(TokenNotFound):
        await registry.resolve(ctx, issued.token)

    reactivated = await registry.set_tenant_access(ctx, org.tenant.id, enabled=True)
    restriction = await registry.resolve(ctx, issued.token)

    assert suspended == 1
    assert reactivated == 1
    assert restriction.token_id == issued.token_id


@pytest.mark.asyncio
async def test_token_issued_while_tenant_suspended_is_not_found(registry, ctx, org):
    await registry.set_tenant_access(ctx, org.tenant.id, enabled=False)

    issued = await registry.issue(ctx, org.member.id, org.tenant.id, org.service.id)

    row = await ctx.db.get(Token, issued.token_id)
    assert row.active is False
    with pytest.raises(TokenNotFound):
        await registry.resolve(ctx, issued.token)

    await registry.set_tenant_access(ctx, org.tenant.id, enabled=True)
    restriction = await registry.resolve(ctx, issued.token)
    assert restriction.token_id == issued.token_id


@pytest.mark.asyncio
async def test_suspension_does_not_touch_unscoped_tokens(registry, ctx, org):
    unscoped = await registry.issue(ctx, org.member.id, None, org.service.id)

    await registry.set_tenant_access(ctx, org.tenant.id, enabled=False)

    restriction = await registry.resolve(ctx, unscoped.token)
    assert restriction.tenant_id is None


@pytest.mark.asyncio
async def test_tenant_access_expiry(registry, ctx, org, clock):
    issued = await registry.issue(ctx, org.member.id, org.tenant.id, org.service.id)
    await registry.set_tenant_access(
        ctx, org.tenant.id, enabled=True, expires_at=clock.now + timedelta(hours=1)
    )
    await registry.resolve(ctx, issued.token)

    clock.advance(hours=2)
    with pytest.raises(TokenNotFound):
        await registry.resolve(ctx, issued.token)

    assert await registry.expire_tenant_access(ctx) == 1
    assert await registry.expire_tenant_access(ctx) == 0
    assert org.tenant.access_enabled is False
    row = await ctx.db.get(Token, issued.token_id)
    assert row.active is False


@pytest.mark.asyncio
async def test_tenant_access_expiry_must_be_in_future(registry, ctx, org, clock):
    with pytest.raises(InvalidConfiguration):
        await registry.set_tenant_access(
            ctx, org.tenant.id, enabled=True, expires_at=clock.now - timedelta(hours=1)
        )


@pytest.mark.asyncio
async def test_tenant_access_unknown_tenant(registry, ctx):
    with pytest.raises(TenantNotFound):
        await registry.set_tenant_access(ctx, 999, enabled=False)


# ============ Revocation ============


@pytest.mark.asyncio
async def test_revoke_is_idempotent(registry, ctx, org):
    issued = await registry.issue(ctx, org.member.id, org.tenant.id, org.service.id)

    await registry.revoke(ctx, issued.token)
    await registry.revoke(ctx, issued.token)
    await registry.revoke(ctx, "never-issued")
    await registry.revoke(ctx, "")

    result = await ctx.db.execute(select(TokenDeletion))
    deletions = result.scalars().all()
    assert len(deletions) == 1
    assert deletions[0].token_id == issued.token_id
    assert deletions[0].reason == "revoked"
    assert deletions[0].deleted_by == ctx.caller_id


@pytest.mark.asyncio
async def test_revoke_by_ids_skips_unknown(registry, ctx, org):
    first = await registry.issue(ctx, org.member.id, org.tenant.id, org.service.id)
    second = await registry.issue(ctx, org.member.id, None, org.service.id)

    revoked = await registry.revoke_by_ids(ctx, [first.token_id, "missing", second.token_id])

    assert revoked == 2
    assert await registry.list_tokens(ctx) == []


@pytest.mark.asyncio
async def test_cleanup_expired_removes_only_expired(registry, ctx, org, clock):
    short = await registry.issue(
        ctx, org.member.id, org.tenant.id, org.service.id,
        IssueOptions(valid_until=clock.now + timedelta(hours=1)),
    )
    forever = await registry.issue(ctx, org.member.id, None, org.service.id)

    clock.advance(hours=2)
    removed = await registry.cleanup_expired(ctx)

    assert removed == 1
    remaining = await registry.list_tokens(ctx)
    assert [t.id for t in remaining] == [forever.token_id]
    deletion = (await ctx.db.execute(select(TokenDeletion))).scalar_one()
    assert deletion.token_id == short.token_id
    assert deletion.reason == "expired"
    assert deletion.deleted_by is None


# ============ Issuance rules ============


@pytest.mark.asyncio
async def test_unknown_tenant(registry, ctx, org):
    with pytest.raises(TenantNotFound):
        await registry.issue(ctx, org.member.id, 999, org.service.id)


@pytest.mark.asyncio
async def test_unknown_principal(registry, ctx, org):
    with pytest.raises(PrincipalNotFound):
        await registry.issue(ctx, 999, org.tenant.id, org.service.id)


@pytest.mark.asyncio
async def test_disabled_service(registry, ctx, factory, org):
    service = await factory.service(enabled=False)

    with pytest.raises(ServiceNotFound):
        await registry.issue(ctx, org.member.id, org.tenant.id, service.id)


@pytest.mark.asyncio
async def test_principal_outside_tenant(registry, ctx, factory, org):
    stranger = await factory.principal("Jo", "Stranger")

    with pytest.raises(PrincipalNotInTenant):
        await registry.issue(ctx, stranger.id, org.tenant.id, org.service.id)


@pytest.mark.asyncio
async def test_enrolment_in_tenant_course_counts_as_membership(registry, ctx, factory, org):
    learner = await factory.principal("Lee", "Learner")
    await factory.enroll(learner, org.course)

    issued = await registry.issue(ctx, learner.id, org.tenant.id, org.service.id)

    assert issued.tenant_id == org.tenant.id


@pytest.mark.asyncio
async def test_membership_check_can_be_disabled(registry, ctx, factory, org, monkeypatch):
    monkeypatch.setattr(settings, "REQUIRE_TENANT_MEMBERSHIP", False)
    stranger = await factory.principal("Jo", "Stranger")

    issued = await registry.issue(ctx, stranger.id, org.tenant.id, org.service.id)

    assert issued.principal_id == stranger.id


@pytest.mark.asyncio
async def test_single_token_per_principal(registry, ctx, org):
    options = IssueOptions(single_token_per_principal=True)
    await registry.issue(ctx, org.member.id, org.tenant.id, org.service.id, options)

    with pytest.raises(AlreadyHasToken) as excinfo:
        await registry.issue(ctx, org.member.id, org.tenant.id, org.service.id, options)

    assert excinfo.value.code == "already_has_token"


@pytest.mark.asyncio
async def test_tenant_restriction_without_tenant_is_invalid(registry, ctx, org):
    with pytest.raises(InvalidConfiguration):
        await registry.issue(
            ctx, org.member.id, None, org.service.id, IssueOptions(restrict_to_tenant=True)
        )


@pytest.mark.asyncio
async def test_tenantless_token_defaults_to_unscoped(registry, ctx, org):
    issued = await registry.issue(ctx, org.member.id, None, org.service.id)

    restriction = await registry.resolve(ctx, issued.token)

    assert restriction.tenant_id is None
    assert restriction.restrict_to_tenant is False
    assert not restriction.is_scoped
    assert issued.name == "ANA_GOMEZ_TOKEN"


@pytest.mark.asyncio
async def test_past_expiry_is_invalid(registry, ctx, org, clock):
    with pytest.raises(InvalidConfiguration):
        await registry.issue(
            ctx, org.member.id, org.tenant.id, org.service.id,
            IssueOptions(valid_until=clock.now - timedelta(minutes=1)),
        )


@pytest.mark.asyncio
async def test_omitted_expiry_uses_default_but_explicit_null_never_expires(
    registry, ctx, org, clock, monkeypatch
):
    monkeypatch.setattr(settings, "DEFAULT_VALIDITY_DAYS", 30)

    omitted = await registry.issue(
        ctx, org.member.id, org.tenant.id, org.service.id, IssueOptions()
    )
    explicit = await registry.issue(
        ctx, org.member.id, org.tenant.id, org.service.id,
        IssueOptions.model_validate({"valid_until": None}),
    )

    assert omitted.valid_until == clock.now + timedelta(days=30)
    assert explicit.valid_until is None


# ============ Admin tokens ============


@pytest.mark.asyncio
async def test_issue_admin_requires_admin_caller(registry, db, org, clock):
    member_ctx = RequestContext(db=db, caller_id=org.member.id, clock=clock)

    with pytest.raises(Unauthorized):
        await registry.issue_admin(member_ctx, org.member.id, org.service.id)


@pytest.mark.asyncio
async def test_issue_admin_is_unscoped(registry, ctx, org):
    options = IssueOptions(restrict_to_tenant=True, restrict_to_enrollment=True)
    issued = await registry.issue_admin(ctx, org.member.id, org.service.id, options)

    restriction = await registry.resolve(ctx, issued.token)

    assert issued.name == "ANA_GOMEZ_ADMIN"
    assert restriction.tenant_id is None
    assert restriction.restrict_to_tenant is False
    assert restriction.restrict_to_enrollment is False


# ============ Maintenance ============


@pytest.mark.asyncio
async def test_update_token_sets_and_clears_expiry(registry, ctx, org, clock):
    issued = await registry.issue(ctx, org.member.id, org.tenant.id, org.service.id)

    updated = await registry.update_token(
        ctx, issued.token_id, TokenUpdate(valid_until=clock.now + timedelta(days=3))
    )
    assert as_utc(updated.valid_until) == clock.now + timedelta(days=3)

    cleared = await registry.update_token(ctx, issued.token_id, TokenUpdate(valid_until=None))
    assert cleared.valid_until is None


@pytest.mark.asyncio
async def test_update_token_leaves_omitted_fields_alone(registry, ctx, org, clock):
    expiry = clock.now + timedelta(days=5)
    options = IssueOptions(valid_until=expiry, ip_restriction="10.0.0.1", note="first")
    issued = await registry.issue(ctx, org.member.id, org.tenant.id, org.service.id, options)

    untouched = await registry.update_token(ctx, issued.token_id, TokenUpdate())
    assert as_utc(untouched.valid_until) == expiry
    assert untouched.ip_restriction == "10.0.0.1/32"

    updated = await registry.update_token(
        ctx,
        issued.token_id,
        TokenUpdate(restrict_to_enrollment=False, ip_restriction=None, note="rotated"),
    )
    assert updated.restrict_to_enrollment is False
    assert updated.restrict_to_tenant is True
    assert updated.ip_restriction is None
    assert updated.note == "rotated"
    assert as_utc(updated.valid_until) == expiry

    restriction = await registry.resolve(ctx, issued.token, remote_addr="172.16.0.9")
    assert restriction.restrict_to_enrollment is False


@pytest.mark.asyncio
async def test_update_token_keeps_tenant_restriction_consistent(registry, ctx, org):
    unscoped = await registry.issue(ctx, org.member.id, None, org.service.id)

    with pytest.raises(InvalidConfiguration):
        await registry.update_token(ctx, unscoped.token_id, TokenUpdate(restrict_to_tenant=True))

    row = await registry.get_token(ctx, unscoped.token_id)
    assert row.restrict_to_tenant is False


@pytest.mark.asyncio
async def test_update_token_rejects_past_expiry(registry, ctx, org, clock):
    issued = await registry.issue(ctx, org.member.id, org.tenant.id, org.service.id)

    with pytest.raises(InvalidConfiguration):
        await registry.update_token(
            ctx, issued.token_id, TokenUpdate(valid_until=clock.now - timedelta(minutes=1))
        )


def test_token_update_flags_cannot_be_null():
    with pytest.raises(ValueError):
        TokenUpdate(restrict_to_tenant=None)


@pytest.mark.asyncio
async def test_update_token_unknown_token(registry, ctx):
    with pytest.raises(TokenNotFound):
        await registry.update_token(ctx, "missing", TokenUpdate(valid_until=None))


@pytest.mark.asyncio
async def test_list_tokens_filters_by_tenant(registry, ctx, factory, org):
    other = await factory.tenant("OTHER")
    await factory.member(other, org.member)
    mine = await registry.issue(ctx, org.member.id, org.tenant.id, org.service.id)
    await registry.issue(ctx, org.member.id, other.id, org.service.id)

    tokens = await registry.list_tokens(ctx, tenant_ids=[org.tenant.id])

    assert [t.id for t in tokens] == [mine.token_id]
