"""
Tests for bulk issuance and its bookkeeping.
"""

import pytest

from tokenscope.core.exceptions import BatchNotFound, InvalidConfiguration, TenantNotFound
from tokenscope.models import Token
from tokenscope.schemas.token import IssueOptions
from tokenscope.services.batch_service import BatchService


@pytest.mark.asyncio
async def test_missing_principal_fails_alone(registry, ctx, factory, org):
    p1 = org.member
    p3 = await factory.principal("Cy", "Third")
    await factory.member(org.tenant, p3)
    p2_id = 9999

    result = await registry.issue_batch(
        ctx, [p1.id, p2_id, p3.id], org.tenant.id, org.service.id, IssueOptions()
    )

    assert result.success_count == 2
    assert result.fail_count == 1
    assert result.success_count + result.fail_count == 3
    assert [e.principal_id for e in result.errors] == [p2_id]
    assert result.errors[0].code == "principal_not_found"
    assert sorted(t.principal_id for t in result.tokens) == sorted([p1.id, p3.id])
    assert all(t.batch_id == result.batch_id for t in result.tokens)


@pytest.mark.asyncio
async def test_batch_is_recorded_once_with_items(registry, ctx, factory, org):
    stranger = await factory.principal("Jo", "Stranger")

    result = await registry.issue_batch(
        ctx, [org.member.id, stranger.id], org.tenant.id, org.service.id, source="csv"
    )

    history = await BatchService.get_batch_history(ctx.db)
    assert [b.id for b in history] == [result.batch_id]

    batch = await BatchService.get_batch(ctx.db, result.batch_id)
    assert batch.source == "csv"
    assert batch.tenant_id == org.tenant.id
    assert batch.created_by == ctx.caller_id
    assert (batch.total_count, batch.success_count, batch.fail_count) == (2, 1, 1)
    failed = [item for item in batch.items if not item.success]
    assert [(i.principal_id, i.error_code) for i in failed] == [
        (stranger.id, "principal_not_in_tenant")
    ]


@pytest.mark.asyncio
async def test_already_has_token_is_a_per_item_error(registry, ctx, org):
    options = IssueOptions(single_token_per_principal=True)
    await registry.issue(ctx, org.member.id, org.tenant.id, org.service.id, options)

    result = await registry.issue_batch(
        ctx, [org.member.id], org.tenant.id, org.service.id, options
    )

    assert result.success_count == 0
    assert result.errors[0].code == "already_has_token"


@pytest.mark.asyncio
async def test_duplicate_principal_in_one_batch(registry, ctx, org):
    options = IssueOptions(single_token_per_principal=True)

    result = await registry.issue_batch(
        ctx, [org.member.id, org.member.id], org.tenant.id, org.service.id, options
    )

    assert (result.success_count, result.fail_count) == (1, 1)


@pytest.mark.asyncio
async def test_request_level_errors_abort_before_any_item(registry, ctx, org):
    with pytest.raises(TenantNotFound):
        await registry.issue_batch(ctx, [org.member.id], 999, org.service.id)
    with pytest.raises(InvalidConfiguration):
        await registry.issue_batch(
            ctx, [org.member.id], None, org.service.id, IssueOptions(restrict_to_tenant=True)
        )

    assert await BatchService.get_batch_history(ctx.db) == []
    assert await registry.list_tokens(ctx) == []


@pytest.mark.asyncio
async def test_history_is_filtered_by_tenant(registry, ctx, factory, org):
    other = await factory.tenant("OTHER")
    await factory.member(other, org.member)
    mine = await registry.issue_batch(ctx, [org.member.id], org.tenant.id, org.service.id)
    await registry.issue_batch(ctx, [org.member.id], other.id, org.service.id)

    history = await BatchService.get_batch_history(ctx.db, tenant_ids=[org.tenant.id])

    assert [b.id for b in history] == [mine.batch_id]


@pytest.mark.asyncio
async def test_revoked_batch_tokens_appear_in_batch_deletions(registry, ctx, factory, org):
    second = await factory.principal("Bo", "Second")
    await factory.member(org.tenant, second)
    result = await registry.issue_batch(
        ctx, [org.member.id, second.id], org.tenant.id, org.service.id
    )

    await registry.revoke_by_ids(ctx, [result.tokens[0].token_id])

    deletions = await BatchService.get_batch_deletions(ctx.db, result.batch_id)
    assert [d.token_id for d in deletions] == [result.tokens[0].token_id]
    assert await ctx.db.get(Token, result.tokens[1].token_id) is not None
    recent = await BatchService.get_recent_deletions(ctx.db, tenant_ids=[org.tenant.id])
    assert len(recent) == 1


@pytest.mark.asyncio
async def test_unknown_batch(ctx):
    with pytest.raises(BatchNotFound):
        await BatchService.get_batch(ctx.db, "nope")
