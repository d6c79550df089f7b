"""
cleanup_tokens.py
-----------------
Scheduled maintenance job.

  1. Suspend every tenant whose access_expires_at has passed, together
     with its tokens. Always runs.
  2. Delete every token whose validity has passed. Each removal is written
     to the token_deletions audit table with reason "expired". Skipped when
     CLEANUP_EXPIRED_TOKENS is off.

Usage (e.g. from cron, daily):
    python cleanup_tokens.py
"""

import asyncio

from tokenscope.core.config import settings
from tokenscope.core.context import RequestContext
from tokenscope.core.logging import configure_logging, get_logger
from tokenscope.db.session import AsyncSessionLocal, engine
from tokenscope.services.token_registry import TokenRegistry

logger = get_logger(__name__)


async def run_maintenance(ctx: RequestContext, registry: TokenRegistry) -> tuple[int, int]:
    """Returns (tenants suspended, tokens removed)."""
    suspended = await registry.expire_tenant_access(ctx)
    removed = 0
    if settings.CLEANUP_EXPIRED_TOKENS:
        removed = await registry.cleanup_expired(ctx)
    else:
        logger.info("Expired token cleanup disabled")
    return suspended, removed


async def cleanup_expired_tokens() -> tuple[int, int]:
    async with AsyncSessionLocal() as session:
        async with session.begin():
            suspended, removed = await run_maintenance(
                RequestContext(db=session), TokenRegistry()
            )
    logger.info("Maintenance finished", tenants_suspended=suspended, tokens_removed=removed)
    return suspended, removed


async def main() -> None:
    configure_logging()
    try:
        await cleanup_expired_tokens()
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
