"""
bootstrap_admin.py
------------------
Issue the first administrative token, so the HTTP API can be used at all.
The principal must already exist and be listed in SITE_ADMIN_IDS.

Usage:
    python bootstrap_admin.py <principal_id> <service_id>
"""

import asyncio
import sys

from tokenscope.core.context import RequestContext
from tokenscope.core.exceptions import ScopeError
from tokenscope.core.logging import configure_logging
from tokenscope.db.session import AsyncSessionLocal, engine
from tokenscope.services.token_registry import TokenRegistry


async def bootstrap(principal_id: int, service_id: int) -> str:
    async with AsyncSessionLocal() as session:
        async with session.begin():
            # The admin issues its own first token
            ctx = RequestContext(db=session, caller_id=principal_id)
            issued = await TokenRegistry().issue_admin(ctx, principal_id, service_id)
    return issued.token


async def main(argv: list[str]) -> int:
    if len(argv) != 2:
        print(__doc__)
        return 2
    configure_logging()
    try:
        token = await bootstrap(int(argv[0]), int(argv[1]))
    except ScopeError as exc:
        print(f"{exc.code}: {exc.message}", file=sys.stderr)
        return 1
    finally:
        await engine.dispose()
    print(token)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:])))
