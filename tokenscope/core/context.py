"""
core/context.py
---------------
Explicit request context.

Every registry operation receives a RequestContext instead of reading a
"current user" or a global session. The clock is injectable so expiry
logic can be tested without sleeping.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise a datetime read back from the store to aware UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class RequestContext:
    db: AsyncSession
    caller_id: Optional[int] = None
    clock: Callable[[], datetime] = field(default=utc_now)

    def now(self) -> datetime:
        return as_utc(self.clock())
