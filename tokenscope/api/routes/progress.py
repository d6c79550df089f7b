"""
api/routes/progress.py
----------------------
POST /progress - the calling token owner's progress on a list of activities.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tokenscope.db.session import get_db
from tokenscope.dependencies import get_resolver, get_restriction
from tokenscope.schemas.progress import ProgressRequest, ProgressResponse
from tokenscope.schemas.token import Restriction
from tokenscope.services.progress import ProgressService
from tokenscope.services.scope_resolver import ScopeResolver

router = APIRouter(tags=["Progress"])


@router.post(
    "/progress",
    response_model=ProgressResponse,
    summary="Activity progress for the token owner",
)
async def get_progress(
    body: ProgressRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    resolver: Annotated[ScopeResolver, Depends(get_resolver)],
    restriction: Annotated[Restriction, Depends(get_restriction)],
) -> ProgressResponse:
    """
    Activities outside the token's course scope are reported in
    `warnings` instead of failing the whole request.
    """
    return await ProgressService.fetch_progress(
        db, resolver, restriction, body.activity_ids, body.kind
    )
