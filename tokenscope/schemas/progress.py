"""
schemas/progress.py
-------------------
Pydantic models for activity progress queries.
"""

from typing import Optional

from pydantic import BaseModel, Field

from tokenscope.models.activity import ActivityKind


class ProgressRequest(BaseModel):
    activity_ids: list[int] = Field(..., min_length=1, max_length=500)
    kind: Optional[ActivityKind] = Field(
        default=None, description="Only return activities of this kind"
    )


class ProgressRecord(BaseModel):
    activity_id: int
    course_id: int
    kind: ActivityKind
    completed: bool
    total_items: int
    completed_items: int
    progress_percent: float
    attempts: int = 0
    score: Optional[float] = None
    max_score: Optional[float] = None
    state: Optional[str] = None


class ProgressWarning(BaseModel):
    activity_id: int
    code: str
    message: str


class ProgressResponse(BaseModel):
    activities: list[ProgressRecord]
    warnings: list[ProgressWarning]
