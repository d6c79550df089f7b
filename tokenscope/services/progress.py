"""
services/progress.py
--------------------
Per-activity progress for the token owner, one fetcher per activity kind.

Fetchers are registered against ActivityKind in PROGRESS_FETCHERS; kinds
without a dedicated fetcher use the completion-only generic one. Activities
in courses outside the caller's course allow-set are skipped and reported
as warnings, never returned.
"""

from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenscope.core.logging import get_logger
from tokenscope.models.activity import Activity, ActivityKind, ActivityProgress
from tokenscope.schemas.progress import ProgressRecord, ProgressResponse, ProgressWarning
from tokenscope.schemas.token import Restriction
from tokenscope.services.scope_resolver import EntityKind, ScopeResolver

logger = get_logger(__name__)

FINISHED_SCORM_STATES = frozenset({"completed", "passed"})


class ProgressFetcher:
    """Base fetcher: one item, done when the completion flag is set."""

    def fetch_progress(
        self, activity: Activity, row: Optional[ActivityProgress]
    ) -> ProgressRecord:
        completed = bool(row and row.completed)
        return self.record(activity, row, total=1, done=1 if completed else 0, completed=completed)

    @staticmethod
    def total_items(activity: Activity) -> int:
        return activity.item_count or 1

    @staticmethod
    def record(
        activity: Activity,
        row: Optional[ActivityProgress],
        *,
        total: int,
        done: int,
        completed: bool,
    ) -> ProgressRecord:
        done = max(0, min(done, total))
        return ProgressRecord(
            activity_id=activity.id,
            course_id=activity.course_id,
            kind=ActivityKind.parse(activity.kind),
            completed=completed,
            total_items=total,
            completed_items=done,
            progress_percent=round(done / total * 100, 1) if total else 0.0,
            attempts=row.attempts if row else 0,
            score=row.score if row else None,
            max_score=activity.max_score,
            state=row.state if row else None,
        )


PROGRESS_FETCHERS: dict[ActivityKind, ProgressFetcher] = {}


def register_fetcher(*kinds: ActivityKind) -> Callable[[type], type]:
    def decorator(cls: type) -> type:
        instance = cls()
        for kind in kinds:
            PROGRESS_FETCHERS[kind] = instance
        return cls
    return decorator


def fetcher_for(kind: ActivityKind) -> ProgressFetcher:
    return PROGRESS_FETCHERS.get(kind, PROGRESS_FETCHERS[ActivityKind.generic])


@register_fetcher(
    ActivityKind.generic,
    ActivityKind.page,
    ActivityKind.resource,
    ActivityKind.url,
    ActivityKind.folder,
)
class CompletionFetcher(ProgressFetcher):
    pass


@register_fetcher(ActivityKind.scorm)
class ScormFetcher(ProgressFetcher):
    """Slides viewed out of slide count; a completed/passed status finishes it."""

    def fetch_progress(self, activity, row):
        total = self.total_items(activity)
        finished = bool(row) and (row.completed or (row.state or "") in FINISHED_SCORM_STATES)
        done = total if finished else (row.items_done if row else 0)
        return self.record(activity, row, total=total, done=done, completed=finished)


@register_fetcher(ActivityKind.quiz)
class QuizFetcher(ProgressFetcher):
    """A finished attempt covers every question; in progress counts answers."""

    def fetch_progress(self, activity, row):
        total = self.total_items(activity)
        if row is None:
            return self.record(activity, row, total=total, done=0, completed=False)
        if row.state == "finished":
            return self.record(activity, row, total=total, done=total, completed=True)
        return self.record(activity, row, total=total, done=row.items_done, completed=row.completed)


@register_fetcher(ActivityKind.lesson)
class LessonFetcher(ProgressFetcher):
    """A graded lesson is complete; otherwise pages viewed."""

    def fetch_progress(self, activity, row):
        total = self.total_items(activity)
        if row is None:
            return self.record(activity, row, total=total, done=0, completed=False)
        graded = row.score is not None
        done = total if graded else row.items_done
        return self.record(activity, row, total=total, done=done, completed=graded or row.completed)


@register_fetcher(ActivityKind.book)
class BookFetcher(ProgressFetcher):

    def fetch_progress(self, activity, row):
        total = self.total_items(activity)
        done = row.items_done if row else 0
        return self.record(
            activity, row, total=total, done=done, completed=bool(row and row.completed)
        )


@register_fetcher(ActivityKind.assign)
class AssignFetcher(ProgressFetcher):
    """Single item, done once submitted."""

    def fetch_progress(self, activity, row):
        submitted = bool(row) and row.state == "submitted"
        return self.record(
            activity,
            row,
            total=1,
            done=1 if submitted else 0,
            completed=submitted or bool(row and row.completed),
        )


class ProgressService:

    @staticmethod
    async def fetch_progress(
        db: AsyncSession,
        resolver: ScopeResolver,
        restriction: Restriction,
        activity_ids: list[int],
        kind: Optional[ActivityKind] = None,
    ) -> ProgressResponse:
        result = await db.execute(
            select(Activity).where(Activity.id.in_(activity_ids)).order_by(Activity.id)
        )
        activities = list(result.scalars().all())
        found = {a.id for a in activities}
        warnings = [
            ProgressWarning(activity_id=aid, code="not_found", message="Activity not found")
            for aid in activity_ids
            if aid not in found
        ]

        if kind is not None:
            activities = [a for a in activities if ActivityKind.parse(a.kind) is kind]

        allowed = await resolver.allow_set(restriction, EntityKind.course)
        visible = []
        for activity in activities:
            if allowed.permits(activity.course_id):
                visible.append(activity)
            else:
                warnings.append(
                    ProgressWarning(
                        activity_id=activity.id,
                        code="course_not_allowed",
                        message="Activity belongs to a course outside the token's scope",
                    )
                )

        rows: dict[int, ActivityProgress] = {}
        if visible:
            progress_result = await db.execute(
                select(ActivityProgress).where(
                    ActivityProgress.user_id == restriction.principal_id,
                    ActivityProgress.activity_id.in_([a.id for a in visible]),
                )
            )
            rows = {row.activity_id: row for row in progress_result.scalars().all()}

        records = [
            fetcher_for(ActivityKind.parse(a.kind)).fetch_progress(a, rows.get(a.id))
            for a in visible
        ]
        logger.info(
            "Progress fetched",
            principal_id=restriction.principal_id,
            returned=len(records),
            skipped=len(warnings),
        )
        return ProgressResponse(activities=records, warnings=warnings)
