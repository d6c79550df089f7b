"""
models/activity.py
------------------
Course activities and per-user progress rows.

`kind` is stored as a plain string so unknown module types coming from the
LMS still load; services map it onto ActivityKind.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from tokenscope.db.base import Base, TimestampMixin


class ActivityKind(str, PyEnum):
    scorm = "scorm"
    quiz = "quiz"
    lesson = "lesson"
    book = "book"
    assign = "assign"
    page = "page"
    resource = "resource"
    url = "url"
    folder = "folder"
    generic = "generic"

    @classmethod
    def parse(cls, value: str) -> "ActivityKind":
        """Map an LMS module name onto a kind; unknown names → generic."""
        try:
            return cls(value.lower())
        except ValueError:
            return cls.generic


class Activity(Base, TimestampMixin):
    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    course_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    # Questions, pages, chapters or slides, depending on kind
    item_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    def __repr__(self) -> str:
        return f"<Activity id={self.id} kind={self.kind}>"


class ActivityProgress(Base):
    __tablename__ = "activity_progress"
    __table_args__ = (UniqueConstraint("activity_id", "user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    activity_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("activities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("principals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    items_done: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    # Module-specific: "inprogress"/"finished" (quiz), "passed" (scorm), "submitted" (assign)
    state: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
