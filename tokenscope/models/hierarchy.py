"""
models/hierarchy.py
-------------------
Course category tree.

Every node stores its materialised ancestor path, e.g. "/1/4/9" for node 9
whose parent is 4 whose parent is root 1. "All descendants of X" is the
path-prefix predicate `path LIKE X.path || '/%'`.
"""

from typing import Optional

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from tokenscope.db.base import Base, TimestampMixin


class Category(Base, TimestampMixin):
    __tablename__ = "course_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    parent_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("course_categories.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    path: Mapped[str] = mapped_column(String(1024), nullable=False, default="", index=True)

    def __repr__(self) -> str:
        return f"<Category id={self.id} path={self.path}>"
