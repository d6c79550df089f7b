"""
models/principal.py
-------------------
Token owners (LMS users) and the web services tokens are issued for.

Administrative status is not a column: it comes from the configured
AdminPolicy (see services/lookups.py).
"""

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from tokenscope.db.base import Base, TimestampMixin


class Principal(Base, TimestampMixin):
    __tablename__ = "principals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    firstname: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    lastname: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    suspended: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    @property
    def fullname(self) -> str:
        return f"{self.firstname} {self.lastname}".strip()

    def __repr__(self) -> str:
        return f"<Principal id={self.id} username={self.username}>"


class Service(Base, TimestampMixin):
    """An external service (audience) a token grants access to."""

    __tablename__ = "services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    shortname: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Service id={self.id} shortname={self.shortname}>"
