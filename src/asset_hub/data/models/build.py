"""ORM model for executable builds attached to a project.

Each row points at an extracted build tree. ``executable_path`` is always
relative to the storage root chosen at startup, so rows stay valid when the
root moves to another drive.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from asset_hub.data.db import Base

if TYPE_CHECKING:
    from asset_hub.data.models.project import Project


class Build(Base):
    """Persisted metadata for one extracted build.

    Attributes:
        id: Auto-incrementing primary key.
        project_id: Owning project.
        name: Display name, also used to derive the build directory.
        description: Free-form description.
        executable_path: Executable location relative to the storage root.
        is_main: Whether this is the build launched by default.
        category: Category directory the build was extracted under.
        version: Client-supplied version label.
        created_at: UTC timestamp of creation.
    """

    __tablename__ = "builds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    executable_path: Mapped[str] = mapped_column(String, nullable=False)
    is_main: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    version: Mapped[str] = mapped_column(String, nullable=False, default="1.0.0")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    project: Mapped[Project] = relationship("Project", back_populates="builds")
