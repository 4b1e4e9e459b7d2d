"""ORM model representing an uploaded project and its model files."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from asset_hub.data.db import Base

if TYPE_CHECKING:
    from asset_hub.data.models.build import Build
    from asset_hub.data.models.sub_model import SubModel

PROJECT_CATEGORIES = ("simulators", "vehicles", "weapons")


class Project(Base):
    """Persisted metadata for a project, its primary model file and builds."""

    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    model_name: Mapped[str | None] = mapped_column(String, nullable=True)
    category: Mapped[str] = mapped_column(String, nullable=False)
    model_file_id: Mapped[str | None] = mapped_column(String, nullable=True)
    model_file_name: Mapped[str | None] = mapped_column(String, nullable=True)
    model_file_content_type: Mapped[str | None] = mapped_column(String, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    builds: Mapped[list[Build]] = relationship(
        "Build",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="Build.id",
    )
    sub_models: Mapped[list[SubModel]] = relationship(
        "SubModel",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="SubModel.id",
    )
