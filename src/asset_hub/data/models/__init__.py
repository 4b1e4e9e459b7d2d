"""ORM models package for database tables.

This package provides SQLAlchemy ORM models representing database tables:
- Project: Uploaded project metadata and its primary model file
- Build: Extracted executable builds belonging to a project
- SubModel: Secondary model files belonging to a project

All models inherit from the shared Base declarative class defined in data.db.
"""

from asset_hub.data.db import Base
from asset_hub.data.models.build import Build
from asset_hub.data.models.project import PROJECT_CATEGORIES, Project
from asset_hub.data.models.sub_model import SubModel

__all__ = ["Base", "Build", "PROJECT_CATEGORIES", "Project", "SubModel"]
