"""Route handlers for the API."""

from asset_hub.api.routes import builds, health, launcher, projects, uploads

__all__ = [
    "builds",
    "health",
    "launcher",
    "projects",
    "uploads",
]
