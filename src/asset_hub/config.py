"""Runtime configuration for storage locations and upload limits.

All values are read from environment variables so deployments and tests can
redirect storage without code changes. ``load_settings`` is called once at
startup; the result is immutable and passed explicitly to the services that
need it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

_DEFAULT_MIN_FREE_GB = 1.0
_DEFAULT_MAX_CHUNK_MB = 100
_DEFAULT_RETENTION_MINUTES = 60
_DEFAULT_REAP_INTERVAL_MINUTES = 30
_DEFAULT_EXECUTABLE_SUFFIX = ".exe"

BUILD_ROOT_DIR_NAME = "AssetBuilds"


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name)
    if value:
        return Path(value).expanduser().resolve()
    return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


@dataclass(frozen=True, slots=True)
class Settings:
    """Immutable runtime settings.

    Attributes:
        build_root: Pinned storage root for extracted builds, or None to let
            the drive selector choose one.
        fallback_root: Root used when no selected candidate is writable.
        chunk_root: Staging directory for chunked upload sessions.
        temp_root: Spool directory for direct multipart uploads.
        model_root: Root of the content-addressed model file store.
        min_free_gb: Minimum free space a drive should offer.
        max_chunk_bytes: Ceiling for a single uploaded chunk.
        retention_seconds: Age after which temporary items are reaped.
        reap_interval_seconds: Delay between background sweeps.
        executable_suffix: File extension identifying a runnable build.
        reaper_enabled: Whether the background sweep timer is started.
    """

    build_root: Path | None
    fallback_root: Path
    chunk_root: Path
    temp_root: Path
    model_root: Path
    min_free_gb: float = _DEFAULT_MIN_FREE_GB
    max_chunk_bytes: int = _DEFAULT_MAX_CHUNK_MB * 1024 * 1024
    retention_seconds: float = _DEFAULT_RETENTION_MINUTES * 60
    reap_interval_seconds: float = _DEFAULT_REAP_INTERVAL_MINUTES * 60
    executable_suffix: str = _DEFAULT_EXECUTABLE_SUFFIX
    reaper_enabled: bool = True


def load_settings() -> Settings:
    """Build settings from the current environment."""
    cwd = Path.cwd()
    pinned = os.getenv("ASSET_HUB_BUILD_ROOT")
    suffix = os.getenv("ASSET_HUB_EXECUTABLE_SUFFIX") or _DEFAULT_EXECUTABLE_SUFFIX
    if not suffix.startswith("."):
        suffix = f".{suffix}"

    return Settings(
        build_root=Path(pinned).expanduser().resolve() if pinned else None,
        fallback_root=_env_path("ASSET_HUB_FALLBACK_ROOT", cwd / BUILD_ROOT_DIR_NAME),
        chunk_root=_env_path("ASSET_HUB_CHUNK_DIR", cwd / "chunk_temp"),
        temp_root=_env_path("ASSET_HUB_TEMP_DIR", cwd / "temp_all_uploads"),
        model_root=_env_path("ASSET_HUB_MODEL_DIR", _project_root() / ".asset_hub_models"),
        min_free_gb=_env_float("ASSET_HUB_MIN_FREE_GB", _DEFAULT_MIN_FREE_GB),
        max_chunk_bytes=int(
            _env_float("ASSET_HUB_MAX_CHUNK_MB", _DEFAULT_MAX_CHUNK_MB) * 1024 * 1024
        ),
        retention_seconds=_env_float(
            "ASSET_HUB_RETENTION_MINUTES", _DEFAULT_RETENTION_MINUTES
        )
        * 60,
        reap_interval_seconds=_env_float(
            "ASSET_HUB_REAP_INTERVAL_MINUTES", _DEFAULT_REAP_INTERVAL_MINUTES
        )
        * 60,
        executable_suffix=suffix.lower(),
        reaper_enabled=not _env_flag("ASSET_HUB_DISABLE_REAPER"),
    )
