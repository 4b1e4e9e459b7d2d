"""Tests for environment-driven settings and storage wiring."""

from __future__ import annotations

from pathlib import Path

import pytest

from asset_hub.config import load_settings
from asset_hub.services.storage import StorageContext


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "ASSET_HUB_BUILD_ROOT",
        "ASSET_HUB_CHUNK_DIR",
        "ASSET_HUB_TEMP_DIR",
        "ASSET_HUB_MODEL_DIR",
        "ASSET_HUB_MIN_FREE_GB",
        "ASSET_HUB_MAX_CHUNK_MB",
        "ASSET_HUB_RETENTION_MINUTES",
        "ASSET_HUB_EXECUTABLE_SUFFIX",
        "ASSET_HUB_DISABLE_REAPER",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)

    settings = load_settings()

    assert settings.build_root is None
    assert settings.chunk_root == Path.cwd() / "chunk_temp"
    assert settings.fallback_root == Path.cwd() / "AssetBuilds"
    assert settings.min_free_gb == 1.0
    assert settings.max_chunk_bytes == 100 * 1024 * 1024
    assert settings.retention_seconds == 3600
    assert settings.executable_suffix == ".exe"
    assert settings.reaper_enabled is True


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ASSET_HUB_BUILD_ROOT", str(tmp_path / "builds"))
    monkeypatch.setenv("ASSET_HUB_MAX_CHUNK_MB", "5")
    monkeypatch.setenv("ASSET_HUB_RETENTION_MINUTES", "2")
    monkeypatch.setenv("ASSET_HUB_MIN_FREE_GB", "not a number")
    monkeypatch.setenv("ASSET_HUB_EXECUTABLE_SUFFIX", "APP")
    monkeypatch.setenv("ASSET_HUB_DISABLE_REAPER", "true")

    settings = load_settings()

    assert settings.build_root == (tmp_path / "builds").resolve()
    assert settings.max_chunk_bytes == 5 * 1024 * 1024
    assert settings.retention_seconds == 120
    assert settings.min_free_gb == 1.0
    assert settings.executable_suffix == ".app"
    assert settings.reaper_enabled is False


def test_storage_context_uses_pinned_root(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ASSET_HUB_BUILD_ROOT", str(tmp_path / "builds"))
    monkeypatch.setenv("ASSET_HUB_CHUNK_DIR", str(tmp_path / "chunks"))
    monkeypatch.setenv("ASSET_HUB_TEMP_DIR", str(tmp_path / "spool"))
    monkeypatch.setenv("ASSET_HUB_MODEL_DIR", str(tmp_path / "models"))

    storage = StorageContext(load_settings())

    assert storage.root == (tmp_path / "builds").resolve()
    assert storage.root.is_dir()
    assert storage.extractor.root == storage.root
    assert storage.reaper.build_root == storage.root
    assert storage.extractor.locks is storage.reaper.build_locks
    assert storage.receiver.locks is storage.reaper.session_locks
    assert (tmp_path / "chunks").is_dir()
