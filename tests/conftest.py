from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import asset_hub.data.db as app_db
from asset_hub.data.db import init_db


@pytest.fixture
def api_db(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Use a temporary SQLite DB and temporary storage directories for API tests."""
    db_path = tmp_path / "api.db"
    monkeypatch.setenv("DB_URL", f"sqlite:///{db_path.as_posix()}")
    monkeypatch.setenv("ASSET_HUB_BUILD_ROOT", (tmp_path / "builds").as_posix())
    monkeypatch.setenv("ASSET_HUB_CHUNK_DIR", (tmp_path / "chunk_temp").as_posix())
    monkeypatch.setenv("ASSET_HUB_TEMP_DIR", (tmp_path / "temp_uploads").as_posix())
    monkeypatch.setenv("ASSET_HUB_MODEL_DIR", (tmp_path / "models").as_posix())
    monkeypatch.setenv("ASSET_HUB_DISABLE_REAPER", "1")
    app_db._engine = None
    app_db._SessionLocal = None
    init_db()
    yield
    # Dispose engine to release connections
    if app_db._engine is not None:
        app_db._engine.dispose()
        app_db._engine = None
        app_db._SessionLocal = None


@pytest.fixture
def client(api_db: None) -> Iterator[TestClient]:
    """Test client with the application lifespan (storage setup) running."""
    from asset_hub.api.main import app

    with TestClient(app) as test_client:
        yield test_client


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Automatically add api_db fixture to tests in API test files."""
    for item in items:
        # Check if test file name contains "api" (case-insensitive)
        test_file_path = Path(str(item.fspath))
        if "api" in test_file_path.stem.lower():
            # Automatically add the api_db fixture using usefixtures marker
            item.add_marker(pytest.mark.usefixtures("api_db"))
