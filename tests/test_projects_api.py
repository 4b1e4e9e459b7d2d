"""Tests for project, build, model file and launch API endpoints."""

from __future__ import annotations

import io
import json
import shutil
import threading
import time
from collections.abc import Iterator
from pathlib import Path
from zipfile import ZipFile

import pytest
from fastapi.testclient import TestClient

from asset_hub.api.dependencies import get_launcher
from asset_hub.api.main import app
from asset_hub.models import ClientInputError, LaunchFailure, LaunchResult
from asset_hub.services import projects as project_service
from asset_hub.services.projects import IncomingFile, ProjectDraft

AUTH = {"X-Username": "alice"}
MODEL_BYTES = b"glTF\x02\x00\x00\x00 binary model payload"


def _zip(entries: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with ZipFile(buffer, "w") as archive:
        for name, data in entries.items():
            archive.writestr(name, data)
    return buffer.getvalue()


GAME_ZIP = _zip({"Game.exe": b"MZ", "Game_Data/level0": b"level"})


def _create(
    client: TestClient,
    name: str = "Tank Sim",
    category: str = "vehicles",
    files: list | None = None,
    data: dict | None = None,
    headers: dict | None = None,
):
    if files is None:
        files = [
            ("modelFile", ("tank.glb", MODEL_BYTES, "model/gltf-binary")),
            ("mainBuildZip", ("build.zip", GAME_ZIP, "application/zip")),
        ]
    form = {"name": name, "category": category, "description": "A tank"}
    form.update(data or {})
    return client.post(
        "/api/projects/create",
        data=form,
        files=files,
        headers=AUTH if headers is None else headers,
    )


def _upload_in_chunks(client: TestClient, payload: bytes, name: str, file_key: str) -> str:
    half = len(payload) // 2
    upload_id = None
    for index, piece in enumerate([payload[:half], payload[half:]]):
        form = {
            "chunkIndex": str(index),
            "totalChunks": "2",
            "originalName": name,
            "fileKey": file_key,
        }
        if upload_id:
            form["uploadId"] = upload_id
        response = client.post(
            "/api/projects/upload/chunk",
            data=form,
            files={"chunk": ("blob", piece, "application/octet-stream")},
        )
        assert response.status_code == 200
        upload_id = response.json()["uploadId"]
    assert upload_id is not None
    return upload_id


@pytest.fixture
def build_root(tmp_path: Path) -> Path:
    return (tmp_path / "builds").resolve()


class FakeLauncher:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.launched: list[Path] = []

    def launch(self, executable: Path) -> LaunchResult:
        self.launched.append(executable)
        if self.error is not None:
            raise self.error
        return LaunchResult(success=True, message="Build launched successfully", pid=4242)


@pytest.fixture
def fake_launcher() -> Iterator[FakeLauncher]:
    launcher = FakeLauncher()
    app.dependency_overrides[get_launcher] = lambda: launcher
    yield launcher
    app.dependency_overrides.pop(get_launcher, None)


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def test_create_project_with_direct_files(client: TestClient, build_root: Path) -> None:
    response = _create(client)

    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Project created successfully"
    project = body["project"]
    assert project["name"] == "Tank Sim"
    assert project["category"] == "vehicles"
    assert project["created_by"] == "alice"
    assert project["model_file_name"] == "tank.glb"
    assert project["model_file_content_type"] == "model/gltf-binary"
    assert len(project["builds"]) == 1
    build = project["builds"][0]
    assert build["name"] == "Main Build"
    assert build["is_main"] is True
    assert build["executable_path"] == "vehicles/Tank_Sim/Main_Build/Game.exe"
    assert (build_root / build["executable_path"]).is_file()


def test_create_requires_username(client: TestClient) -> None:
    response = _create(client, headers={})

    assert response.status_code == 401


def test_create_requires_model_file(client: TestClient) -> None:
    response = _create(
        client, files=[("mainBuildZip", ("build.zip", GAME_ZIP, "application/zip"))]
    )

    assert response.status_code == 400
    assert "model file is required" in response.json()["detail"]


def test_create_requires_main_build(client: TestClient) -> None:
    response = _create(
        client, files=[("modelFile", ("tank.glb", MODEL_BYTES, "model/gltf-binary"))]
    )

    assert response.status_code == 400


def test_create_rejects_unknown_category(client: TestClient) -> None:
    response = _create(client, category="spaceships")

    assert response.status_code == 400


def test_create_rejects_wrong_model_extension(client: TestClient) -> None:
    response = _create(
        client,
        files=[
            ("modelFile", ("tank.png", b"png", "image/png")),
            ("mainBuildZip", ("build.zip", GAME_ZIP, "application/zip")),
        ],
    )

    assert response.status_code == 400


def test_create_rejects_malformed_json_fields(client: TestClient) -> None:
    response = _create(client, data={"mainBuild": "{not json"})

    assert response.status_code == 400
    assert "mainBuild" in response.json()["detail"]


def test_corrupt_main_build_leaves_nothing_behind(client: TestClient, tmp_path: Path) -> None:
    response = _create(
        client,
        files=[
            ("modelFile", ("tank.glb", MODEL_BYTES, "model/gltf-binary")),
            ("mainBuildZip", ("build.zip", b"definitely not a zip", "application/zip")),
        ],
    )

    assert response.status_code == 422
    assert client.get("/api/projects").json() == []
    assert not list((tmp_path / "models" / "files").glob("*.json"))


def test_main_build_without_executable_is_rejected(client: TestClient) -> None:
    response = _create(
        client,
        files=[
            ("modelFile", ("tank.glb", MODEL_BYTES, "model/gltf-binary")),
            ("mainBuildZip", ("build.zip", _zip({"readme.txt": b"hi"}), "application/zip")),
        ],
    )

    assert response.status_code == 422
    assert response.json()["detail"].startswith("Build has no runnable binary")


def test_duplicate_project_name_is_rejected(client: TestClient) -> None:
    assert _create(client).status_code == 201

    response = _create(client, name="Tank  Sim")

    assert response.status_code == 400
    assert "already exists" in response.json()["detail"]


def test_create_with_chunked_main_build(client: TestClient, tmp_path: Path) -> None:
    upload_id = _upload_in_chunks(client, GAME_ZIP, "build.zip", "mainBuildZip")
    chunked = [{"uploadId": upload_id, "fileKey": "mainBuildZip", "originalName": "build.zip"}]

    response = _create(
        client,
        files=[("modelFile", ("tank.glb", MODEL_BYTES, "model/gltf-binary"))],
        data={"chunkedFiles": json.dumps(chunked)},
    )

    assert response.status_code == 201
    build = response.json()["project"]["builds"][0]
    assert build["executable_path"] == "vehicles/Tank_Sim/Main_Build/Game.exe"
    assert not (tmp_path / "chunk_temp" / upload_id).exists()


def test_create_with_chunked_model_file(client: TestClient) -> None:
    upload_id = _upload_in_chunks(client, MODEL_BYTES, "tank.glb", "modelFile")
    chunked = [{"uploadId": upload_id, "fileKey": "modelFile", "originalName": "tank.glb"}]

    response = _create(
        client,
        files=[("mainBuildZip", ("build.zip", GAME_ZIP, "application/zip"))],
        data={"chunkedFiles": json.dumps(chunked)},
    )

    assert response.status_code == 201
    file_id = response.json()["project"]["model_file_id"]
    assert client.get(f"/api/projects/file/{file_id}").content == MODEL_BYTES


def test_unfinished_chunk_upload_is_rejected_and_kept(
    client: TestClient, tmp_path: Path
) -> None:
    started = client.post(
        "/api/projects/upload/chunk",
        data={"chunkIndex": "0", "totalChunks": "2", "originalName": "build.zip"},
        files={"chunk": ("blob", GAME_ZIP[:10], "application/octet-stream")},
    )
    upload_id = started.json()["uploadId"]
    chunked = [{"uploadId": upload_id, "fileKey": "mainBuildZip", "originalName": "build.zip"}]

    response = _create(
        client,
        files=[("modelFile", ("tank.glb", MODEL_BYTES, "model/gltf-binary"))],
        data={"chunkedFiles": json.dumps(chunked)},
    )

    assert response.status_code == 400
    assert (tmp_path / "chunk_temp" / upload_id).is_dir()


def test_unknown_chunked_file_key_is_rejected(client: TestClient) -> None:
    chunked = [{"uploadId": "upload_1", "fileKey": "somethingElse"}]

    response = _create(client, data={"chunkedFiles": json.dumps(chunked)})

    assert response.status_code == 400


def test_sub_builds_and_sub_models(client: TestClient, build_root: Path) -> None:
    night_zip = _zip({"bin/Night.exe": b"MZ"})
    response = _create(
        client,
        files=[
            ("modelFile", ("tank.glb", MODEL_BYTES, "model/gltf-binary")),
            ("mainBuildZip", ("build.zip", GAME_ZIP, "application/zip")),
            ("subBuildZips", ("night.zip", night_zip, "application/zip")),
            ("subBuildZips", ("broken.zip", b"corrupt", "application/zip")),
            ("subModelFiles", ("turret.obj", b"v 0 0 0", "text/plain")),
        ],
        data={
            "mainBuild": json.dumps({"name": "Release", "version": "2.1.0"}),
            "subBuilds": json.dumps([{"name": "Night Mode"}, {"name": "Broken"}]),
            "subModels": json.dumps([{"name": "Turret", "description": "Rotating"}]),
        },
    )

    assert response.status_code == 201
    project = response.json()["project"]
    builds = {build["name"]: build for build in project["builds"]}
    assert set(builds) == {"Release", "Night Mode"}
    assert builds["Release"]["is_main"] is True
    assert builds["Release"]["version"] == "2.1.0"
    assert builds["Night Mode"]["is_main"] is False
    assert builds["Night Mode"]["executable_path"] == "vehicles/Tank_Sim/Night_Mode/bin/Night.exe"
    assert not (build_root / "vehicles" / "Tank_Sim" / "Broken" / ".asset_build.json").exists()
    sub_model = project["sub_models"][0]
    assert sub_model["name"] == "Turret"
    assert sub_model["description"] == "Rotating"
    assert sub_model["content_type"] == "model/obj"


def test_duplicate_build_names_in_one_request_are_rejected(client: TestClient) -> None:
    response = _create(
        client,
        files=[
            ("modelFile", ("tank.glb", MODEL_BYTES, "model/gltf-binary")),
            ("mainBuildZip", ("build.zip", GAME_ZIP, "application/zip")),
            ("subBuildZips", ("other.zip", GAME_ZIP, "application/zip")),
        ],
        data={"subBuilds": json.dumps([{"name": "Main Build"}])},
    )

    assert response.status_code == 400


# ---------------------------------------------------------------------------
# Model files
# ---------------------------------------------------------------------------


def test_model_file_download_and_ranges(client: TestClient) -> None:
    file_id = _create(client).json()["project"]["model_file_id"]
    url = f"/api/projects/file/{file_id}"
    length = len(MODEL_BYTES)

    full = client.get(url)
    assert full.status_code == 200
    assert full.content == MODEL_BYTES
    assert full.headers["content-type"].startswith("model/gltf-binary")
    assert full.headers["accept-ranges"] == "bytes"
    assert "content-disposition" not in full.headers

    partial = client.get(url, headers={"Range": "bytes=0-3"})
    assert partial.status_code == 206
    assert partial.content == MODEL_BYTES[:4]
    assert partial.headers["content-range"] == f"bytes 0-3/{length}"

    suffix = client.get(url, headers={"Range": "bytes=-5"})
    assert suffix.status_code == 206
    assert suffix.content == MODEL_BYTES[-5:]

    open_ended = client.get(url, headers={"Range": f"bytes={length - 2}-"})
    assert open_ended.content == MODEL_BYTES[-2:]

    attachment = client.get(url, params={"download": "true"})
    assert attachment.headers["content-disposition"] == 'attachment; filename="tank.glb"'

    unsatisfiable = client.get(url, headers={"Range": f"bytes={length + 10}-"})
    assert unsatisfiable.status_code == 416
    assert unsatisfiable.headers["content-range"] == f"bytes */{length}"


def test_unknown_model_file_is_not_found(client: TestClient) -> None:
    assert client.get(f"/api/projects/file/{'a' * 32}").status_code == 404
    assert client.get("/api/projects/file/not-an-id").status_code == 404


# ---------------------------------------------------------------------------
# Reading and deleting projects
# ---------------------------------------------------------------------------


def test_list_and_get_projects(client: TestClient) -> None:
    first = _create(client, name="Tank Sim").json()["project"]
    second = _create(client, name="Flight Sim", category="simulators").json()["project"]

    listed = client.get("/api/projects")
    assert listed.status_code == 200
    assert [project["id"] for project in listed.json()] == [second["id"], first["id"]]

    detail = client.get(f"/api/projects/{first['id']}")
    assert detail.status_code == 200
    assert detail.json()["name"] == "Tank Sim"

    assert client.get("/api/projects/999").status_code == 404


def test_delete_project_removes_files(client: TestClient, build_root: Path) -> None:
    project = _create(client).json()["project"]
    build_dir = build_root / "vehicles" / "Tank_Sim" / "Main_Build"
    assert build_dir.is_dir()

    assert client.delete(f"/api/projects/{project['id']}").status_code == 401

    response = client.delete(f"/api/projects/{project['id']}", headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Project and all associated files deleted successfully"
    assert body["removed_builds"] == 1
    assert body["removed_files"] == 1
    assert not build_dir.exists()
    assert client.get(f"/api/projects/{project['id']}").status_code == 404
    assert client.get(f"/api/projects/file/{project['model_file_id']}").status_code == 404
    assert client.delete(f"/api/projects/{project['id']}", headers=AUTH).status_code == 404


# ---------------------------------------------------------------------------
# Updating projects
# ---------------------------------------------------------------------------


def test_update_project_metadata(client: TestClient) -> None:
    project = _create(client).json()["project"]
    url = f"/api/projects/{project['id']}"

    assert client.put(url, data={"description": "Heavy"}).status_code == 401

    response = client.put(
        url, data={"description": "Heavy armour", "modelName": "T-90", "name": ""}, headers=AUTH
    )

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Project updated successfully"
    assert body["project"]["name"] == "Tank Sim"
    assert body["project"]["description"] == "Heavy armour"
    assert body["project"]["model_name"] == "T-90"
    assert [build["executable_path"] for build in body["project"]["builds"]] == [
        build["executable_path"] for build in project["builds"]
    ]
    assert client.put("/api/projects/999", data={"name": "x"}, headers=AUTH).status_code == 404


def test_rename_and_category_change_move_build_trees(
    client: TestClient, fake_launcher: FakeLauncher, build_root: Path
) -> None:
    project = _create(
        client,
        files=[
            ("modelFile", ("tank.glb", MODEL_BYTES, "model/gltf-binary")),
            ("mainBuildZip", ("build.zip", GAME_ZIP, "application/zip")),
            ("subBuildZips", ("night.zip", _zip({"bin/Night.exe": b"MZ"}), "application/zip")),
        ],
        data={"subBuilds": json.dumps([{"name": "Night Mode"}])},
    ).json()["project"]

    response = client.put(
        f"/api/projects/{project['id']}",
        data={"name": "Heavy Tank", "category": "simulators"},
        headers=AUTH,
    )

    assert response.status_code == 200
    updated = response.json()["project"]
    assert (updated["name"], updated["category"]) == ("Heavy Tank", "simulators")
    paths = {build["name"]: build["executable_path"] for build in updated["builds"]}
    assert paths == {
        "Main Build": "simulators/Heavy_Tank/Main_Build/Game.exe",
        "Night Mode": "simulators/Heavy_Tank/Night_Mode/bin/Night.exe",
    }
    assert all(build["category"] == "simulators" for build in updated["builds"])
    assert all((build_root / path).is_file() for path in paths.values())
    assert not (build_root / "vehicles" / "Tank_Sim").exists()

    launched = client.post("/api/projects/launch-build", json={"projectId": project["id"]})
    assert launched.status_code == 200
    assert fake_launcher.launched == [build_root / paths["Main Build"]]


def test_update_rejects_taken_name_and_bad_fields(client: TestClient, build_root: Path) -> None:
    _create(client, name="Tank Sim")
    truck = _create(client, name="Truck").json()["project"]
    url = f"/api/projects/{truck['id']}"

    taken = client.put(url, data={"name": "Tank  Sim"}, headers=AUTH)
    assert taken.status_code == 400
    assert "already exists" in taken.json()["detail"]
    assert (build_root / "vehicles" / "Truck" / "Main_Build" / "Game.exe").is_file()
    assert (build_root / "vehicles" / "Tank_Sim" / "Main_Build" / "Game.exe").is_file()

    assert client.put(url, data={"category": "boats"}, headers=AUTH).status_code == 400
    wrong_model = client.put(
        url, files={"modelFile": ("tank.stl", b"solid", "model/stl")}, headers=AUTH
    )
    assert wrong_model.status_code == 400
    assert client.get(url).json()["name"] == "Truck"


def test_replacing_model_files_removes_old_ones(client: TestClient) -> None:
    project = _create(
        client,
        files=[
            ("modelFile", ("tank.glb", MODEL_BYTES, "model/gltf-binary")),
            ("mainBuildZip", ("build.zip", GAME_ZIP, "application/zip")),
            ("subModelFiles", ("turret.obj", b"v 0 0 0", "text/plain")),
            ("subModelFiles", ("hatch.obj", b"v 1 1 1", "text/plain")),
        ],
        data={"subModels": json.dumps([{"name": "Turret"}, {"name": "Hatch"}])},
    ).json()["project"]
    turret, hatch = project["sub_models"]

    response = client.put(
        f"/api/projects/{project['id']}",
        data={
            "subModels": json.dumps(
                [{"name": "Turret v2", "fileId": turret["file_id"]}, {"name": "Tracks"}]
            )
        },
        files=[
            ("modelFile", ("tank_v2.glb", b"glTF new model", "model/gltf-binary")),
        ],
        headers=AUTH,
    )

    assert response.status_code == 200
    updated = response.json()["project"]
    assert updated["model_file_name"] == "tank_v2.glb"
    assert client.get(f"/api/projects/file/{updated['model_file_id']}").content == (
        b"glTF new model"
    )
    assert client.get(f"/api/projects/file/{project['model_file_id']}").status_code == 404
    assert [sub["name"] for sub in updated["sub_models"]] == ["Turret v2", "Tracks"]
    assert updated["sub_models"][0]["file_id"] == turret["file_id"]
    assert updated["sub_models"][1]["file_id"] is None
    assert client.get(f"/api/projects/file/{turret['file_id']}").content == b"v 0 0 0"
    assert client.get(f"/api/projects/file/{hatch['file_id']}").status_code == 404


def test_sub_model_files_replace_the_sub_model_list(client: TestClient) -> None:
    project = _create(
        client,
        files=[
            ("modelFile", ("tank.glb", MODEL_BYTES, "model/gltf-binary")),
            ("mainBuildZip", ("build.zip", GAME_ZIP, "application/zip")),
            ("subModelFiles", ("turret.obj", b"v 0 0 0", "text/plain")),
        ],
    ).json()["project"]
    old_file_id = project["sub_models"][0]["file_id"]

    response = client.put(
        f"/api/projects/{project['id']}",
        files=[("subModelFiles", ("wheel.obj", b"v 2 2 2", "text/plain"))],
        headers=AUTH,
    )

    assert response.status_code == 200
    (sub_model,) = response.json()["project"]["sub_models"]
    assert (sub_model["name"], sub_model["file_name"]) == ("wheel", "wheel.obj")
    assert client.get(f"/api/projects/file/{sub_model['file_id']}").content == b"v 2 2 2"
    assert client.get(f"/api/projects/file/{old_file_id}").status_code == 404
    assert response.json()["project"]["model_file_id"] == project["model_file_id"]


# ---------------------------------------------------------------------------
# Concurrent creation
# ---------------------------------------------------------------------------


def test_concurrent_creates_of_one_project_do_not_share_a_tree(
    client: TestClient, monkeypatch: pytest.MonkeyPatch, build_root: Path
) -> None:
    storage = client.app.state.storage
    extract_build = storage.extractor.extract_build
    first_extracting = threading.Event()

    def slow_extract_build(*args, **kwargs):
        first_extracting.set()
        time.sleep(0.3)
        return extract_build(*args, **kwargs)

    monkeypatch.setattr(storage.extractor, "extract_build", slow_extract_build)
    created: list[dict] = []
    errors: list[Exception] = []

    def create(executable: str) -> None:
        draft = ProjectDraft(
            name="Tank Sim",
            category="vehicles",
            created_by="alice",
            model_file=IncomingFile("tank.glb", io.BytesIO(MODEL_BYTES)),
            main_build_file=IncomingFile("build.zip", io.BytesIO(_zip({executable: b"MZ"}))),
        )
        try:
            created.append(project_service.create_project(storage, draft))
        except Exception as exc:
            errors.append(exc)

    first = threading.Thread(target=create, args=("First.exe",))
    second = threading.Thread(target=create, args=("Second.exe",))
    first.start()
    assert first_extracting.wait(timeout=5)
    second.start()
    first.join(timeout=10)
    second.join(timeout=10)

    assert len(created) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], ClientInputError)
    assert len(client.get("/api/projects").json()) == 1
    (build,) = created[0]["builds"]
    assert build["executable_path"] == "vehicles/Tank_Sim/Main_Build/First.exe"
    assert (build_root / build["executable_path"]).is_file()
    assert not (build_root / "vehicles" / "Tank_Sim" / "Main_Build" / "Second.exe").exists()


# ---------------------------------------------------------------------------
# Builds
# ---------------------------------------------------------------------------


def test_list_add_and_get_builds(client: TestClient, build_root: Path) -> None:
    project_id = _create(client).json()["project"]["id"]

    added = client.post(
        f"/api/projects/{project_id}/builds",
        data={"name": "Night Mode", "version": "1.1.0", "isMain": "true"},
        files={"buildZip": ("night.zip", _zip({"Night.exe": b"MZ"}), "application/zip")},
        headers=AUTH,
    )
    assert added.status_code == 201
    new_build = added.json()["build"]
    assert added.json()["message"] == "Build added successfully"
    assert new_build["is_main"] is True
    assert (build_root / new_build["executable_path"]).is_file()

    listed = client.get(f"/api/projects/{project_id}/builds").json()
    assert listed["project_name"] == "Tank Sim"
    assert listed["project_category"] == "vehicles"
    mains = [build["name"] for build in listed["builds"] if build["is_main"]]
    assert mains == ["Night Mode"]

    detail = client.get(f"/api/projects/{project_id}/builds/{new_build['id']}")
    assert detail.status_code == 200
    assert detail.json()["project"] == {"name": "Tank Sim", "category": "vehicles"}
    assert detail.json()["build"]["version"] == "1.1.0"

    assert client.get(f"/api/projects/{project_id}/builds/999").status_code == 404


def test_add_build_with_existing_name_replaces_it(client: TestClient) -> None:
    project_id = _create(client).json()["project"]["id"]

    response = client.post(
        f"/api/projects/{project_id}/builds",
        data={"name": "Main Build"},
        files={"buildZip": ("new.zip", _zip({"bin/Tank.exe": b"MZ"}), "application/zip")},
        headers=AUTH,
    )

    assert response.status_code == 201
    builds = client.get(f"/api/projects/{project_id}/builds").json()["builds"]
    assert len(builds) == 1
    assert builds[0]["is_main"] is True
    assert builds[0]["executable_path"] == "vehicles/Tank_Sim/Main_Build/bin/Tank.exe"


def test_add_build_errors(client: TestClient) -> None:
    project_id = _create(client).json()["project"]["id"]
    url = f"/api/projects/{project_id}/builds"

    assert client.post(url, data={"name": "x"}, headers=AUTH).status_code == 400
    corrupt = client.post(
        url, files={"buildZip": ("b.zip", b"junk", "application/zip")}, headers=AUTH
    )
    assert corrupt.status_code == 422
    wrong_type = client.post(
        url, files={"buildZip": ("b.rar", GAME_ZIP, "application/zip")}, headers=AUTH
    )
    assert wrong_type.status_code == 400
    missing = client.post(
        "/api/projects/999/builds",
        files={"buildZip": ("b.zip", GAME_ZIP, "application/zip")},
        headers=AUTH,
    )
    assert missing.status_code == 404


def test_rename_build_moves_its_files(client: TestClient, build_root: Path) -> None:
    project = _create(client).json()["project"]
    build_id = project["builds"][0]["id"]

    response = client.put(
        f"/api/projects/{project['id']}/builds/{build_id}",
        json={"name": "Release Candidate", "description": "RC"},
        headers=AUTH,
    )

    assert response.status_code == 200
    build = response.json()["build"]
    assert build["name"] == "Release Candidate"
    assert build["description"] == "RC"
    assert build["executable_path"] == "vehicles/Tank_Sim/Release_Candidate/Game.exe"
    assert (build_root / build["executable_path"]).is_file()
    assert not (build_root / "vehicles" / "Tank_Sim" / "Main_Build").exists()


def test_update_build_errors(client: TestClient) -> None:
    project_id = _create(client).json()["project"]["id"]
    other = client.post(
        f"/api/projects/{project_id}/builds",
        data={"name": "Night Mode"},
        files={"buildZip": ("night.zip", GAME_ZIP, "application/zip")},
        headers=AUTH,
    ).json()["build"]
    url = f"/api/projects/{project_id}/builds/{other['id']}"

    collision = client.put(url, json={"name": "Main  Build"}, headers=AUTH)
    assert collision.status_code == 400

    unknown_field = client.put(url, json={"executable_path": "x"}, headers=AUTH)
    assert unknown_field.status_code == 422

    assert client.put(url, json={"isMain": True}).status_code == 401
    assert (
        client.put(f"/api/projects/{project_id}/builds/999", json={}, headers=AUTH).status_code
        == 404
    )


def test_promoting_a_build_clears_other_main_flags(client: TestClient) -> None:
    project_id = _create(client).json()["project"]["id"]
    other = client.post(
        f"/api/projects/{project_id}/builds",
        data={"name": "Night Mode"},
        files={"buildZip": ("night.zip", GAME_ZIP, "application/zip")},
        headers=AUTH,
    ).json()["build"]
    assert other["is_main"] is False

    response = client.put(
        f"/api/projects/{project_id}/builds/{other['id']}",
        json={"isMain": True},
        headers=AUTH,
    )

    assert response.status_code == 200
    builds = client.get(f"/api/projects/{project_id}/builds").json()["builds"]
    assert [build["name"] for build in builds if build["is_main"]] == ["Night Mode"]


# ---------------------------------------------------------------------------
# Launch
# ---------------------------------------------------------------------------


def test_launch_main_build(
    client: TestClient, fake_launcher: FakeLauncher, build_root: Path
) -> None:
    project_id = _create(client).json()["project"]["id"]

    response = client.post("/api/projects/launch-build", json={"projectId": project_id})

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "Build launched successfully",
        "pid": 4242,
    }
    assert fake_launcher.launched == [build_root / "vehicles/Tank_Sim/Main_Build/Game.exe"]


def test_launch_repairs_moved_executable(
    client: TestClient, fake_launcher: FakeLauncher, build_root: Path
) -> None:
    project = _create(client).json()["project"]
    build_dir = build_root / "vehicles" / "Tank_Sim" / "Main_Build"
    (build_dir / "bin").mkdir()
    (build_dir / "Game.exe").rename(build_dir / "bin" / "Game.exe")

    response = client.post(
        "/api/projects/launch-build",
        json={"projectId": project["id"], "buildId": project["builds"][0]["id"]},
    )

    assert response.status_code == 200
    assert fake_launcher.launched == [build_dir / "bin" / "Game.exe"]
    stored = client.get(f"/api/projects/{project['id']}").json()["builds"][0]
    assert stored["executable_path"] == "vehicles/Tank_Sim/Main_Build/bin/Game.exe"


def test_launch_with_missing_build_files(
    client: TestClient, fake_launcher: FakeLauncher, build_root: Path
) -> None:
    project_id = _create(client).json()["project"]["id"]
    shutil.rmtree(build_root / "vehicles" / "Tank_Sim" / "Main_Build")

    response = client.post("/api/projects/launch-build", json={"projectId": project_id})

    assert response.status_code == 410
    assert fake_launcher.launched == []


def test_launch_failure_is_reported(client: TestClient, fake_launcher: FakeLauncher) -> None:
    fake_launcher.error = LaunchFailure("Failed to launch: permission denied")
    project_id = _create(client).json()["project"]["id"]

    response = client.post("/api/projects/launch-build", json={"projectId": project_id})

    assert response.status_code == 500
    assert response.json() == {
        "success": False,
        "message": "Failed to launch: permission denied",
    }


def test_launch_unknown_project_or_build(
    client: TestClient, fake_launcher: FakeLauncher
) -> None:
    project_id = _create(client).json()["project"]["id"]

    assert (
        client.post("/api/projects/launch-build", json={"projectId": 999}).status_code == 404
    )
    assert (
        client.post(
            "/api/projects/launch-build", json={"projectId": project_id, "buildId": 999}
        ).status_code
        == 404
    )
    assert fake_launcher.launched == []
