"""Tests for project form parsing helpers."""

from __future__ import annotations

import pytest

from asset_hub.models import ClientInputError
from asset_hub.services.projects import (
    model_content_type,
    parse_build_config,
    parse_chunked_files,
    parse_form_bool,
    parse_json_field,
    parse_sub_build_configs,
)


@pytest.mark.parametrize(
    ("filename", "expected"),
    [
        ("tank.glb", "model/gltf-binary"),
        ("Tank.GLTF", "model/gltf+json"),
        ("rig.fbx", "application/octet-stream"),
        ("mesh.obj", "model/obj"),
        ("notes.txt", "application/octet-stream"),
    ],
)
def test_model_content_type(filename: str, expected: str) -> None:
    assert model_content_type(filename) == expected


def test_model_content_type_uses_fallback_for_unknown_extensions() -> None:
    assert model_content_type("mesh.stl", "model/stl") == "model/stl"


def test_parse_json_field() -> None:
    assert parse_json_field(None, "mainBuild") is None
    assert parse_json_field("  ", "subBuilds", []) == []
    assert parse_json_field('{"name": "Main"}', "mainBuild") == {"name": "Main"}
    with pytest.raises(ClientInputError, match="subModels"):
        parse_json_field("[1,", "subModels")


@pytest.mark.parametrize(
    ("value", "expected"),
    [("true", True), ("TRUE ", True), ("false", False), ("1", False), (None, False), (True, True)],
)
def test_parse_form_bool(value: object, expected: bool) -> None:
    assert parse_form_bool(value) is expected


def test_parse_build_config_defaults() -> None:
    config = parse_build_config(None, default_name="Main Build", is_main=True)

    assert config.name == "Main Build"
    assert config.version == "1.0.0"
    assert config.is_main is True

    custom = parse_build_config(
        {"name": " Release ", "description": "Final", "version": "2.0"}, default_name="x"
    )
    assert (custom.name, custom.description, custom.version) == ("Release", "Final", "2.0")

    with pytest.raises(ClientInputError):
        parse_build_config(["not", "an", "object"], default_name="x")


def test_parse_sub_build_configs_numbers_defaults() -> None:
    configs = parse_sub_build_configs([{}, {"name": "Night"}])

    assert [config.name for config in configs] == ["Sub Build 1", "Night"]
    assert configs[0].description == "Additional build variant 1"
    assert all(not config.is_main for config in configs)
    with pytest.raises(ClientInputError):
        parse_sub_build_configs({"name": "x"})


def test_parse_chunked_files() -> None:
    refs = parse_chunked_files(
        [
            {"uploadId": "1700000000000_ab", "fileKey": "mainBuildZip", "originalName": "b.zip"},
            {"uploadId": "1700000000001_cd", "fileKey": "subBuildZips_2"},
        ]
    )

    assert [(ref.upload_id, ref.file_key) for ref in refs] == [
        ("1700000000000_ab", "mainBuildZip"),
        ("1700000000001_cd", "subBuildZips_2"),
    ]
    assert refs[0].original_name == "b.zip"
    assert parse_chunked_files(None) == []


@pytest.mark.parametrize(
    "data",
    [
        {"uploadId": "u1", "fileKey": "mainBuildZip"},
        ["not an object"],
        [{"uploadId": "u1", "fileKey": "subBuildZips_x"}],
        [{"uploadId": "../u1", "fileKey": "modelFile"}],
        [{"fileKey": "modelFile"}],
    ],
)
def test_parse_chunked_files_rejects_bad_entries(data: object) -> None:
    with pytest.raises(ClientInputError):
        parse_chunked_files(data)
