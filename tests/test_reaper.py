"""Tests for the temporary storage reaper."""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path

import pytest

from asset_hub.services.archive_extractor import MARKER_FILE_NAME
from asset_hub.services.locks import KeyedLocks
from asset_hub.services.reaper import TemporaryStorageReaper

RETENTION = 60 * 60


def _age(path: Path, seconds: float) -> None:
    stamp = time.time() - seconds
    os.utime(path, (stamp, stamp))


@pytest.fixture
def layout(tmp_path: Path) -> dict[str, Path]:
    paths = {
        "chunks": tmp_path / "chunk_temp",
        "temp": tmp_path / "temp_uploads",
        "builds": tmp_path / "builds",
    }
    for path in paths.values():
        path.mkdir()
    return paths


def _reaper(
    layout: dict[str, Path],
    session_locks: KeyedLocks | None = None,
    build_locks: KeyedLocks | None = None,
    committed: set[Path] | None = None,
) -> TemporaryStorageReaper:
    return TemporaryStorageReaper(
        staging_roots=[layout["chunks"], layout["temp"]],
        build_root=layout["builds"],
        retention_seconds=RETENTION,
        session_locks=session_locks or KeyedLocks(),
        build_locks=build_locks or KeyedLocks(),
        committed_dirs=(lambda: committed) if committed is not None else None,
        interval_seconds=0.05,
    )


def test_expired_sessions_are_removed_and_fresh_ones_kept(layout: dict[str, Path]) -> None:
    old_session = layout["chunks"] / "upload_old"
    old_session.mkdir()
    (old_session / "chunk_000000.part").write_bytes(b"x")
    _age(old_session, RETENTION + 60)
    fresh_session = layout["chunks"] / "upload_new"
    fresh_session.mkdir()
    spooled = layout["temp"] / "body.tmp"
    spooled.write_bytes(b"x")
    _age(spooled, RETENTION * 2)

    report = _reaper(layout).sweep()

    assert not old_session.exists()
    assert not spooled.exists()
    assert fresh_session.exists()
    assert set(report.removed) == {old_session, spooled}


def test_sweep_uses_supplied_clock(layout: dict[str, Path]) -> None:
    session = layout["chunks"] / "upload_clock"
    session.mkdir()

    _reaper(layout).sweep(now=time.time() + 30)
    assert session.exists()

    _reaper(layout).sweep(now=time.time() + RETENTION + 30)
    assert not session.exists()


def test_busy_session_is_skipped(layout: dict[str, Path]) -> None:
    session = layout["chunks"] / "upload_busy"
    session.mkdir()
    _age(session, RETENTION + 60)
    locks = KeyedLocks()
    reaper = _reaper(layout, session_locks=locks)

    with locks.hold("upload_busy"):
        report = reaper.sweep()

    assert session.exists()
    assert report.skipped_busy == [session]
    reaper.sweep()
    assert not session.exists()


def test_committed_builds_are_never_touched(layout: dict[str, Path]) -> None:
    marked = layout["builds"] / "vehicles" / "Tank" / "Main"
    marked.mkdir(parents=True)
    (marked / MARKER_FILE_NAME).write_text("{}", encoding="utf-8")
    (marked / "chunk_000001.part").write_bytes(b"belongs to the build")
    referenced = layout["builds"] / "weapons" / "Bow" / "Main"
    referenced.mkdir(parents=True)
    (referenced / "chunk_000002.part").write_bytes(b"also kept")
    _age(marked, RETENTION * 10)

    report = _reaper(layout, committed={referenced}).sweep()

    assert (marked / "chunk_000001.part").exists()
    assert (referenced / "chunk_000002.part").exists()
    assert report.fragments_removed == []


def test_stray_fragments_and_emptied_directories_are_pruned(layout: dict[str, Path]) -> None:
    interrupted = layout["builds"] / "simulators" / "Flight_Sim" / "Broken"
    interrupted.mkdir(parents=True)
    fragment = interrupted / "chunk_000000.part"
    fragment.write_bytes(b"x")
    keeper = layout["builds"] / "simulators" / "Flight_Sim" / "notes.txt"
    keeper.write_text("keep", encoding="utf-8")

    report = _reaper(layout).sweep()

    assert report.fragments_removed == [fragment]
    assert not interrupted.exists()
    assert keeper.exists()
    assert interrupted in report.empty_dirs_removed


def test_build_directory_in_use_is_skipped(layout: dict[str, Path]) -> None:
    extracting = layout["builds"] / "vehicles" / "Truck" / "Main"
    extracting.mkdir(parents=True)
    fragment = extracting / "chunk_000000.part"
    fragment.write_bytes(b"x")
    build_locks = KeyedLocks()

    with build_locks.hold("vehicles/Truck/Main"):
        report = _reaper(layout, build_locks=build_locks).sweep()

    assert fragment.exists()
    assert report.skipped_busy == [extracting]


def test_staging_entry_holding_build_marker_is_kept(layout: dict[str, Path]) -> None:
    misplaced = layout["temp"] / "committed_build"
    misplaced.mkdir()
    (misplaced / MARKER_FILE_NAME).write_text("{}", encoding="utf-8")
    _age(misplaced, RETENTION * 3)

    _reaper(layout).sweep()

    assert misplaced.exists()


def test_missing_staging_root_is_ignored(tmp_path: Path, layout: dict[str, Path]) -> None:
    reaper = _reaper(layout)
    reaper.staging_roots.append(tmp_path / "does_not_exist")

    report = reaper.sweep()

    assert report.removed == []


def test_background_timer_starts_and_stops(layout: dict[str, Path]) -> None:
    session = layout["chunks"] / "upload_timer"
    session.mkdir()
    _age(session, RETENTION + 60)
    reaper = _reaper(layout)
    swept = threading.Event()
    original_sweep = reaper.sweep

    def sweep_and_signal(now: float | None = None):
        report = original_sweep(now)
        swept.set()
        return report

    reaper.sweep = sweep_and_signal  # type: ignore[method-assign]
    reaper.start()
    try:
        assert reaper.is_running
        assert swept.wait(timeout=5)
    finally:
        reaper.stop()

    assert not reaper.is_running
    assert not session.exists()
