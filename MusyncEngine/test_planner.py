"""Tests for the sync planner: action selection against prior state."""

import pytest

from . import planner as planner_module
from .conftest import write_file
from .content_fingerprint import compute_fingerprint
from .errors import UnreadableSource
from .planner import SyncAction, SyncPlanner
from .settings import SyncSettings
from .source_library import SourceLibrary
from .state_store import StateEntry, StateStore


def _plan(src, dst, store, **settings):
    return SyncPlanner(SourceLibrary(src), store, dst, SyncSettings(**settings)).compute_plan()


def _mark_synced(store, dst, fingerprint, filename, source_path, data=b"artifact"):
    """Pretend a previous run produced *filename* for *source_path*."""
    write_file(dst, filename, data)
    store.commit(fingerprint, StateEntry(
        destination_filename=filename,
        source_path=source_path,
        format="mp3",
        last_synced="2026-01-01T00:00:00+00:00",
    ))


@pytest.fixture
def store():
    return StateStore()


def test_fresh_tree_plans_convert_and_copy(src, dst, store):
    write_file(src, "Artist/Album/01.flac", b"flac")
    write_file(src, "Artist/Album/02.mp3", b"mp3")

    plan = _plan(src, dst, store)

    assert [i.destination_filename for i in plan.to_convert] == ["01.mp3"]
    assert [i.destination_filename for i in plan.to_copy] == ["02.mp3"]
    assert plan.total_source_files == 2
    assert plan.bytes_to_transfer == 7
    assert plan.has_changes


def test_synced_file_is_skipped(src, dst, store):
    path = write_file(src, "Artist/Album/01.flac", b"flac")
    _mark_synced(store, dst, compute_fingerprint(path), "01.mp3", "Artist/Album/01.flac")

    plan = _plan(src, dst, store)

    assert [i.destination_filename for i in plan.to_skip] == ["01.mp3"]
    assert not plan.has_changes
    assert "Everything is in sync" in plan.summary


def test_renamed_folder_relinks_without_transfer(src, dst, store):
    path = write_file(src, "Artist/Album (Remastered)/01.flac", b"flac")
    _mark_synced(store, dst, compute_fingerprint(path), "01.mp3", "Artist/Album/01.flac")

    plan = _plan(src, dst, store, prune=True)

    assert len(plan.to_relink) == 1
    relink = plan.to_relink[0]
    assert relink.destination_filename == "01.mp3"
    assert relink.source.relative_path == "Artist/Album (Remastered)/01.flac"
    assert not plan.transfers
    assert not plan.to_prune


def test_missing_artifact_is_resynced_under_same_name(src, dst, store):
    path = write_file(src, "Artist/Album/01.flac", b"flac")
    fp = compute_fingerprint(path)
    _mark_synced(store, dst, fp, "01 (4).mp3", "Artist/Album/01.flac")
    (dst / "01 (4).mp3").unlink()

    plan = _plan(src, dst, store)

    assert [i.destination_filename for i in plan.to_convert] == ["01 (4).mp3"]
    assert plan.to_convert[0].previous_entry is not None


def test_empty_artifact_counts_as_missing(src, dst, store):
    path = write_file(src, "a.mp3", b"mp3")
    _mark_synced(store, dst, compute_fingerprint(path), "a.mp3", "a.mp3", data=b"")

    plan = _plan(src, dst, store)
    assert [i.destination_filename for i in plan.to_copy] == ["a.mp3"]


def test_duplicate_content_synced_once(src, dst, store):
    write_file(src, "A/song.flac", b"same")
    write_file(src, "B/copy.flac", b"same")

    plan = _plan(src, dst, store)

    assert [i.source.relative_path for i in plan.to_convert] == ["A/song.flac"]
    (records,) = plan.duplicates.values()
    assert [r.relative_path for r in records] == ["A/song.flac", "B/copy.flac"]


def test_deleted_source_kept_unless_pruning(src, dst, store):
    _mark_synced(store, dst, "full:gone", "gone.mp3", "Old/gone.flac")

    assert not _plan(src, dst, store).to_prune

    plan = _plan(src, dst, store, prune=True)
    assert [i.destination_filename for i in plan.to_prune] == ["gone.mp3"]


def test_unreadable_source_is_not_pruned(src, dst, store, monkeypatch):
    write_file(src, "A/01.flac", b"flac")
    _mark_synced(store, dst, "full:old", "01.mp3", "A/01.flac")

    def unreadable(record, cache=None, strategy=None):
        raise UnreadableSource(record.path, "Permission denied")

    monkeypatch.setattr(planner_module, "get_or_compute_fingerprint", unreadable)
    plan = _plan(src, dst, store, prune=True)

    assert plan.fingerprint_errors == [("A/01.flac", "Permission denied")]
    assert not plan.to_prune


def test_replaced_content_takes_over_old_name(src, dst, store):
    write_file(src, "A/01.flac", b"new master")
    _mark_synced(store, dst, "full:old", "01.mp3", "A/01.flac")

    plan = _plan(src, dst, store, prune=True)

    (item,) = plan.to_convert
    assert item.destination_filename == "01.mp3"
    assert item.supersedes == "full:old"
    assert not plan.to_prune


def test_untracked_destination_file_is_left_alone(src, dst, store):
    write_file(src, "A/01.flac", b"flac")
    write_file(dst, "01.mp3", b"user file")

    plan = _plan(src, dst, store)

    assert [i.destination_filename for i in plan.to_convert] == ["01 (1).mp3"]
    assert plan.untracked_files == ["01.mp3"]


def test_names_follow_sorted_source_order(src, dst, store):
    write_file(src, "B/01.flac", b"b")
    write_file(src, "A/01.flac", b"a")

    plan = _plan(src, dst, store)

    names = {i.source.relative_path: i.destination_filename for i in plan.to_convert}
    assert names == {"A/01.flac": "01.mp3", "B/01.flac": "01 (1).mp3"}


def test_planning_does_not_touch_the_store(src, dst, store):
    write_file(src, "A/01.flac", b"flac")
    _mark_synced(store, dst, "full:gone", "gone.mp3", "Old/gone.flac")
    before = store.snapshot()

    _plan(src, dst, store, prune=True)

    assert store.snapshot() == before
    assert not (dst / "01.mp3").exists()


def test_include_parent_setting(src, dst, store):
    write_file(src, "Artist/Album/01.flac", b"flac")

    plan = _plan(src, dst, store, include_parent=True)
    assert plan.to_convert[0].destination_filename == "Album - 01.mp3"


def test_plan_actions_are_typed(src, dst, store):
    write_file(src, "a.ogg", b"ogg")
    plan = _plan(src, dst, store)
    assert plan.to_convert[0].action is SyncAction.CONVERT
    assert plan.to_convert[0].is_transfer
