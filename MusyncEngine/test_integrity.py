"""Tests for destination checks: artifact validity, inventory, partial files."""

from pathlib import Path

from .conftest import write_file
from .integrity import (
    artifact_is_valid,
    is_partial_file,
    partial_path,
    remove_partial_files,
    scan_destination,
)


def test_partial_path_is_hidden_sibling():
    final = Path("/dst/01 Intro.mp3")
    temp = partial_path(final)
    assert temp == Path("/dst/.01 Intro.partial.mp3")
    assert is_partial_file(temp.name)
    assert not is_partial_file(final.name)


def test_missing_and_empty_artifacts_are_invalid(tmp_path):
    assert not artifact_is_valid(tmp_path / "nope.mp3")
    assert not artifact_is_valid(write_file(tmp_path, "empty.mp3", b""))
    assert artifact_is_valid(write_file(tmp_path, "ok.mp3", b"data"))


def test_verify_rejects_non_mp3_bytes(tmp_path):
    path = write_file(tmp_path, "fake.mp3", b"this is not an mpeg stream" * 10)
    assert artifact_is_valid(path)
    assert not artifact_is_valid(path, verify=True)


def test_scan_destination_skips_bookkeeping(tmp_path):
    write_file(tmp_path, "01.mp3", b"a")
    write_file(tmp_path, "Notes.TXT", b"b")
    write_file(tmp_path, ".musync.json", b"{}")
    write_file(tmp_path, ".musync.json.bak", b"{}")
    write_file(tmp_path, ".02.partial.mp3", b"c")
    (tmp_path / "subdir").mkdir()

    inventory = scan_destination(tmp_path, reserved_names={".musync.json"})

    assert inventory.files == {"01.mp3": "01.mp3", "notes.txt": "Notes.TXT"}
    assert inventory.untracked({"01.mp3": "full:a"}) == ["Notes.TXT"]


def test_scan_missing_destination_is_empty(tmp_path):
    assert scan_destination(tmp_path / "absent").files == {}


def test_remove_partial_files(tmp_path):
    write_file(tmp_path, ".01.partial.mp3", b"x")
    write_file(tmp_path, "01.mp3", b"y")

    assert remove_partial_files(tmp_path) == [".01.partial.mp3"]
    assert sorted(p.name for p in tmp_path.iterdir()) == ["01.mp3"]


def test_only_job_temp_files_count_as_partial(tmp_path):
    assert is_partial_file(".01 Intro.partial.mp3")
    assert not is_partial_file(".notes.partial.txt")
    assert not is_partial_file(".partial.mp3")
    assert not is_partial_file("song.partial.mp3")

    write_file(tmp_path, ".notes.partial.txt", b"keep me")
    write_file(tmp_path, ".01.partial.mp3", b"half")

    assert remove_partial_files(tmp_path) == [".01.partial.mp3"]
    assert (tmp_path / ".notes.partial.txt").read_bytes() == b"keep me"
