"""Tests for destination name flattening and collision handling."""

import pytest

from .errors import NamingCollisionUnresolvable
from .naming import MAX_SUFFIX, DestinationNamer, sanitize_component
from .source_library import SourceRecord


def _record(relative_path: str) -> SourceRecord:
    filename = relative_path.rsplit("/", 1)[-1]
    return SourceRecord(
        path=f"/music/{relative_path}",
        relative_path=relative_path,
        filename=filename,
        extension="." + filename.rsplit(".", 1)[-1].lower(),
        mtime=0.0,
        size=1,
    )


def test_flattens_to_stem_with_mp3_extension():
    namer = DestinationNamer()
    assert namer.name(_record("Artist/Album/01 Intro.flac"), "full:1") == "01 Intro.mp3"


def test_include_parent_prefixes_album():
    namer = DestinationNamer(include_parent=True)
    assert namer.name(_record("Artist/Album/01.flac"), "full:1") == "Album - 01.mp3"
    # Files at the library root have no parent to prefix
    assert namer.name(_record("loose.mp3"), "full:2") == "loose.mp3"


def test_collisions_get_smallest_free_suffix():
    namer = DestinationNamer()
    names = [
        namer.name(_record("A/01.flac"), "full:a"),
        namer.name(_record("B/01.flac"), "full:b"),
        namer.name(_record("C/01.flac"), "full:c"),
    ]
    assert names == ["01.mp3", "01 (1).mp3", "01 (2).mp3"]


def test_collisions_are_case_insensitive():
    namer = DestinationNamer({"intro.mp3": "full:other"})
    assert namer.name(_record("A/Intro.flac"), "full:mine") == "Intro (1).mp3"


def test_name_owned_by_same_fingerprint_is_reused():
    namer = DestinationNamer({"01.mp3": "full:a"})
    assert namer.name(_record("A/01.flac"), "full:a") == "01.mp3"


def test_untracked_file_is_never_reused():
    namer = DestinationNamer({"01.mp3": None})
    assert namer.name(_record("A/01.flac"), "full:a") == "01 (1).mp3"
    assert namer.owner("01.mp3") is None
    assert namer.is_occupied("01.MP3")


def test_preferred_name_kept_when_available():
    namer = DestinationNamer({"01 (3).mp3": "full:a"})
    assert namer.name(_record("A/01.flac"), "full:a", preferred="01 (3).mp3") == "01 (3).mp3"


def test_preferred_name_taken_by_other_falls_back():
    namer = DestinationNamer({"old.mp3": "full:other"})
    assert namer.name(_record("A/01.flac"), "full:a", preferred="old.mp3") == "01.mp3"


def test_same_inputs_same_names():
    paths = ["X/01.flac", "Y/01.flac", "Y/02.ogg", "Z/01.mp3"]
    namer_a, namer_b = DestinationNamer(), DestinationNamer()

    names_a = [namer_a.name(_record(p), f"full:{p}") for p in paths]
    names_b = [namer_b.name(_record(p), f"full:{p}") for p in paths]

    assert names_a == names_b == ["01.mp3", "01 (1).mp3", "02.mp3", "01 (2).mp3"]


def test_exhausted_suffixes_raise():
    taken = {"01.mp3": "full:x"}
    taken.update({f"01 ({n}).mp3": "full:x" for n in range(1, MAX_SUFFIX + 1)})
    namer = DestinationNamer(taken)

    with pytest.raises(NamingCollisionUnresolvable):
        namer.name(_record("A/01.flac"), "full:a")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ('AC/DC: "Live"?', "AC_DC_ _Live__"),
        ("trailing dots...", "trailing dots"),
        ("  padded  ", "padded"),
    ],
)
def test_sanitize_component(raw, expected):
    assert sanitize_component(raw) == expected


def test_empty_stem_gets_placeholder():
    namer = DestinationNamer()
    assert namer.name(_record("A/....flac"), "full:a") == "untitled.mp3"
