"""Tests for the ffmpeg wrapper and the byte-preserving copy."""

from pathlib import Path

import pytest

from .conftest import write_file
from .errors import CopyFailure
from .transcoder import build_command, copy_file, encode_mp3, is_ffmpeg_available, make_ffmpeg_encoder


def test_command_line():
    cmd = build_command("ffmpeg", Path("in.flac"), Path(".out.partial.mp3"), 256)
    assert cmd[:4] == ["ffmpeg", "-y", "-i", "in.flac"]
    assert cmd[cmd.index("-b:a") + 1] == "256k"
    assert cmd[cmd.index("-codec:a") + 1] == "libmp3lame"
    assert cmd[cmd.index("-f") + 1] == "mp3"
    assert cmd[-1] == ".out.partial.mp3"


def test_missing_source_fails(tmp_path):
    result = encode_mp3(tmp_path / "absent.flac", tmp_path / "out.mp3", ffmpeg_path="ffmpeg")
    assert not result.success
    assert "not found" in result.error_message


def test_missing_encoder_binary_fails(tmp_path):
    source = write_file(tmp_path, "in.flac", b"flac")
    encoder = make_ffmpeg_encoder(str(tmp_path / "no-such-ffmpeg"))

    result = encoder(source, tmp_path / "out.mp3", 256)

    assert not result.success
    assert result.output_path is None
    assert not (tmp_path / "out.mp3").exists()


def test_explicit_ffmpeg_path_must_exist(tmp_path):
    assert not is_ffmpeg_available(str(tmp_path / "no-such-ffmpeg"))


def test_copy_preserves_bytes(tmp_path):
    source = write_file(tmp_path, "a.mp3", b"\xff\xfbID3 bytes")
    target = copy_file(source, tmp_path / "b.mp3")
    assert target.read_bytes() == b"\xff\xfbID3 bytes"


def test_copy_failure_raises(tmp_path):
    with pytest.raises(CopyFailure):
        copy_file(tmp_path / "absent.mp3", tmp_path / "b.mp3")
