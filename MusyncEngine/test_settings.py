"""Tests for SyncSettings persistence and validation."""

import json

from .cli import EXIT_OK, main
from .content_fingerprint import FingerprintStrategy
from .settings import SyncSettings


def test_defaults():
    settings = SyncSettings()
    assert settings.jobs == 16
    assert settings.bitrate == 256
    assert settings.prune is False
    assert settings.strategy is FingerprintStrategy.FULL
    assert settings.state_filename == ".musync.json"


def test_missing_file_gives_defaults(tmp_path):
    assert SyncSettings.load(str(tmp_path / "absent.json")) == SyncSettings()
    assert SyncSettings.load(None) == SyncSettings()


def test_save_and_load(tmp_path):
    path = str(tmp_path / "conf" / "settings.json")
    SyncSettings(jobs=4, prune=True, fingerprint_strategy="partial").save(path)

    loaded = SyncSettings.load(path)
    assert loaded.jobs == 4
    assert loaded.prune is True
    assert loaded.strategy is FingerprintStrategy.PARTIAL


def test_unknown_keys_ignored(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"jobs": 2, "theme": "dark"}), encoding="utf-8")
    assert SyncSettings.load(str(path)).jobs == 2


def test_corrupt_file_gives_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("[1, 2", encoding="utf-8")
    assert SyncSettings.load(str(path)) == SyncSettings()

    path.write_text("[1, 2]", encoding="utf-8")
    assert SyncSettings.load(str(path)) == SyncSettings()


def test_overrides_skip_none():
    settings = SyncSettings(jobs=4).with_overrides(jobs=None, bitrate=128, prune=None)
    assert settings.jobs == 4
    assert settings.bitrate == 128
    assert settings.prune is False


def test_validated_clamps():
    settings = SyncSettings(jobs=0, bitrate=9000, flush_every=-1, fingerprint_strategy="md5").validated()
    assert settings.jobs == 1
    assert settings.bitrate == 320
    assert settings.flush_every == 1
    assert settings.fingerprint_strategy == "full"

    assert SyncSettings(bitrate=1).validated().bitrate == 8


def test_malformed_values_fall_back_per_field(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps({"jobs": None, "bitrate": "fast", "flush_every": "4", "state_filename": None, "prune": True}),
        encoding="utf-8",
    )

    settings = SyncSettings.load(str(path)).validated()

    assert settings.jobs == 16
    assert settings.bitrate == 256
    assert settings.flush_every == 4
    assert settings.state_filename == ".musync.json"
    assert settings.prune is True


def test_cli_survives_malformed_settings_file(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"jobs": None, "bitrate": "fast"}), encoding="utf-8")

    assert main([str(src), str(tmp_path / "dst"), "--settings", str(path), "-q"]) == EXIT_OK
