"""Shared fixtures: temporary source/destination trees and a fake encoder."""

import threading
import time
from pathlib import Path

import pytest

from .cli import run_sync
from .settings import SyncSettings
from .transcoder import TranscodeResult


class FakeEncoder:
    """
    Stands in for ffmpeg: writes "ENCODED:" + source bytes to the output.

    Records every call, can fail on chosen source filenames, and tracks the
    peak number of concurrent calls.
    """

    def __init__(self, fail_on=(), delay: float = 0.0):
        self.fail_on = set(fail_on)
        self.delay = delay
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self, source_path: Path, output_path: Path, bitrate: int) -> TranscodeResult:
        with self._lock:
            self.calls.append(Path(source_path).name)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if Path(source_path).name in self.fail_on:
                return TranscodeResult(False, Path(source_path), None, "simulated encoder failure")
            Path(output_path).write_bytes(b"ENCODED:" + Path(source_path).read_bytes())
            return TranscodeResult(True, Path(source_path), Path(output_path))
        finally:
            with self._lock:
                self.active -= 1


def write_file(root: Path, relative_path: str, data: bytes) -> Path:
    path = root / relative_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def dest_files(root: Path) -> list[str]:
    """Visible files in the destination (bookkeeping files excluded)."""
    return sorted(p.name for p in root.iterdir() if not p.name.startswith("."))


@pytest.fixture
def src(tmp_path: Path) -> Path:
    path = tmp_path / "src"
    path.mkdir()
    return path


@pytest.fixture
def dst(tmp_path: Path) -> Path:
    return tmp_path / "dst"


@pytest.fixture
def encoder() -> FakeEncoder:
    return FakeEncoder()


@pytest.fixture
def sync(src, dst, encoder):
    """Run a full sync of src → dst with the fake encoder."""

    def _sync(encoder_override=None, is_cancelled=None, dry_run=False, **settings):
        return run_sync(
            src,
            dst,
            SyncSettings(**settings),
            encoder=encoder_override or encoder,
            dry_run=dry_run,
            is_cancelled=is_cancelled,
        )

    return _sync
