"""
Source Library Scanner - Walks the source tree for audio files.

Supports (case-insensitive extensions):
- MP3 (.mp3) - already the target codec, copied byte-for-byte
- FLAC (.flac), WAV (.wav), AIFF (.aif, .aiff)
- Ogg Vorbis (.ogg), Opus (.opus)
- AAC/ALAC (.m4a), WMA (.wma)
- Tracker modules (.mod, .xm)

Every run rescans the whole tree; there is no persisted scan state.
"""

import os
from pathlib import Path, PurePath
from dataclasses import dataclass
from typing import Optional, Iterator, Callable
import logging

logger = logging.getLogger(__name__)


# Target codec of the destination tree
TARGET_EXTENSION = ".mp3"

# Supported audio extensions
AUDIO_EXTENSIONS = {
    ".mp3",
    ".flac",
    ".wav",
    ".aif",
    ".aiff",
    ".ogg",
    ".opus",
    ".m4a",
    ".wma",
    ".mod",
    ".xm",
}


def needs_conversion(filepath: str | Path) -> bool:
    """Check if a file must be encoded to reach the target codec."""
    return Path(filepath).suffix.lower() != TARGET_EXTENSION


def is_audio_file(filename: str) -> bool:
    return Path(filename).suffix.lower() in AUDIO_EXTENSIONS


@dataclass
class SourceRecord:
    """An audio file in the source tree."""

    path: str  # Absolute path
    relative_path: str  # Relative to library root, POSIX separators
    filename: str
    extension: str  # Lower-case suffix, with dot
    mtime: float  # Modification time
    size: int  # File size in bytes

    # Content fingerprint, filled in lazily by the planner
    fingerprint: Optional[str] = None

    @property
    def parent_name(self) -> str:
        """Name of the immediate parent directory ("" at the library root)."""
        parent = PurePath(self.relative_path).parent
        return "" if str(parent) == "." else parent.name

    @property
    def needs_conversion(self) -> bool:
        return self.extension != TARGET_EXTENSION

    def resolve_fingerprint(self, resolver: Callable[["SourceRecord"], str]) -> str:
        """Compute the fingerprint once via *resolver*, then reuse it."""
        if self.fingerprint is None:
            self.fingerprint = resolver(self)
        return self.fingerprint


class SourceLibrary:
    """
    Scanner for the source music tree.

    Usage:
        library = SourceLibrary("/music/lossless")

        # Scan all records
        for record in library.scan():
            print(record.relative_path)

        # Scan with progress callback
        def on_progress(current, total, record):
            print(f"{current}/{total}: {record.filename}")

        records = list(library.scan(progress_callback=on_progress))
    """

    def __init__(self, root_path: str | Path):
        self.root_path = Path(root_path).resolve()
        if not self.root_path.exists():
            raise ValueError(f"Library path does not exist: {self.root_path}")
        if not self.root_path.is_dir():
            raise ValueError(f"Library path is not a directory: {self.root_path}")

    def _walk(self) -> Iterator[tuple[str, list[str]]]:
        """os.walk in sorted order, skipping hidden entries. Yields (dir, files)."""

        def on_error(error: OSError) -> None:
            logger.warning(f"Cannot read directory {error.filename}: {error.strerror}")

        for root, dirs, files in os.walk(self.root_path, onerror=on_error):
            dirs[:] = sorted(d for d in dirs if not d.startswith("."))
            yield root, sorted(f for f in files if not f.startswith(".") and is_audio_file(f))

    def count_audio_files(self) -> int:
        """Count total audio files in library (fast, no stat calls)."""
        return sum(len(files) for _, files in self._walk())

    def scan(
        self,
        progress_callback: Optional[Callable[[int, int, SourceRecord], None]] = None,
    ) -> Iterator[SourceRecord]:
        """
        Scan the library and yield SourceRecord objects.

        Files that fail to stat are skipped with a warning.

        Args:
            progress_callback: Optional callback(current, total, record) for progress updates
        """
        # First count files for progress
        total = self.count_audio_files() if progress_callback else 0
        current = 0

        for root, files in self._walk():
            for filename in files:
                file_path = Path(root) / filename
                try:
                    record = self._read_record(file_path)
                except OSError as e:
                    logger.warning(f"Skipping unreadable file {file_path}: {e}")
                    continue

                if record is None:
                    continue

                current += 1
                if progress_callback:
                    progress_callback(current, total, record)
                yield record

    def _read_record(self, file_path: Path) -> Optional[SourceRecord]:
        """Stat a single file into a SourceRecord. Non-regular files → None."""
        stat = file_path.stat()
        if not file_path.is_file():
            return None

        return SourceRecord(
            path=str(file_path),
            relative_path=file_path.relative_to(self.root_path).as_posix(),
            filename=file_path.name,
            extension=file_path.suffix.lower(),
            mtime=stat.st_mtime,
            size=stat.st_size,
        )
