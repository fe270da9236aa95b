"""
Destination Integrity - validates what is actually in the flattened destination.

Three sources of truth are reconciled on every run:

  1. **Source tree**: the SourceLibrary scan
  2. **Destination directory**: the files actually present
  3. **.musync.json**: the StateStore (fingerprint → destination filename)

This module covers (2):

A. Artifact validity
   A StateEntry whose file is missing, empty, or (with verify=True) not a
   parseable MP3 is treated by the planner as "found but missing" and
   re-synced under the same name.

B. Inventory
   Every regular file in the destination occupies a name. Files not owned
   by any StateEntry are untracked: they are never overwritten or deleted,
   only reported.

C. Leftover partial files
   Interrupted jobs may leave ".<name>.partial.mp3" temp files behind;
   the executor removes them before any job starts.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from mutagen import MutagenError
from mutagen.mp3 import MP3

from .source_library import TARGET_EXTENSION
from .state_store import filename_key

logger = logging.getLogger(__name__)

PARTIAL_MARKER = ".partial"


def partial_path(final_path: Path) -> Path:
    """Hidden temp path a job writes to before renaming into place."""
    return final_path.with_name(f".{final_path.stem}{PARTIAL_MARKER}{final_path.suffix}")


def is_partial_file(name: str) -> bool:
    """True only for names partial_path() produces: ".<stem>.partial.mp3"."""
    suffix = PARTIAL_MARKER + TARGET_EXTENSION
    return (
        name.startswith(".")
        and name.lower().endswith(suffix)
        and len(name) > len(suffix) + 1
    )


def artifact_is_valid(path: Path, verify: bool = False) -> bool:
    """
    Check a destination artifact.

    Without verify: exists and is non-empty (cheap, a single stat).
    With verify: additionally, mutagen parses an MPEG audio header and the
    stream has a positive duration.
    """
    try:
        if not path.is_file() or path.stat().st_size == 0:
            return False
    except OSError:
        return False

    if not verify:
        return True

    try:
        audio = MP3(path)
    except (MutagenError, OSError) as e:
        logger.debug(f"Invalid artifact {path.name}: {e}")
        return False

    return bool(audio.info and audio.info.length > 0)


@dataclass
class DestinationInventory:
    """Snapshot of the destination directory."""

    # filename key → actual filename
    files: dict[str, str] = field(default_factory=dict)

    errors: list[str] = field(default_factory=list)

    def untracked(self, owned: dict[str, str]) -> list[str]:
        """Files present on disk whose name is not owned by any StateEntry."""
        return sorted(name for key, name in self.files.items() if key not in owned)


def scan_destination(
    destination_root: str | Path,
    reserved_names: Optional[set[str]] = None,
) -> DestinationInventory:
    """
    List regular files at the top level of the destination.

    Args:
        destination_root: The flattened destination directory
        reserved_names: Bookkeeping files to exclude (state file, cache file)
    """
    root = Path(destination_root)
    reserved = {filename_key(n) for n in (reserved_names or set())}
    inventory = DestinationInventory()

    if not root.exists():
        return inventory

    try:
        entries = sorted(root.iterdir())
    except OSError as e:
        inventory.errors.append(f"Cannot list {root}: {e}")
        logger.warning(f"Cannot list destination {root}: {e}")
        return inventory

    for entry in entries:
        name = entry.name
        key = filename_key(name)
        if key in reserved or key.endswith(".tmp") or key.endswith(".bak") or is_partial_file(name):
            continue

        try:
            if not entry.is_file():
                continue
        except OSError:
            continue

        inventory.files[key] = name

    return inventory


def remove_partial_files(destination_root: str | Path) -> list[str]:
    """Delete leftover partial files from interrupted runs. Returns their names."""
    root = Path(destination_root)
    removed: list[str] = []
    if not root.exists():
        return removed

    for entry in sorted(root.iterdir()):
        if not is_partial_file(entry.name):
            continue
        try:
            entry.unlink()
            removed.append(entry.name)
            logger.debug(f"Removed leftover partial file: {entry.name}")
        except OSError as e:
            logger.warning(f"Cannot remove partial file {entry.name}: {e}")

    if removed:
        logger.info(f"Removed {len(removed)} partial files from an interrupted run")
    return removed
