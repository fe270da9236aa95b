"""
Sync State Store - The memory of prior runs.

Stores: content fingerprint → {destination filename, source path, sync metadata}

An entry exists if and only if the destination artifact is believed to exist
and be valid. The planner only reads the store. The executor is the only
writer, and writes only after a job has been confirmed successful.

Location: <destination>/.musync.json
"""

import json
import logging
import os
import shutil
import threading
from pathlib import Path, PurePath
from dataclasses import dataclass, asdict
from typing import Optional
from datetime import datetime, timezone

from .errors import StateCorrupt, StateStoreError

logger = logging.getLogger(__name__)

STATE_FILENAME = ".musync.json"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def filename_key(filename: str) -> str:
    """Namespace key for a destination filename (case-insensitive filesystems)."""
    return filename.casefold()


@dataclass
class StateEntry:
    """Sync info for a single fingerprint."""

    # Flattened filename inside the destination directory
    destination_filename: str

    # Source-relative path the content was last seen at
    source_path: str

    # Format of the destination artifact: "mp3"
    format: str

    # ISO timestamp of last sync (or relink)
    last_synced: str

    # Source file info at time of sync
    source_format: str = ""
    source_size: int = 0
    source_mtime: float = 0.0

    # True if the artifact was produced by the encoder rather than copied
    was_transcoded: bool = False
    bitrate: Optional[int] = None

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "StateEntry":
        """
        Create from dict (JSON parsing).

        Raises:
            StateCorrupt: if a field has the wrong type, or the destination
                filename is not a plain name inside the destination root
        """
        if not isinstance(data, dict):
            raise StateCorrupt("entry is not an object")

        destination_filename = data.get("destination_filename")
        source_path = data.get("source_path")
        for key, value in (("destination_filename", destination_filename), ("source_path", source_path)):
            if not isinstance(value, str) or not value:
                raise StateCorrupt(f"'{key}' must be a non-empty string, got {value!r}")
        if not _is_plain_filename(destination_filename):
            raise StateCorrupt(f"'destination_filename' is not a plain filename: {destination_filename!r}")

        source_size = data.get("source_size", 0)
        source_mtime = data.get("source_mtime", 0.0)
        bitrate = data.get("bitrate")
        if not _is_number(source_size) or not _is_number(source_mtime):
            raise StateCorrupt(f"non-numeric source size/mtime for {destination_filename}")
        if bitrate is not None and not _is_number(bitrate):
            raise StateCorrupt(f"non-numeric bitrate for {destination_filename}")

        return cls(
            destination_filename=destination_filename,
            source_path=source_path,
            format=str(data.get("format", "mp3")),
            last_synced=str(data.get("last_synced", "")),
            source_format=str(data.get("source_format", "")),
            source_size=int(source_size),
            source_mtime=float(source_mtime),
            was_transcoded=bool(data.get("was_transcoded", False)),
            bitrate=int(bitrate) if bitrate is not None else None,
        )


@dataclass
class StateFile:
    """
    The complete persisted state structure.

    Tracks all fingerprint → StateEntry relationships.
    """

    version: int = 1
    created: str = ""
    modified: str = ""
    _entries: dict[str, StateEntry] | None = None  # fingerprint → StateEntry

    def __post_init__(self):
        if self._entries is None:
            self._entries = {}
        if not self.created:
            self.created = utc_now()
        if not self.modified:
            self.modified = self.created

    @property
    def entries(self) -> dict[str, StateEntry]:
        """Access entries dict, ensuring it's never None."""
        if self._entries is None:
            self._entries = {}
        return self._entries

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "created": self.created,
            "modified": self.modified,
            "entries": {fp: e.to_dict() for fp, e in sorted(self.entries.items())},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StateFile":
        """Create from dict. Raises StateCorrupt on a malformed structure."""
        if not isinstance(data, dict):
            raise StateCorrupt("state root is not an object")
        raw_entries = data.get("entries", {})
        if not isinstance(raw_entries, dict):
            raise StateCorrupt("'entries' is not an object")

        entries = {}
        try:
            for fp, entry_data in raw_entries.items():
                entries[fp] = StateEntry.from_dict(entry_data)
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            raise StateCorrupt(f"malformed entry: {e}") from e

        return cls(
            version=data.get("version", 1),
            created=data.get("created", ""),
            modified=data.get("modified", ""),
            _entries=entries,
        )


class StateStore:
    """
    Persisted fingerprint → StateEntry mapping with a single-writer discipline.

    commit(), prune() and flush() are serialised by one lock, so concurrent
    commits never interleave with each other or with a write to disk.

    A store created with path=None lives only in memory; flush() is a no-op.

    Usage:
        store = StateStore(dest / STATE_FILENAME)
        store.load()
        entry = store.lookup(fingerprint)
        store.commit(fingerprint, entry)
        store.flush()
    """

    def __init__(self, path: Optional[str | Path] = None):
        self.path = Path(path) if path is not None else None
        self._state = StateFile()
        self._lock = threading.Lock()
        self._dirty = False
        self.load_error: Optional[str] = None

    @classmethod
    def for_destination(cls, destination_root: str | Path, filename: str = STATE_FILENAME) -> "StateStore":
        return cls(Path(destination_root) / filename)

    # ── Loading ─────────────────────────────────────────────────────────────

    def load(self) -> "StateStore":
        """
        Load persisted state.

        A missing file gives an empty store. A corrupt file is backed up to
        <name>.bak and also gives an empty store, with load_error set: the
        source tree is authoritative, so this degrades to a full resync of
        naming rather than any loss of content.
        """
        self.load_error = None
        self._dirty = False

        if self.path is None:
            self._state = StateFile()
            return self

        if not self.path.exists():
            logger.info(f"No state file found at {self.path}, starting fresh")
            self._state = StateFile()
            return self

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            self._state = StateFile.from_dict(data)
            logger.info(f"Loaded state with {len(self._state.entries)} entries")
            return self

        except (json.JSONDecodeError, UnicodeDecodeError, StateCorrupt) as e:
            self.load_error = f"State file {self.path} is corrupt: {e}"
            logger.error(self.load_error)
            backup = self.path.with_name(self.path.name + ".bak")
            try:
                shutil.copy2(self.path, backup)
                logger.warning(f"Backed up corrupt state to {backup}")
            except OSError as backup_error:
                logger.warning(f"Could not back up corrupt state: {backup_error}")

        except OSError as e:
            self.load_error = f"State file {self.path} is unreadable: {e}"
            logger.error(self.load_error)

        self._state = StateFile()
        return self

    # ── Reading ─────────────────────────────────────────────────────────────

    def lookup(self, fingerprint: str) -> Optional[StateEntry]:
        """Get entry by fingerprint."""
        with self._lock:
            return self._state.entries.get(fingerprint)

    def snapshot(self) -> dict[str, StateEntry]:
        """Shallow copy of the whole mapping, for planning."""
        with self._lock:
            return dict(self._state.entries)

    def namespace(self) -> dict[str, str]:
        """Destination names owned by the store: filename key → fingerprint."""
        with self._lock:
            return {
                filename_key(e.destination_filename): fp
                for fp, e in self._state.entries.items()
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._state.entries)

    def __contains__(self, fingerprint: str) -> bool:
        with self._lock:
            return fingerprint in self._state.entries

    @property
    def dirty(self) -> bool:
        return self._dirty

    # ── Writing ─────────────────────────────────────────────────────────────

    def commit(self, fingerprint: str, entry: StateEntry) -> None:
        """Add or replace the entry for a fingerprint."""
        with self._lock:
            self._state.entries[fingerprint] = entry
            self._state.modified = utc_now()
            self._dirty = True

    def prune(self, fingerprint: str) -> bool:
        """Remove an entry. Returns True if removed."""
        with self._lock:
            if fingerprint not in self._state.entries:
                return False
            del self._state.entries[fingerprint]
            self._state.modified = utc_now()
            self._dirty = True
            return True

    def flush(self) -> None:
        """
        Persist the full mapping durably (temp file + fsync + rename).

        Raises:
            StateStoreError: if the state could not be written
        """
        if self.path is None:
            with self._lock:
                self._dirty = False
            return

        with self._lock:
            temp_file = self.path.with_name(self.path.name + ".tmp")
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(temp_file, "w", encoding="utf-8") as f:
                    json.dump(self._state.to_dict(), f, indent=2)
                    f.flush()
                    _fsync(f)
                temp_file.replace(self.path)
            except OSError as e:
                try:
                    temp_file.unlink(missing_ok=True)
                except OSError:
                    pass
                raise StateStoreError(f"Could not write state file {self.path}: {e}", self.path) from e

            self._dirty = False
            count = len(self._state.entries)

        logger.debug(f"Flushed state with {count} entries")


def _is_plain_filename(name: str) -> bool:
    # No separators or parent references: every artifact lives directly in the destination root
    return (
        name not in (".", "..")
        and "/" not in name
        and "\\" not in name
        and PurePath(name).name == name
    )


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _fsync(f) -> None:
    try:
        os.fsync(f.fileno())
    except OSError:
        # Some filesystems (e.g. certain network mounts) refuse fsync
        pass
