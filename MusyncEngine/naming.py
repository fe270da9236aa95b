"""
Destination Namer - Flattens source paths into collision-free destination names.

Artist/Album/01 Intro.flac  →  "01 Intro.mp3"
                            →  "Album - 01 Intro.mp3"   (include_parent=True)

Collision policy:
  - name free, or owned by the same fingerprint → reuse it
  - owned by another fingerprint (or an untracked file) → smallest unused
    numeric suffix: "01 Intro (1).mp3", "01 Intro (2).mp3", ...

Given the same inputs in the same order, the assigned names are identical
across runs, so repeated runs never rename already-placed files.
"""

import logging
import re
from pathlib import PurePath
from typing import Optional

from .errors import NamingCollisionUnresolvable
from .source_library import SourceRecord, TARGET_EXTENSION
from .state_store import filename_key

logger = logging.getLogger(__name__)

MAX_SUFFIX = 9999

# Characters not allowed in filenames on at least one common filesystem
_ILLEGAL_CHARS = re.compile(r'[\x00-\x1f<>:"/\\|?*]')


def sanitize_component(name: str) -> str:
    """Make a single path component safe on FAT/NTFS/ext filesystems."""
    name = _ILLEGAL_CHARS.sub("_", name)
    name = name.strip().rstrip(". ")
    return name


class DestinationNamer:
    """
    Assigns flattened destination filenames against a shared namespace.

    The namespace maps filename key → owning fingerprint. Untracked files that
    already sit in the destination are owned by None and are never reused.

    Usage:
        namer = DestinationNamer(store.namespace())
        filename = namer.name(record, fingerprint)
    """

    def __init__(
        self,
        namespace: Optional[dict[str, Optional[str]]] = None,
        include_parent: bool = False,
        target_extension: str = TARGET_EXTENSION,
    ):
        self._namespace: dict[str, Optional[str]] = dict(namespace or {})
        self.include_parent = include_parent
        self.target_extension = target_extension

    # ── Namespace ───────────────────────────────────────────────────────────

    def owner(self, filename: str) -> Optional[str]:
        return self._namespace.get(filename_key(filename))

    def is_occupied(self, filename: str) -> bool:
        return filename_key(filename) in self._namespace

    def is_available(self, filename: str, fingerprint: str) -> bool:
        key = filename_key(filename)
        return key not in self._namespace or self._namespace[key] == fingerprint

    def reserve(self, filename: str, fingerprint: Optional[str]) -> None:
        self._namespace[filename_key(filename)] = fingerprint

    # ── Naming ──────────────────────────────────────────────────────────────

    def base_name(self, record: SourceRecord) -> str:
        """Flattened name for a record, before collision handling."""
        stem = sanitize_component(PurePath(record.filename).stem) or "untitled"
        if self.include_parent:
            parent = sanitize_component(record.parent_name)
            if parent:
                stem = f"{parent} - {stem}"
        return stem + self.target_extension

    def name(
        self,
        record: SourceRecord,
        fingerprint: str,
        preferred: Optional[str] = None,
    ) -> str:
        """
        Assign and reserve a destination filename for *fingerprint*.

        Args:
            record: Source record being placed
            fingerprint: Content fingerprint that will own the name
            preferred: Previously assigned name to keep, if still available

        Raises:
            NamingCollisionUnresolvable: if no suffix up to MAX_SUFFIX is free
        """
        if preferred and self.is_available(preferred, fingerprint):
            self.reserve(preferred, fingerprint)
            return preferred

        base = self.base_name(record)
        if self.is_available(base, fingerprint):
            self.reserve(base, fingerprint)
            return base

        stem = base[: -len(self.target_extension)] if self.target_extension else base
        for n in range(1, MAX_SUFFIX + 1):
            candidate = f"{stem} ({n}){self.target_extension}"
            if self.is_available(candidate, fingerprint):
                logger.debug(f"Name collision: {base} → {candidate}")
                self.reserve(candidate, fingerprint)
                return candidate

        raise NamingCollisionUnresolvable(
            f"No free name for {record.relative_path}: {base} and {MAX_SUFFIX} suffixes are taken"
        )
