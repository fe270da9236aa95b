"""
Sync Planner - Computes a sync plan from the source tree, the state store and
the destination directory.

Identification is by content fingerprint:
- Same bytes at a new path → same fingerprint → RELINK (no re-encode)
- Edited content → new fingerprint → CONVERT/COPY

Per source record, in sorted relative-path order:
  1. Fingerprint (size+mtime cache gate, then hash)
  2. Look up the fingerprint in the state store
     - found, artifact valid    → RELINK if the source path moved, else SKIP
     - found, artifact missing  → re-sync, keeping the previous filename
     - not found                → COPY (already MP3) or CONVERT, new filename
  3. With pruning enabled, state entries not observed this run → PRUNE

Content replaced in place (same source path, new fingerprint) takes over
the old destination filename; the old entry is superseded rather than pruned.

The planner never writes to the state store.
"""

from dataclasses import dataclass, field
from typing import Optional, Callable
from enum import Enum, auto
from pathlib import Path
import logging

from .source_library import SourceLibrary, SourceRecord
from .content_fingerprint import FingerprintCache, get_or_compute_fingerprint
from .state_store import StateStore, StateEntry
from .naming import DestinationNamer
from .integrity import artifact_is_valid, scan_destination
from .errors import UnreadableSource, NamingCollisionUnresolvable
from .settings import SyncSettings

logger = logging.getLogger(__name__)


# ─── Enums & Data Classes ─────────────────────────────────────────────────────


class SyncAction(Enum):
    """Type of sync action needed."""

    SKIP = auto()  # In sync, nothing to do
    COPY = auto()  # Source is already MP3, copy bytes
    CONVERT = auto()  # Encode source to MP3
    RELINK = auto()  # Source moved/renamed, update recorded path only
    PRUNE = auto()  # Source gone, delete artifact and entry


@dataclass
class SyncItem:
    """A single item in the sync plan."""

    action: SyncAction
    fingerprint: str

    # Flattened filename in the destination
    destination_filename: str

    # Source record (None for PRUNE)
    source: Optional[SourceRecord] = None

    # State entry this item was planned against, if any
    previous_entry: Optional[StateEntry] = None

    # Fingerprint of replaced-in-place content whose entry this item retires
    supersedes: Optional[str] = None

    # Human-readable description
    description: str = ""

    @property
    def is_transfer(self) -> bool:
        return self.action in (SyncAction.COPY, SyncAction.CONVERT)


@dataclass
class SyncPlan:
    """Complete sync plan with all actions needed."""

    # Grouped action lists
    to_skip: list[SyncItem] = field(default_factory=list)
    to_copy: list[SyncItem] = field(default_factory=list)
    to_convert: list[SyncItem] = field(default_factory=list)
    to_relink: list[SyncItem] = field(default_factory=list)
    to_prune: list[SyncItem] = field(default_factory=list)

    # Unreadable source files: (relative path, reason)
    fingerprint_errors: list[tuple[str, str]] = field(default_factory=list)

    # Records that could not be given a destination name: (relative path, reason)
    naming_errors: list[tuple[str, str]] = field(default_factory=list)

    # Source duplicates: fingerprint → records sharing it (first one is synced)
    duplicates: dict[str, list[SourceRecord]] = field(default_factory=dict)

    # Files in the destination that no state entry owns (left alone)
    untracked_files: list[str] = field(default_factory=list)

    # Stats
    total_source_files: int = 0
    total_state_entries: int = 0
    bytes_to_transfer: int = 0

    @property
    def transfers(self) -> list[SyncItem]:
        """COPY and CONVERT items, in planning order."""
        return sorted(
            self.to_copy + self.to_convert,
            key=lambda item: item.source.relative_path if item.source else "",
        )

    @property
    def has_changes(self) -> bool:
        return any([self.to_copy, self.to_convert, self.to_relink, self.to_prune])

    @property
    def summary(self) -> str:
        lines = []
        if self.to_convert:
            lines.append(f"  {len(self.to_convert)} files to convert")
        if self.to_copy:
            lines.append(f"  {len(self.to_copy)} files to copy")
        if self.to_relink:
            lines.append(f"  {len(self.to_relink)} moved/renamed files to relink")
        if self.to_prune:
            lines.append(f"  {len(self.to_prune)} orphaned artifacts to prune")
        if self.fingerprint_errors:
            lines.append(f"  {len(self.fingerprint_errors)} files could not be read")
        if self.naming_errors:
            lines.append(f"  {len(self.naming_errors)} files could not be named")
        if self.duplicates:
            extra = sum(len(records) - 1 for records in self.duplicates.values())
            lines.append(f"  {len(self.duplicates)} duplicate groups ({extra} extra files ignored)")
        if self.untracked_files:
            lines.append(f"  {len(self.untracked_files)} untracked files in destination")

        header = (
            f"Sync Plan ({self.total_source_files} source files, "
            f"{self.total_state_entries} synced, {len(self.to_skip)} unchanged)"
        )
        if not lines:
            return header + "\n  Everything is in sync."
        if self.bytes_to_transfer:
            lines.append(f"  {_fmt_bytes(self.bytes_to_transfer)} of source data to process")
        return header + ":\n" + "\n".join(lines)

    def add(self, item: SyncItem) -> None:
        {
            SyncAction.SKIP: self.to_skip,
            SyncAction.COPY: self.to_copy,
            SyncAction.CONVERT: self.to_convert,
            SyncAction.RELINK: self.to_relink,
            SyncAction.PRUNE: self.to_prune,
        }[item.action].append(item)
        if item.is_transfer and item.source is not None:
            self.bytes_to_transfer += item.source.size


# ─── Engine ────────────────────────────────────────────────────────────────────


class SyncPlanner:
    """
    Computes sync actions for one run.

    Usage:
        planner = SyncPlanner(library, store, dest_root, settings, cache)
        plan = planner.compute_plan()
        print(plan.summary)
    """

    def __init__(
        self,
        library: SourceLibrary,
        store: StateStore,
        destination_root: str | Path,
        settings: Optional[SyncSettings] = None,
        fingerprint_cache: Optional[FingerprintCache] = None,
    ):
        self.library = library
        self.store = store
        self.destination_root = Path(destination_root)
        self.settings = (settings or SyncSettings()).validated()
        if fingerprint_cache is None:
            fingerprint_cache = FingerprintCache(None, self.settings.strategy)
        self.fingerprint_cache = fingerprint_cache

    # ── Public API ──────────────────────────────────────────────────────────

    def compute_plan(
        self,
        progress_callback: Optional[Callable[[str, int, int, str], None]] = None,
    ) -> SyncPlan:
        """
        Compute the full sync plan.

        Args:
            progress_callback: Optional callback(stage, current, total, message)

        Returns:
            SyncPlan
        """
        plan = SyncPlan()
        entries = self.store.snapshot()
        plan.total_state_entries = len(entries)

        # ===== Phase 1: Scan source & fingerprint =====
        if progress_callback:
            progress_callback("scan", 0, 0, "Scanning source tree...")

        records = sorted(self.library.scan(), key=lambda r: r.relative_path)
        plan.total_source_files = len(records)

        by_fp: dict[str, SourceRecord] = {}
        unreadable_paths: set[str] = set()

        for i, record in enumerate(records):
            if progress_callback:
                progress_callback("fingerprint", i + 1, len(records), record.relative_path)

            try:
                fp = record.resolve_fingerprint(self._fingerprint)
            except UnreadableSource as e:
                plan.fingerprint_errors.append((record.relative_path, e.reason or str(e)))
                unreadable_paths.add(record.relative_path)
                logger.warning(f"Cannot fingerprint {record.relative_path}: {e.reason}")
                continue

            if fp in by_fp:
                plan.duplicates.setdefault(fp, [by_fp[fp]]).append(record)
                logger.warning(
                    f"[DUPLICATE] {record.relative_path} has the same content as "
                    f"{by_fp[fp].relative_path}, ignoring it"
                )
                continue

            by_fp[fp] = record

        self.fingerprint_cache.retain({r.relative_path for r in records})
        self.fingerprint_cache.save()
        logger.debug(
            f"Fingerprint cache: {self.fingerprint_cache.hits} hits, "
            f"{self.fingerprint_cache.misses} misses"
        )

        seen_fps = set(by_fp)

        # ===== Phase 2: Build destination namespace =====
        if progress_callback:
            progress_callback("namespace", 0, 0, "Reading destination...")

        owned = self.store.namespace()
        inventory = scan_destination(
            self.destination_root,
            reserved_names={self.settings.state_filename, self.settings.cache_filename},
        )
        namespace: dict[str, Optional[str]] = {key: None for key in inventory.files}
        namespace.update(owned)
        plan.untracked_files = inventory.untracked(owned)

        namer = DestinationNamer(namespace, include_parent=self.settings.include_parent)

        # Entries whose content vanished, by the path they were synced from
        vanished_by_path: dict[str, str] = {
            entry.source_path: fp
            for fp, entry in sorted(entries.items())
            if fp not in seen_fps
        }
        superseded: set[str] = set()

        # ===== Phase 3: Match & plan =====
        if progress_callback:
            progress_callback("plan", 0, 0, "Computing differences...")

        for fp, record in by_fp.items():
            entry = entries.get(fp)

            if entry is not None:
                artifact = self.destination_root / entry.destination_filename
                if artifact_is_valid(artifact, verify=self.settings.verify_artifacts):
                    if entry.source_path != record.relative_path:
                        plan.add(SyncItem(
                            action=SyncAction.RELINK,
                            fingerprint=fp,
                            destination_filename=entry.destination_filename,
                            source=record,
                            previous_entry=entry,
                            description=f"{entry.source_path} → {record.relative_path}",
                        ))
                    else:
                        plan.add(SyncItem(
                            action=SyncAction.SKIP,
                            fingerprint=fp,
                            destination_filename=entry.destination_filename,
                            source=record,
                            previous_entry=entry,
                            description=record.relative_path,
                        ))
                    continue

                logger.info(f"Artifact {entry.destination_filename} missing, re-syncing {record.relative_path}")

            preferred = entry.destination_filename if entry is not None else None
            supersedes = None

            if entry is None and record.relative_path in vanished_by_path:
                old_fp = vanished_by_path[record.relative_path]
                preferred = entries[old_fp].destination_filename
                # The new content inherits the name of the content it replaced
                namer.reserve(preferred, fp)
                supersedes = old_fp
                superseded.add(old_fp)

            try:
                filename = namer.name(record, fp, preferred=preferred)
            except NamingCollisionUnresolvable as e:
                plan.naming_errors.append((record.relative_path, str(e)))
                logger.error(str(e))
                continue

            action = SyncAction.CONVERT if record.needs_conversion else SyncAction.COPY
            plan.add(SyncItem(
                action=action,
                fingerprint=fp,
                destination_filename=filename,
                source=record,
                previous_entry=entry,
                supersedes=supersedes,
                description=f"{record.relative_path} → {filename}",
            ))

        # ===== Phase 4: Orphaned entries =====
        if self.settings.prune:
            for fp in sorted(set(entries) - seen_fps - superseded):
                entry = entries[fp]
                if entry.source_path in unreadable_paths:
                    # Still present, just unreadable this run
                    continue
                plan.add(SyncItem(
                    action=SyncAction.PRUNE,
                    fingerprint=fp,
                    destination_filename=entry.destination_filename,
                    previous_entry=entry,
                    description=f"{entry.destination_filename} (source {entry.source_path} gone)",
                ))
        else:
            orphaned = len(set(entries) - seen_fps - superseded)
            if orphaned:
                logger.info(f"{orphaned} synced files no longer have a source (pruning disabled)")

        return plan

    # ── Private Helpers ─────────────────────────────────────────────────────

    def _fingerprint(self, record: SourceRecord) -> str:
        return get_or_compute_fingerprint(record, self.fingerprint_cache, self.settings.strategy)


# ─── Helpers ───────────────────────────────────────────────────────────────────


def _fmt_bytes(val: int) -> str:
    """Format bytes as human-readable string."""
    v = float(abs(val))
    for unit in ["B", "KB", "MB", "GB"]:
        if v < 1024:
            return f"{v:.1f} {unit}"
        v /= 1024
    return f"{v:.1f} TB"
