"""
Sync Executor - Executes a sync plan against the flattened destination.

The executor takes a SyncPlan (from SyncPlanner) and:
1. Counts SKIP items
2. Applies RELINK items (state update only, no destination I/O)
3. Applies PRUNE items (delete artifact, then drop its entry)
4. Runs COPY/CONVERT jobs on a bounded worker pool
5. Commits each successful job to the state store and flushes in batches

Jobs write to a hidden ".<name>.partial.mp3" file and are renamed into place
only on success, so a failed or interrupted job never leaves a valid-looking
artifact behind.

Worker threads never touch the state store: they return results, and the
executor thread consuming them is the single committing path. A crash loses
at most the commits since the last flush; anything not committed is simply
planned again on the next run.
"""

import logging
import os
from collections import deque
from concurrent.futures import ThreadPoolExecutor, Future, wait, FIRST_COMPLETED
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Callable

from .planner import SyncPlan, SyncItem, SyncAction
from .state_store import StateStore, StateEntry, utc_now
from .transcoder import Encoder, copy_file, make_ffmpeg_encoder, DEFAULT_BITRATE
from .integrity import partial_path, remove_partial_files
from .errors import EncodeFailure, CopyFailure, StateStoreError

logger = logging.getLogger(__name__)

# Seconds between cancellation checks while jobs are running
POLL_INTERVAL = 0.2


@dataclass
class SyncProgress:
    """Progress info for sync callbacks."""

    stage: str  # "relink", "prune", "transfer"
    current: int
    total: int
    current_item: Optional[SyncItem] = None
    message: str = ""


@dataclass
class SyncResult:
    """Result of a sync run."""

    success: bool = True
    skipped: int = 0
    copied: int = 0
    converted: int = 0
    relinked: int = 0
    pruned: int = 0

    # (description, cause) for every failed action
    errors: list[tuple[str, str]] = field(default_factory=list)

    # (relative path, reason) for source files that could not be read
    unreadable: list[tuple[str, str]] = field(default_factory=list)

    # Transfers never started because the run was stopped
    not_started: int = 0

    cancelled: bool = False
    state_error: Optional[str] = None

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors or self.unreadable or self.state_error)

    @property
    def summary(self) -> str:
        lines = [
            f"  Skipped:   {self.skipped}",
            f"  Copied:    {self.copied}",
            f"  Converted: {self.converted}",
            f"  Relinked:  {self.relinked}",
            f"  Pruned:    {self.pruned}",
            f"  Failed:    {self.failed}",
        ]
        if self.unreadable:
            lines.append(f"  Unreadable: {len(self.unreadable)}")
        if self.not_started:
            lines.append(f"  Not started: {self.not_started} (will run next time)")

        for description, cause in self.errors:
            lines.append(f"  [FAILED] {description}: {cause}")
        for path, reason in self.unreadable:
            lines.append(f"  [UNREADABLE] {path}: {reason}")
        if self.state_error:
            lines.append(f"  [STATE] {self.state_error}")

        if self.cancelled:
            status = "Sync interrupted"
        elif self.has_errors:
            status = "Sync completed with errors"
        else:
            status = "Sync completed"
        return f"{status}:\n" + "\n".join(lines)


@dataclass
class _JobOutcome:
    """What a worker hands back to the committing thread."""

    item: SyncItem
    entry: Optional[StateEntry] = None
    error: Optional[str] = None


class SyncExecutor:
    """
    Executes a sync plan with bounded parallelism.

    Usage:
        executor = SyncExecutor(dest_root, store, max_workers=16)
        result = executor.execute(plan, progress_callback, is_cancelled)
    """

    def __init__(
        self,
        destination_root: str | Path,
        store: StateStore,
        encoder: Optional[Encoder] = None,
        max_workers: int = 16,
        bitrate: int = DEFAULT_BITRATE,
        flush_every: int = 16,
    ):
        self.destination_root = Path(destination_root)
        self.store = store
        self.encoder = encoder or make_ffmpeg_encoder()
        self.max_workers = max(1, max_workers)
        self.bitrate = bitrate
        self.flush_every = max(1, flush_every)
        self._unflushed = 0

    # ── Public API ──────────────────────────────────────────────────────────

    def execute(
        self,
        plan: SyncPlan,
        progress_callback: Optional[Callable[[SyncProgress], None]] = None,
        is_cancelled: Optional[Callable[[], bool]] = None,
        dry_run: bool = False,
    ) -> SyncResult:
        """
        Execute the sync plan.

        Args:
            plan: The computed sync plan.
            progress_callback: Optional callback for progress updates.
            is_cancelled: Optional callback returning True once the user
                aborts. Queued jobs are dropped; in-flight jobs finish and
                are committed.
            dry_run: If True, count what would happen without doing it.
        """
        result = SyncResult()
        result.skipped = len(plan.to_skip)
        result.unreadable = list(plan.fingerprint_errors)
        result.errors.extend(plan.naming_errors)

        if dry_run:
            result.relinked = len(plan.to_relink)
            result.pruned = len(plan.to_prune)
            result.copied = len(plan.to_copy)
            result.converted = len(plan.to_convert)
            result.success = not result.has_errors
            return result

        def _check_cancelled() -> bool:
            if is_cancelled and is_cancelled():
                result.cancelled = True
            return result.cancelled or result.state_error is not None

        self.destination_root.mkdir(parents=True, exist_ok=True)
        remove_partial_files(self.destination_root)
        self._unflushed = 0

        # ===== Stage 1: Relink moved/renamed sources =====
        self._execute_relinks(plan, result, progress_callback, _check_cancelled)

        # ===== Stage 2: Prune orphaned artifacts =====
        self._execute_prunes(plan, result, progress_callback, _check_cancelled)

        # ===== Stage 3: Copy/convert =====
        self._execute_transfers(plan, result, progress_callback, _check_cancelled)

        # ===== Final flush =====
        if result.state_error is None:
            self._flush(result)

        result.success = not result.has_errors and not result.cancelled
        return result

    # ── Stage Implementations ───────────────────────────────────────────────

    def _execute_relinks(self, plan, result, progress_callback, check_cancelled):
        if not plan.to_relink:
            return

        total = len(plan.to_relink)
        for i, item in enumerate(plan.to_relink):
            if check_cancelled():
                return

            entry = item.previous_entry or self.store.lookup(item.fingerprint)
            if entry is None or item.source is None:
                result.errors.append((item.description, "No state entry to relink"))
                continue

            logger.info(f"[RELINK] {item.description}")
            self.store.commit(item.fingerprint, replace(
                entry,
                source_path=item.source.relative_path,
                source_size=item.source.size,
                source_mtime=item.source.mtime,
                last_synced=utc_now(),
            ))
            result.relinked += 1
            self._after_commit(result)

            if progress_callback:
                progress_callback(SyncProgress("relink", i + 1, total, item, item.description))

    def _execute_prunes(self, plan, result, progress_callback, check_cancelled):
        if not plan.to_prune:
            return

        total = len(plan.to_prune)
        for i, item in enumerate(plan.to_prune):
            if check_cancelled():
                return

            artifact = self.destination_root / item.destination_filename
            try:
                artifact.unlink(missing_ok=True)
            except OSError as e:
                # Keep the entry: the artifact is still there
                result.errors.append((item.description, f"Could not delete artifact: {e}"))
                logger.error(f"Could not prune {artifact}: {e}")
                continue

            logger.info(f"[PRUNE] {item.destination_filename}")
            self.store.prune(item.fingerprint)
            result.pruned += 1
            self._after_commit(result)

            if progress_callback:
                progress_callback(SyncProgress("prune", i + 1, total, item, item.description))

    def _execute_transfers(self, plan, result, progress_callback, check_cancelled):
        queue = deque(plan.transfers)
        if not queue:
            return

        total = len(queue)
        completed_count = 0
        workers = min(self.max_workers, total)
        logger.info(f"Processing {total} files with {workers} workers")

        in_flight: dict[Future, SyncItem] = {}
        stopping = False

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="musync-job") as pool:
            while queue or in_flight:
                # Dispatch only into free worker slots
                while queue and len(in_flight) < workers and not stopping:
                    if check_cancelled():
                        stopping = True
                        break
                    item = queue.popleft()
                    logger.info(f"[{item.action.name}] {item.description}")
                    in_flight[pool.submit(self._run_job, item)] = item

                if not in_flight:
                    break

                done, _ = wait(in_flight, timeout=POLL_INTERVAL, return_when=FIRST_COMPLETED)

                for future in done:
                    item = in_flight.pop(future)
                    try:
                        outcome = future.result()
                    except Exception as e:
                        outcome = _JobOutcome(item=item, error=f"Worker error: {e}")
                        logger.exception(f"Worker exception for {item.description}")

                    self._commit_outcome(outcome, result)

                    completed_count += 1
                    if progress_callback:
                        progress_callback(SyncProgress("transfer", completed_count, total, item, item.description))

                if not stopping and check_cancelled():
                    stopping = True

        if queue:
            result.not_started = len(queue)
            logger.warning(f"Stopped before starting {len(queue)} jobs")

    # ── Jobs (worker threads) ───────────────────────────────────────────────

    def _run_job(self, item: SyncItem) -> _JobOutcome:
        """Copy/convert a single file into place. Runs in a worker thread."""
        source = item.source
        if source is None:
            return _JobOutcome(item=item, error="No source file")

        final_path = self.destination_root / item.destination_filename
        temp_path = partial_path(final_path)
        source_path = Path(source.path)

        try:
            if item.action == SyncAction.CONVERT:
                self._encode(source_path, temp_path)
            else:
                copy_file(source_path, temp_path)
            os.replace(temp_path, final_path)
        except (EncodeFailure, CopyFailure) as e:
            _discard(temp_path)
            return _JobOutcome(item=item, error=str(e))
        except OSError as e:
            _discard(temp_path)
            return _JobOutcome(item=item, error=f"Could not place {final_path.name}: {e}")
        except Exception:
            # Unexpected encoder error: still reported as a worker error by the committing thread
            _discard(temp_path)
            raise

        converted = item.action == SyncAction.CONVERT
        entry = StateEntry(
            destination_filename=item.destination_filename,
            source_path=source.relative_path,
            format=final_path.suffix.lstrip(".").lower(),
            last_synced=utc_now(),
            source_format=source.extension.lstrip("."),
            source_size=source.size,
            source_mtime=source.mtime,
            was_transcoded=converted,
            bitrate=self.bitrate if converted else None,
        )
        return _JobOutcome(item=item, entry=entry)

    def _encode(self, source_path: Path, output_path: Path) -> None:
        transcode = self.encoder(source_path, output_path, self.bitrate)
        if not transcode.success:
            raise EncodeFailure(transcode.error_message or "Encoder reported failure")
        try:
            empty = output_path.stat().st_size == 0
        except OSError:
            raise EncodeFailure("Encoder produced no output file") from None
        if empty:
            raise EncodeFailure("Encoder produced an empty file")

    # ── Commit path (executor thread only) ──────────────────────────────────

    def _commit_outcome(self, outcome: _JobOutcome, result: SyncResult) -> None:
        item = outcome.item
        if outcome.entry is None:
            cause = outcome.error or "Unknown failure"
            result.errors.append((item.description, cause))
            logger.error(f"[FAILED] {item.description}: {cause}")
            return

        self.store.commit(item.fingerprint, outcome.entry)
        if item.supersedes:
            self.store.prune(item.supersedes)

        if item.action == SyncAction.CONVERT:
            result.converted += 1
        else:
            result.copied += 1
        self._after_commit(result)

    def _after_commit(self, result: SyncResult) -> None:
        self._unflushed += 1
        if self._unflushed >= self.flush_every:
            self._flush(result)

    def _flush(self, result: SyncResult) -> bool:
        if result.state_error is not None:
            return False
        try:
            self.store.flush()
        except StateStoreError as e:
            result.state_error = str(e)
            logger.error(f"Cannot persist sync state, stopping: {e}")
            return False
        self._unflushed = 0
        return True


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not remove partial file {path}: {e}")
