"""
Command-line front end.

    musync SRC DST [-j JOBS] [-b BITRATE] [--prune] [--dry-run] ...

Exit codes:
    0   everything synced
    1   some files failed or could not be read
    2   state file could not be loaded (recovered as empty) or written
    3   preflight failed (missing directory, ffmpeg not found)
    130 interrupted; progress so far was saved
"""

import argparse
import logging
import signal
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Callable

from .content_fingerprint import FingerprintCache, FingerprintStrategy
from .planner import SyncPlanner, SyncPlan
from .settings import SyncSettings
from .source_library import SourceLibrary
from .state_store import StateStore
from .sync_executor import SyncExecutor, SyncResult
from .transcoder import Encoder, is_ffmpeg_available, make_ffmpeg_encoder

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_WITH_FAILURES = 1
EXIT_STATE_ERROR = 2
EXIT_PREFLIGHT_FAILED = 3
EXIT_INTERRUPTED = 130

BANNER = r""" ___ ___  __ __  _____ __ __  ____     __
|   |   ||  |  |/ ___/|  |  ||    \   /  ]
| _   _ ||  |  (   \_ |  |  ||  _  | /  /
|  \_/  ||  |  |\__  ||  ~  ||  |  |/  /
|   |   ||  :  |/  \ ||___, ||  |  /   \_
|   |   ||     |\    ||     ||  |  \     |
|___|___| \__,_| \___||____/ |__|__|\____|"""


class PreflightError(Exception):
    """The run cannot start (bad directories, missing encoder)."""


@dataclass
class SyncOutcome:
    plan: SyncPlan
    result: SyncResult
    state_load_error: Optional[str] = None

    @property
    def exit_code(self) -> int:
        if self.state_load_error or self.result.state_error:
            return EXIT_STATE_ERROR
        if self.result.cancelled:
            return EXIT_INTERRUPTED
        if self.result.has_errors:
            return EXIT_WITH_FAILURES
        return EXIT_OK


def run_sync(
    source: str | Path,
    destination: str | Path,
    settings: Optional[SyncSettings] = None,
    *,
    encoder: Optional[Encoder] = None,
    dry_run: bool = False,
    is_cancelled: Optional[Callable[[], bool]] = None,
) -> SyncOutcome:
    """
    Plan and execute one sync run.

    Raises:
        PreflightError: if the run cannot start
    """
    settings = (settings or SyncSettings()).validated()
    source_root = Path(source).resolve()
    destination_root = Path(destination).resolve()

    try:
        library = SourceLibrary(source_root)
    except ValueError as e:
        raise PreflightError(str(e)) from e

    if destination_root == source_root or source_root in destination_root.parents:
        raise PreflightError(f"Destination {destination_root} must not be inside the source tree")
    if destination_root.exists() and not destination_root.is_dir():
        raise PreflightError(f"Destination is not a directory: {destination_root}")

    store = StateStore.for_destination(destination_root, settings.state_filename).load()
    # A dry run reads the cache but never writes it
    cache = FingerprintCache(destination_root / settings.cache_filename, settings.strategy)
    cache.load()
    if dry_run:
        cache.path = None

    planner = SyncPlanner(library, store, destination_root, settings, cache)
    plan = planner.compute_plan()
    logger.info(plan.summary)

    if encoder is None:
        if plan.to_convert and not dry_run and not is_ffmpeg_available(settings.ffmpeg_path or None):
            raise PreflightError(
                f"ffmpeg not found but {len(plan.to_convert)} files need converting. "
                "Install ffmpeg or pass --ffmpeg PATH."
            )
        encoder = make_ffmpeg_encoder(settings.ffmpeg_path or None, settings.transcode_timeout)

    executor = SyncExecutor(
        destination_root,
        store,
        encoder=encoder,
        max_workers=settings.jobs,
        bitrate=settings.bitrate,
        flush_every=settings.flush_every,
    )
    result = executor.execute(plan, is_cancelled=is_cancelled, dry_run=dry_run)
    return SyncOutcome(plan=plan, result=result, state_load_error=store.load_error)


# ─── CLI ───────────────────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="musync",
        description="Mirror a nested music tree into a flat MP3 directory, incrementally.",
    )
    parser.add_argument("src", nargs="?", type=Path, help="Directory to sync from")
    parser.add_argument("dst", nargs="?", type=Path, help="Directory to sync to")
    parser.add_argument("-s", dest="src_opt", type=Path, metavar="SRC", help="Directory to sync from")
    parser.add_argument("-d", dest="dst_opt", type=Path, metavar="DST", help="Directory to sync to")
    parser.add_argument("-j", "--jobs", type=int, metavar="JOBS", help="Number of jobs to run in parallel (default 16)")
    parser.add_argument("-b", "--bitrate", type=int, metavar="KBPS", help="MP3 bitrate in kbps (default 256)")
    parser.add_argument(
        "--prune",
        action="store_true",
        default=None,
        help="Delete destination files whose source no longer exists",
    )
    parser.add_argument(
        "--include-parent",
        action="store_true",
        default=None,
        help='Prefix names with the parent directory ("Album - 01.mp3")',
    )
    parser.add_argument(
        "--fingerprint",
        choices=[s.value for s in FingerprintStrategy],
        help="full: hash whole files (default); partial: hash length + head + tail",
    )
    parser.add_argument(
        "--verify",
        action="store_true",
        default=None,
        help="Parse existing MP3s to check they are valid, not just present",
    )
    parser.add_argument("--ffmpeg", metavar="PATH", help="Path to the ffmpeg binary")
    parser.add_argument("--settings", metavar="FILE", help="JSON settings file")
    parser.add_argument("-n", "--dry-run", action="store_true", help="Show the plan, change nothing")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Debug output")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Warnings and errors only")
    return parser


def configure_logging(verbose: bool = False, quiet: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s" if verbose else "%(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def install_interrupt_handler() -> threading.Event:
    """First Ctrl-C requests a graceful stop; a second one aborts."""
    stop = threading.Event()

    def handler(signum, frame):
        logger.warning("Interrupted: finishing running jobs, then saving progress (Ctrl-C again to abort)")
        stop.set()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, handler)
    return stop


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    source = args.src or args.src_opt
    destination = args.dst or args.dst_opt
    if source is None or destination is None:
        parser.error("both a source and a destination directory are required")

    configure_logging(args.verbose, args.quiet)
    if not args.quiet:
        print(BANNER, file=sys.stderr)

    settings = SyncSettings.load(args.settings).with_overrides(
        jobs=args.jobs,
        bitrate=args.bitrate,
        prune=args.prune,
        include_parent=args.include_parent,
        fingerprint_strategy=args.fingerprint,
        verify_artifacts=args.verify,
        ffmpeg_path=args.ffmpeg,
    )

    started = time.monotonic()
    previous_handler = signal.getsignal(signal.SIGINT)
    stop = install_interrupt_handler()

    try:
        outcome = run_sync(source, destination, settings, dry_run=args.dry_run, is_cancelled=stop.is_set)
    except PreflightError as e:
        logger.error(str(e))
        return EXIT_PREFLIGHT_FAILED
    except KeyboardInterrupt:
        logger.error("Aborted")
        return EXIT_INTERRUPTED
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if args.dry_run:
        print(outcome.plan.summary)
        for item in outcome.plan.transfers + outcome.plan.to_relink + outcome.plan.to_prune:
            print(f"  [{item.action.name}] {item.description}")
    else:
        print(outcome.result.summary)

    if outcome.state_load_error:
        logger.error(outcome.state_load_error)

    logger.info(f"Finished in {time.monotonic() - started:.2f}s")
    return outcome.exit_code


if __name__ == "__main__":
    sys.exit(main())
