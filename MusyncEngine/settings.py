"""
Sync settings with JSON persistence.

Settings can be kept in a JSON file and passed with ``--settings``; values
given on the command line override the file, which overrides the defaults.
Unknown keys in the file are ignored, and a missing or corrupt file yields
the defaults.
"""

import json
import logging
import os
from dataclasses import dataclass, asdict, fields, replace
from typing import Optional

from .content_fingerprint import CACHE_FILENAME, FingerprintStrategy
from .state_store import STATE_FILENAME

logger = logging.getLogger(__name__)

MIN_BITRATE = 8
MAX_BITRATE = 320  # MPEG-1 Layer III ceiling


@dataclass
class SyncSettings:
    """All user-configurable sync settings."""

    # ── Execution ───────────────────────────────────────────────────────────
    # Number of parallel copy/convert workers.
    jobs: int = 16

    # Commit batch size: the state file is flushed after this many commits.
    flush_every: int = 16

    # ── Encoding ────────────────────────────────────────────────────────────
    # MP3 bitrate (kbps) for converted files.
    bitrate: int = 256

    # Custom ffmpeg binary (empty = search PATH and common locations).
    ffmpeg_path: str = ""

    # FFmpeg timeout in seconds per file.
    transcode_timeout: int = 600

    # ── Planning ────────────────────────────────────────────────────────────
    # Delete destination artifacts whose source no longer exists.
    # Off by default: a deleted source never removes anything unless asked.
    prune: bool = False

    # Prefix flattened names with the immediate parent directory
    # ("Album - 01.mp3") to keep same-named tracks from different albums apart.
    include_parent: bool = False

    # "full" (exact, reads every byte) or "partial" (length + head + tail).
    fingerprint_strategy: str = FingerprintStrategy.FULL.value

    # Parse existing artifacts with mutagen instead of only checking size.
    verify_artifacts: bool = False

    # ── Bookkeeping files (inside the destination root) ─────────────────────
    state_filename: str = STATE_FILENAME
    cache_filename: str = CACHE_FILENAME

    @classmethod
    def load(cls, path: Optional[str]) -> "SyncSettings":
        """Load settings from a JSON file. Missing/corrupt → defaults."""
        if not path or not os.path.exists(path):
            return cls()

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Could not read settings {path}: {e}, using defaults")
            return cls()

        if not isinstance(data, dict):
            logger.warning(f"Settings file {path} is not a JSON object, using defaults")
            return cls()

        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def save(self, path: str) -> None:
        """Write settings atomically."""
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        tmp = path + ".tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(asdict(self), f, indent=2, ensure_ascii=False)
            os.replace(tmp, path)
        except Exception:
            try:
                os.remove(tmp)
            except OSError:
                pass
            raise

    def with_overrides(self, **overrides) -> "SyncSettings":
        """Copy with the given fields replaced; None values are ignored."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def validated(self) -> "SyncSettings":
        """Copy with values clamped into their legal ranges."""
        strategy = str(self.fingerprint_strategy).lower()
        if strategy not in {s.value for s in FingerprintStrategy}:
            logger.warning(f"Unknown fingerprint strategy {strategy!r}, using 'full'")
            strategy = FingerprintStrategy.FULL.value

        jobs = self._int_or_default("jobs")
        flush_every = self._int_or_default("flush_every")
        bitrate = self._int_or_default("bitrate")
        timeout = self._int_or_default("transcode_timeout")

        return replace(
            self,
            jobs=max(1, jobs),
            flush_every=max(1, flush_every),
            bitrate=min(MAX_BITRATE, max(MIN_BITRATE, bitrate)),
            transcode_timeout=max(1, timeout),
            ffmpeg_path=self._str_or_default("ffmpeg_path"),
            state_filename=self._str_or_default("state_filename") or STATE_FILENAME,
            cache_filename=self._str_or_default("cache_filename") or CACHE_FILENAME,
            fingerprint_strategy=strategy,
        )

    @property
    def strategy(self) -> FingerprintStrategy:
        return FingerprintStrategy.parse(self.fingerprint_strategy)

    def _default(self, name: str):
        return next(f.default for f in fields(self) if f.name == name)

    def _int_or_default(self, name: str) -> int:
        value = getattr(self, name)
        if not isinstance(value, bool):
            try:
                return int(value)
            except (TypeError, ValueError, OverflowError):
                pass
        default = self._default(name)
        logger.warning(f"Invalid {name} setting {value!r}, using {default}")
        return default

    def _str_or_default(self, name: str) -> str:
        value = getattr(self, name)
        if isinstance(value, str):
            return value
        default = self._default(name)
        logger.warning(f"Invalid {name} setting {value!r}, using {default!r}")
        return default
