"""
Content Fingerprinting - Compute stable content identities for source files.

A fingerprint identifies file content regardless of name or location:
same bytes at a different path → same fingerprint. This is what lets a
renamed or moved source file be relinked instead of re-encoded.

Strategies:
- full:    SHA-256 over every byte of the file (default, exact)
- partial: SHA-256 over length + first 1 MiB + last 1 MiB

The partial strategy trades precision for speed on very large lossless
libraries: two files that differ only in the middle will collide. Fingerprints
carry their strategy as a prefix ("full:…", "partial:…") so switching strategy
never aliases old and new identities.

Because every file is fingerprinted on every run, a small cache keyed by
source-relative path stores (size, mtime, strategy, fingerprint). Unchanged
size+mtime → the cached fingerprint is reused without reading the file.

Cache location: <destination>/.musync-cache.json
"""

import hashlib
import json
import logging
import os
from dataclasses import dataclass, asdict
from enum import Enum
from pathlib import Path
from typing import Optional, TYPE_CHECKING

from .errors import UnreadableSource

if TYPE_CHECKING:
    from .source_library import SourceRecord

logger = logging.getLogger(__name__)

CACHE_FILENAME = ".musync-cache.json"

CHUNK_SIZE = 1024 * 1024  # 1 MiB reads
PARTIAL_SPAN = 1024 * 1024  # bytes hashed at each end for the partial strategy


class FingerprintStrategy(Enum):
    """How much of the file goes into the digest."""

    FULL = "full"
    PARTIAL = "partial"

    @classmethod
    def parse(cls, value: "str | FingerprintStrategy") -> "FingerprintStrategy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(
                f"Unknown fingerprint strategy {value!r} (expected one of: "
                f"{', '.join(s.value for s in cls)})"
            ) from None


def compute_fingerprint(
    filepath: str | Path,
    strategy: str | FingerprintStrategy = FingerprintStrategy.FULL,
) -> str:
    """
    Compute the content fingerprint of a file.

    Args:
        filepath: Path to the file
        strategy: FULL or PARTIAL (see module docstring)

    Returns:
        Fingerprint string "<strategy>:<sha256 hex>"

    Raises:
        UnreadableSource: if the file cannot be opened or read
    """
    filepath = Path(filepath)
    strategy = FingerprintStrategy.parse(strategy)
    hasher = hashlib.sha256()

    try:
        with open(filepath, "rb") as f:
            if strategy == FingerprintStrategy.FULL:
                while True:
                    chunk = f.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    hasher.update(chunk)
            else:
                size = os.fstat(f.fileno()).st_size
                hasher.update(size.to_bytes(8, "little"))
                hasher.update(f.read(PARTIAL_SPAN))
                if size > PARTIAL_SPAN:
                    f.seek(max(PARTIAL_SPAN, size - PARTIAL_SPAN))
                    hasher.update(f.read(PARTIAL_SPAN))
    except OSError as e:
        raise UnreadableSource(filepath, e.strerror or str(e)) from e

    return f"{strategy.value}:{hasher.hexdigest()}"


@dataclass
class CachedFingerprint:
    """Fingerprint of one source path as of its last scan."""

    size: int
    mtime: float
    strategy: str
    fingerprint: str

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "CachedFingerprint":
        return cls(
            size=int(data["size"]),
            mtime=float(data["mtime"]),
            strategy=str(data["strategy"]),
            fingerprint=str(data["fingerprint"]),
        )


class FingerprintCache:
    """
    Cross-run scan cache: relative source path → CachedFingerprint.

    The cache is an optimisation only. A missing or corrupt cache file loads
    as empty, and failures to save are logged rather than raised.

    Usage:
        cache = FingerprintCache(dest / CACHE_FILENAME)
        cache.load()
        fp = cache.get("Artist/Album/01.flac", size, mtime)
        ...
        cache.save()
    """

    VERSION = 1

    def __init__(
        self,
        path: Optional[Path] = None,
        strategy: str | FingerprintStrategy = FingerprintStrategy.FULL,
    ):
        self.path = Path(path) if path is not None else None
        self.strategy = FingerprintStrategy.parse(strategy)
        self._entries: dict[str, CachedFingerprint] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def load(self) -> None:
        """Load the cache from disk. Missing/corrupt file → empty cache."""
        self._entries = {}
        if self.path is None or not self.path.exists():
            return

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            for rel_path, entry in data.get("files", {}).items():
                self._entries[rel_path] = CachedFingerprint.from_dict(entry)
            logger.debug(f"Loaded fingerprint cache: {len(self._entries)} files")
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable fingerprint cache {self.path}: {e}")
            self._entries = {}

    def save(self) -> bool:
        """Write the cache atomically. Returns True on success."""
        if self.path is None:
            return True

        temp_file = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(
                    {
                        "version": self.VERSION,
                        "files": {k: v.to_dict() for k, v in sorted(self._entries.items())},
                    },
                    f,
                    indent=2,
                )
            temp_file.replace(self.path)
            return True
        except OSError as e:
            logger.warning(f"Could not save fingerprint cache {self.path}: {e}")
            temp_file.unlink(missing_ok=True)
            return False

    def get(self, relative_path: str, size: int, mtime: float) -> Optional[str]:
        """Return the cached fingerprint if size, mtime and strategy still match."""
        cached = self._entries.get(relative_path)
        if (
            cached is not None
            and cached.size == size
            and cached.mtime == mtime
            and cached.strategy == self.strategy.value
        ):
            self.hits += 1
            return cached.fingerprint
        self.misses += 1
        return None

    def put(self, relative_path: str, size: int, mtime: float, fingerprint: str) -> None:
        self._entries[relative_path] = CachedFingerprint(
            size=size,
            mtime=mtime,
            strategy=self.strategy.value,
            fingerprint=fingerprint,
        )

    def retain(self, relative_paths: set[str]) -> int:
        """Drop entries for paths not seen this run. Returns number dropped."""
        stale = [p for p in self._entries if p not in relative_paths]
        for p in stale:
            del self._entries[p]
        return len(stale)


def get_or_compute_fingerprint(
    record: "SourceRecord",
    cache: Optional[FingerprintCache] = None,
    strategy: str | FingerprintStrategy = FingerprintStrategy.FULL,
) -> str:
    """
    Get a record's fingerprint from the cache, or compute and cache it.

    This is the main entry point for fingerprinting.

    Raises:
        UnreadableSource: if the file has to be hashed and cannot be read
    """
    if cache is not None:
        fingerprint = cache.get(record.relative_path, record.size, record.mtime)
        if fingerprint:
            logger.debug(f"Reused cached fingerprint for {record.relative_path}")
            return fingerprint
        strategy = cache.strategy

    logger.debug(f"Computing fingerprint for {record.relative_path}")
    fingerprint = compute_fingerprint(record.path, strategy)

    if cache is not None:
        cache.put(record.relative_path, record.size, record.mtime, fingerprint)

    return fingerprint
