"""
Error taxonomy for musync.

Per-file and per-job errors (UnreadableSource, EncodeFailure, CopyFailure,
NamingCollisionUnresolvable) are local: they are reported and the run goes on.
StateStoreError is the only run-fatal error, since losing sync progress means
unbounded reconversion on the next run.
"""

from pathlib import Path
from typing import Optional


class MusyncError(Exception):
    """Base class for all musync errors."""


class UnreadableSource(MusyncError):
    """A source file could not be opened or hashed."""

    def __init__(self, path: str | Path, reason: str = ""):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Cannot read {self.path}: {reason}" if reason else f"Cannot read {self.path}")


class EncodeFailure(MusyncError):
    """The encoder failed or produced no usable output."""


class CopyFailure(MusyncError):
    """A filesystem copy into the destination failed."""


class StateCorrupt(MusyncError):
    """The persisted state file exists but could not be parsed."""


class StateStoreError(MusyncError):
    """The persisted state could not be written."""

    def __init__(self, message: str, path: Optional[Path] = None):
        self.path = path
        super().__init__(message)


class NamingCollisionUnresolvable(MusyncError):
    """No free disambiguating suffix was found for a destination name."""
