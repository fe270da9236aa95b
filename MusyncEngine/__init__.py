"""
MusyncEngine - Incremental mirror of a nested music tree into a flat MP3 folder

Core components:
- SourceLibrary: Walks the source tree for audio files
- SyncPlanner: Computes a sync plan from content fingerprints and prior state
- SyncExecutor: Executes the plan (relink, prune, copy, convert) on a bounded pool
- StateStore: Tracks fingerprint → destination filename across runs
- DestinationNamer: Flattens source paths into collision-free names
- Transcoder: Encodes non-MP3 sources with ffmpeg
"""

from .source_library import SourceLibrary, SourceRecord, AUDIO_EXTENSIONS, needs_conversion
from .content_fingerprint import (
    FingerprintStrategy,
    FingerprintCache,
    compute_fingerprint,
    get_or_compute_fingerprint,
)
from .state_store import StateStore, StateFile, StateEntry
from .naming import DestinationNamer
from .planner import SyncPlanner, SyncAction, SyncPlan, SyncItem
from .sync_executor import SyncExecutor, SyncResult, SyncProgress
from .transcoder import (
    encode_mp3,
    copy_file,
    make_ffmpeg_encoder,
    is_ffmpeg_available,
    TranscodeResult,
)
from .integrity import artifact_is_valid, scan_destination
from .settings import SyncSettings
from .errors import (
    MusyncError,
    UnreadableSource,
    EncodeFailure,
    CopyFailure,
    StateCorrupt,
    StateStoreError,
    NamingCollisionUnresolvable,
)

__all__ = [
    # Source scanning
    "SourceLibrary",
    "SourceRecord",
    "AUDIO_EXTENSIONS",
    "needs_conversion",
    # Fingerprinting
    "FingerprintStrategy",
    "FingerprintCache",
    "compute_fingerprint",
    "get_or_compute_fingerprint",
    # Sync state
    "StateStore",
    "StateFile",
    "StateEntry",
    # Naming
    "DestinationNamer",
    # Planning
    "SyncPlanner",
    "SyncAction",
    "SyncPlan",
    "SyncItem",
    # Execution
    "SyncExecutor",
    "SyncResult",
    "SyncProgress",
    # Encoding
    "encode_mp3",
    "copy_file",
    "make_ffmpeg_encoder",
    "is_ffmpeg_available",
    "TranscodeResult",
    # Destination checks
    "artifact_is_valid",
    "scan_destination",
    # Settings
    "SyncSettings",
    # Errors
    "MusyncError",
    "UnreadableSource",
    "EncodeFailure",
    "CopyFailure",
    "StateCorrupt",
    "StateStoreError",
    "NamingCollisionUnresolvable",
]
