"""
Transcoder - Convert audio files to MP3 using FFmpeg.

Supported conversions:
- FLAC/WAV/AIFF → MP3
- OGG/Opus/M4A/WMA → MP3
- MOD/XM (tracker modules, rendered by ffmpeg's libopenmpt) → MP3

MP3 sources are not encoded: they are copied byte-for-byte.

The encoder is a plain callable so the executor can be handed a fake one:

    Encoder = Callable[[Path, Path, int], TranscodeResult]
"""

import subprocess
import logging
import shutil
from pathlib import Path
from typing import Optional, Callable
from dataclasses import dataclass

from .errors import CopyFailure

logger = logging.getLogger(__name__)

DEFAULT_BITRATE = 256  # kbps
DEFAULT_TIMEOUT = 600  # seconds per file


@dataclass
class TranscodeResult:
    """Result of an encode operation."""

    success: bool
    source_path: Path
    output_path: Optional[Path]
    error_message: Optional[str] = None


Encoder = Callable[[Path, Path, int], TranscodeResult]


def find_ffmpeg() -> Optional[str]:
    """Find ffmpeg binary. Returns path or None."""
    ffmpeg = shutil.which("ffmpeg")
    if ffmpeg:
        return ffmpeg

    # Common installation locations
    common_paths = [
        # Windows
        r"C:\Program Files\ffmpeg\bin\ffmpeg.exe",
        r"C:\ffmpeg\bin\ffmpeg.exe",
        # macOS (Homebrew)
        "/usr/local/bin/ffmpeg",
        "/opt/homebrew/bin/ffmpeg",
        # Linux
        "/usr/bin/ffmpeg",
    ]

    for path in common_paths:
        if Path(path).exists():
            return path

    return None


def is_ffmpeg_available(ffmpeg_path: Optional[str] = None) -> bool:
    """Check if ffmpeg is available."""
    if ffmpeg_path:
        return Path(ffmpeg_path).exists()
    return find_ffmpeg() is not None


def build_command(ffmpeg: str, source_path: Path, output_path: Path, bitrate: int) -> list[str]:
    return [
        ffmpeg,
        "-y",  # Overwrite output
        "-i",
        str(source_path),
        "-vn",  # No video (drops embedded cover streams)
        "-codec:a",
        "libmp3lame",
        "-b:a",
        f"{bitrate}k",
        "-f",
        "mp3",  # Output name may not end in .mp3 (temp file)
        "-hide_banner",
        "-loglevel",
        "error",
        str(output_path),
    ]


def encode_mp3(
    source_path: str | Path,
    output_path: str | Path,
    bitrate: int = DEFAULT_BITRATE,
    ffmpeg_path: Optional[str] = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> TranscodeResult:
    """
    Encode an audio file to MP3.

    Args:
        source_path: Path to source audio file
        output_path: Exact path to write (parent must exist)
        bitrate: Target bitrate (kbps)
        ffmpeg_path: Optional path to ffmpeg binary
        timeout: Seconds before the encoder is killed

    Returns:
        TranscodeResult; success only if ffmpeg exited 0 and wrote a
        non-empty file
    """
    source_path = Path(source_path)
    output_path = Path(output_path)

    if not source_path.exists():
        return TranscodeResult(
            success=False,
            source_path=source_path,
            output_path=None,
            error_message=f"Source file not found: {source_path}",
        )

    ffmpeg = ffmpeg_path or find_ffmpeg()
    if not ffmpeg:
        return TranscodeResult(
            success=False,
            source_path=source_path,
            output_path=None,
            error_message="ffmpeg not found",
        )

    cmd = build_command(ffmpeg, source_path, output_path, bitrate)

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",  # Handle non-UTF8 bytes gracefully
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        return TranscodeResult(
            success=False,
            source_path=source_path,
            output_path=None,
            error_message="Transcoding timed out",
        )
    except OSError as e:
        return TranscodeResult(
            success=False,
            source_path=source_path,
            output_path=None,
            error_message=str(e),
        )

    if result.returncode != 0:
        return TranscodeResult(
            success=False,
            source_path=source_path,
            output_path=None,
            error_message=f"ffmpeg failed ({result.returncode}): {result.stderr.strip()[:500]}",
        )

    if not output_path.exists() or output_path.stat().st_size == 0:
        return TranscodeResult(
            success=False,
            source_path=source_path,
            output_path=None,
            error_message="Output file not created",
        )

    logger.debug(f"Transcoded {source_path.name} → {output_path.name}")
    return TranscodeResult(
        success=True,
        source_path=source_path,
        output_path=output_path,
    )


def make_ffmpeg_encoder(ffmpeg_path: Optional[str] = None, timeout: int = DEFAULT_TIMEOUT) -> Encoder:
    """Bind ffmpeg location and timeout into an Encoder callable."""

    def encoder(source_path: Path, output_path: Path, bitrate: int) -> TranscodeResult:
        return encode_mp3(source_path, output_path, bitrate, ffmpeg_path=ffmpeg_path, timeout=timeout)

    return encoder


def copy_file(source_path: str | Path, output_path: str | Path) -> Path:
    """
    Byte-preserving copy (content plus timestamps).

    Raises:
        CopyFailure: on any filesystem error (disk full, permissions, ...)
    """
    source_path = Path(source_path)
    output_path = Path(output_path)
    try:
        shutil.copy2(source_path, output_path)
    except OSError as e:
        raise CopyFailure(f"Copy {source_path.name} failed: {e.strerror or e}") from e
    return output_path
