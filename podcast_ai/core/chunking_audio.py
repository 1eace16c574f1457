"""
Size-aware audio splitting using ffprobe/ffmpeg.
Splits only when a file exceeds the transcription provider's upload limit.
"""

import json
import math
import logging
import subprocess
from pathlib import Path

from podcast_ai.core.security_utils import run_subprocess_capture
from podcast_ai.core.error_codes import JobError
from podcast_ai.core.constants import (
    ErrorCode, MAX_FILE_SIZE, TARGET_CHUNK_BYTES,
    DEFAULT_SEGMENT_SEC, MIN_SEGMENT_SEC, MAX_SEGMENT_SEC,
    FALLBACK_SEGMENT_SEC, FALLBACK_BITRATE, FALLBACK_CHANNELS, FALLBACK_FORMAT,
    SPLIT_TIMEOUT_SEC, PROBE_TIMEOUT_SEC,
)

logger = logging.getLogger(__name__)


def needs_splitting(audio_path: Path, max_size: int = MAX_FILE_SIZE) -> bool:
    """Check if a file is too large to upload in one request."""
    return audio_path.stat().st_size > max_size


def compute_segment_seconds(bit_rate: int,
                            target_bytes: int = TARGET_CHUNK_BYTES) -> int:
    """
    Segment length (seconds) that yields roughly target_bytes per chunk.
    Clamped to [60, 1800]; 600 when the bitrate is unknown.
    """
    if not bit_rate or bit_rate <= 0:
        return DEFAULT_SEGMENT_SEC
    bytes_per_second = bit_rate / 8
    seconds = math.floor(target_bytes / bytes_per_second)
    return max(MIN_SEGMENT_SEC, min(seconds, MAX_SEGMENT_SEC))


def _run_tool(args: list[str], timeout: int, what: str):
    """Run ffmpeg/ffprobe, mapping every failure mode to a chunking JobError."""
    try:
        result = run_subprocess_capture(args, timeout=timeout)
    except FileNotFoundError as e:
        raise JobError(ErrorCode.CHUNKING, f"Failed to start {args[0]} process: {e}")
    except subprocess.TimeoutExpired:
        raise JobError(ErrorCode.CHUNKING,
                       f"{what} timed out after {timeout // 60} minutes")
    except OSError as e:
        raise JobError(ErrorCode.CHUNKING, f"Failed to start {args[0]} process: {e}")

    if result.returncode != 0:
        stderr = result.stderr or ""
        raise JobError(ErrorCode.CHUNKING,
                       f"{what} failed with code {result.returncode}: {stderr[:300]}")
    return result


def probe_audio(audio_path: Path) -> tuple[float, int]:
    """Return (duration seconds, bit rate bits/s); zeros when unknown."""
    args = [
        "ffprobe",
        "-v", "error",
        "-show_entries", "format=duration,bit_rate",
        "-of", "json",
        str(audio_path),
    ]
    result = _run_tool(args, PROBE_TIMEOUT_SEC, "ffprobe")

    try:
        fmt = json.loads(result.stdout or "{}").get('format', {})
    except json.JSONDecodeError as e:
        raise JobError(ErrorCode.CHUNKING, f"Error processing audio file info: {e}")

    try:
        duration = float(fmt.get('duration') or 0)
    except (TypeError, ValueError):
        duration = 0.0
    try:
        bit_rate = int(fmt.get('bit_rate') or 0)
    except (TypeError, ValueError):
        bit_rate = 0
    return duration, bit_rate


def _list_chunks(output_dir: Path, basename: str) -> list[Path]:
    return sorted(p for p in output_dir.iterdir()
                  if p.is_file() and p.name.startswith(f"{basename}_"))


def _oversized(chunk_paths: list[Path], max_size: int) -> list[Path]:
    return [p for p in chunk_paths if p.stat().st_size > max_size]


def _discard(chunk_paths: list[Path]):
    for p in chunk_paths:
        try:
            p.unlink()
        except FileNotFoundError:
            pass


def split_audio_file(audio_path: Path, output_dir: Path,
                     max_size: int = MAX_FILE_SIZE) -> list[Path]:
    """
    Split audio into codec-copy segments that each fit under max_size.
    Falls back to a re-encoded (mono, 64 kbps, 5 min) split when any
    segment is still too large. Returns chunk paths in playback order.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    basename = audio_path.stem
    pattern = output_dir / f"{basename}_%03d{audio_path.suffix}"

    duration, bit_rate = probe_audio(audio_path)
    segment_sec = compute_segment_seconds(bit_rate)
    logger.info("Splitting %s (%.0fs, %d b/s) into %ds segments (approximately 20MB chunks)",
                audio_path.name, duration, bit_rate, segment_sec)

    args = [
        "ffmpeg",
        "-y",
        "-i", str(audio_path),
        "-f", "segment",
        "-segment_time", str(segment_sec),
        "-c", "copy",
        str(pattern),
    ]
    try:
        _run_tool(args, SPLIT_TIMEOUT_SEC, "ffmpeg split")
    except JobError:
        _discard(_list_chunks(output_dir, basename))
        raise

    chunk_paths = _list_chunks(output_dir, basename)
    if not chunk_paths:
        raise JobError(ErrorCode.CHUNKING, "Failed to split audio file into chunks")

    too_big = _oversized(chunk_paths, max_size)
    if too_big:
        logger.warning("%d chunks are still over the size limit. "
                       "Using fallback method for smaller chunks.", len(too_big))
        _discard(chunk_paths)
        return split_audio_file_with_compression(audio_path, output_dir, max_size)

    logger.info("Created %d chunks in %s", len(chunk_paths), output_dir)
    return chunk_paths


def split_audio_file_with_compression(audio_path: Path, output_dir: Path,
                                      max_size: int = MAX_FILE_SIZE) -> list[Path]:
    """Re-encode while splitting: fixed 300s segments, mono, 64 kbps mp3."""
    output_dir.mkdir(parents=True, exist_ok=True)
    basename = audio_path.stem
    pattern = output_dir / f"{basename}_%03d.{FALLBACK_FORMAT}"

    args = [
        "ffmpeg",
        "-y",
        "-i", str(audio_path),
        "-f", "segment",
        "-segment_time", str(FALLBACK_SEGMENT_SEC),
        "-ab", FALLBACK_BITRATE,
        "-ac", str(FALLBACK_CHANNELS),
        str(pattern),
    ]
    try:
        _run_tool(args, SPLIT_TIMEOUT_SEC, "ffmpeg compression")
    except JobError:
        _discard(_list_chunks(output_dir, basename))
        raise

    chunk_paths = _list_chunks(output_dir, basename)
    if not chunk_paths:
        raise JobError(ErrorCode.CHUNKING, "Compression split produced no chunks")

    if _oversized(chunk_paths, max_size):
        _discard(chunk_paths)
        raise JobError(ErrorCode.CHUNKING,
                       "Compressed chunks still exceed the upload size limit")

    logger.info("Created %d compressed chunks with fallback method", len(chunk_paths))
    return chunk_paths
