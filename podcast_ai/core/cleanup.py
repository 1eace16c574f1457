"""
Cleanup: delete transient chunk files after a transcription attempt.
"""

import shutil
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def remove_chunk_file(chunk_path: Path):
    """Delete one chunk file; a missing file is not an error."""
    try:
        chunk_path.unlink()
        logger.debug("Deleted: %s", chunk_path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Error removing chunk file %s: %s", chunk_path, e)


def cleanup_temp_chunks(temp_dir: Path):
    """
    Remove a job's temporary chunk directory and anything left in it.
    Runs on every exit path (success, partial failure, total failure).
    """
    if not temp_dir.exists():
        return
    try:
        shutil.rmtree(temp_dir)
        logger.debug("Removed temp chunk dir: %s", temp_dir)
    except OSError as e:
        logger.warning("Error cleaning up temp directory %s: %s", temp_dir, e)
