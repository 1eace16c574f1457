"""
In-memory job records for the processing queues.
Plain frozen dataclasses; serialization lives in separate functions.
"""

import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

from podcast_ai.core.constants import JobStatus, OPERATION_TOKEN_PREFIX


@dataclass(frozen=True)
class QueueEntry:
    """A waiting submission, keyed by (container_id, target_id)."""
    media_item_id: str
    container_id: str                # library id
    target_id: str                   # episode id
    target_title: str = ""
    container_title: str = ""        # podcast title
    queued_at: Optional[str] = None


@dataclass(frozen=True)
class Job:
    id: str
    kind: str                        # JobKind
    media_item_id: str
    container_id: str
    target_id: str
    target_title: str = ""
    container_title: str = ""
    created_at: Optional[str] = None
    status: str = JobStatus.RUNNING
    progress_percent: Optional[int] = None
    operation_token: Optional[str] = None
    task_id: Optional[str] = None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_entry(media_item_id: str, container_id: str, target_id: str,
              target_title: str = "", container_title: str = "") -> QueueEntry:
    return QueueEntry(
        media_item_id=media_item_id,
        container_id=container_id,
        target_id=target_id,
        target_title=target_title,
        container_title=container_title,
        queued_at=_now(),
    )


def new_job(kind: str, entry: QueueEntry) -> Job:
    return Job(
        id=str(uuid.uuid4()),
        kind=kind,
        media_item_id=entry.media_item_id,
        container_id=entry.container_id,
        target_id=entry.target_id,
        target_title=entry.target_title,
        container_title=entry.container_title,
        created_at=_now(),
    )


def with_progress(job: Job, progress: int) -> Job:
    return replace(job, progress_percent=max(0, min(100, int(progress))))


def job_to_dict(job: Job) -> dict:
    """Client-facing shape of a job (running or queued)."""
    return {
        'id': job.id,
        'kind': job.kind,
        'libraryItemId': job.media_item_id,
        'libraryId': job.container_id,
        'episodeId': job.target_id,
        'episodeTitle': job.target_title,
        'podcastTitle': job.container_title,
        'createdAt': job.created_at,
        'status': job.status,
        'progress': job.progress_percent,
    }


def entry_to_dict(entry: QueueEntry) -> dict:
    return {
        'libraryItemId': entry.media_item_id,
        'libraryId': entry.container_id,
        'episodeId': entry.target_id,
        'episodeTitle': entry.target_title,
        'podcastTitle': entry.container_title,
        'status': JobStatus.QUEUED,
        'queuedAt': entry.queued_at,
    }


# ── Operation tokens ──────────────────────────────────────────────────

def make_operation_token(library_item_id: str, episode_id: str,
                         now_ms: int | None = None) -> str:
    """
    Build the marker stored on an episode while a provider call is out.
    Format: whisper-transcription-<epoch ms>-<item id>-<episode id>
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{OPERATION_TOKEN_PREFIX}-{now_ms}-{library_item_id}-{episode_id}"


def operation_token_timestamp(token: str) -> int | None:
    """Creation time (epoch ms) embedded in a token, or None if unparseable."""
    if not token:
        return None
    parts = token.split('-')
    if len(parts) < 3:
        return None
    try:
        return int(parts[2])
    except ValueError:
        return None
