"""
SQLite data models (plain dataclasses) for the podcast AI pipeline.
"""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class LibraryItem:
    id: str
    library_id: str
    title: str = ""


@dataclass
class Episode:
    id: str
    library_item_id: str
    title: str = ""
    audio_file_path: Optional[str] = None
    transcript: Any = None           # JSON: {results, segments} or a legacy shape
    transcription_operation: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class EpisodeSummary:
    id: str                          # UUID
    episode_id: str
    summary: Optional[str] = None
    summary_format: str = "default"
    status: str = "pending"
    error: Optional[str] = None
    vector_db_ids: Optional[str] = None   # comma-joined chunk ids
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def vector_reference_ids(self) -> list[str]:
        if not self.vector_db_ids:
            return []
        return self.vector_db_ids.split(',')


@dataclass
class Task:
    id: str                          # UUID
    action: str
    title: str
    description: str = ""
    data: Optional[str] = None       # JSON
    status: str = "RUNNING"
    progress_pct: int = 0
    error_message: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    finished_at: Optional[str] = None
