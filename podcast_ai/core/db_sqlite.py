"""
SQLite database layer for the podcast AI pipeline.
Thread-safe via check_same_thread=False + explicit locking.
"""

import json
import sqlite3
import threading
import uuid
import logging
from datetime import datetime, timezone
from typing import Any
from pathlib import Path

from podcast_ai.core.constants import DB_PATH, TaskStatus, SummaryStatus
from podcast_ai.core.models_sqlite import LibraryItem, Episode, EpisodeSummary, Task

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS library_items (
    id TEXT PRIMARY KEY,
    library_id TEXT NOT NULL,
    title TEXT
);

CREATE TABLE IF NOT EXISTS podcast_episodes (
    id TEXT PRIMARY KEY,
    library_item_id TEXT NOT NULL,
    title TEXT,
    audio_file_path TEXT,
    transcript TEXT,
    transcription_operation TEXT,
    created_at TEXT,
    updated_at TEXT,
    FOREIGN KEY (library_item_id) REFERENCES library_items(id)
);

CREATE INDEX IF NOT EXISTS idx_episodes_item ON podcast_episodes(library_item_id);
CREATE INDEX IF NOT EXISTS idx_episodes_operation ON podcast_episodes(transcription_operation);

CREATE TABLE IF NOT EXISTS podcast_episode_summaries (
    id TEXT PRIMARY KEY,
    episode_id TEXT NOT NULL UNIQUE,
    summary TEXT,
    summary_format TEXT NOT NULL DEFAULT 'default',
    status TEXT NOT NULL DEFAULT 'pending',
    error TEXT,
    vector_db_ids TEXT,
    created_at TEXT,
    updated_at TEXT,
    FOREIGN KEY (episode_id) REFERENCES podcast_episodes(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    action TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    data TEXT,
    status TEXT NOT NULL DEFAULT 'RUNNING',
    progress_pct INTEGER DEFAULT 0,
    error_message TEXT,
    created_at TEXT,
    updated_at TEXT,
    finished_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks(created_at DESC);
"""


class Database:
    """SQLite database wrapper for library items, episodes, summaries and tasks."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or DB_PATH
        self._ensure_dirs()
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._migrate()

    def _ensure_dirs(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _migrate(self):
        cur = self.conn.cursor()
        cur.executescript(_CREATE_TABLES)
        # Set schema version
        cur.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (_SCHEMA_VERSION,),
        )
        self.conn.commit()

    def close(self):
        if self.conn:
            self.conn.close()

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    def _execute(self, sql: str, params: tuple | list = ()) -> sqlite3.Cursor:
        with self._lock:
            cur = self.conn.execute(sql, params)
            self.conn.commit()
            return cur

    def _fetchone(self, sql: str, params: tuple | list = ()) -> sqlite3.Row | None:
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    @staticmethod
    def _row_to_episode(row: sqlite3.Row) -> Episode:
        data = dict(row)
        if data.get('transcript') is not None:
            try:
                data['transcript'] = json.loads(data['transcript'])
            except (TypeError, ValueError):
                # Pre-JSON plain text transcript, normalized downstream
                pass
        return Episode(**data)

    # ── Library items ─────────────────────────────────────────────────

    def upsert_library_item(self, item_id: str, library_id: str, title: str = "") -> LibraryItem:
        self._execute(
            """INSERT INTO library_items (id, library_id, title) VALUES (?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET library_id=excluded.library_id,
                                             title=excluded.title""",
            (item_id, library_id, title),
        )
        return LibraryItem(id=item_id, library_id=library_id, title=title)

    def get_library_item(self, item_id: str) -> LibraryItem | None:
        row = self._fetchone("SELECT * FROM library_items WHERE id = ?", (item_id,))
        return LibraryItem(**dict(row)) if row else None

    # ── Episodes ──────────────────────────────────────────────────────

    def create_episode(self, library_item_id: str, title: str = "",
                       audio_file_path: str | None = None,
                       episode_id: str | None = None) -> Episode:
        now = self._now()
        episode = Episode(
            id=episode_id or str(uuid.uuid4()),
            library_item_id=library_item_id,
            title=title,
            audio_file_path=audio_file_path,
            created_at=now,
            updated_at=now,
        )
        self._execute(
            """INSERT INTO podcast_episodes
               (id, library_item_id, title, audio_file_path, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (episode.id, episode.library_item_id, episode.title,
             episode.audio_file_path, episode.created_at, episode.updated_at),
        )
        return episode

    def get_episode(self, episode_id: str) -> Episode | None:
        row = self._fetchone("SELECT * FROM podcast_episodes WHERE id = ?", (episode_id,))
        return self._row_to_episode(row) if row else None

    def get_episodes_for_item(self, library_item_id: str) -> list[Episode]:
        rows = self._fetchall(
            "SELECT * FROM podcast_episodes WHERE library_item_id = ? ORDER BY created_at",
            (library_item_id,),
        )
        return [self._row_to_episode(r) for r in rows]

    def update_episode(self, episode_id: str, **kwargs):
        if 'transcript' in kwargs and kwargs['transcript'] is not None \
                and not isinstance(kwargs['transcript'], str):
            kwargs['transcript'] = json.dumps(kwargs['transcript'])
        kwargs['updated_at'] = self._now()
        sets = ', '.join(f"{k} = ?" for k in kwargs)
        vals = list(kwargs.values()) + [episode_id]
        self._execute(f"UPDATE podcast_episodes SET {sets} WHERE id = ?", vals)

    def set_transcription_operation(self, episode_id: str, token: str | None):
        self.update_episode(episode_id, transcription_operation=token)

    def save_transcript(self, episode_id: str, transcript: Any):
        """Persist a transcript and clear the outstanding operation marker."""
        self.update_episode(episode_id, transcript=transcript,
                            transcription_operation=None)

    def find_episodes_with_transcription_operation(self) -> list[Episode]:
        rows = self._fetchall(
            "SELECT * FROM podcast_episodes WHERE transcription_operation IS NOT NULL"
        )
        return [self._row_to_episode(r) for r in rows]

    # ── Summaries ─────────────────────────────────────────────────────

    def upsert_summary(self, episode_id: str, status: str,
                       summary: str | None = None, error: str | None = None,
                       vector_db_ids: str | None = None,
                       summary_format: str = "default") -> EpisodeSummary:
        """Create or overwrite the single summary record for an episode."""
        now = self._now()
        with self._lock:
            existing = self.conn.execute(
                "SELECT id, created_at FROM podcast_episode_summaries WHERE episode_id = ?",
                (episode_id,),
            ).fetchone()
            summary_id = existing['id'] if existing else str(uuid.uuid4())
            created_at = existing['created_at'] if existing else now
            self.conn.execute(
                """INSERT INTO podcast_episode_summaries
                   (id, episode_id, summary, summary_format, status, error,
                    vector_db_ids, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(episode_id) DO UPDATE SET
                     summary=excluded.summary,
                     summary_format=excluded.summary_format,
                     status=excluded.status,
                     error=excluded.error,
                     vector_db_ids=excluded.vector_db_ids,
                     updated_at=excluded.updated_at""",
                (summary_id, episode_id, summary, summary_format, status, error,
                 vector_db_ids, created_at, now),
            )
            self.conn.commit()
        return EpisodeSummary(
            id=summary_id, episode_id=episode_id, summary=summary,
            summary_format=summary_format, status=status, error=error,
            vector_db_ids=vector_db_ids, created_at=created_at, updated_at=now,
        )

    def get_summary(self, episode_id: str) -> EpisodeSummary | None:
        row = self._fetchone(
            "SELECT * FROM podcast_episode_summaries WHERE episode_id = ?", (episode_id,)
        )
        return EpisodeSummary(**dict(row)) if row else None

    def has_active_summary(self, episode_id: str) -> bool:
        row = self._fetchone(
            "SELECT 1 FROM podcast_episode_summaries WHERE episode_id = ? AND status IN (?, ?) LIMIT 1",
            (episode_id, SummaryStatus.COMPLETED, SummaryStatus.PENDING),
        )
        return row is not None

    def delete_summary(self, episode_id: str):
        self._execute("DELETE FROM podcast_episode_summaries WHERE episode_id = ?", (episode_id,))

    def delete_pending_summaries(self, episode_ids: list[str] | None = None) -> int:
        """Drop pending summary rows (all of them, or only for episode_ids)."""
        sql = "DELETE FROM podcast_episode_summaries WHERE status = ?"
        params: list = [SummaryStatus.PENDING]
        if episode_ids is not None:
            if not episode_ids:
                return 0
            sql += f" AND episode_id IN ({','.join('?' * len(episode_ids))})"
            params.extend(episode_ids)
        return self._execute(sql, params).rowcount

    # ── Tasks (progress sink) ─────────────────────────────────────────

    def create_task(self, action: str, title: str, description: str = "",
                    data: dict | None = None) -> Task:
        now = self._now()
        task = Task(
            id=str(uuid.uuid4()),
            action=action,
            title=title,
            description=description,
            data=json.dumps(data) if data is not None else None,
            created_at=now,
            updated_at=now,
        )
        self._execute(
            """INSERT INTO tasks
               (id, action, title, description, data, status, progress_pct,
                created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (task.id, task.action, task.title, task.description, task.data,
             task.status, task.progress_pct, task.created_at, task.updated_at),
        )
        return task

    def get_task(self, task_id: str) -> Task | None:
        row = self._fetchone("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return Task(**dict(row)) if row else None

    def get_all_tasks(self) -> list[Task]:
        rows = self._fetchall("SELECT * FROM tasks ORDER BY created_at DESC")
        return [Task(**dict(r)) for r in rows]

    def update_task(self, task_id: str, **kwargs):
        kwargs['updated_at'] = self._now()
        sets = ', '.join(f"{k} = ?" for k in kwargs)
        vals = list(kwargs.values()) + [task_id]
        self._execute(f"UPDATE tasks SET {sets} WHERE id = ?", vals)

    def update_task_status(self, task_id: str, status: str,
                           progress_pct: int | None = None, **extra):
        fields = {'status': status}
        if progress_pct is not None:
            fields['progress_pct'] = progress_pct
        if status in (TaskStatus.FINISHED, TaskStatus.FAILED):
            fields['finished_at'] = self._now()
        fields.update(extra)
        self.update_task(task_id, **fields)
