"""
Job Queue Managers and Workers.
One queue per job kind; each processes one episode at a time and pulls the
next waiting submission (FIFO) when the current job ends, whatever the
outcome.
"""

import logging
import threading
from dataclasses import replace
from pathlib import Path
from typing import Callable, Optional

from podcast_ai.core.constants import (
    JobKind, SubmitOutcome, QueueEvent, TaskStatus, SummaryStatus, ErrorCode,
    MAX_FILE_SIZE, MIN_SUCCESSFUL_CHUNKS, TEMP_CHUNKS_DIRNAME, SUMMARY_COLLECTION,
    MAX_ERROR_MESSAGE_LEN,
    PROGRESS_START, PROGRESS_SPLIT, PROGRESS_TRANSCRIBE_START, PROGRESS_TRANSCRIBE_END,
    PROGRESS_MERGE, PROGRESS_VECTORIZE, PROGRESS_SUMMARIZE_START, PROGRESS_SUMMARIZE_END,
    PROGRESS_DONE,
)
from podcast_ai.core.db_sqlite import Database
from podcast_ai.core.models_sqlite import LibraryItem, Episode
from podcast_ai.core.job_models import (
    Job, QueueEntry, new_entry, new_job, with_progress, job_to_dict, entry_to_dict,
    make_operation_token,
)
from podcast_ai.core.error_codes import JobError, user_message
from podcast_ai.core.retry import RetryableCaller
from podcast_ai.core.chunking_audio import needs_splitting, split_audio_file
from podcast_ai.core.merge import merge_transcriptions
from podcast_ai.core.cleanup import remove_chunk_file, cleanup_temp_chunks
from podcast_ai.core.transcript_segmenter import process_transcript_into_chunks, chunk_metadata
from podcast_ai.core.summarizer import generate_summary

logger = logging.getLogger(__name__)


class JobQueueManager:
    """
    Single-in-flight queue for one job kind.

    All reads and writes of the current job and the waiting list happen
    under self._lock. Jobs run on a daemon worker thread that loops through
    the waiting list until it is empty.
    """

    kind: str = ""
    task_action: str = ""

    def __init__(self, db: Database, config=None,
                 on_event: Optional[Callable[[str, dict], None]] = None):
        self.db = db
        self.config = config
        self.on_event = on_event

        self._lock = threading.Lock()
        self._current: Optional[Job] = None
        self._queue: list[QueueEntry] = []
        self._idle = threading.Event()
        self._idle.set()

    # ── Subclass hooks ────────────────────────────────────────────────

    def _check_preconditions(self, library_item: LibraryItem | None,
                             episode: Episode | None) -> str | None:
        """Reason the episode cannot be processed, or None."""
        if not library_item or not episode:
            return "Invalid library item or episode provided"
        return None

    def _execute(self, job: Job, library_item: LibraryItem, episode: Episode):
        raise NotImplementedError

    def _on_failure(self, job: Job, error: JobError):
        pass

    def _on_dropped(self, entries: list[QueueEntry]):
        """Waiting entries removed without running (cleared or skipped)."""
        pass

    def _task_strings(self, job: Job) -> tuple[str, str]:
        return self.kind, job.target_title

    # ── Events ────────────────────────────────────────────────────────

    def emit(self, event: str, payload: dict):
        """Fire-and-forget; a failing listener never affects the job."""
        if not self.on_event:
            return
        try:
            self.on_event(event, {'kind': self.kind, **payload})
        except Exception as e:
            logger.warning("%s event listener failed for %s: %s", self.kind, event, e)

    # ── Queue management ──────────────────────────────────────────────

    def submit(self, library_item: LibraryItem | None, episode: Episode | None) -> str:
        """Start the episode now, or queue it behind the running job."""
        reason = self._check_preconditions(library_item, episode)
        if reason:
            logger.warning("[%s] Rejected episode %s: %s", self.kind,
                           getattr(episode, 'id', None), reason)
            return SubmitOutcome.REJECTED

        entry = new_entry(
            media_item_id=library_item.id,
            container_id=library_item.library_id,
            target_id=episode.id,
            target_title=episode.title,
            container_title=library_item.title,
        )

        with self._lock:
            if self._current is not None:
                self._queue.append(entry)
                job = None
            else:
                job = self._start_locked(entry)

        if job is None:
            logger.info("[%s] Queued episode %s (%d waiting)", self.kind, entry.target_id,
                        len(self._queue))
            self.emit(QueueEvent.QUEUED, entry_to_dict(entry))
            return SubmitOutcome.QUEUED

        self._launch(job)
        return SubmitOutcome.STARTED

    def query_queue(self, container_id: str) -> dict:
        """Waiting entries for a library plus the running job if it belongs to it."""
        with self._lock:
            waiting = [entry_to_dict(e) for e in self._queue if e.container_id == container_id]
            current = self._current
        return {
            'queue': waiting,
            'current': job_to_dict(current) if current and current.container_id == container_id else None,
        }

    def get_entries_for_item(self, media_item_id: str) -> list[QueueEntry]:
        with self._lock:
            return [e for e in self._queue if e.media_item_id == media_item_id]

    def queue_position(self, target_id: str) -> int:
        """1-based position in the waiting list, 0 when not waiting."""
        with self._lock:
            for i, entry in enumerate(self._queue):
                if entry.target_id == target_id:
                    return i + 1
        return 0

    @property
    def current_job(self) -> Optional[Job]:
        with self._lock:
            return self._current

    def clear(self, container_id: str | None = None, media_item_id: str | None = None) -> int:
        """
        Remove waiting entries (all, one library, or one library item).
        The running job is never touched.
        """
        with self._lock:
            dropped = [
                e for e in self._queue
                if (container_id is None or e.container_id == container_id)
                and (media_item_id is None or e.media_item_id == media_item_id)
            ]
            self._queue = [e for e in self._queue if e not in dropped]
            removed = len(dropped)

        if dropped:
            self._on_dropped(dropped)

        logger.info("[%s] Cleared %d queued jobs (library=%s, item=%s)",
                    self.kind, removed, container_id or 'all', media_item_id or 'all')
        self.emit(QueueEvent.CLEARED, {
            'libraryId': container_id,
            'libraryItemId': media_item_id,
            'removed': removed,
        })
        return removed

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        return self._idle.wait(timeout)

    # ── State transitions (caller holds self._lock) ───────────────────

    def _start_locked(self, entry: QueueEntry) -> Job:
        job = new_job(self.kind, entry)
        self._current = job
        self._idle.clear()
        return job

    def _advance_locked(self) -> Optional[Job]:
        """Pop waiting entries until one is still runnable; go idle otherwise."""
        self._current = None
        while self._queue:
            entry = self._queue.pop(0)
            if self._entry_runnable(entry):
                return self._start_locked(entry)
        self._idle.set()
        return None

    def _entry_runnable(self, entry: QueueEntry) -> bool:
        item = self.db.get_library_item(entry.media_item_id)
        episode = self.db.get_episode(entry.target_id)
        reason = self._check_preconditions(item, episode)
        if reason:
            logger.error("[%s] Skipping queued episode %s: %s", self.kind, entry.target_id, reason)
            self._on_dropped([entry])
            return False
        return True

    def _set_current(self, job: Job) -> bool:
        """Replace the running job record; False if job is no longer running."""
        with self._lock:
            if self._current is not None and self._current.id == job.id:
                self._current = job
                return True
        return False

    def _is_current(self, job: Job) -> bool:
        with self._lock:
            return self._current is not None and self._current.id == job.id

    # ── Worker ────────────────────────────────────────────────────────

    def _launch(self, job: Job):
        self.emit(QueueEvent.STARTED, job_to_dict(job))
        thread = threading.Thread(target=self._worker_loop, args=(job,),
                                  name=f"{self.kind}-worker", daemon=True)
        thread.start()

    def _worker_loop(self, job: Job):
        """Run jobs back to back until the waiting list is empty."""
        while job is not None:
            try:
                self._run_job(job)
            except Exception as e:
                # Bookkeeping failed (database); the queue must still move on
                logger.error("[%s] Worker error on job %s: %s", self.kind, job.id, e,
                             exc_info=True)

            with self._lock:
                if self._current is None or self._current.id != job.id:
                    # Reaped while running; the reaper already moved the queue on
                    logger.warning("[%s] Job %s finished after being reset", self.kind, job.id)
                    return
                job = self._advance_locked()

            if job is not None:
                self.emit(QueueEvent.STARTED, job_to_dict(job))

    def _run_job(self, job: Job):
        """Process a single job; never raises."""
        title, description = self._task_strings(job)
        task = self.db.create_task(
            self.task_action, title, description,
            data={'libraryId': job.container_id,
                  'libraryItemId': job.media_item_id,
                  'episodeId': job.target_id},
        )
        job = replace(job, task_id=task.id)
        self._set_current(job)

        try:
            library_item = self.db.get_library_item(job.media_item_id)
            episode = self.db.get_episode(job.target_id)
            reason = self._check_preconditions(library_item, episode)
            if reason:
                raise JobError(ErrorCode.PRECONDITION, reason)
            self._execute(job, library_item, episode)

        except JobError as e:
            self._handle_job_error(job, e)
        except Exception as e:
            logger.error("Unexpected error processing %s job %s: %s", self.kind, job.id, e,
                         exc_info=True)
            self._handle_job_error(job, JobError(ErrorCode.UNEXPECTED, str(e)))

    def _update_progress(self, job: Job, progress: int):
        """Update the task sink and the in-memory job record."""
        job = with_progress(job, progress)
        if self._set_current(job) and job.task_id:
            self.db.update_task_status(job.task_id, TaskStatus.RUNNING,
                                       progress_pct=job.progress_percent)
        return job

    def _finish_task(self, job: Job):
        if job.task_id:
            self.db.update_task_status(job.task_id, TaskStatus.FINISHED, progress_pct=PROGRESS_DONE)

    def _fail_task(self, job: Job, message: str):
        if job.task_id:
            self.db.update_task_status(job.task_id, TaskStatus.FAILED,
                                       error_message=message[:MAX_ERROR_MESSAGE_LEN])

    def _handle_job_error(self, job: Job, error: JobError):
        """Record a failed job. The worker loop advances the queue afterwards."""
        if not self._is_current(job):
            logger.warning("[%s] Ignoring failure of reset job %s: %s", self.kind, job.id, error)
            return
        logger.error("[%s] Job %s for episode %s failed: %s",
                     self.kind, job.id, job.target_id, error)
        try:
            self._on_failure(job, error)
        except Exception as e:
            logger.error("[%s] Error recording failure for episode %s: %s",
                         self.kind, job.target_id, e, exc_info=True)

        self._fail_task(job, error.user_message)
        self.emit(QueueEvent.ERROR, {
            'libraryItemId': job.media_item_id,
            'libraryId': job.container_id,
            'episodeId': job.target_id,
            'error': error.user_message,
        })


class TranscriptionQueue(JobQueueManager):
    """Speech-to-text jobs: split if needed, transcribe with retry, merge, save."""

    kind = JobKind.TRANSCRIPTION
    task_action = "transcribe-episode"

    def __init__(self, db: Database, config, transcriber,
                 retry_caller: RetryableCaller | None = None,
                 transcript_qa=None, summary_queue: "SummaryQueue | None" = None,
                 on_event: Optional[Callable[[str, dict], None]] = None,
                 max_file_size: int = MAX_FILE_SIZE):
        super().__init__(db, config, on_event)
        self.transcriber = transcriber
        self.retry = retry_caller or RetryableCaller()
        self.transcript_qa = transcript_qa
        self.summary_queue = summary_queue
        self.max_file_size = max_file_size
        self.failed_attempts: dict[str, int] = {}

    def _task_strings(self, job: Job) -> tuple[str, str]:
        return "Transcribing episode", f'Transcribing episode "{job.target_title}"'

    def _check_preconditions(self, library_item, episode) -> str | None:
        if not self.config.transcriptions_enabled:
            return "Transcriptions are disabled in server settings"
        reason = super()._check_preconditions(library_item, episode)
        if reason:
            return reason
        if not episode.audio_file_path:
            return f'Episode "{episode.id}" has no valid audio file'
        if not Path(episode.audio_file_path).exists():
            return f"Audio file does not exist at path: {episode.audio_file_path}"
        return None

    # ── Pipeline ──────────────────────────────────────────────────────

    def _execute(self, job: Job, library_item: LibraryItem, episode: Episode):
        audio_path = Path(episode.audio_file_path)

        # Marker for the stall reaper, set before any provider call
        token = make_operation_token(library_item.id, episode.id)
        self.db.set_transcription_operation(episode.id, token)
        job = replace(job, operation_token=token)
        self._set_current(job)
        job = self._update_progress(job, PROGRESS_START)

        size_mb = round(audio_path.stat().st_size / (1024 * 1024))
        if not needs_splitting(audio_path, self.max_file_size):
            logger.info("Audio file size (%dMB) is within the upload limit, processing directly.",
                        size_mb)
            job = self._update_progress(job, PROGRESS_TRANSCRIBE_START)
            transcript = self.retry.call(self.transcriber.transcribe, audio_path,
                                         label=f"transcription of {audio_path.name}")
            if transcript is None:
                raise JobError(ErrorCode.TRANSCRIBE_FAILED,
                               "Failed to get transcript after multiple attempts")
        else:
            logger.info("Audio file size (%dMB) exceeds the upload limit, splitting into chunks.",
                        size_mb)
            transcript = self._transcribe_in_chunks(job, audio_path)

        job = self._update_progress(job, PROGRESS_MERGE)
        self._save_transcription(job, library_item, episode, transcript)

    def _transcribe_in_chunks(self, job: Job, audio_path: Path) -> dict:
        temp_dir = audio_path.parent / f"{TEMP_CHUNKS_DIRNAME}_{job.id[:8]}"
        try:
            job = self._update_progress(job, PROGRESS_SPLIT)
            chunk_files = split_audio_file(audio_path, temp_dir, self.max_file_size)

            transcriptions = []
            failed_chunks = 0
            total = len(chunk_files)
            progress_range = PROGRESS_TRANSCRIBE_END - PROGRESS_TRANSCRIBE_START

            for i, chunk_path in enumerate(chunk_files):
                logger.info("Transcribing chunk %d/%d", i + 1, total)
                job = self._update_progress(
                    job, PROGRESS_TRANSCRIBE_START + int((i / total) * progress_range))
                try:
                    result = self.retry.call(self.transcriber.transcribe, chunk_path,
                                             label=f"chunk {i + 1}/{total}")
                finally:
                    remove_chunk_file(chunk_path)

                if result is None:
                    failed_chunks += 1
                    logger.error("Failed to transcribe chunk %d after retries", i + 1)
                else:
                    transcriptions.append(result)

            if len(transcriptions) < MIN_SUCCESSFUL_CHUNKS:
                raise JobError(ErrorCode.ALL_CHUNKS_FAILED,
                               f"All {total} chunks failed to transcribe")
            if failed_chunks:
                logger.warning("%d of %d chunks failed to transcribe", failed_chunks, total)

            return merge_transcriptions(transcriptions)
        finally:
            cleanup_temp_chunks(temp_dir)

    def _save_transcription(self, job: Job, library_item: LibraryItem,
                            episode: Episode, transcript: dict):
        if not self._is_current(job):
            logger.warning("Discarding late transcript for reset episode %s", episode.id)
            return
        self.db.save_transcript(episode.id, transcript)
        with self._lock:
            self.failed_attempts.pop(episode.id, None)
        episode = self.db.get_episode(episode.id) or replace(
            episode, transcript=transcript, transcription_operation=None)

        self.emit(QueueEvent.ITEM_UPDATED, {
            'libraryItemId': library_item.id,
            'libraryId': library_item.library_id,
            'episodeId': episode.id,
        })
        self._finish_task(job)
        self.emit(QueueEvent.FINISHED, job_to_dict(with_progress(job, PROGRESS_DONE)))

        self._run_downstream(library_item, episode)

    def _run_downstream(self, library_item: LibraryItem, episode: Episode):
        """Optional follow-ups; their failures never fail the transcription."""
        if self.config.auto_vectorize_after_transcription and self.transcript_qa:
            try:
                logger.info('Auto-vectorization enabled. Vectorizing transcript for episode "%s"',
                            episode.title)
                if not self.transcript_qa.vectorize_episode_transcript(
                        episode, library_item.title, library_item.library_id):
                    logger.warning("Auto-vectorization did not complete for episode %s", episode.id)
            except Exception as e:
                logger.error("Error vectorizing transcript: %s", e)

        if self.config.auto_summarize_after_transcription and self.summary_queue:
            try:
                logger.info('Auto-summarization enabled. Generating summary for episode "%s"',
                            episode.title)
                self.summary_queue.request(library_item, episode)
            except Exception as e:
                logger.error("Error generating summary: %s", e)

    def _record_failed_attempt_locked(self, episode_id: str):
        self.failed_attempts[episode_id] = self.failed_attempts.get(episode_id, 0) + 1

    def get_failed_attempts(self, episode_ids) -> dict[str, int]:
        with self._lock:
            return {e: self.failed_attempts[e] for e in episode_ids if e in self.failed_attempts}

    def _on_failure(self, job: Job, error: JobError):
        with self._lock:
            self._record_failed_attempt_locked(job.target_id)
        # Remove the in-progress marker
        self.db.set_transcription_operation(job.target_id, None)

    # ── Stall recovery ────────────────────────────────────────────────

    def handle_stalled_operation(self, episode: Episode) -> bool:
        """
        Called by the reaper after it cleared a stale marker. Reports the
        failure and, if the episode is the running job, frees the queue.
        Returns True when the running job was reset.
        """
        error = JobError(ErrorCode.STALLED, "Transcription operation timed out")
        self.emit(QueueEvent.ERROR, {
            'libraryItemId': episode.library_item_id,
            'episodeId': episode.id,
            'error': error.user_message,
        })

        with self._lock:
            stalled = self._current
            if stalled is None or stalled.target_id != episode.id:
                return False
            logger.warning("Clearing stalled current transcription for episode %s", episode.id)
            next_job = self._advance_locked()
            self._record_failed_attempt_locked(episode.id)

        self._fail_task(stalled, error.user_message)
        if next_job is not None:
            self._launch(next_job)
        return True


class SummaryQueue(JobQueueManager):
    """Summaries: store transcript chunks as vectors, then refine-summarize them."""

    kind = JobKind.SUMMARY
    task_action = "summarize-episode"

    def __init__(self, db: Database, config, vector_store, llm,
                 on_event: Optional[Callable[[str, dict], None]] = None,
                 collection_name: str = SUMMARY_COLLECTION):
        super().__init__(db, config, on_event)
        self.vector_store = vector_store
        self.llm = llm
        self.collection_name = collection_name

    def _task_strings(self, job: Job) -> tuple[str, str]:
        return ("Processing episode transcript and generating summary",
                f'Processing transcript and generating summary for episode "{job.target_title}"')

    def _check_preconditions(self, library_item, episode) -> str | None:
        reason = super()._check_preconditions(library_item, episode)
        if reason:
            return reason
        if not episode.transcript:
            return "Episode transcript is required for summary generation"
        return None

    def request(self, library_item: LibraryItem | None, episode: Episode | None) -> str:
        """
        Entry point for summary requests. Returns SummaryStatus.EXISTS when the
        episode already has a completed or pending summary, otherwise the
        SubmitOutcome. Accepted requests read as pending until the job ends.
        """
        if episode is not None and self.db.has_active_summary(episode.id):
            logger.info("Summary already exists for episode %s", episode.id)
            return SummaryStatus.EXISTS

        reason = self._check_preconditions(library_item, episode)
        if reason:
            logger.warning("[%s] Rejected episode %s: %s", self.kind,
                           getattr(episode, 'id', None), reason)
            return SubmitOutcome.REJECTED

        previous = self.db.get_summary(episode.id)
        # Written before submit so a fast-failing job cannot be overwritten
        self.db.upsert_summary(episode.id, SummaryStatus.PENDING)
        outcome = self.submit(library_item, episode)
        if outcome == SubmitOutcome.REJECTED:
            if previous:
                self.db.upsert_summary(episode.id, previous.status, summary=previous.summary,
                                       error=previous.error,
                                       vector_db_ids=previous.vector_db_ids,
                                       summary_format=previous.summary_format)
            else:
                self.db.delete_summary(episode.id)
        return outcome

    def release_stale_pending(self) -> int:
        """Drop pending rows left by a previous run; call before any request."""
        removed = self.db.delete_pending_summaries()
        if removed:
            logger.info("Removed %d pending summaries left from a previous run", removed)
        return removed

    def _on_dropped(self, entries: list[QueueEntry]):
        episode_ids = [e.target_id for e in entries]
        try:
            self.db.delete_pending_summaries(episode_ids)
        except Exception as e:
            logger.error("Failed to reset pending summaries for %s: %s", episode_ids, e,
                         exc_info=True)

    def _execute(self, job: Job, library_item: LibraryItem, episode: Episode):
        chunks = process_transcript_into_chunks(episode.transcript)
        if not chunks:
            raise JobError(ErrorCode.TRANSCRIPT_MISSING, "Episode transcript has no text")

        job = self._update_progress(job, PROGRESS_VECTORIZE)
        chunk_ids = [f"{episode.id}_chunk_{c.chunk_index}" for c in chunks]
        items = []
        for chunk_id, chunk in zip(chunk_ids, chunks):
            metadata = chunk_metadata(chunk)
            metadata.update({
                'episodeId': episode.id,
                'podcastId': library_item.id,
                'type': 'transcript',
            })
            items.append({'id': chunk_id, 'text': chunk.text, 'metadata': metadata})
        self.vector_store.upsert(self.collection_name, items)

        job = self._update_progress(job, PROGRESS_SUMMARIZE_START)
        progress_range = PROGRESS_SUMMARIZE_END - PROGRESS_SUMMARIZE_START

        def on_step(done: int, total: int):
            self._update_progress(job, PROGRESS_SUMMARIZE_START + int(done / total * progress_range))

        summary = generate_summary(self.llm, chunks, on_step=on_step)

        # Summary text lives in the database, not in the vector store
        self.db.upsert_summary(
            episode.id, SummaryStatus.COMPLETED,
            summary=summary, vector_db_ids=','.join(chunk_ids),
        )
        self._finish_task(job)
        self.emit(QueueEvent.FINISHED, job_to_dict(with_progress(job, PROGRESS_DONE)))

    def _on_failure(self, job: Job, error: JobError):
        self.db.upsert_summary(job.target_id, SummaryStatus.ERROR,
                               error=user_message(error.code))
