"""
PodcastAIService: wires configuration, persistence, provider clients,
the two job queues and the stall reaper together, and exposes the
operations the CLI (or any other front end) calls.
"""

import logging
from typing import Callable, Optional

from podcast_ai.core.config import AppConfig
from podcast_ai.core.constants import (
    SummaryStatus, QA_LLM_TEMPERATURE, QA_MAX_TOKENS,
)
from podcast_ai.core.db_sqlite import Database
from podcast_ai.core.diagnostics import get_diagnostics
from podcast_ai.core.job_models import job_to_dict, entry_to_dict
from podcast_ai.core.job_queue import TranscriptionQueue, SummaryQueue
from podcast_ai.core.llm_openai import OpenAIChatClient
from podcast_ai.core.retry import RetryableCaller
from podcast_ai.core.stall_reaper import StalledJobReaper
from podcast_ai.core.transcribe_whisper import WhisperTranscriber
from podcast_ai.core.transcript_qa import TranscriptQA, Answer
from podcast_ai.core.vector_store import ChromaVectorStore

logger = logging.getLogger(__name__)


class PodcastAIService:
    """Composition root. Collaborators can be injected for tests."""

    def __init__(self, config: AppConfig | None = None, db: Database | None = None,
                 transcriber=None, llm=None, qa_llm=None, vector_store=None,
                 retry_caller: RetryableCaller | None = None,
                 on_event: Optional[Callable[[str, dict], None]] = None):
        self.config = config or AppConfig()
        self.db = db or Database()
        self.on_event = on_event

        api_key = self.config.openai_api_key
        self.transcriber = transcriber or WhisperTranscriber(api_key)
        self.llm = llm or OpenAIChatClient(
            api_key,
            model=self.config.get('openai_model'),
            temperature=self.config.get('openai_temperature'),
        )
        qa_llm = qa_llm or OpenAIChatClient(
            api_key,
            model=self.config.get('openai_model'),
            temperature=QA_LLM_TEMPERATURE,
            max_tokens=QA_MAX_TOKENS,
        )
        self.vector_store = vector_store or ChromaVectorStore.from_config(self.config)
        self.retry_caller = retry_caller or RetryableCaller(
            max_retries=self.config.get('max_retries'),
            initial_delay=self.config.get('retry_delay_sec'),
            multiplier=self.config.get('retry_backoff_multiplier'),
            max_delay=self.config.get('retry_max_delay_sec'),
        )

        self.transcript_qa = TranscriptQA(self.vector_store, qa_llm)
        self.summary_queue = SummaryQueue(self.db, self.config, self.vector_store, self.llm,
                                          on_event=self._dispatch)
        self.transcription_queue = TranscriptionQueue(
            self.db, self.config, self.transcriber, self.retry_caller,
            transcript_qa=self.transcript_qa, summary_queue=self.summary_queue,
            on_event=self._dispatch,
        )
        self.reaper = StalledJobReaper(
            self.db, self.transcription_queue,
            interval_sec=self.config.get('stall_sweep_interval_sec'),
            threshold_sec=self.config.get('stall_threshold_sec'),
        )

    def _dispatch(self, event: str, payload: dict):
        logger.debug("Event %s: %s", event, payload)
        if self.on_event:
            self.on_event(event, payload)

    # ── Lifecycle ─────────────────────────────────────────────────────

    def start(self):
        self.summary_queue.release_stale_pending()
        self.reaper.start()

    def shutdown(self, timeout: float | None = 5.0):
        self.reaper.stop()
        self.transcription_queue.clear()
        self.summary_queue.clear()
        self.transcription_queue.wait_until_idle(timeout)
        self.summary_queue.wait_until_idle(timeout)
        self.db.close()

    # ── Library helpers ───────────────────────────────────────────────

    def _resolve(self, library_item_id: str, episode_id: str):
        return self.db.get_library_item(library_item_id), self.db.get_episode(episode_id)

    # ── Transcription ─────────────────────────────────────────────────

    def transcribe_episode(self, library_item_id: str, episode_id: str) -> str:
        library_item, episode = self._resolve(library_item_id, episode_id)
        return self.transcription_queue.submit(library_item, episode)

    def get_transcription_status(self, library_item_id: str) -> dict:
        current = self.transcription_queue.current_job
        queued = self.transcription_queue.get_entries_for_item(library_item_id)
        return {
            'current': job_to_dict(current)
            if current and current.media_item_id == library_item_id else None,
            'queue': [entry_to_dict(e) for e in queued],
            'failedAttempts': self.transcription_queue.get_failed_attempts(
                e.id for e in self.db.get_episodes_for_item(library_item_id)),
        }

    def get_transcription_queue(self, library_id: str) -> dict:
        return self.transcription_queue.query_queue(library_id)

    def clear_transcription_queue(self, library_id: str | None = None,
                                  library_item_id: str | None = None) -> int:
        return self.transcription_queue.clear(library_id, library_item_id)

    # ── Summaries ─────────────────────────────────────────────────────

    def start_summary_generation(self, library_item_id: str, episode_id: str) -> str:
        """SubmitOutcome, or SummaryStatus.EXISTS when one is already done or pending."""
        library_item, episode = self._resolve(library_item_id, episode_id)
        return self.summary_queue.request(library_item, episode)

    def get_summary_status(self, library_item_id: str, episode_id: str) -> dict:
        current = self.summary_queue.current_job
        position = self.summary_queue.queue_position(episode_id)
        summary = self.db.get_summary(episode_id)
        return {
            'isQueued': position > 0,
            'isCurrentlyProcessing': bool(current and current.target_id == episode_id
                                          and current.media_item_id == library_item_id),
            'queuePosition': position,
            'status': summary.status if summary else SummaryStatus.NOT_FOUND,
            'error': summary.error if summary else None,
        }

    def get_summary(self, episode_id: str) -> dict | None:
        summary = self.db.get_summary(episode_id)
        if not summary:
            return None
        return {
            'episodeId': summary.episode_id,
            'summary': summary.summary,
            'status': summary.status,
            'error': summary.error,
            'vectorDbIds': summary.vector_reference_ids,
            'updatedAt': summary.updated_at,
        }

    def delete_summary(self, episode_id: str) -> bool:
        """Remove the summary and the transcript chunks stored for it."""
        summary = self.db.get_summary(episode_id)
        if not summary:
            return False
        chunk_ids = summary.vector_reference_ids
        if chunk_ids:
            self.vector_store.delete_ids(self.summary_queue.collection_name, chunk_ids)
        self.db.delete_summary(episode_id)
        return True

    # ── Q&A ───────────────────────────────────────────────────────────

    def vectorize_episode(self, library_item_id: str, episode_id: str) -> bool:
        library_item, episode = self._resolve(library_item_id, episode_id)
        if not library_item or not episode:
            logger.warning("Cannot vectorize unknown episode %s", episode_id)
            return False
        return self.transcript_qa.vectorize_episode_transcript(
            episode, library_item.title, library_item.library_id)

    def ask_question(self, question: str, library_ids: list[str]) -> Answer:
        return self.transcript_qa.query(question, library_ids)

    # ── Diagnostics ───────────────────────────────────────────────────

    def diagnostics(self, verify_key: bool = False) -> dict:
        return get_diagnostics(self.config, self.vector_store, verify_key=verify_key)
