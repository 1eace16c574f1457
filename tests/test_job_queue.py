#!/usr/bin/env python3
"""
Tests for the transcription and summary job queues, the stall reaper and
the service layer. Providers and the vector store are replaced by fakes;
ffmpeg splitting is patched out.
"""

import sys
import json
import tempfile
import threading
from pathlib import Path
from unittest import mock

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

from podcast_ai.core.config import AppConfig
from podcast_ai.core.constants import (
    SubmitOutcome, QueueEvent, TaskStatus, SummaryStatus, ErrorCode,
)
from podcast_ai.core.db_sqlite import Database
from podcast_ai.core.error_codes import JobError, user_message
from podcast_ai.core.job_models import make_operation_token
from podcast_ai.core.job_queue import TranscriptionQueue, SummaryQueue
from podcast_ai.core.retry import RetryableCaller
from podcast_ai.core.stall_reaper import StalledJobReaper
from podcast_ai.core.transcript_qa import TranscriptQA
from podcast_ai.service import PodcastAIService

WAIT = 10


def _transcript(text, end=5.0):
    return {"segments": [{"text": text, "start": 0.0, "end": end}],
            "results": [{"transcript": text, "words": []}]}


class FakeTranscriber:
    """Transcribes instantly unless the file name is gated or set to fail."""

    def __init__(self, gated=(), failing=()):
        self.gated = set(gated)
        self.failing = set(failing)
        self.gate = threading.Event()
        self.entered = threading.Event()
        self.calls = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def transcribe(self, audio_path):
        with self._lock:
            self.calls.append(audio_path.name)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if audio_path.stem in self.gated:
                self.entered.set()
                self.gate.wait(WAIT)
            if audio_path.stem in self.failing:
                raise JobError(ErrorCode.TRANSCRIBE_FAILED, "provider said no")
            return _transcript(f"Transcript of {audio_path.stem}.")
        finally:
            with self._lock:
                self.active -= 1


class FakeLLM:
    def __init__(self, fail=False, gated=False):
        self.fail = fail
        self.gated = gated
        self.gate = threading.Event()
        self.entered = threading.Event()
        self.prompts = []

    def complete(self, prompt):
        self.prompts.append(prompt)
        if self.gated:
            self.entered.set()
            self.gate.wait(WAIT)
        if self.fail:
            raise JobError(ErrorCode.LLM_FAILED, "OpenAI returned 500: internal")
        return f"summary {len(self.prompts)}"


class FakeVectorStore:
    def __init__(self):
        self.upserts = []
        self.deletes = []
        self.deleted_ids = []

    def upsert(self, collection_name, items):
        self.upserts.append((collection_name, items))

    def delete_where(self, collection_name, where):
        self.deletes.append((collection_name, where))

    def delete_ids(self, collection_name, ids):
        self.deleted_ids.append((collection_name, list(ids)))

    def query(self, collection_name, text, where=None, top_k=3):
        return []

    def heartbeat(self):
        return True


def _join_workers(timeout=WAIT):
    for thread in threading.enumerate():
        if thread.name.endswith("-worker"):
            thread.join(timeout)


class QueueTestCase(unittest.TestCase):
    """Shared fixture: temp database, config and three episodes on disk."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self.db = Database(self.root / "test.db")
        self.config = AppConfig(self.root / "config.json", environ={})
        self.events = []
        self.item = self.db.upsert_library_item("item1", "lib1", "My Podcast")
        self.episodes = [self._episode(f"ep{i}") for i in (1, 2, 3)]

    def tearDown(self):
        _join_workers()
        self.db.close()
        self.tmp.cleanup()

    def _episode(self, name, size=64):
        audio = self.root / f"{name}.mp3"
        audio.write_bytes(b"\0" * size)
        return self.db.create_episode("item1", name.upper(), str(audio), episode_id=name)

    def _on_event(self, event, payload):
        self.events.append((event, payload))

    def _event_names(self, episode_id=None):
        return [e for e, p in self.events
                if episode_id is None or p.get('episodeId') == episode_id]

    def _transcription_queue(self, transcriber, **kwargs):
        return TranscriptionQueue(
            self.db, self.config, transcriber,
            RetryableCaller(max_retries=1, sleep=lambda s: None),
            on_event=self._on_event, **kwargs,
        )


class TestTranscriptionQueue(QueueTestCase):

    def test_single_episode_success(self):
        queue = self._transcription_queue(FakeTranscriber())
        self.assertEqual(queue.submit(self.item, self.episodes[0]), SubmitOutcome.STARTED)
        self.assertTrue(queue.wait_until_idle(WAIT))

        episode = self.db.get_episode("ep1")
        self.assertEqual(episode.transcript["segments"][0]["text"], "Transcript of ep1.")
        self.assertIsNone(episode.transcription_operation)

        task = self.db.get_all_tasks()[0]
        self.assertEqual(task.status, TaskStatus.FINISHED)
        self.assertEqual(task.progress_pct, 100)
        self.assertEqual(self._event_names("ep1"), [
            QueueEvent.STARTED, QueueEvent.ITEM_UPDATED, QueueEvent.FINISHED,
        ])
        self.assertIsNone(queue.current_job)

    def test_jobs_run_one_at_a_time_in_fifo_order(self):
        transcriber = FakeTranscriber(gated={"ep1"})
        queue = self._transcription_queue(transcriber)

        self.assertEqual(queue.submit(self.item, self.episodes[0]), SubmitOutcome.STARTED)
        self.assertEqual(queue.submit(self.item, self.episodes[1]), SubmitOutcome.QUEUED)
        self.assertEqual(queue.submit(self.item, self.episodes[2]), SubmitOutcome.QUEUED)

        snapshot = queue.query_queue("lib1")
        self.assertEqual(snapshot["current"]["episodeId"], "ep1")
        self.assertEqual([e["episodeId"] for e in snapshot["queue"]], ["ep2", "ep3"])
        self.assertEqual(queue.query_queue("other-lib"), {"queue": [], "current": None})
        self.assertEqual(queue.queue_position("ep3"), 2)

        transcriber.gate.set()
        self.assertTrue(queue.wait_until_idle(WAIT))

        self.assertEqual(transcriber.calls, ["ep1.mp3", "ep2.mp3", "ep3.mp3"])
        self.assertEqual(transcriber.max_active, 1)
        started = [p["episodeId"] for e, p in self.events if e == QueueEvent.STARTED]
        self.assertEqual(started, ["ep1", "ep2", "ep3"])

    def test_clear_removes_waiting_entries_only(self):
        transcriber = FakeTranscriber(gated={"ep1"})
        queue = self._transcription_queue(transcriber)
        queue.submit(self.item, self.episodes[0])
        queue.submit(self.item, self.episodes[1])
        queue.submit(self.item, self.episodes[2])

        self.assertEqual(queue.clear("lib1"), 2)
        self.assertEqual(queue.current_job.target_id, "ep1")
        transcriber.gate.set()
        self.assertTrue(queue.wait_until_idle(WAIT))

        self.assertEqual(transcriber.calls, ["ep1.mp3"])
        cleared = [p for e, p in self.events if e == QueueEvent.CLEARED]
        self.assertEqual(cleared[0]["libraryId"], "lib1")
        self.assertEqual(cleared[0]["removed"], 2)

    def test_clear_by_library_item(self):
        self.db.upsert_library_item("item2", "lib1", "Other Podcast")
        other = self.db.create_episode("item2", "OTHER", str(self.root / "ep1.mp3"),
                                       episode_id="other")
        transcriber = FakeTranscriber(gated={"ep1"})
        queue = self._transcription_queue(transcriber)
        queue.submit(self.item, self.episodes[0])
        queue.submit(self.item, self.episodes[1])
        queue.submit(self.db.get_library_item("item2"), other)

        self.assertEqual(queue.clear(media_item_id="item1"), 1)
        self.assertEqual([e.target_id for e in queue.get_entries_for_item("item2")], ["other"])
        transcriber.gate.set()
        self.assertTrue(queue.wait_until_idle(WAIT))

    def test_preconditions_reject_without_side_effects(self):
        queue = self._transcription_queue(FakeTranscriber())
        missing = self.db.create_episode("item1", "Missing", str(self.root / "nope.mp3"))
        no_audio = self.db.create_episode("item1", "No audio")

        self.assertEqual(queue.submit(self.item, missing), SubmitOutcome.REJECTED)
        self.assertEqual(queue.submit(self.item, no_audio), SubmitOutcome.REJECTED)
        self.assertEqual(queue.submit(None, self.episodes[0]), SubmitOutcome.REJECTED)

        self.config.transcriptions_enabled = False
        self.assertEqual(queue.submit(self.item, self.episodes[0]), SubmitOutcome.REJECTED)

        self.assertEqual(self.db.get_all_tasks(), [])
        self.assertEqual(self.events, [])
        self.assertIsNone(queue.current_job)

    def test_failure_is_recorded_and_queue_advances(self):
        transcriber = FakeTranscriber(gated={"ep1"}, failing={"ep1"})
        queue = self._transcription_queue(transcriber)
        queue.submit(self.item, self.episodes[0])
        queue.submit(self.item, self.episodes[1])
        transcriber.gate.set()
        self.assertTrue(queue.wait_until_idle(WAIT))

        failed = self.db.get_episode("ep1")
        self.assertIsNone(failed.transcript)
        self.assertIsNone(failed.transcription_operation)
        self.assertEqual(queue.failed_attempts, {"ep1": 1})
        self.assertIsNotNone(self.db.get_episode("ep2").transcript)

        errors = [p for e, p in self.events if e == QueueEvent.ERROR]
        self.assertEqual(len(errors), 1)
        self.assertEqual(errors[0]["error"], user_message(ErrorCode.TRANSCRIBE_FAILED))
        self.assertNotIn("provider said no", errors[0]["error"])

        statuses = {json.loads(t.data)["episodeId"]: t.status for t in self.db.get_all_tasks()}
        self.assertEqual(statuses, {"ep1": TaskStatus.FAILED, "ep2": TaskStatus.FINISHED})

    def test_success_clears_failed_attempts(self):
        queue = self._transcription_queue(FakeTranscriber())
        queue.failed_attempts["ep1"] = 2
        queue.submit(self.item, self.episodes[0])
        self.assertTrue(queue.wait_until_idle(WAIT))
        self.assertEqual(queue.failed_attempts, {})

    def test_dequeued_entry_rechecked(self):
        transcriber = FakeTranscriber(gated={"ep1"})
        queue = self._transcription_queue(transcriber)
        queue.submit(self.item, self.episodes[0])
        queue.submit(self.item, self.episodes[1])
        queue.submit(self.item, self.episodes[2])

        Path(self.episodes[1].audio_file_path).unlink()
        transcriber.gate.set()
        self.assertTrue(queue.wait_until_idle(WAIT))
        self.assertEqual(transcriber.calls, ["ep1.mp3", "ep3.mp3"])

    def test_listener_failure_does_not_break_job(self):
        def broken_listener(event, payload):
            raise RuntimeError("listener down")

        queue = TranscriptionQueue(self.db, self.config, FakeTranscriber(),
                                   RetryableCaller(sleep=lambda s: None),
                                   on_event=broken_listener)
        queue.submit(self.item, self.episodes[0])
        self.assertTrue(queue.wait_until_idle(WAIT))
        self.assertIsNotNone(self.db.get_episode("ep1").transcript)


class TestChunkedTranscription(QueueTestCase):

    def _fake_split(self, count):
        def split(audio_path, output_dir, max_size):
            output_dir.mkdir(parents=True, exist_ok=True)
            paths = []
            for i in range(count):
                path = output_dir / f"part{i}_{i:03d}.mp3"
                path.write_bytes(b"\0")
                paths.append(path)
            return paths
        return split

    def _chunk_dirs(self):
        return [p for p in self.root.iterdir() if p.name.startswith(".temp_chunks")]

    def test_partial_chunk_failure_still_succeeds(self):
        transcriber = FakeTranscriber(failing={"part1_001"})
        queue = self._transcription_queue(transcriber, max_file_size=10)
        with mock.patch("podcast_ai.core.job_queue.split_audio_file", side_effect=self._fake_split(3)):
            queue.submit(self.item, self.episodes[0])
            self.assertTrue(queue.wait_until_idle(WAIT))

        transcript = self.db.get_episode("ep1").transcript
        texts = [s["text"] for s in transcript["segments"]]
        self.assertEqual(texts, ["Transcript of part0_000.", "Transcript of part2_002."])
        self.assertEqual([s["start"] for s in transcript["segments"]], [0.0, 5.0])
        self.assertEqual(self._chunk_dirs(), [])

    def test_all_chunks_failing_fails_job(self):
        transcriber = FakeTranscriber(failing={"part0_000", "part1_001"})
        queue = self._transcription_queue(transcriber, max_file_size=10)
        with mock.patch("podcast_ai.core.job_queue.split_audio_file", side_effect=self._fake_split(2)):
            queue.submit(self.item, self.episodes[0])
            self.assertTrue(queue.wait_until_idle(WAIT))

        self.assertIsNone(self.db.get_episode("ep1").transcript)
        self.assertEqual(self.db.get_all_tasks()[0].error_message,
                         user_message(ErrorCode.ALL_CHUNKS_FAILED))
        self.assertEqual(self._chunk_dirs(), [])

    def test_split_failure_fails_job(self):
        queue = self._transcription_queue(FakeTranscriber(), max_file_size=10)
        with mock.patch("podcast_ai.core.job_queue.split_audio_file",
                        side_effect=JobError(ErrorCode.CHUNKING, "ffmpeg exploded")):
            queue.submit(self.item, self.episodes[0])
            self.assertTrue(queue.wait_until_idle(WAIT))

        task = self.db.get_all_tasks()[0]
        self.assertEqual(task.status, TaskStatus.FAILED)
        self.assertEqual(task.error_message, user_message(ErrorCode.CHUNKING))


class TestAutoChain(QueueTestCase):

    def test_transcription_triggers_vectorize_and_summary(self):
        self.config.set("auto_vectorize_after_transcription", True)
        self.config.set("auto_summarize_after_transcription", True)
        store = FakeVectorStore()
        summaries = SummaryQueue(self.db, self.config, store, FakeLLM(), on_event=self._on_event)
        queue = self._transcription_queue(
            FakeTranscriber(), transcript_qa=TranscriptQA(store, FakeLLM()),
            summary_queue=summaries)

        queue.submit(self.item, self.episodes[0])
        self.assertTrue(queue.wait_until_idle(WAIT))
        self.assertTrue(summaries.wait_until_idle(WAIT))

        collections = [c for c, _ in store.upserts]
        self.assertIn("podcast_transcripts", collections)
        self.assertIn("podcast_episodes", collections)
        self.assertEqual(self.db.get_summary("ep1").status, SummaryStatus.COMPLETED)

    def test_downstream_failure_does_not_fail_transcription(self):
        self.config.set("auto_summarize_after_transcription", True)
        broken = mock.Mock()
        broken.request.side_effect = RuntimeError("summary queue down")
        queue = self._transcription_queue(FakeTranscriber(), summary_queue=broken)

        queue.submit(self.item, self.episodes[0])
        self.assertTrue(queue.wait_until_idle(WAIT))
        self.assertEqual(self.db.get_all_tasks()[0].status, TaskStatus.FINISHED)
        broken.request.assert_called_once()

    def test_auto_summary_keeps_completed_summary(self):
        self.config.set("auto_summarize_after_transcription", True)
        self.db.upsert_summary("ep1", SummaryStatus.COMPLETED, summary="earlier summary")
        llm = FakeLLM()
        summaries = SummaryQueue(self.db, self.config, FakeVectorStore(), llm)
        queue = self._transcription_queue(FakeTranscriber(), summary_queue=summaries)

        queue.submit(self.item, self.episodes[0])
        self.assertTrue(queue.wait_until_idle(WAIT))
        self.assertTrue(summaries.wait_until_idle(WAIT))

        self.assertEqual(llm.prompts, [])
        self.assertEqual(self.db.get_summary("ep1").summary, "earlier summary")


class TestSummaryQueue(QueueTestCase):

    def setUp(self):
        super().setUp()
        self.db.save_transcript("ep1", _transcript("First point. Second point."))
        self.db.save_transcript("ep2", _transcript("Another episode entirely."))
        self.episodes = [self.db.get_episode(e.id) for e in self.episodes]

    def test_summary_success(self):
        store = FakeVectorStore()
        queue = SummaryQueue(self.db, self.config, store, FakeLLM(), on_event=self._on_event)
        self.assertEqual(queue.submit(self.item, self.episodes[0]), SubmitOutcome.STARTED)
        self.assertTrue(queue.wait_until_idle(WAIT))

        collection, items = store.upserts[0]
        self.assertEqual(collection, "podcast_episodes")
        self.assertEqual([i["id"] for i in items], ["ep1_chunk_0"])
        self.assertEqual(items[0]["metadata"]["podcastId"], "item1")

        summary = self.db.get_summary("ep1")
        self.assertEqual(summary.status, SummaryStatus.COMPLETED)
        self.assertEqual(summary.summary, "summary 1")
        self.assertEqual(summary.vector_reference_ids, ["ep1_chunk_0"])
        self.assertEqual(self._event_names("ep1"), [QueueEvent.STARTED, QueueEvent.FINISHED])

    def test_summary_error_recorded_and_queue_advances(self):
        queue = SummaryQueue(self.db, self.config, FakeVectorStore(), FakeLLM(fail=True),
                             on_event=self._on_event)
        queue.submit(self.item, self.episodes[0])
        queue.submit(self.item, self.episodes[1])
        self.assertTrue(queue.wait_until_idle(WAIT))

        for episode_id in ("ep1", "ep2"):
            summary = self.db.get_summary(episode_id)
            self.assertEqual(summary.status, SummaryStatus.ERROR)
            self.assertEqual(summary.error, user_message(ErrorCode.LLM_FAILED))
            self.assertNotIn("500", summary.error)

    def test_vector_store_failure(self):
        store = FakeVectorStore()
        store.upsert = mock.Mock(side_effect=JobError(ErrorCode.VECTOR_STORE, "down"))
        llm = FakeLLM()
        queue = SummaryQueue(self.db, self.config, store, llm)
        queue.submit(self.item, self.episodes[0])
        self.assertTrue(queue.wait_until_idle(WAIT))

        self.assertEqual(self.db.get_summary("ep1").status, SummaryStatus.ERROR)
        self.assertEqual(llm.prompts, [])

    def test_missing_transcript_rejected(self):
        queue = SummaryQueue(self.db, self.config, FakeVectorStore(), FakeLLM())
        self.assertEqual(queue.submit(self.item, self.db.get_episode("ep3")),
                         SubmitOutcome.REJECTED)
        self.assertIsNone(self.db.get_summary("ep3"))

    def test_request_marks_pending_and_reports_existing(self):
        llm = FakeLLM(gated=True)
        queue = SummaryQueue(self.db, self.config, FakeVectorStore(), llm)
        self.assertEqual(queue.request(self.item, self.episodes[0]), SubmitOutcome.STARTED)
        self.assertTrue(llm.entered.wait(WAIT))

        self.assertEqual(self.db.get_summary("ep1").status, SummaryStatus.PENDING)
        self.assertEqual(queue.request(self.item, self.episodes[0]), SummaryStatus.EXISTS)

        llm.gate.set()
        self.assertTrue(queue.wait_until_idle(WAIT))
        self.assertEqual(self.db.get_summary("ep1").status, SummaryStatus.COMPLETED)
        self.assertEqual(queue.request(self.item, self.episodes[0]), SummaryStatus.EXISTS)

    def test_request_retries_after_error(self):
        self.db.upsert_summary("ep1", SummaryStatus.ERROR, error="Failed to generate summary")
        queue = SummaryQueue(self.db, self.config, FakeVectorStore(), FakeLLM())
        self.assertEqual(queue.request(self.item, self.episodes[0]), SubmitOutcome.STARTED)
        self.assertTrue(queue.wait_until_idle(WAIT))
        self.assertEqual(self.db.get_summary("ep1").status, SummaryStatus.COMPLETED)

    def test_skipped_entry_releases_pending(self):
        llm = FakeLLM(gated=True)
        queue = SummaryQueue(self.db, self.config, FakeVectorStore(), llm)
        queue.request(self.item, self.episodes[0])
        self.assertTrue(llm.entered.wait(WAIT))
        self.assertEqual(queue.request(self.item, self.episodes[1]), SubmitOutcome.QUEUED)
        self.assertEqual(self.db.get_summary("ep2").status, SummaryStatus.PENDING)

        self.db.update_episode("ep2", transcript=None)
        llm.gate.set()
        self.assertTrue(queue.wait_until_idle(WAIT))

        self.assertIsNone(self.db.get_summary("ep2"))
        self.assertEqual(self.db.get_summary("ep1").status, SummaryStatus.COMPLETED)
        self.assertEqual(queue.request(self.item, self.db.get_episode("ep2")),
                         SubmitOutcome.REJECTED)


class TestStallReaper(QueueTestCase):

    def test_old_marker_without_running_job(self):
        queue = self._transcription_queue(FakeTranscriber())
        self.db.set_transcription_operation("ep2", make_operation_token("item1", "ep2", now_ms=1000))
        self.db.set_transcription_operation("ep3", make_operation_token("item1", "ep3", now_ms=9000))

        reaper = StalledJobReaper(self.db, queue, threshold_sec=3600,
                                  clock=lambda: 1000 + 3600 * 1000 + 1)
        self.assertEqual(reaper.sweep(), ["ep2"])

        self.assertIsNone(self.db.get_episode("ep2").transcription_operation)
        self.assertIsNotNone(self.db.get_episode("ep3").transcription_operation)
        errors = [p for e, p in self.events if e == QueueEvent.ERROR]
        self.assertEqual(errors[0]["episodeId"], "ep2")
        self.assertEqual(errors[0]["error"], user_message(ErrorCode.STALLED))

    def test_unparseable_marker_is_cleared(self):
        queue = self._transcription_queue(FakeTranscriber())
        self.db.set_transcription_operation("ep1", "garbage")
        reaper = StalledJobReaper(self.db, queue)
        self.assertEqual(reaper.sweep(), ["ep1"])

    def test_stalled_running_job_is_reset(self):
        transcriber = FakeTranscriber(gated={"ep1"})
        queue = self._transcription_queue(transcriber)
        queue.submit(self.item, self.episodes[0])
        queue.submit(self.item, self.episodes[1])
        self.assertTrue(transcriber.entered.wait(WAIT))

        stalled_task_id = queue.current_job.task_id
        reaper = StalledJobReaper(self.db, queue, threshold_sec=60,
                                  clock=lambda: 10 ** 15)
        self.assertEqual(reaper.sweep(), ["ep1"])

        # ep2 takes over while ep1's provider call is still hanging
        self.assertTrue(queue.wait_until_idle(WAIT))
        self.assertIsNotNone(self.db.get_episode("ep2").transcript)
        self.assertEqual(self.db.get_task(stalled_task_id).status, TaskStatus.FAILED)

        transcriber.gate.set()
        _join_workers()

        # The late result is discarded and the queue is not advanced twice
        self.assertIsNone(self.db.get_episode("ep1").transcript)
        self.assertEqual(self.db.get_task(stalled_task_id).status, TaskStatus.FAILED)
        self.assertIsNone(queue.current_job)
        self.assertEqual(transcriber.calls, ["ep1.mp3", "ep2.mp3"])
        self.assertEqual(queue.get_failed_attempts(["ep1", "ep2"]), {"ep1": 1})

    def test_background_loop_start_stop(self):
        queue = self._transcription_queue(FakeTranscriber())
        reaper = StalledJobReaper(self.db, queue, interval_sec=0.01)
        with mock.patch.object(reaper, "sweep", wraps=reaper.sweep) as sweep:
            reaper.start()
            self.assertFalse(reaper.wait(0.2))
            reaper.stop()
        self.assertGreater(sweep.call_count, 0)
        self.assertTrue(reaper.wait(0))


class TestService(QueueTestCase):

    def setUp(self):
        super().setUp()
        self.store = FakeVectorStore()
        self.llm = FakeLLM()
        self.service = PodcastAIService(
            config=self.config, db=self.db, transcriber=FakeTranscriber(),
            llm=self.llm, qa_llm=FakeLLM(), vector_store=self.store,
            retry_caller=RetryableCaller(sleep=lambda s: None),
            on_event=self._on_event,
        )

    def test_transcribe_then_summarize(self):
        self.assertEqual(self.service.transcribe_episode("item1", "ep1"), SubmitOutcome.STARTED)
        self.assertTrue(self.service.transcription_queue.wait_until_idle(WAIT))

        self.assertEqual(self.service.start_summary_generation("item1", "ep1"),
                         SubmitOutcome.STARTED)
        self.assertTrue(self.service.summary_queue.wait_until_idle(WAIT))
        self.assertEqual(self.service.get_summary("ep1")["status"], SummaryStatus.COMPLETED)

        self.assertEqual(self.service.start_summary_generation("item1", "ep1"),
                         SummaryStatus.EXISTS)
        status = self.service.get_summary_status("item1", "ep1")
        self.assertFalse(status["isQueued"])
        self.assertFalse(status["isCurrentlyProcessing"])
        self.assertEqual(status["status"], SummaryStatus.COMPLETED)

        self.assertTrue(self.service.delete_summary("ep1"))
        self.assertEqual(self.store.deleted_ids, [("podcast_episodes", ["ep1_chunk_0"])])
        self.assertFalse(self.service.delete_summary("ep1"))
        self.assertEqual(self.service.get_summary_status("item1", "ep1")["status"],
                         SummaryStatus.NOT_FOUND)

    def test_cleared_summary_request_can_be_repeated(self):
        self.db.save_transcript("ep1", _transcript("First point."))
        self.db.save_transcript("ep2", _transcript("Second episode."))
        self.llm.gated = True
        self.assertEqual(self.service.start_summary_generation("item1", "ep1"),
                         SubmitOutcome.STARTED)
        self.assertTrue(self.llm.entered.wait(WAIT))
        self.assertEqual(self.service.start_summary_generation("item1", "ep2"),
                         SubmitOutcome.QUEUED)
        self.assertEqual(self.service.get_summary_status("item1", "ep2")["status"],
                         SummaryStatus.PENDING)

        self.assertEqual(self.service.summary_queue.clear("lib1"), 1)
        status = self.service.get_summary_status("item1", "ep2")
        self.assertFalse(status["isQueued"])
        self.assertEqual(status["status"], SummaryStatus.NOT_FOUND)

        self.llm.gated = False
        self.llm.gate.set()
        self.assertTrue(self.service.summary_queue.wait_until_idle(WAIT))
        self.assertEqual(self.service.start_summary_generation("item1", "ep2"),
                         SubmitOutcome.STARTED)
        self.assertTrue(self.service.summary_queue.wait_until_idle(WAIT))
        self.assertEqual(self.service.get_summary("ep2")["status"], SummaryStatus.COMPLETED)

    def test_start_releases_pending_from_previous_run(self):
        self.db.save_transcript("ep1", _transcript("First point."))
        self.db.upsert_summary("ep1", SummaryStatus.PENDING)
        self.service.start()
        self.service.reaper.stop()

        self.assertIsNone(self.service.get_summary("ep1"))
        self.assertEqual(self.service.start_summary_generation("item1", "ep1"),
                         SubmitOutcome.STARTED)
        self.assertTrue(self.service.summary_queue.wait_until_idle(WAIT))

    def test_summary_rejected_without_transcript(self):
        self.assertEqual(self.service.start_summary_generation("item1", "ep2"),
                         SubmitOutcome.REJECTED)
        self.assertIsNone(self.service.get_summary("ep2"))
        self.assertEqual(self.service.start_summary_generation("item1", "unknown"),
                         SubmitOutcome.REJECTED)

    def test_transcription_status(self):
        self.service.transcription_queue.failed_attempts["ep3"] = 2
        status = self.service.get_transcription_status("item1")
        self.assertEqual(status, {"current": None, "queue": [], "failedAttempts": {"ep3": 2}})

    def test_ask_without_passages(self):
        answer = self.service.ask_question("Anything?", ["lib1"])
        self.assertEqual(answer.sources, [])

    def test_vectorize_unknown_episode(self):
        self.assertFalse(self.service.vectorize_episode("item1", "missing"))

    def test_diagnostics(self):
        with mock.patch("podcast_ai.core.diagnostics.run_subprocess_capture",
                        side_effect=FileNotFoundError("ffmpeg")):
            info = self.service.diagnostics()
        self.assertEqual(info["ffmpeg_version"], "Not installed")
        self.assertFalse(info["openai_api_key"]["configured"])
        self.assertTrue(info["vector_store"]["reachable"])


if __name__ == "__main__":
    unittest.main()
