"""
Stalled transcription reaper.
Periodically looks for episodes whose in-progress marker is older than the
threshold, clears the marker and frees the transcription queue if the
stalled episode is the one it is running.
"""

import time
import logging
import threading
from typing import Callable

from podcast_ai.core.constants import STALL_SWEEP_INTERVAL_SEC, STALL_THRESHOLD_SEC
from podcast_ai.core.db_sqlite import Database
from podcast_ai.core.job_models import operation_token_timestamp

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class StalledJobReaper:
    """Background sweeper for stale transcription markers."""

    def __init__(self, db: Database, transcription_queue,
                 interval_sec: float = STALL_SWEEP_INTERVAL_SEC,
                 threshold_sec: float = STALL_THRESHOLD_SEC,
                 clock: Callable[[], int] = _now_ms):
        self.db = db
        self.queue = transcription_queue
        self.interval_sec = interval_sec
        self.threshold_ms = int(threshold_sec * 1000)
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="stall-reaper", daemon=True)
        self._thread.start()
        logger.info("Stall reaper started (every %ss, threshold %ss)",
                    self.interval_sec, self.threshold_ms // 1000)

    def stop(self):
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

    def wait(self, timeout: float | None = None) -> bool:
        """Block until stop() is called."""
        return self._stop_event.wait(timeout)

    def _loop(self):
        while not self._stop_event.wait(self.interval_sec):
            try:
                self.sweep()
            except Exception as e:
                logger.error("Error checking for stalled transcriptions: %s", e, exc_info=True)

    def sweep(self) -> list[str]:
        """One pass. Returns the ids of the episodes that were reaped."""
        now = self._clock()
        reaped = []

        for episode in self.db.find_episodes_with_transcription_operation():
            started_ms = operation_token_timestamp(episode.transcription_operation)
            # A marker we cannot date would otherwise never be cleared
            if started_ms is not None and now - started_ms <= self.threshold_ms:
                continue

            logger.warning("Found stalled transcription for episode %s, resetting",
                           episode.id)
            self.db.set_transcription_operation(episode.id, None)
            self.queue.handle_stalled_operation(episode)
            reaped.append(episode.id)

        return reaped
