"""
Shared constants for the podcast AI pipeline.
Single source of truth, imported by every other module.
"""

import os
import pathlib

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "PodcastAI"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

APP_DATA_DIR = pathlib.Path(os.environ.get("PODCAST_AI_DATA_DIR", HOME / ".podcast_ai"))
LOG_DIR = APP_DATA_DIR / "logs"
DB_PATH = APP_DATA_DIR / "app.db"
CONFIG_PATH = APP_DATA_DIR / "config.json"

# Chunk files live next to the source audio while a job runs
TEMP_CHUNKS_DIRNAME = ".temp_chunks"

# ── Job kinds / queue state ───────────────────────────────────────────
class JobKind:
    TRANSCRIPTION = "transcription"
    SUMMARY = "summary"

class JobStatus:
    RUNNING = "running"
    QUEUED = "queued"

class SubmitOutcome:
    STARTED = "started"
    QUEUED = "queued"
    REJECTED = "rejected"

# ── Task (progress sink) status ───────────────────────────────────────
class TaskStatus:
    RUNNING = "RUNNING"
    FINISHED = "FINISHED"
    FAILED = "FAILED"

# ── Stored summary status ─────────────────────────────────────────────
class SummaryStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"
    NOT_FOUND = "not_found"
    EXISTS = "exists"

# ── Events (fire-and-forget notifications) ────────────────────────────
class QueueEvent:
    STARTED = "job_started"
    QUEUED = "job_queued"
    FINISHED = "job_finished"
    ERROR = "job_error"
    CLEARED = "queue_cleared"
    ITEM_UPDATED = "item_updated"

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    # Non-retryable
    PRECONDITION = "ERR_PRECONDITION"
    CHUNKING = "ERR_CHUNKING"
    ALL_CHUNKS_FAILED = "ERR_ALL_CHUNKS_FAILED"
    TRANSCRIPT_MISSING = "ERR_TRANSCRIPT_MISSING"
    STALLED = "ERR_STALLED"
    UNEXPECTED = "ERR_UNEXPECTED"

    # Retryable
    TRANSCRIBE_FAILED = "ERR_TRANSCRIBE_FAILED"
    TRANSCRIBE_TIMEOUT = "ERR_TRANSCRIBE_TIMEOUT"
    NETWORK_TRANSIENT = "ERR_NETWORK_TRANSIENT"
    VECTOR_STORE = "ERR_VECTOR_STORE"
    LLM_FAILED = "ERR_LLM_FAILED"

RETRYABLE_ERRORS = {
    ErrorCode.TRANSCRIBE_FAILED,
    ErrorCode.TRANSCRIBE_TIMEOUT,
    ErrorCode.NETWORK_TRANSIENT,
    ErrorCode.VECTOR_STORE,
    ErrorCode.LLM_FAILED,
}

# ── Audio splitting ───────────────────────────────────────────────────
MAX_FILE_SIZE = 25 * 1024 * 1024          # provider hard limit
TARGET_CHUNK_BYTES = 20 * 1024 * 1024      # aim safely below the limit
DEFAULT_SEGMENT_SEC = 600
MIN_SEGMENT_SEC = 60
MAX_SEGMENT_SEC = 1800
FALLBACK_SEGMENT_SEC = 300
FALLBACK_BITRATE = "64k"
FALLBACK_CHANNELS = 1
FALLBACK_FORMAT = "mp3"
SPLIT_TIMEOUT_SEC = 10 * 60
PROBE_TIMEOUT_SEC = 60

# Partial success policy for chunked transcription
MIN_SUCCESSFUL_CHUNKS = 1

# ── Transcript chunking (vector storage / summarization) ──────────────
TARGET_CHUNK_CHARS = 1500
MIN_CHUNK_CHARS = 1000
OVERLAP_SENTENCES = 2
CHARS_PER_TOKEN = 4

# ── Retry / backoff ───────────────────────────────────────────────────
MAX_RETRIES = 3
RETRY_DELAY_SEC = 5.0
RETRY_BACKOFF_MULTIPLIER = 1.5

# ── Stall detection ───────────────────────────────────────────────────
STALL_SWEEP_INTERVAL_SEC = 60
STALL_THRESHOLD_SEC = 60 * 60
OPERATION_TOKEN_PREFIX = "whisper-transcription"

# ── Similarity filter ─────────────────────────────────────────────────
SIMILARITY_THRESHOLD = 0.5

# ── Progress mapping ─────────────────────────────────────────────────
PROGRESS_START = 0
PROGRESS_SPLIT = 5
PROGRESS_TRANSCRIBE_START = 10
PROGRESS_TRANSCRIBE_END = 90
PROGRESS_MERGE = 95
PROGRESS_VECTORIZE = 20
PROGRESS_SUMMARIZE_START = 30
PROGRESS_SUMMARIZE_END = 95
PROGRESS_DONE = 100

# ── OpenAI ────────────────────────────────────────────────────────────
OPENAI_API_BASE = "https://api.openai.com/v1"
WHISPER_MODEL = "whisper-1"
WHISPER_LANGUAGE = "en"
WHISPER_TIMEOUT_SEC = 5 * 60
DEFAULT_LLM_MODEL = "gpt-4o-mini"
DEFAULT_LLM_TEMPERATURE = 0.3
QA_LLM_TEMPERATURE = 0.0
QA_MAX_TOKENS = 500
LLM_TIMEOUT_SEC = 120

# ── Chroma ────────────────────────────────────────────────────────────
DEFAULT_CHROMA_HOST = "localhost"
DEFAULT_CHROMA_PORT = 8000
DEFAULT_CHROMA_AUTH_PROVIDER = "basic"
SUMMARY_COLLECTION = "podcast_episodes"
QA_COLLECTION = "podcast_transcripts"
QA_TOP_K = 3
QA_MAX_SOURCES = 3
QA_NOT_FOUND_ANSWER = "This information wasn't found in available transcripts"

# ── Misc ──────────────────────────────────────────────────────────────
MAX_ERROR_MESSAGE_LEN = 2000
