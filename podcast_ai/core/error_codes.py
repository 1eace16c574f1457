"""
Standardised error handling for the podcast AI pipeline.
"""

from podcast_ai.core.constants import ErrorCode, RETRYABLE_ERRORS

# Categorized, user-facing text. Raw provider payloads stay in the log.
_USER_MESSAGES = {
    ErrorCode.PRECONDITION: "Episode cannot be processed",
    ErrorCode.CHUNKING: "Failed to split audio file into chunks",
    ErrorCode.ALL_CHUNKS_FAILED: "All chunks failed to transcribe",
    ErrorCode.TRANSCRIPT_MISSING: "Episode transcript not found",
    ErrorCode.STALLED: "Transcription operation timed out",
    ErrorCode.TRANSCRIBE_FAILED: "Failed to get transcription result",
    ErrorCode.TRANSCRIBE_TIMEOUT: "Transcription request timed out",
    ErrorCode.NETWORK_TRANSIENT: "Network error talking to a provider",
    ErrorCode.VECTOR_STORE: "Failed to store transcript for search",
    ErrorCode.LLM_FAILED: "Failed to generate summary",
}


class JobError(Exception):
    """Raised when a job encounters a known error condition."""

    def __init__(self, code: str, message: str, retryable: bool | None = None):
        self.code = code
        self.message = message
        # auto-detect retryable from code if not explicitly set
        self.retryable = retryable if retryable is not None else (code in RETRYABLE_ERRORS)
        super().__init__(f"[{code}] {message}")

    @property
    def user_message(self) -> str:
        return user_message(self.code)


def is_retryable(code: str) -> bool:
    return code in RETRYABLE_ERRORS


def user_message(code: str) -> str:
    return _USER_MESSAGES.get(code, "Unexpected error while processing episode")
