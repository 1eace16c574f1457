"""
OpenAI Whisper speech-to-text integration.
One multipart upload per file, verbose_json response format.
Retries are the caller's job (see retry.RetryableCaller).
"""

import json
import logging
import requests
from pathlib import Path

from podcast_ai.core.error_codes import JobError
from podcast_ai.core.security_utils import redact_secrets
from podcast_ai.core.constants import (
    ErrorCode, OPENAI_API_BASE, WHISPER_MODEL, WHISPER_LANGUAGE, WHISPER_TIMEOUT_SEC,
)

logger = logging.getLogger(__name__)

WHISPER_TRANSCRIPTIONS_URL = f"{OPENAI_API_BASE}/audio/transcriptions"


def verify_api_key(api_key: str) -> tuple[bool, str]:
    """
    Verify an OpenAI API key with a lightweight request.
    Returns (success: bool, message: str).
    """
    try:
        resp = requests.get(
            f"{OPENAI_API_BASE}/models",
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=10,
        )
        if resp.status_code == 200:
            return True, "Key verified"
        elif resp.status_code in (401, 403):
            return False, "Key invalid or rejected"
        else:
            return False, f"Unexpected response: {resp.status_code}"
    except requests.exceptions.ConnectionError:
        return False, "Network error — could not reach OpenAI"
    except requests.exceptions.Timeout:
        return False, "Network error — request timed out"
    except requests.exceptions.RequestException as e:
        return False, f"Network error: {e}"


class WhisperTranscriber:
    """transcribe(audio_path) -> structured transcript {results, segments}."""

    def __init__(self, api_key: str | None, model: str = WHISPER_MODEL,
                 language: str = WHISPER_LANGUAGE,
                 timeout: int = WHISPER_TIMEOUT_SEC,
                 session: requests.Session | None = None):
        self.api_key = api_key
        self.model = model
        self.language = language
        self.timeout = timeout
        self.session = session or requests.Session()

    def transcribe(self, audio_path: Path) -> dict:
        if not self.api_key:
            raise JobError(ErrorCode.TRANSCRIBE_FAILED, "OpenAI API key not configured",
                           retryable=False)

        logger.info("Sending file %s to Whisper API with verbose_json format", audio_path)
        data = {
            'model': self.model,
            'response_format': 'verbose_json',
            'language': self.language,
        }

        try:
            with open(audio_path, 'rb') as f:
                resp = self.session.post(
                    WHISPER_TRANSCRIPTIONS_URL,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    data=data,
                    files={'file': (audio_path.name, f)},
                    timeout=self.timeout,
                )
        except requests.exceptions.Timeout:
            raise JobError(ErrorCode.TRANSCRIBE_TIMEOUT, "Whisper request timed out")
        except requests.exceptions.ConnectionError:
            raise JobError(ErrorCode.NETWORK_TRANSIENT, "Network error connecting to OpenAI")
        except requests.exceptions.RequestException as e:
            raise JobError(ErrorCode.TRANSCRIBE_FAILED, f"Whisper request failed: {e}")

        if resp.status_code == 429:
            raise JobError(ErrorCode.NETWORK_TRANSIENT, "Whisper rate limited (429)")

        if resp.status_code != 200:
            # Sanitize error message (never log API key)
            error_body = redact_secrets(resp.text[:300]) if resp.text else "No response body"
            logger.error("Whisper API error status %d: %s", resp.status_code, error_body)
            raise JobError(ErrorCode.TRANSCRIBE_FAILED,
                           f"Whisper returned {resp.status_code}: {error_body}",
                           retryable=resp.status_code not in (400, 401, 403))

        try:
            payload = resp.json()
        except (json.JSONDecodeError, ValueError):
            raise JobError(ErrorCode.TRANSCRIBE_FAILED,
                           "Failed to parse Whisper response JSON")

        logger.info("Received response from Whisper API for %s", audio_path)
        return process_whisper_response(payload)


def process_whisper_response(whisper_response: dict | None) -> dict:
    """
    Convert a verbose_json response into the stored transcript shape.
    Responses without segments degrade to one segment spanning the file.
    """
    if not whisper_response:
        logger.error("Received empty or null response from Whisper API")
        return {'results': [], 'segments': []}

    segments = list(whisper_response.get('segments') or [])
    text = whisper_response.get('text') or ''

    if not segments:
        logger.warning("No segments found in Whisper response")
        if text:
            segments.append({
                'text': text,
                'start': 0,
                'end': whisper_response.get('duration') or 0,
            })

    structured = {
        'segments': [
            {'text': s.get('text', ''),
             'start': s.get('start') or 0,
             'end': s.get('end') or 0}
            for s in segments
        ],
        # verbose_json has no per-segment word timings
        'results': [{'transcript': s.get('text', ''), 'words': []} for s in segments],
    }

    if not structured['results'] and text:
        structured['results'].append({'transcript': text, 'words': []})

    logger.info("Generated structured transcript with %d results and %d segments",
                len(structured['results']), len(structured['segments']))
    return structured
