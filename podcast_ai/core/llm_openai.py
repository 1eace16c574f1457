"""
OpenAI chat-completions client used for summarization and transcript Q&A.
"""

import json
import logging
import requests

from podcast_ai.core.error_codes import JobError
from podcast_ai.core.security_utils import redact_secrets
from podcast_ai.core.constants import (
    ErrorCode, OPENAI_API_BASE, DEFAULT_LLM_MODEL, DEFAULT_LLM_TEMPERATURE,
    LLM_TIMEOUT_SEC,
)

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_URL = f"{OPENAI_API_BASE}/chat/completions"


class OpenAIChatClient:
    """complete(prompt) -> response text. Raises JobError(ERR_LLM_FAILED)."""

    def __init__(self, api_key: str | None, model: str = DEFAULT_LLM_MODEL,
                 temperature: float = DEFAULT_LLM_TEMPERATURE,
                 max_tokens: int | None = None,
                 timeout: int = LLM_TIMEOUT_SEC,
                 session: requests.Session | None = None):
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.session = session or requests.Session()

    def complete(self, prompt: str) -> str:
        if not self.api_key:
            raise JobError(ErrorCode.LLM_FAILED,
                           "OpenAI client not initialized. Please check your API key configuration.",
                           retryable=False)

        body = {
            'model': self.model,
            'temperature': self.temperature,
            'messages': [{'role': 'user', 'content': prompt}],
        }
        if self.max_tokens:
            body['max_tokens'] = self.max_tokens

        try:
            resp = self.session.post(
                CHAT_COMPLETIONS_URL,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=body,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            raise JobError(ErrorCode.LLM_FAILED, "LLM request timed out")
        except requests.exceptions.RequestException as e:
            raise JobError(ErrorCode.LLM_FAILED, f"LLM request failed: {e}")

        if resp.status_code != 200:
            error_body = redact_secrets(resp.text[:300]) if resp.text else "No response body"
            logger.error("LLM API error status %d: %s", resp.status_code, error_body)
            raise JobError(ErrorCode.LLM_FAILED,
                           f"LLM returned {resp.status_code}: {error_body}")

        try:
            payload = resp.json()
            return (payload['choices'][0]['message']['content'] or '').strip()
        except (json.JSONDecodeError, ValueError, KeyError, IndexError, TypeError) as e:
            raise JobError(ErrorCode.LLM_FAILED, f"Malformed LLM response: {e}")
