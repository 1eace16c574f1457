"""
Application configuration manager.
Stores settings in a JSON file under the app data dir; a few keys can be
overridden from the environment (API keys, provider endpoints).
"""

import os
import json
import logging
from pathlib import Path

from podcast_ai.core.constants import (
    CONFIG_PATH, DEFAULT_LLM_MODEL, DEFAULT_LLM_TEMPERATURE,
    DEFAULT_CHROMA_HOST, DEFAULT_CHROMA_PORT, DEFAULT_CHROMA_AUTH_PROVIDER,
    STALL_SWEEP_INTERVAL_SEC, STALL_THRESHOLD_SEC,
    MAX_RETRIES, RETRY_DELAY_SEC, RETRY_BACKOFF_MULTIPLIER,
)

# Validation bounds
_TEMPERATURE_MIN = 0.0
_TEMPERATURE_MAX = 2.0
_SWEEP_MIN = 5
_SWEEP_MAX = 3600
_STALL_MIN = 60
_STALL_MAX = 24 * 3600
_RETRIES_MAX = 10

logger = logging.getLogger(__name__)

_DEFAULTS = {
    'transcriptions_enabled': True,
    'auto_vectorize_after_transcription': False,
    'auto_summarize_after_transcription': False,
    'openai_model': DEFAULT_LLM_MODEL,
    'openai_temperature': DEFAULT_LLM_TEMPERATURE,
    'chroma_host': DEFAULT_CHROMA_HOST,
    'chroma_port': DEFAULT_CHROMA_PORT,
    'chroma_auth_provider': DEFAULT_CHROMA_AUTH_PROVIDER,
    'chroma_auth_credentials': None,
    'stall_sweep_interval_sec': STALL_SWEEP_INTERVAL_SEC,
    'stall_threshold_sec': STALL_THRESHOLD_SEC,
    'max_retries': MAX_RETRIES,
    'retry_delay_sec': RETRY_DELAY_SEC,
    'retry_backoff_multiplier': RETRY_BACKOFF_MULTIPLIER,
    'retry_max_delay_sec': None,
}

# config key -> environment variable
_ENV_OVERRIDES = {
    'openai_model': 'OPENAI_MODEL',
    'openai_temperature': 'OPENAI_TEMPERATURE',
    'chroma_host': 'CHROMA_HOST',
    'chroma_port': 'CHROMA_PORT',
    'chroma_auth_provider': 'CHROMA_AUTH_PROVIDER',
    'chroma_auth_credentials': 'CHROMA_AUTH_CREDENTIALS',
}


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None, environ: dict | None = None):
        self.path = config_path or CONFIG_PATH
        self._environ = os.environ if environ is None else environ
        self._data: dict = {}
        self.load()

    def load(self):
        """Load config from disk, merging with defaults, then apply env overrides."""
        self._data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
                for key, value in saved.items():
                    self._data[key] = self._validate(key, value)
            except Exception as e:
                logger.warning("Failed to load config: %s", e)

        for key, env_name in _ENV_OVERRIDES.items():
            value = self._environ.get(env_name)
            if value:
                self._data[key] = self._validate(key, value)

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._data, f, indent=2)

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value):
        value = self._validate(key, value)
        self._data[key] = value
        self.save()

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key == 'openai_temperature':
            try:
                value = float(value)
            except (TypeError, ValueError):
                logger.warning("Invalid openai_temperature %r — using default", value)
                return DEFAULT_LLM_TEMPERATURE
            return max(_TEMPERATURE_MIN, min(_TEMPERATURE_MAX, value))

        if key == 'chroma_port':
            try:
                return int(value)
            except (TypeError, ValueError):
                logger.warning("Invalid chroma_port %r — using default", value)
                return DEFAULT_CHROMA_PORT

        if key == 'stall_sweep_interval_sec':
            try:
                value = int(value)
            except (TypeError, ValueError):
                logger.warning("Invalid stall_sweep_interval_sec %r — using default", value)
                return STALL_SWEEP_INTERVAL_SEC
            return max(_SWEEP_MIN, min(_SWEEP_MAX, value))

        if key == 'stall_threshold_sec':
            try:
                value = int(value)
            except (TypeError, ValueError):
                logger.warning("Invalid stall_threshold_sec %r — using default", value)
                return STALL_THRESHOLD_SEC
            return max(_STALL_MIN, min(_STALL_MAX, value))

        if key == 'max_retries':
            try:
                value = int(value)
            except (TypeError, ValueError):
                logger.warning("Invalid max_retries %r — using default", value)
                return MAX_RETRIES
            return max(0, min(_RETRIES_MAX, value))

        if key in ('retry_delay_sec', 'retry_backoff_multiplier'):
            try:
                value = float(value)
            except (TypeError, ValueError):
                logger.warning("Invalid %s %r — using default", key, value)
                return _DEFAULTS[key]
            return max(0.0, value)

        if key == 'retry_max_delay_sec':
            if value is None:
                return None
            try:
                return max(0.0, float(value))
            except (TypeError, ValueError):
                logger.warning("Invalid retry_max_delay_sec %r — leaving uncapped", value)
                return None

        if key in ('transcriptions_enabled', 'auto_vectorize_after_transcription',
                   'auto_summarize_after_transcription'):
            if isinstance(value, str):
                return value.strip().lower() in ('1', 'true', 'yes', 'on')
            return bool(value)

        return value

    def as_dict(self) -> dict:
        return dict(self._data)

    @property
    def openai_api_key(self) -> str | None:
        return self._environ.get('OPENAI_API_KEY') or None

    @property
    def transcriptions_enabled(self) -> bool:
        return self._data.get('transcriptions_enabled', True)

    @transcriptions_enabled.setter
    def transcriptions_enabled(self, value: bool):
        self.set('transcriptions_enabled', value)

    @property
    def auto_vectorize_after_transcription(self) -> bool:
        return self._data.get('auto_vectorize_after_transcription', False)

    @property
    def auto_summarize_after_transcription(self) -> bool:
        return self._data.get('auto_summarize_after_transcription', False)
