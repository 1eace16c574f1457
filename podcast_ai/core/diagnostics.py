"""
Diagnostics: tool version detection and system checks.
"""

import logging

from podcast_ai.core.security_utils import run_subprocess_capture
from podcast_ai.core.transcribe_whisper import verify_api_key

logger = logging.getLogger(__name__)


def get_tool_version(tool: str) -> str:
    """Return the first line of `<tool> -version`, or an error message."""
    try:
        result = run_subprocess_capture([tool, "-version"], timeout=10)
        if result.returncode == 0:
            lines = result.stdout.strip().splitlines()
            return lines[0] if lines else "Unknown"
        return f"Error (rc={result.returncode})"
    except FileNotFoundError:
        return "Not installed"
    except Exception as e:
        return f"Error: {e}"


def check_api_key(api_key: str | None, verify: bool = False) -> dict:
    info = {"configured": bool(api_key), "valid": None, "message": None}
    if api_key and verify:
        info["valid"], info["message"] = verify_api_key(api_key)
    return info


def get_diagnostics(config, vector_store=None, verify_key: bool = False) -> dict:
    """Gather all diagnostic information."""
    return {
        "ffmpeg_version": get_tool_version("ffmpeg"),
        "ffprobe_version": get_tool_version("ffprobe"),
        "openai_api_key": check_api_key(config.openai_api_key, verify=verify_key),
        "vector_store": {
            "host": config.get('chroma_host'),
            "port": config.get('chroma_port'),
            "reachable": vector_store.heartbeat() if vector_store else None,
        },
        "transcriptions_enabled": config.transcriptions_enabled,
    }
