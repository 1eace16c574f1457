"""
Security utilities for the podcast AI pipeline.
- Safe subprocess execution (argument arrays only)
- Secret redaction for log lines
"""

import re
import subprocess
import logging

logger = logging.getLogger(__name__)

_BEARER_RE = re.compile(r'(Bearer\s+)[A-Za-z0-9._\-]+')
_SK_RE = re.compile(r'sk-[A-Za-z0-9_\-]{8,}')


# ── Subprocess safety ─────────────────────────────────────────────────

def run_subprocess(args: list[str], **kwargs) -> subprocess.CompletedProcess:
    """
    Execute a subprocess using argument arrays only.
    shell=True is explicitly forbidden.
    """
    if not isinstance(args, (list, tuple)):
        raise TypeError("Subprocess args must be a list/tuple, not a string")

    # Force shell=False; any caller-supplied value is dropped
    kwargs.pop('shell', None)

    logger.debug("Running subprocess: %s", ' '.join(str(a) for a in args))
    return subprocess.run(args, shell=False, **kwargs)


def run_subprocess_capture(args: list[str], timeout: int = 300, **kwargs) -> subprocess.CompletedProcess:
    """Run subprocess and capture stdout/stderr."""
    return run_subprocess(
        args,
        capture_output=True,
        text=True,
        timeout=timeout,
        **kwargs,
    )


# ── Secrets ───────────────────────────────────────────────────────────

def redact_secrets(text: str) -> str:
    """Strip bearer tokens and API keys from text before it is logged."""
    if not text:
        return ""
    text = _BEARER_RE.sub(r'\1***', text)
    return _SK_RE.sub('sk-***', text)
