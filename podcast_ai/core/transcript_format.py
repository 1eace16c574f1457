"""
Transcript shapes and legacy-format normalization.

Stored transcripts are dicts of the form::

    {"results": [{"transcript": str, "words": [...]}],
     "segments": [{"text": str, "start": float, "end": float}]}

Older episodes may hold a plain string or a bare list of results; both are
normalized to TranscriptSegment lists here.
"""

import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TranscriptSegment:
    text: str
    start: float = 0.0
    end: float = 0.0


def _time_seconds(value: Any) -> float:
    """Word times are {seconds, nanos} dicts; tolerate bare numbers."""
    if isinstance(value, dict):
        return float(value.get('seconds') or 0) + float(value.get('nanos') or 0) / 1e9
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _segments_from_results(results: list) -> list[TranscriptSegment]:
    segments = []
    for result in results:
        if not isinstance(result, dict):
            continue
        words = result.get('words') or []
        start = end = 0.0
        if words:
            start = _time_seconds(words[0].get('startTime'))
            end = _time_seconds(words[-1].get('endTime'))
        segments.append(TranscriptSegment(text=result.get('transcript') or '',
                                          start=start, end=end))
    return segments


def normalize_segments(transcript: Any) -> list[TranscriptSegment]:
    """Return the transcript as ordered segments, whatever shape it was stored in."""
    if not transcript:
        return []

    if isinstance(transcript, str):
        return [TranscriptSegment(text=transcript)]

    if isinstance(transcript, dict):
        segments = transcript.get('segments')
        if isinstance(segments, list) and segments:
            return [
                TranscriptSegment(
                    text=s.get('text') or '',
                    start=float(s.get('start') or 0),
                    end=float(s.get('end') or 0),
                )
                for s in segments if isinstance(s, dict)
            ]
        results = transcript.get('results')
        if isinstance(results, list):
            return _segments_from_results(results)
        return []

    if isinstance(transcript, list):
        return _segments_from_results(transcript)

    logger.warning("Unrecognized transcript type %s", type(transcript).__name__)
    return []


def transcript_text(transcript: Any) -> str:
    """Plain text of a transcript, segments joined by spaces."""
    return ' '.join(s.text.strip() for s in normalize_segments(transcript) if s.text.strip())
