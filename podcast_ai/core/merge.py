"""
Merge per-chunk transcriptions into a single timeline.
Each chunk was transcribed on its own zero-based clock, so every word and
segment time is shifted by where the previous chunk ended.
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


def _shift_time(value: dict | None, offset: float) -> dict:
    value = value or {}
    return {
        'seconds': (value.get('seconds') or 0) + offset,
        'nanos': value.get('nanos') or 0,
    }


def _shift_results(results: list, offset: float) -> list:
    shifted = []
    for result in results:
        words = [
            {**word,
             'startTime': _shift_time(word.get('startTime'), offset),
             'endTime': _shift_time(word.get('endTime'), offset)}
            for word in (result.get('words') or [])
        ]
        shifted.append({'transcript': result.get('transcript'), 'words': words})
    return shifted


def _shift_segments(segments: list, offset: float) -> list:
    return [
        {'text': seg.get('text'),
         'start': (seg.get('start') or 0) + offset,
         'end': (seg.get('end') or 0) + offset}
        for seg in segments
    ]


def merge_transcriptions(transcriptions: list[dict]) -> Optional[dict]:
    """
    Merge chunk transcripts in order.
    Empty input → None; a single transcript is returned unchanged.
    """
    if not transcriptions:
        return None
    if len(transcriptions) == 1:
        return transcriptions[0]

    time_offset = 0.0
    merged_results = []
    merged_segments = []

    for transcript in transcriptions:
        if not transcript:
            continue

        results = _shift_results(transcript.get('results') or [], time_offset)
        segments = _shift_segments(transcript.get('segments') or [], time_offset)

        merged_results.extend(results)
        merged_segments.extend(segments)

        # Next chunk starts where this one's last word ended, else its last segment
        if results and results[-1]['words']:
            time_offset = results[-1]['words'][-1]['endTime']['seconds']
        elif segments:
            time_offset = segments[-1]['end']

    logger.debug("Merged %d transcripts into %d segments",
                 len(transcriptions), len(merged_segments))
    return {
        'results': merged_results,
        'segments': merged_segments,
    }
