"""
Transcript → text chunks for vector storage and summarization.

Sentence-accumulation strategy: sentences are gathered until a chunk
reaches the target size (and the minimum floor), then the next chunk is
seeded with the last few sentences of the one just closed so context
carries across the boundary. Timing comes from the source segments.
"""

import re
import logging
from dataclasses import dataclass
from typing import Any, Optional

from podcast_ai.core.constants import (
    TARGET_CHUNK_CHARS, MIN_CHUNK_CHARS, OVERLAP_SENTENCES, CHARS_PER_TOKEN,
)
from podcast_ai.core.transcript_format import TranscriptSegment, normalize_segments

logger = logging.getLogger(__name__)

_SENTENCE_BOUNDARY = re.compile(r'(?<=[.!?])\s+')


@dataclass(frozen=True)
class TranscriptChunk:
    text: str
    start_time: Optional[float]
    end_time: Optional[float]
    source_segment_count: int
    sentence_count: int
    approx_char_count: int
    approx_token_count: int
    chunk_index: int
    total_chunks: int


@dataclass(frozen=True)
class _Sentence:
    text: str
    start: Optional[float]
    end: Optional[float]
    segment_idx: int


def split_sentences(text: str) -> list[str]:
    """Split on . ! or ? followed by whitespace; empty pieces are dropped."""
    if not text:
        return []
    return [s.strip() for s in _SENTENCE_BOUNDARY.split(text) if s.strip()]


def _sentences(segments: list[TranscriptSegment]) -> list[_Sentence]:
    out = []
    for idx, seg in enumerate(segments):
        # No word-level timing, so each sentence inherits its segment's span
        for sentence in split_sentences(seg.text):
            out.append(_Sentence(sentence, seg.start, seg.end, idx))
    return out


def _close(sentences: list[_Sentence]) -> dict:
    starts = [s.start for s in sentences if s.start is not None]
    ends = [s.end for s in sentences if s.end is not None]
    text = ' '.join(s.text for s in sentences).strip()
    start = min(starts) if starts else None
    end = max(ends) if ends else None
    if start is not None and end is not None and end < start:
        end = start
    return {
        'text': text,
        'start': start,
        'end': end,
        'sentence_count': len(sentences),
        'segment_count': len({s.segment_idx for s in sentences}),
    }


def process_transcript_into_chunks(transcript: Any,
                                   target_size: int = TARGET_CHUNK_CHARS,
                                   min_size: int = MIN_CHUNK_CHARS,
                                   overlap: int = OVERLAP_SENTENCES) -> list[TranscriptChunk]:
    """
    Chunk a transcript (any stored shape, or a list of TranscriptSegment).

    A chunk closes once its text is at least target_size long and at least
    min_size long. The final remainder is always emitted, even when shorter
    than min_size.
    """
    if isinstance(transcript, list) and transcript and isinstance(transcript[0], TranscriptSegment):
        segments = transcript
    else:
        segments = normalize_segments(transcript)

    sentences = _sentences(segments)
    if not sentences:
        return []

    raw_chunks = []
    current: list[_Sentence] = []
    current_len = 0

    for i, sentence in enumerate(sentences):
        current_len += len(sentence.text) + (1 if current else 0)
        current.append(sentence)

        is_last = i == len(sentences) - 1
        chunk_is_full = current_len >= target_size and current_len >= min_size

        if chunk_is_full or is_last:
            raw_chunks.append(_close(current))
            if not is_last:
                current = current[-overlap:] if overlap > 0 else []
                current_len = len(' '.join(s.text for s in current))

    total = len(raw_chunks)
    chunks = [
        TranscriptChunk(
            text=c['text'],
            start_time=c['start'],
            end_time=c['end'],
            source_segment_count=c['segment_count'],
            sentence_count=c['sentence_count'],
            approx_char_count=len(c['text']),
            approx_token_count=max(1, len(c['text']) // CHARS_PER_TOKEN),
            chunk_index=idx,
            total_chunks=total,
        )
        for idx, c in enumerate(raw_chunks)
    ]
    logger.debug("Chunked %d segments into %d chunks", len(segments), total)
    return chunks


def chunk_metadata(chunk: TranscriptChunk) -> dict:
    """Vector-store metadata for a chunk. None values are omitted."""
    meta = {
        'chunkIndex': chunk.chunk_index,
        'totalChunks': chunk.total_chunks,
        'startTime': chunk.start_time,
        'endTime': chunk.end_time,
        'sentenceCount': chunk.sentence_count,
        'sourceSegmentCount': chunk.source_segment_count,
        'approximateCharCount': chunk.approx_char_count,
        'approximateTokenCount': chunk.approx_token_count,
    }
    return {k: v for k, v in meta.items() if v is not None}
