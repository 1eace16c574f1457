"""
Semantic question answering over episode transcripts.

Transcripts are chunked and stored in the vector store with episode,
podcast and library metadata. A question retrieves the closest passages
(restricted to the libraries the caller may see), the LLM answers from
them as JSON, and cited sources are de-duplicated before returning.
"""

import json
import re
import logging
from dataclasses import dataclass, field
from typing import Optional

from podcast_ai.core.error_codes import JobError
from podcast_ai.core.constants import (
    ErrorCode, QA_COLLECTION, QA_TOP_K, QA_MAX_SOURCES, QA_NOT_FOUND_ANSWER,
)
from podcast_ai.core.models_sqlite import Episode
from podcast_ai.core.similarity import filter_similar_sources
from podcast_ai.core.transcript_segmenter import process_transcript_into_chunks, chunk_metadata

logger = logging.getLogger(__name__)

QA_PROMPT = """
You are a helpful assistant that answers questions about podcast content based on transcript segments.
Only use the information provided in the context. If you cannot find the answer in the context, say "{not_found}."
Always include episode and podcast titles in your answer, and cite timestamps in [HH:MM] format.
Limit your response to the top {max_sources} most relevant segments.

Context: {context}
Question: {question}

Format your response as a JSON object with the following structure:
{{
  "answer": "Your answer here, citing timestamps like [23:15] when referencing content",
  "relevantSegments": [
    {{
      "timestamp": "[HH:MM]",
      "context": "The relevant transcript segment",
      "episodeTitle": "Episode title",
      "podcastTitle": "Podcast title"
    }}
  ]
}}

Response:"""

_FENCE_RE = re.compile(r'^```(?:json)?\s*|\s*```$', re.MULTILINE)


@dataclass(frozen=True)
class RetrievedPassage:
    content: str
    episode_id: Optional[str]
    podcast_id: Optional[str]
    episode_title: str
    podcast_title: str
    start_time: float
    library_id: Optional[str]
    distance: float


@dataclass(frozen=True)
class AnswerSource:
    episode_id: Optional[str]
    podcast_id: Optional[str]
    timestamp: str
    episode_title: str
    podcast_title: str
    transcript_content: str


@dataclass
class Answer:
    answer: str
    sources: list[AnswerSource] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'answer': self.answer,
            'sources': [
                {
                    'episodeId': s.episode_id,
                    'podcastId': s.podcast_id,
                    'timestamp': s.timestamp,
                    'episodeTitle': s.episode_title,
                    'podcastTitle': s.podcast_title,
                    'transcriptContent': s.transcript_content,
                }
                for s in self.sources
            ],
        }


def format_timestamp(seconds) -> str:
    """Seconds → '[HH:MM]'."""
    try:
        seconds = int(float(seconds or 0))
    except (TypeError, ValueError):
        seconds = 0
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    return f"[{hours:02d}:{minutes:02d}]"


def _passage_from_result(result: dict) -> RetrievedPassage:
    meta = result.get('metadata') or {}
    return RetrievedPassage(
        content=result.get('content') or '',
        episode_id=meta.get('episodeId'),
        podcast_id=meta.get('podcastId'),
        episode_title=meta.get('episodeTitle') or '',
        podcast_title=meta.get('podcastTitle') or '',
        start_time=float(meta.get('startTime') or 0),
        library_id=meta.get('libraryId'),
        distance=float(result.get('distance') or 0),
    )


def parse_llm_json(text: str) -> dict:
    """Parse the model's JSON answer, tolerating code fences and chatter."""
    cleaned = _FENCE_RE.sub('', (text or '').strip())
    start, end = cleaned.find('{'), cleaned.rfind('}')
    if start == -1 or end <= start:
        raise JobError(ErrorCode.LLM_FAILED, "LLM answer was not JSON")
    try:
        data = json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError as e:
        raise JobError(ErrorCode.LLM_FAILED, f"LLM answer was not valid JSON: {e}")
    if not isinstance(data, dict) or not isinstance(data.get('answer'), str):
        raise JobError(ErrorCode.LLM_FAILED, "LLM answer is missing the 'answer' field")
    return data


class TranscriptQA:
    """Vectorize transcripts and answer questions against them."""

    def __init__(self, vector_store, llm, collection_name: str = QA_COLLECTION,
                 top_k: int = QA_TOP_K):
        self.vector_store = vector_store
        self.llm = llm
        self.collection_name = collection_name
        self.top_k = top_k

    # ── Ingestion ─────────────────────────────────────────────────────

    def vectorize_episode_transcript(self, episode: Episode, podcast_title: str,
                                     library_id: str) -> bool:
        """Replace the episode's vectors with fresh ones. Returns success."""
        if not episode or not episode.id or not episode.transcript:
            logger.warning("Cannot vectorize - episode has no transcript (%s)",
                           getattr(episode, 'id', None))
            return False

        try:
            self.delete_episode_vectors(episode.id)

            chunks = process_transcript_into_chunks(episode.transcript)
            if not chunks:
                logger.warning("Cannot vectorize - transcript has no segments (%s)", episode.id)
                return False

            items = []
            for chunk in chunks:
                metadata = chunk_metadata(chunk)
                metadata.update({
                    'episodeId': episode.id,
                    'podcastId': episode.library_item_id,
                    'episodeTitle': episode.title or '',
                    'podcastTitle': podcast_title or '',
                    'libraryId': library_id,
                    'startTime': chunk.start_time or 0,
                    'endTime': chunk.end_time or 0,
                })
                items.append({
                    'id': f"{episode.id}_{chunk.chunk_index}",
                    'text': chunk.text,
                    'metadata': metadata,
                })

            self.vector_store.upsert(self.collection_name, items)
            logger.info("Successfully vectorized %d chunks for episode: %s", len(items), episode.id)
            return True
        except Exception as e:
            logger.error("Failed to vectorize episode transcript %s: %s", episode.id, e)
            return False

    def delete_episode_vectors(self, episode_id: str):
        self.vector_store.delete_where(self.collection_name, {'episodeId': episode_id})

    # ── Question answering ────────────────────────────────────────────

    def retrieve(self, question: str, library_ids: list[str]) -> list[RetrievedPassage]:
        results = self.vector_store.query(
            self.collection_name, question,
            {'libraryId': {'$in': list(library_ids)}}, self.top_k,
        )
        return [_passage_from_result(r) for r in results]

    def query(self, question: str, library_ids: list[str]) -> Answer:
        passages = self.retrieve(question, library_ids)
        if not passages:
            return Answer(answer=QA_NOT_FOUND_ANSWER, sources=[])

        context = '\n\n'.join(
            f"[Episode: {p.episode_title}, Podcast: {p.podcast_title}, "
            f"Timestamp: {format_timestamp(p.start_time)}] {p.content}"
            for p in passages
        )
        prompt = QA_PROMPT.format(
            not_found=QA_NOT_FOUND_ANSWER, max_sources=QA_MAX_SOURCES,
            context=context, question=question,
        )
        response = parse_llm_json(self.llm.complete(prompt))

        sources = []
        for segment in (response.get('relevantSegments') or [])[:QA_MAX_SOURCES]:
            if not isinstance(segment, dict):
                continue
            sources.append(self._source_for(segment, passages))

        return Answer(answer=response['answer'], sources=filter_similar_sources(sources))

    @staticmethod
    def _source_for(segment: dict, passages: list[RetrievedPassage]) -> AnswerSource:
        match = next(
            (p for p in passages
             if p.episode_title == segment.get('episodeTitle')
             and p.podcast_title == segment.get('podcastTitle')),
            None,
        )

        timestamp = segment.get('timestamp')
        if not timestamp or 'NaN' in str(timestamp):
            timestamp = format_timestamp(match.start_time) if match else '[00:00]'

        return AnswerSource(
            episode_id=match.episode_id if match else None,
            podcast_id=match.podcast_id if match else None,
            timestamp=timestamp,
            episode_title=(match.episode_title if match else '') or segment.get('episodeTitle', ''),
            podcast_title=(match.podcast_title if match else '') or segment.get('podcastTitle', ''),
            transcript_content=segment.get('context') or (match.content if match else ''),
        )
