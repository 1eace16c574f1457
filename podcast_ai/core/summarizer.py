"""
Refine-strategy summarization.
The first chunk seeds a summary; every later chunk is folded in with a
refine prompt that sees the running summary plus the new text.
"""

import logging
from typing import Callable, Optional

from podcast_ai.core.error_codes import JobError
from podcast_ai.core.constants import ErrorCode
from podcast_ai.core.transcript_segmenter import TranscriptChunk

logger = logging.getLogger(__name__)

SUMMARY_PROMPT = """
You are an expert in summarizing podcast content.
Your goal is to create a comprehensive yet concise summary of a podcast episode.
Below you find a portion of the transcript:
--------
{text}
--------

Create a clear and engaging summary that captures:
1. Main topics and key points discussed
2. Important insights or conclusions
3. Any notable quotes or memorable moments
4. Key takeaways for listeners

Keep the summary focused and well-structured.

SUMMARY:
"""

SUMMARY_REFINE_PROMPT = """
You are an expert in summarizing podcast content.
We have provided an existing summary up to a certain point:

EXISTING SUMMARY:
{existing_answer}

Below you find a new portion of the transcript to analyze:
--------
{text}
--------

Please refine the existing summary by:
1. Incorporating new key points and insights
2. Maintaining a coherent narrative flow
3. Avoiding redundancy
4. Preserving important details from the existing summary

If the new context isn't useful or redundant, return the original summary.

REFINED SUMMARY:
"""


def generate_summary(llm, chunks: list[TranscriptChunk],
                     on_step: Optional[Callable[[int, int], None]] = None) -> str:
    """
    Run the refine chain over chunks with llm.complete(prompt).
    on_step(done, total) is called after every LLM call.
    """
    if not chunks:
        raise JobError(ErrorCode.TRANSCRIPT_MISSING, "Transcript has no text to summarize")

    total = len(chunks)
    summary = llm.complete(SUMMARY_PROMPT.format(text=chunks[0].text))
    if on_step:
        on_step(1, total)

    for i, chunk in enumerate(chunks[1:], start=2):
        refined = llm.complete(SUMMARY_REFINE_PROMPT.format(
            existing_answer=summary, text=chunk.text))
        # An empty refinement keeps what we had
        if refined.strip():
            summary = refined
        logger.debug("Refined summary with chunk %d/%d", i, total)
        if on_step:
            on_step(i, total)

    summary = summary.strip()
    if not summary:
        raise JobError(ErrorCode.LLM_FAILED, "LLM returned an empty summary")
    return summary
