"""Turn-level verdicts: how confident we are, and whether to look further.

``evaluate`` short-circuits the answer stage when everything extracted was
noise; synthesising an answer from cookie banners only produces a
confident-sounding wrong reply.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from content_quality import quality_of, strip_markers
from models import ContentQuality, ExecutionSummary, Intent

HIGH_CONTENT_LENGTH = 500
MEDIUM_CONTENT_LENGTH = 200
ANSWER_CONTENT_LIMIT = 4000
PLAIN_ANSWER_LIMIT = 1000

REPHRASE_MESSAGE = (
    "I found some search results but they don't contain detailed information about your question. "
    "The extracted content appears to be promotional or navigation text rather than substantial answers. "
    "You might want to try asking your question in a different way or be more specific."
)
REPHRASE_SUGGESTION = "Try rephrasing your question or asking for more specific information"

ANSWER_SYSTEM_PROMPT = "You are a helpful assistant that provides clear, accurate answers based on web content."

STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class Outcome:
    confidence: str
    needs_more_sources: bool
    status: str
    content: str = ""
    message: Optional[str] = None
    suggestion: Optional[str] = None

    @property
    def short_circuited(self) -> bool:
        return self.message is not None


def classify_status(summary: ExecutionSummary) -> str:
    if summary.total_steps > 0 and summary.successful_steps == summary.total_steps:
        return STATUS_SUCCESS
    if summary.successful_steps > 0:
        return STATUS_PARTIAL
    return STATUS_FAILED


def status_reply(summary: ExecutionSummary) -> Tuple[str, str]:
    """Chat reply and message status for an execution summary."""
    done, total = summary.successful_steps, summary.total_steps
    status = classify_status(summary)
    if status == STATUS_SUCCESS:
        return f"✅ Automation successful! Executed {done}/{total} steps successfully.", "action_confirmed"
    if status == STATUS_PARTIAL:
        return f"⚠️ Automation partially successful: {done}/{total} steps completed.", "error"
    return "❌ Automation failed: Unable to complete any steps. Please check the logs for details.", "error"


def combine_content(extracted: Sequence[str], supporting_content: str = "") -> str:
    parts = [supporting_content] + [strip_markers(text) for text in extracted]
    return "\n\n".join(part for part in parts if part)


def evaluate(summary: ExecutionSummary, extracted: Sequence[str], supporting_content: str = "") -> Outcome:
    """Grade a turn from its execution summary and extracted texts.

    ``extracted`` holds extractText results, quality markers included; the
    markers are only read here and never count towards content length.
    """
    content = combine_content(extracted, supporting_content)
    length = len(content)
    status = classify_status(summary)

    has_high = any(quality_of(text) is ContentQuality.HIGH for text in extracted)
    if not has_high and length < MEDIUM_CONTENT_LENGTH:
        return Outcome(
            confidence="low",
            needs_more_sources=True,
            status=status,
            content=content,
            message=REPHRASE_MESSAGE,
            suggestion=REPHRASE_SUGGESTION,
        )

    if summary.successful_steps == summary.total_steps and length > HIGH_CONTENT_LENGTH:
        confidence = "high"
    elif summary.successful_steps > 0 or length > MEDIUM_CONTENT_LENGTH:
        confidence = "medium"
    else:
        confidence = "low"
    return Outcome(confidence=confidence, needs_more_sources=False, status=status, content=content)


def build_answer_prompt(intent: Intent, content: str) -> str:
    truncated = content[:ANSWER_CONTENT_LIMIT]
    if len(content) > ANSWER_CONTENT_LIMIT:
        truncated += "\n\n[Content truncated due to length]"
    return f"""
You are a helpful assistant that answers questions based on web content.

User's question: "{intent.query}"
Intent/Action: {intent.action}

Web content found:
{truncated}

Please provide a direct, helpful answer to the user's question based on this content. If the content doesn't contain enough information to answer the question, say so clearly. Be concise but informative.

Guidelines:
- Give a direct answer to the specific question asked
- Use information from the content to support your answer
- If information is missing or unclear, acknowledge that
- Keep the response conversational and helpful
- Don't mention that you're analyzing web content - just answer naturally
"""


def plain_answer(content: str) -> str:
    """Answer used when no answer model is configured."""
    ellipsis = "..." if len(content) > PLAIN_ANSWER_LIMIT else ""
    return f"Based on the information I found: {content[:PLAIN_ANSWER_LIMIT]}{ellipsis}"
