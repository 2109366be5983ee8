"""SummaryGenerator -- turns a batch of transcript segments into summary fields.

Renders segments as ``[HH:MM:SS] speaker: text`` lines, keeps the prompt inside
the model's token budget by dropping the oldest lines, asks the LLM for a JSON
object and validates it into GeneratedSummary.

The LLM reply is free text expected to embed one JSON object; anything before
the first ``{`` or after the last ``}`` is ignored. A failed call or an
unusable reply is retried exactly once after RETRY_DELAY_SECONDS.
"""

from __future__ import annotations

import json

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from tenacity import AsyncRetrying, stop_after_attempt, wait_fixed

from src.meetbot.meetings.exceptions import SummarizationError, SummaryParseError
from src.meetbot.meetings.schemas import SummaryOptions, TranscriptSegment
from src.meetbot.services.llm import LLMService

logger = structlog.get_logger(__name__)


# ── Constants ────────────────────────────────────────────────────────────────

CHARS_PER_TOKEN = 4.0
MAX_PROMPT_TOKENS = 8000
PROMPT_TOKEN_RESERVE = 1000  # Headroom for instructions and completion
TRUNCATION_MARKER = "[Transcription truncated due to length]"
RETRY_DELAY_SECONDS = 30.0

SYSTEM_PROMPT = (
    "You are an AI assistant that analyzes meeting transcriptions and "
    "generates structured summaries."
)


# ── Response Models ──────────────────────────────────────────────────────────


class GeneratedActionItem(BaseModel):
    """Action item as returned by the model."""

    model_config = ConfigDict(populate_by_name=True)

    description: str
    assigned_to: str | None = Field(None, alias="assignedTo")


class GeneratedSummary(BaseModel):
    """Structured fields parsed out of the model's JSON reply."""

    model_config = ConfigDict(populate_by_name=True)

    summary: str = Field(description="Concise prose summary of the span")
    key_topics: list[str] = Field(default_factory=list, alias="keyTopics")
    decisions: list[str] = Field(default_factory=list)
    action_items: list[GeneratedActionItem] = Field(default_factory=list, alias="actionItems")

    @field_validator("key_topics", "decisions", "action_items", mode="before")
    @classmethod
    def _null_as_empty(cls, value: object) -> object:
        return [] if value is None else value


# ── Rendering & Token Budget ─────────────────────────────────────────────────


def render_transcript(segments: list[TranscriptSegment]) -> str:
    """Render segments, ordered by timestamp, one ``[HH:MM:SS] speaker: text`` line each."""
    lines = []
    for segment in sorted(segments, key=lambda s: s.timestamp):
        speaker = segment.speaker_name or f"Speaker {segment.speaker_id}"
        lines.append(f"[{segment.timestamp:%H:%M:%S}] {speaker}: {segment.text}")
    return "\n".join(lines)


def estimate_tokens(text: str) -> int:
    """Rough token count: characters / CHARS_PER_TOKEN."""
    return int(len(text) / CHARS_PER_TOKEN)


def truncate_transcript(text: str, max_tokens: int = MAX_PROMPT_TOKENS) -> str:
    """Fit ``text`` into the budget by dropping its oldest lines.

    Text within ``max_tokens`` is returned unchanged. Otherwise the most
    recent lines that fit in ``max_tokens - PROMPT_TOKEN_RESERVE`` are kept,
    followed by TRUNCATION_MARKER.
    """
    if estimate_tokens(text) <= max_tokens:
        return text

    budget_chars = int((max_tokens - PROMPT_TOKEN_RESERVE) * CHARS_PER_TOKEN)
    budget_chars -= len(TRUNCATION_MARKER) + 1
    tail = text[-budget_chars:] if budget_chars > 0 else ""

    # Keep whole lines only
    newline = tail.find("\n")
    if newline != -1:
        tail = tail[newline + 1:]

    return f"{tail}\n{TRUNCATION_MARKER}" if tail else TRUNCATION_MARKER


def build_prompt(transcript: str, options: SummaryOptions) -> str:
    """Assemble the user prompt for one summarization call."""
    wanted = []
    if options.include_key_topics:
        wanted.append("- The key topics discussed")
    if options.include_decisions:
        wanted.append("- Any decisions made")
    if options.include_action_items:
        wanted.append("- Action items, with the assignee when one was named")

    return (
        "Please analyze the following meeting transcription and provide a "
        "structured summary.\n\n"
        f"Transcription:\n{transcript}\n\n"
        "Provide a concise summary of the discussion.\n"
        + ("Also extract:\n" + "\n".join(wanted) + "\n" if wanted else "")
        + "\nRespond with a single JSON object of this shape:\n"
        "{\n"
        '  "summary": "Brief summary of the discussion",\n'
        '  "keyTopics": ["topic1", "topic2"],\n'
        '  "decisions": ["decision1", "decision2"],\n'
        '  "actionItems": [{"description": "action", "assignedTo": "person or null"}]\n'
        "}"
    )


# ── Response Parsing ─────────────────────────────────────────────────────────


def parse_summary_response(content: str | None) -> GeneratedSummary:
    """Extract and validate the outermost ``{...}`` span of an LLM reply.

    Raises:
        SummaryParseError: No JSON object was found, it did not decode,
            or required fields are missing or mistyped.
    """
    text = content or ""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise SummaryParseError("No JSON object found in model response")

    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError as exc:
        raise SummaryParseError(f"Model response is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise SummaryParseError("Model response JSON is not an object")

    try:
        return GeneratedSummary.model_validate(data)
    except ValidationError as exc:
        raise SummaryParseError(f"Model response is missing required fields: {exc}") from exc


# ── Generator ────────────────────────────────────────────────────────────────


class SummaryGenerator:
    """Calls the LLM to summarize a transcript batch.

    Args:
        llm_service: LLMService used for the completion call.
        retry_delay_seconds: Wait before the single retry.
    """

    def __init__(
        self,
        llm_service: LLMService,
        retry_delay_seconds: float = RETRY_DELAY_SECONDS,
    ) -> None:
        self._llm = llm_service
        self._retry_delay_seconds = retry_delay_seconds

    async def generate(
        self,
        segments: list[TranscriptSegment],
        options: SummaryOptions | None = None,
        meeting_id: str = "",
    ) -> GeneratedSummary:
        """Summarize ``segments``.

        Raises:
            SummarizationError: Both attempts failed. SummaryParseError when
                the last failure was an unusable reply.
        """
        options = options or SummaryOptions()
        transcript = render_transcript(segments)
        prompt_text = truncate_transcript(transcript)
        if prompt_text is not transcript:
            logger.warning(
                "summary.transcript_truncated",
                meeting_id=meeting_id,
                original_tokens=estimate_tokens(transcript),
                kept_tokens=estimate_tokens(prompt_text),
            )

        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_prompt(prompt_text, options)},
        ]

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(2),
                wait=wait_fixed(self._retry_delay_seconds),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning("summary.retrying", meeting_id=meeting_id)
                    result = await self._llm.completion(
                        messages=messages,
                        max_tokens=options.max_output_tokens,
                        temperature=options.temperature,
                        metadata={"meeting_id": meeting_id},
                    )
                    return parse_summary_response(result.get("content"))
        except SummarizationError:
            raise
        except Exception as exc:
            raise SummarizationError(f"LLM call failed: {exc}") from exc
        raise SummarizationError("LLM call produced no result")
