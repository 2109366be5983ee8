"""WebVTT transcript parsing.

Turns platform transcript content into TranscriptSegment objects. Every
``<v Speaker>text</v>`` voice line becomes one segment stamped with the start
timestamp of the most recent ``-->`` header, so a cue with several voice lines
yields several segments. Cue offsets are anchored to the given base date
(today, UTC, by default). Lines that do not fit the expected shape are
skipped.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone

import structlog

from src.meetbot.meetings.schemas import TranscriptSegment

logger = structlog.get_logger(__name__)

_VOICE_RE = re.compile(r"^<v\s+([^>]*)>(.*?)(?:</v>)?\s*$")
_TIMESTAMP_RE = re.compile(r"^(?:(\d{1,2}):)?(\d{1,2}):(\d{1,2})(?:\.(\d{1,3}))?$")


def parse_vtt_timestamp(value: str, base_date: date | None = None) -> datetime:
    """Parse ``HH:MM:SS.mmm`` or ``MM:SS.mmm`` onto ``base_date`` (UTC).

    An unparseable value yields the current time.
    """
    match = _TIMESTAMP_RE.match(value.strip())
    if not match:
        logger.debug("vtt.bad_timestamp", value=value)
        return datetime.now(timezone.utc)

    hours, minutes, seconds, millis = match.groups()
    offset = timedelta(
        hours=int(hours or 0),
        minutes=int(minutes),
        seconds=int(seconds),
        milliseconds=int((millis or "0").ljust(3, "0")),
    )
    anchor = datetime.combine(
        base_date or datetime.now(timezone.utc).date(),
        time.min,
        tzinfo=timezone.utc,
    )
    return anchor + offset


def parse_vtt(
    content: str,
    meeting_id: str,
    base_date: date | None = None,
) -> list[TranscriptSegment]:
    """Parse WebVTT content into segments, in cue order."""
    segments: list[TranscriptSegment] = []
    if not content:
        return segments

    cue_start: datetime | None = None
    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        if "-->" in line:
            cue_start = parse_vtt_timestamp(line.split("-->", 1)[0], base_date)
            continue

        if cue_start is None:
            # Header, NOTE blocks, cue identifiers
            continue

        match = _VOICE_RE.match(line)
        if not match:
            continue

        speaker = match.group(1).strip()
        text = match.group(2).strip()
        if not text:
            continue

        segments.append(
            TranscriptSegment(
                meeting_id=meeting_id,
                speaker_id=speaker,
                speaker_name=speaker,
                text=text,
                timestamp=cue_start,
                is_final=True,
            )
        )

    return segments
