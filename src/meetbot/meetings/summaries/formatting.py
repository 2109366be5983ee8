"""Renderings of summaries for chat posts and catch-up cards."""

from __future__ import annotations

from typing import Any

from src.meetbot.meetings.schemas import ActionItem, Summary

CARD_SCHEMA = "http://adaptivecards.io/schemas/adaptive-card.json"
CARD_VERSION = "1.4"
MAX_CARD_ITEMS = 3


def _time_range(summary: Summary) -> str:
    return f"{summary.period_start:%H:%M} - {summary.period_end:%H:%M}"


def _action_item_text(item: ActionItem) -> str:
    if item.assigned_to:
        return f"{item.description} ({item.assigned_to})"
    return item.description


def format_summary_message(summary: Summary) -> str:
    """Markdown text posted to the meeting chat after each pass."""
    parts = [f"**Meeting Summary** ({_time_range(summary)})", "", summary.content]

    if summary.key_topics:
        parts += ["", "**Key Topics:**", *(f"- {topic}" for topic in summary.key_topics)]
    if summary.decisions:
        parts += ["", "**Decisions:**", *(f"- {decision}" for decision in summary.decisions)]
    if summary.action_items:
        parts += [
            "",
            "**Action Items:**",
            *(f"- {_action_item_text(item)}" for item in summary.action_items),
        ]
    return "\n".join(parts)


def _text_block(text: str, **extra: Any) -> dict[str, Any]:
    return {"type": "TextBlock", "text": text, "wrap": True, **extra}


def _bullets(title: str, items: list[str]) -> list[dict[str, Any]]:
    if not items:
        return []
    shown = items[:MAX_CARD_ITEMS]
    lines = "\n".join(f"- {item}" for item in shown)
    if len(items) > len(shown):
        lines += f"\n- ...and {len(items) - len(shown)} more"
    return [
        _text_block(title, weight="Bolder", spacing="Small"),
        _text_block(lines, spacing="None"),
    ]


def build_catch_up_card(summaries: list[Summary]) -> dict[str, Any]:
    """Adaptive card listing what a late joiner missed, one container per summary."""
    body: list[dict[str, Any]] = [
        _text_block("Meeting Catch-Up", size="Large", weight="Bolder"),
        _text_block("Here's what you missed before you joined:", isSubtle=True),
    ]

    for summary in summaries:
        items: list[dict[str, Any]] = [
            _text_block(_time_range(summary), weight="Bolder", color="Accent"),
            _text_block(summary.content),
        ]
        items += _bullets("Key Topics", summary.key_topics)
        items += _bullets("Decisions", summary.decisions)
        items += _bullets(
            "Action Items",
            [_action_item_text(item) for item in summary.action_items],
        )
        body.append({"type": "Container", "separator": True, "spacing": "Medium", "items": items})

    return {
        "$schema": CARD_SCHEMA,
        "type": "AdaptiveCard",
        "version": CARD_VERSION,
        "body": body,
    }
