"""Selects the ingestion strategy for a meeting's configured transcript method."""

from __future__ import annotations

from collections.abc import Iterable

from src.meetbot.meetings.schemas import TranscriptMethod
from src.meetbot.meetings.transcription.base import TranscriptionStrategy


class TranscriptionStrategyFactory:
    """Maps each TranscriptMethod to its long-lived strategy instance."""

    def __init__(self, strategies: Iterable[TranscriptionStrategy]) -> None:
        self._strategies = {strategy.method: strategy for strategy in strategies}

    def create(self, method: TranscriptMethod | str) -> TranscriptionStrategy:
        """Return the strategy for ``method``.

        Raises:
            ValueError: The method is unknown or has no registered strategy.
        """
        try:
            return self._strategies[TranscriptMethod(method)]
        except (KeyError, ValueError):
            raise ValueError(f"Unsupported transcription method: {method}") from None

    def get(self, method: TranscriptMethod) -> TranscriptionStrategy | None:
        return self._strategies.get(method)
