"""Tests for the bounded per-meeting transcript buffer."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from src.meetbot.meetings.transcription.buffer import (
    MAX_SEGMENTS_PER_MEETING,
    TranscriptBuffer,
)

from tests.factories import make_segment


class TestAddAndRead:
    def test_segments_returned_in_insertion_order(self, buffer):
        first = make_segment("one")
        second = make_segment("two")
        buffer.add_segment("m1", first)
        buffer.add_segment("m1", second)

        assert buffer.get_segments("m1") == [first, second]

    def test_unknown_meeting_is_empty(self, buffer):
        assert buffer.get_segments("nope") == []
        assert buffer.has_segments("nope") is False
        assert buffer.segment_count("nope") == 0

    def test_snapshot_is_a_copy(self, buffer):
        buffer.add_segment("m1", make_segment())
        snapshot = buffer.get_segments("m1")
        snapshot.clear()

        assert buffer.segment_count("m1") == 1

    def test_meetings_are_isolated(self, buffer):
        buffer.add_segment("m1", make_segment("for m1", meeting_id="m1"))
        buffer.add_segment("m2", make_segment("for m2", meeting_id="m2"))
        buffer.clear_buffer("m1")

        assert buffer.has_segments("m1") is False
        assert [s.text for s in buffer.get_segments("m2")] == ["for m2"]

    def test_duration_filters_old_segments(self, buffer):
        now = datetime.now(timezone.utc)
        old = make_segment("old", at=now - timedelta(minutes=20))
        recent = make_segment("recent", at=now - timedelta(minutes=1))
        buffer.add_segment("m1", old)
        buffer.add_segment("m1", recent)

        assert buffer.get_segments("m1", duration=timedelta(minutes=5)) == [recent]


class TestValidation:
    def test_empty_meeting_id_rejected(self, buffer):
        with pytest.raises(ValueError):
            buffer.add_segment("", make_segment())
        with pytest.raises(ValueError):
            buffer.get_segments("")

    def test_none_segment_rejected(self, buffer):
        with pytest.raises(ValueError):
            buffer.add_segment("m1", None)


class TestCapacity:
    def test_default_capacity(self):
        assert MAX_SEGMENTS_PER_MEETING == 1000

    def test_oldest_evicted_when_full(self):
        buffer = TranscriptBuffer(max_segments=1000)
        for i in range(1001):
            buffer.add_segment("m1", make_segment(f"line {i}"))

        segments = buffer.get_segments("m1")
        assert len(segments) == 1000
        assert segments[0].text == "line 1"
        assert segments[-1].text == "line 1000"

    def test_concurrent_producers_respect_capacity(self):
        buffer = TranscriptBuffer(max_segments=500)

        def produce(tag: str) -> None:
            for i in range(400):
                buffer.add_segment("m1", make_segment(f"{tag}-{i}"))

        threads = [threading.Thread(target=produce, args=(tag,)) for tag in "abc"]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert buffer.segment_count("m1") == 500
        survivors = _indices_by_producer(buffer.get_segments("m1"))
        for indices in survivors.values():
            assert indices == sorted(indices)
            # The tail of each producer survives contiguously
            assert indices == list(range(indices[0], 400))

    def test_concurrent_producers_keep_their_own_order(self):
        buffer = TranscriptBuffer(max_segments=2000)

        def produce(tag: str) -> None:
            for i in range(400):
                buffer.add_segment("m1", make_segment(f"{tag}-{i}"))

        threads = [threading.Thread(target=produce, args=(tag,)) for tag in "abc"]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert _indices_by_producer(buffer.get_segments("m1")) == {
            tag: list(range(400)) for tag in "abc"
        }


def _indices_by_producer(segments) -> dict[str, list[int]]:
    indices: dict[str, list[int]] = {}
    for segment in segments:
        tag, index = segment.text.split("-")
        indices.setdefault(tag, []).append(int(index))
    return indices


class TestClearing:
    def test_clear_buffer_empties_meeting(self, buffer):
        buffer.add_segment("m1", make_segment())
        buffer.clear_buffer("m1")

        assert buffer.has_segments("m1") is False

    def test_clear_through_keeps_later_segments(self, buffer):
        drained = [make_segment("a"), make_segment("b")]
        for segment in drained:
            buffer.add_segment("m1", segment)
        late = make_segment("arrived during the pass")
        buffer.add_segment("m1", late)

        removed = buffer.clear_through("m1", drained[-1])

        assert removed == 2
        assert buffer.get_segments("m1") == [late]

    def test_clear_through_evicted_marker_removes_nothing(self):
        buffer = TranscriptBuffer(max_segments=2)
        marker = make_segment("marker")
        buffer.add_segment("m1", marker)
        buffer.add_segment("m1", make_segment("x"))
        buffer.add_segment("m1", make_segment("y"))  # evicts marker

        assert buffer.clear_through("m1", marker) == 0
        assert buffer.segment_count("m1") == 2

    def test_clear_through_everything_leaves_no_segments(self, buffer):
        only = make_segment()
        buffer.add_segment("m1", only)
        buffer.clear_through("m1", only)

        assert buffer.has_segments("m1") is False
