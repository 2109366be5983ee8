"""Tests for WebVTT transcript parsing."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from src.meetbot.meetings.transcription.vtt import parse_vtt, parse_vtt_timestamp

BASE = date(2026, 3, 2)

SAMPLE_VTT = """WEBVTT

0f1c2d/12-0
00:00:01.500 --> 00:00:04.000
<v Alice Smith>Good morning everyone.</v>

0f1c2d/13-0
00:00:05.000 --> 00:00:08.250
<v Bob Jones>Morning! Shall we start with the roadmap?</v>

00:01:02.000 --> 00:01:05.000
<v Alice Smith>Yes, the roadmap first.</v>
"""


class TestParseTimestamp:
    def test_hours_minutes_seconds(self):
        parsed = parse_vtt_timestamp("01:02:03.456", BASE)
        assert parsed == datetime(2026, 3, 2, 1, 2, 3, 456000, tzinfo=timezone.utc)

    def test_minutes_seconds(self):
        parsed = parse_vtt_timestamp("02:03.100", BASE)
        assert parsed == datetime(2026, 3, 2, 0, 2, 3, 100000, tzinfo=timezone.utc)

    def test_garbage_defaults_to_now(self):
        before = datetime.now(timezone.utc)
        parsed = parse_vtt_timestamp("not-a-time", BASE)
        assert before - timedelta(seconds=1) <= parsed <= datetime.now(timezone.utc)


class TestParseVtt:
    def test_parses_cues(self):
        segments = parse_vtt(SAMPLE_VTT, "m1", BASE)

        assert [s.speaker_name for s in segments] == ["Alice Smith", "Bob Jones", "Alice Smith"]
        assert segments[0].text == "Good morning everyone."
        assert segments[0].speaker_id == segments[0].speaker_name
        assert segments[1].timestamp == datetime(2026, 3, 2, 0, 0, 5, tzinfo=timezone.utc)
        assert all(s.meeting_id == "m1" for s in segments)

    def test_empty_content(self):
        assert parse_vtt("", "m1") == []

    def test_malformed_lines_are_skipped(self):
        content = (
            "WEBVTT\n\n"
            "00:00:01.000 --> 00:00:02.000\n"
            "no voice tag here\n\n"
            "00:00:03.000 --> 00:00:04.000\n"
            "<v Carol>Still parsed.</v>\n"
        )
        segments = parse_vtt(content, "m1", BASE)

        assert [s.text for s in segments] == ["Still parsed."]

    def test_bad_cue_timestamp_does_not_drop_cue(self):
        content = "WEBVTT\n\nxx:yy --> 00:00:04.000\n<v Dan>Hello.</v>\n"
        segments = parse_vtt(content, "m1", BASE)

        assert len(segments) == 1
        assert segments[0].speaker_name == "Dan"

    def test_every_voice_line_in_a_cue_is_kept(self):
        content = (
            "WEBVTT\n\n"
            "00:00:01.000 --> 00:00:05.000\n"
            "<v Alice>First line.</v>\n"
            "<v Alice>Second line.</v>\n"
            "<v Bob>Interjection.</v>\n\n"
            "00:00:06.000 --> 00:00:07.000\n"
            "<v Bob>Next cue.</v>\n"
        )
        segments = parse_vtt(content, "m1", BASE)

        assert [s.text for s in segments] == [
            "First line.",
            "Second line.",
            "Interjection.",
            "Next cue.",
        ]
        cue_start = datetime(2026, 3, 2, 0, 0, 1, tzinfo=timezone.utc)
        assert [s.timestamp for s in segments[:3]] == [cue_start] * 3
        assert segments[3].timestamp == datetime(2026, 3, 2, 0, 0, 6, tzinfo=timezone.utc)
