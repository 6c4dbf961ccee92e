"""Tests for time preference extraction and search-window resolution."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from datetime import datetime

import pytest

from receptionist.interpreter.time_preference import (
    extract_time_preference,
    preference_window,
)

from conftest import NOW, TZ, at


# ── Extraction ──────────────────────────────────────────────────


class TestExtractTimePreference:
    @pytest.mark.parametrize("utterance, expected", [
        ("tomorrow afternoon please", "tomorrow afternoon"),
        ("this arvo if you can", "today afternoon"),
        ("yeah mate, this arvo works", "today afternoon"),
        ("sometime in the morning", "today morning"),
        ("could I come in tomorrow at 3", "tomorrow 3:00pm"),
        ("around 10 am", "today 10:00am"),
        ("9:30 a.m. would be good", "today 9:30am"),
        ("at 4 o'clock", "today 4:00pm"),
        ("how about Thursday", "thursday"),
        ("tomorrow works", "tomorrow"),
        ("anytime next week", "next week"),
        ("sometime this week", "today"),
    ])
    def test_recognised_phrases(self, utterance, expected):
        assert extract_time_preference(utterance) == expected

    def test_time_of_day_outranks_weekday(self):
        """Ordering of the pattern table decides ties."""
        assert extract_time_preference("Friday afternoon") == "today afternoon"

    @pytest.mark.parametrize("utterance", [
        "",
        "I'd like to make an appointment",
        "there are 2 of us",
        "I'm 5",
        "13:00",
        "yes please",
        "I have back pain",
        "John Smith",
    ])
    def test_no_time(self, utterance):
        assert extract_time_preference(utterance) is None

    @pytest.mark.parametrize("utterance", [
        "tomorrow afternoon",
        "could I come in tomorrow at 3",
        "monday",
        "next week",
    ])
    def test_idempotent(self, utterance):
        once = extract_time_preference(utterance)
        assert extract_time_preference(once) == once


# ── Windows ─────────────────────────────────────────────────────


class TestPreferenceWindow:
    def test_tomorrow_afternoon(self):
        window = preference_window("tomorrow afternoon", NOW)
        assert window.start == at(1, 12)
        assert window.end == at(1, 17)

    def test_specific_time_spans_hour_before_to_two_after(self):
        window = preference_window("tomorrow 3:00pm", NOW)
        assert window.start == at(1, 14)
        assert window.end == at(1, 17)

    def test_morning_today_starts_now(self):
        window = preference_window("today morning", NOW)
        assert window.start == NOW
        assert window.end == at(0, 12)

    def test_same_weekday_means_next_week(self):
        window = preference_window("monday", NOW)
        assert window.start == at(7, 8)
        assert window.end == at(7, 18)

    def test_weekday_later_this_week(self):
        window = preference_window("thursday", NOW)
        assert window.start.date() == at(3, 8).date()

    def test_next_week(self):
        window = preference_window("next week", NOW)
        assert window.start == at(7, 8)

    def test_past_period_gives_empty_window(self):
        late = datetime(2026, 10, 19, 21, 0, tzinfo=TZ)
        window = preference_window("today evening", late)
        assert window.end <= window.start
