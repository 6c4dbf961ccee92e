"""Time preference extraction and search-window resolution.

``extract_time_preference`` turns free speech into a short normalized phrase
("today afternoon", "tomorrow 3:00pm", "monday", "next week"). Patterns are
tried in the order of ``PATTERNS``; the first one that produces a value wins.
Tie-break order is significant: "Friday afternoon" resolves to
"today afternoon" because time of day outranks weekday.

``preference_window`` turns a normalized phrase into a concrete search window
in the clinic's timezone.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Callable, Optional

from receptionist.models.slots import TimeWindow

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_TIME_OF_DAY = re.compile(r"\b(this|today|tomorrow|next)?\s*(morning|afternoon|evening|arvo)\b")
_CLOCK_TIME = re.compile(
    r"\b(?:(?P<day>today|tomorrow)\s+)?(?:(?P<prep>at|around|about)\s*)?"
    r"(?P<hour>\d{1,2})(?::(?P<minute>\d{2}))?\s*(?P<suffix>a\.?m\.?|p\.?m\.?|o'?clock)?(?=\W|$)"
)
_WEEKDAY = re.compile(r"\b(" + "|".join(WEEKDAYS) + r")\b")
_TOMORROW = re.compile(r"\btomorrow\b")
_TODAY = re.compile(r"\btoday\b")
_NEXT_WEEK = re.compile(r"\bnext\s+week\b")
_THIS_WEEK = re.compile(r"\bthis\s+week\b")


def normalize(text: str) -> str:
    return " ".join(text.lower().split())


# ── Pattern table ───────────────────────────────────────────────


def _time_of_day(text: str) -> Optional[str]:
    m = _TIME_OF_DAY.search(text)
    if not m:
        return None
    qualifier = m.group(1) or "today"
    if qualifier == "this":
        qualifier = "today"
    period = "afternoon" if m.group(2) == "arvo" else m.group(2)
    return f"{qualifier} {period}"


def _clock_time(text: str) -> Optional[str]:
    for m in _CLOCK_TIME.finditer(text):
        # A bare number ("I'm 5", "3 of us") is not a time.
        if not (m["day"] or m["prep"] or m["minute"] or m["suffix"]):
            continue
        hour = int(m["hour"])
        minute = m["minute"] or "00"
        if not 1 <= hour <= 12 or int(minute) > 59:
            continue
        meridiem = (m["suffix"] or "").replace(".", "")
        if meridiem not in ("am", "pm"):
            meridiem = "pm"
        return f"{m['day'] or 'today'} {hour}:{minute}{meridiem}"
    return None


def _weekday(text: str) -> Optional[str]:
    m = _WEEKDAY.search(text)
    return m.group(1) if m else None


def _relative_day(text: str) -> Optional[str]:
    if _TOMORROW.search(text):
        return "tomorrow"
    if _TODAY.search(text):
        return "today"
    return None


def _week_reference(text: str) -> Optional[str]:
    if _NEXT_WEEK.search(text):
        return "next week"
    if _THIS_WEEK.search(text):
        return "today"
    return None


PATTERNS: tuple[tuple[str, Callable[[str], Optional[str]]], ...] = (
    ("time_of_day", _time_of_day),
    ("clock_time", _clock_time),
    ("weekday", _weekday),
    ("relative_day", _relative_day),
    ("week_reference", _week_reference),
)


def extract_time_preference(utterance: str) -> Optional[str]:
    """Return the normalized time preference in ``utterance``, or None.

    Pure and idempotent: feeding a result back in returns the same result.
    """
    text = normalize(utterance)
    if not text:
        return None
    for _name, pattern in PATTERNS:
        result = pattern(text)
        if result is not None:
            return result
    return None


# ── Window resolution ───────────────────────────────────────────

_SPECIFIC_TIME = re.compile(r"(\d{1,2})(?::(\d{2}))?\s*(am|pm)")

_PERIOD_HOURS = {
    "morning": (8, 12),
    "afternoon": (12, 17),
    "evening": (17, 20),
}
_DEFAULT_HOURS = (8, 18)


def _base_day(text: str, now: datetime) -> datetime:
    if "tomorrow" in text:
        return now + timedelta(days=1)
    if "today" in text:
        return now
    if "next week" in text:
        return now + timedelta(days=7)
    for index, name in enumerate(WEEKDAYS):
        if name in text:
            days = (index - now.weekday()) % 7 or 7
            return now + timedelta(days=days)
    return now


def preference_window(time_preference: str, now: datetime) -> TimeWindow:
    """Resolve a normalized preference into a search window.

    ``now`` must be timezone-aware in the clinic's timezone. A specific time
    searches from one hour before to two hours after it; otherwise the
    morning/afternoon/evening period or business hours are used. The window
    never starts in the past and may be empty when the period is over.
    """
    text = normalize(time_preference)
    day = _base_day(text, now)

    def at(hour: int, minute: int = 0) -> datetime:
        return day.replace(hour=hour, minute=minute, second=0, microsecond=0)

    m = _SPECIFIC_TIME.search(text)
    if m:
        hour = int(m.group(1)) % 12
        if m.group(3) == "pm":
            hour += 12
        target = at(hour, int(m.group(2) or 0))
        start, end = target - timedelta(hours=1), target + timedelta(hours=2)
    else:
        for period, (first, last) in _PERIOD_HOURS.items():
            if period in text:
                break
        else:
            first, last = _DEFAULT_HOURS
        start, end = at(first), at(last)

    if start < now:
        start = now
    return TimeWindow(start=start, end=end)
