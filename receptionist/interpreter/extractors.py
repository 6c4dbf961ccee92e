"""Deterministic slot extractors.

Pure functions over the caller's utterance. Each returns ``None`` (or
``False`` for detectors) when nothing usable was said, so absent results
never overwrite what the call already knows.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from receptionist.interpreter.time_preference import WEEKDAYS, normalize
from receptionist.models.call_state import Participant

log = logging.getLogger("receptionist.extractors")


# ── Yes / no ────────────────────────────────────────────────────

_AFFIRMATIVE_IDIOMS = re.compile(r"\b(no worries|no problem|why not)\b")
# Negation counts only as a leading answer ("no", "yeah nah") or an outright decline.
_LEADING_NEGATIVE = re.compile(
    r"^(?:(?:yeah|yes|oh|um|uh|well) )?"
    r"(?:no|nope|nah|not really|negative|wrong|i haven't|i have not|i don't think so)\b"
)
_DECLINE = re.compile(
    r"\b(?:doesn't|doesnt|does not|won't|wont|will not|can't|cant|cannot|couldn't) "
    r"(?:suit|work|make|do)\b|\b(?:don't|dont|do not) want\b|"
    r"\bnot (?:for me|suitable|good for me)\b|\b(?:never mind|neither)\b"
)
_AFFIRMATIVE = re.compile(
    r"\b(yes|yeah|yea|yep|yup|sure|correct|right|ok|okay|sounds good|perfect|"
    r"please do|go ahead|absolutely|definitely|that works|works for me|great|"
    r"lovely|book it|do it|that's fine|fine)\b"
)


def extract_confirmation(utterance: str, digits: Optional[str] = None) -> Optional[bool]:
    """Yes/no from speech, or from a keypad press (1 = yes, 2 = no)."""
    if digits:
        key = digits.strip()[:1]
        if key == "1":
            return True
        if key == "2":
            return False
    text = normalize(re.sub(r"[.,!?;]", " ", utterance))
    if not text:
        return None
    if _AFFIRMATIVE_IDIOMS.search(text):
        return True
    if _LEADING_NEGATIVE.search(text) or _DECLINE.search(text):
        return False
    if _AFFIRMATIVE.search(text):
        return True
    return None


# ── Names ───────────────────────────────────────────────────────

_PRONOUNS = frozenset({
    "myself", "yourself", "himself", "herself", "itself", "ourselves", "themselves",
    "me", "you", "him", "her", "us", "them", "i", "we", "they",
    "my", "your", "his", "its", "our", "their",
})

_RELATIONS = (
    "son", "daughter", "wife", "husband", "partner", "child", "kid", "kids", "children",
    "baby", "mother", "father", "mom", "mum", "dad", "brother", "sister", "friend",
    "boyfriend", "girlfriend", "spouse", "fiance", "fiancee",
)

_REFERENCE_PREFIXES = ("my ", "your ", "his ", "her ", "the ", "for ")

_NON_NAME_WORDS = frozenset({
    "for", "and", "the", "a", "an", "this", "that", "here", "there",
    "when", "what", "where", "which", "who", "whom", "whose",
    "today", "tomorrow", "both", "all", "some", "any", "each",
    "appointment", "booking", "book", "please", "thanks", "thank", "can", "make",
    "yes", "yeah", "no", "nope", "ok", "okay", "sure", "hi", "hello", "um", "uh",
    "morning", "afternoon", "evening", "arvo", "week", "next", "just", "looking",
    "calling", "wanting", "hoping", "trying", "after", "not", "new", "patient",
    "at", "on", "in", "to", "of", "with", "from", "around", "about", "am", "pm",
    "like", "would", "want", "need", "is", "are", "was", "be", "have", "has",
    "as", "also", "too", "well", "it", "one", "same", "time",
    "i'm", "i'd", "i've", "i'll", "im", "id",
    *WEEKDAYS,
})

_PLACEHOLDERS = frozenset({"primary", "secondary", "caller", "patient1", "patient2"})

_ARTIFACT_WORDS = (
    "message", "text", "sms", "link", "email", "please", "thanks", "thank you",
    "okay", "ok", "appointment", "booking", "book",
)


def is_valid_person_name(name: str) -> bool:
    """Reject pronouns, relationship references, placeholders and filler."""
    lower = normalize(name)
    if len(lower) < 2:
        return False
    if lower in _PRONOUNS or lower in _PLACEHOLDERS or lower in _NON_NAME_WORDS:
        return False
    if lower.startswith(_REFERENCE_PREFIXES):
        return False
    if lower in _RELATIONS:
        return False
    if any(word in _NON_NAME_WORDS or word in _PRONOUNS for word in lower.split()):
        return False
    return bool(re.fullmatch(r"[a-z][a-z'\-]*( [a-z][a-z'\-]*){0,2}", lower))


def sanitize_name(name: Optional[str]) -> Optional[str]:
    """Strip speech artifacts and trailing punctuation, then title-case.

    ``"chris message"`` becomes ``"Chris"``.
    """
    if not name:
        return None
    cleaned = name.strip()
    for artifact in _ARTIFACT_WORDS:
        cleaned = re.sub(rf"\s+{artifact}\s*$", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"[.,!?;:]+$", "", cleaned).strip()
    cleaned = " ".join(w[:1].upper() + w[1:] for w in cleaned.split())
    return cleaned or None


_NAME_INTRO = re.compile(
    r"\b(?:my name is|my name's|name is|it's|it is|this is|i'm|i am|call me)\s+"
    r"([a-z][a-z'\-]*(?:\s+[a-z][a-z'\-]*){0,2})"
)


def extract_caller_name(utterance: str, expecting_name: bool = False) -> Optional[str]:
    """Pull the caller's own name out of an introduction.

    When the caller was just asked for their name a bare answer ("John
    Smith") is accepted too.
    """
    text = normalize(re.sub(r"[.,!?;]", " ", utterance))
    if not text:
        return None
    m = _NAME_INTRO.search(text)
    if m:
        words = m.group(1).split()
        # "it's john and I'd like to book" -> keep leading name words only
        kept = []
        for word in words:
            if word in _NON_NAME_WORDS or word in _PRONOUNS:
                break
            kept.append(word)
        candidate = " ".join(kept)
        if candidate and is_valid_person_name(candidate):
            return sanitize_name(candidate)
    if expecting_name:
        candidate = sanitize_name(text)
        if candidate and len(candidate.split()) <= 3 and is_valid_person_name(candidate):
            return candidate
    return None


_TWO_FULL_NAMES = re.compile(r"\b([a-z]+)\s+([a-z]+)\s+and\s+([a-z]+)\s+([a-z]+)\b")
_MIXED_NAMES = re.compile(r"\b([a-z]+)(?:\s+[a-z]+)?\s+and\s+([a-z]+)(?:\s+([a-z]+))?\b")
_SIMPLE_NAMES = re.compile(r"\b([a-z]{3,})\s+and\s+([a-z]{3,})\b")

_LIST_LEADS = re.compile(
    r"^(?:(?:their|the|our) names are|names are|it's|it is|they're|they are|that's|"
    r"that is|um|uh|so)\s+"
)
_SPLIT = re.compile(r"\s*(?:,|&|\band\b)\s*")


def _as_participants(names: list[str]) -> list[Participant]:
    people = []
    for index, name in enumerate(names):
        people.append(Participant(name=sanitize_name(name) or name,
                                  relation="caller" if index == 0 else "family"))
    return people


def extract_two_names(utterance: str) -> Optional[list[Participant]]:
    """Two names joined by "and" anywhere in a sentence.

    Handles "Michael Bishop and Scott Bishop", "Michael and Scott Bishop"
    and "Michael and Scott". Both names must pass ``is_valid_person_name``.
    """
    text = normalize(utterance)
    if len(text) < 5:
        return None

    candidates = []
    m = _TWO_FULL_NAMES.search(text)
    if m:
        candidates.append([f"{m.group(1)} {m.group(2)}", f"{m.group(3)} {m.group(4)}"])
    m = _MIXED_NAMES.search(text)
    if m:
        candidates.append([m.group(1), f"{m.group(2)} {m.group(3)}" if m.group(3) else m.group(2)])
    m = _SIMPLE_NAMES.search(text)
    if m:
        candidates.append([m.group(1), m.group(2)])

    for pair in candidates:
        if all(is_valid_person_name(n) for n in pair):
            return _as_participants(pair)
        log.debug("Rejected name pair: %s", pair)
    return None


def extract_participant_names(utterance: str) -> Optional[list[Participant]]:
    """Names listed in answer to "who are the appointments for?".

    Accepts "Sam, Alex and Jo" style lists. Every chunk must be a valid
    name; otherwise falls back to the two-name patterns.
    """
    text = normalize(re.sub(r"[.!?;]", " ", utterance))
    text = _LIST_LEADS.sub("", text)
    chunks = [c for c in _SPLIT.split(text) if c]
    if len(chunks) >= 2 and all(
        len(c.split()) <= 3 and is_valid_person_name(c) for c in chunks
    ):
        return _as_participants(chunks)
    return extract_two_names(utterance)


# ── Caller attributes ───────────────────────────────────────────

_NEW_PATIENT = re.compile(
    r"\b(new patient|first time|first visit|never been|haven't been|have not been|"
    r"not been before|brand new)\b"
)
_RETURNING_PATIENT = re.compile(
    r"\b(been (?:there|here|in|to you|before)|existing patient|returning|"
    r"seen (?:you|before)|regular|come before|came before)\b"
)


def extract_new_patient(utterance: str) -> Optional[bool]:
    text = normalize(utterance)
    if _NEW_PATIENT.search(text):
        return True
    if _RETURNING_PATIENT.search(text):
        return False
    return None


# ── Detectors ───────────────────────────────────────────────────

_FAMILY = r"(son|child|daughter|kids?|husband|wife|partner|mum|mom|dad|father|mother)"

GROUP_BOOKING_PATTERNS = (
    re.compile(rf"\bmyself and my {_FAMILY}\b"),
    re.compile(rf"\bme and my {_FAMILY}\b"),
    re.compile(rf"\bmy {_FAMILY} and (me|myself|i)\b"),
    re.compile(r"\bboth of us\b"),
    re.compile(r"\btwo of us\b"),
    re.compile(r"\bfor (both|two|the two)\b"),
    re.compile(r"\bappointments? for (both|two|me and)\b"),
    re.compile(r"\bbook(ing)? for (me|myself) and\b"),
    re.compile(r"\bfor myself and\b"),
    re.compile(r"\b(book|appointment|see)\b.+\b(son|child|daughter|kids?)\b.+\band\b.+\b(me|myself)\b"),
    re.compile(r"\b(book|appointment|see)\b.+\b(me|myself)\b.+\band\b.+\b(son|child|daughter|kids?)\b"),
)


def detect_group_booking(utterance: str) -> bool:
    text = normalize(utterance)
    return any(p.search(text) for p in GROUP_BOOKING_PATTERNS)


_SECONDARY_PHRASES = (
    "book for my", "also book", "another appointment", "same time for",
    "same time as my", "book my child", "book my son", "book my daughter",
    "for my child", "for my son", "for my daughter", "for my kid",
    "family member", "someone else",
)


def detect_secondary_booking(utterance: str) -> bool:
    """After a completed booking: does the caller want one for someone else?"""
    text = normalize(utterance)
    return any(phrase in text for phrase in _SECONDARY_PHRASES)


_OTHER_LEAD = re.compile(r"\b(?:for|book)\b")
_OTHER_TAIL = re.compile(
    r"\s+(?:my\s+)?(?:child|son|daughter|kid|wife|husband|partner)?\s*"
    r"(?:named?\s+|called\s+)?([a-z][a-z'\-]+)"
)


def extract_other_person_name(utterance: str) -> Optional[str]:
    """Name in "book my son Jack in too" style requests, if given."""
    text = normalize(re.sub(r"[.,!?;]", " ", utterance))
    for lead in _OTHER_LEAD.finditer(text):
        m = _OTHER_TAIL.match(text, lead.end())
        if not m:
            continue
        candidate = m.group(1)
        if candidate not in _RELATIONS and is_valid_person_name(candidate):
            return sanitize_name(candidate)
    return None


def wants_same_time(utterance: str) -> bool:
    return "same time" in normalize(utterance)


_OPERATOR = re.compile(
    r"\b(speak|talk) (to|with) (a |an |the |some)?(human|person|someone|somebody|"
    r"receptionist|staff|operator|real person)|\breal person\b|\boperator\b|"
    r"\bhuman\b|\breceptionist\b|\bfront desk\b"
)


def detect_operator_request(utterance: str) -> bool:
    return bool(_OPERATOR.search(normalize(utterance)))


_CORRECTION = re.compile(
    r"^(no|nah|sorry)\b[ ,]|\b(actually|instead|how about|what about|rather|"
    r"change (it|that)|different (time|day)|make it|can we do|could we do)\b"
)


def detect_correction(utterance: str) -> bool:
    """The caller is revising something they already said."""
    return bool(_CORRECTION.search(normalize(utterance)))


# ── Safety ──────────────────────────────────────────────────────

EMERGENCY_PHRASES = (
    "emergency", "ambulance", "000", "911", "heart attack", "chest pain",
    "can't breathe", "cannot breathe", "difficulty breathing", "not breathing",
    "choking", "unconscious", "stroke", "seizure", "severe bleeding",
    "bleeding badly", "dying", "overdose", "suicide", "kill myself", "want to die",
)
_EMERGENCY = re.compile(
    r"(?<![\w'])(?:" + "|".join(re.escape(p) for p in EMERGENCY_PHRASES) + r")(?![\w'])"
)
_NON_EMERGENCY = re.compile(r"\bnot (?:an? )?emergency\b|\bnon[- ]emergency\b")

_PROFANITY = re.compile(r"\b(shit|bullshit|fuck\w*|damn|bugger)\b")


def detect_emergency(utterance: str) -> bool:
    """Life-threatening symptoms or a request for emergency services."""
    text = normalize(utterance)
    if _NON_EMERGENCY.search(text):
        return False
    return bool(_EMERGENCY.search(text))


def detect_profanity(utterance: str) -> bool:
    return bool(_PROFANITY.search(normalize(utterance)))
