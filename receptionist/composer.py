"""Prompt keys to speakable text.

The router only ever names prompts (``Prompt(PromptKey.OFFER_SLOT, when=...)``);
the literal wording lives here. Every outbound string goes through
``sanitize`` so internal identifiers are never read out to a caller.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

from receptionist.config import Settings

log = logging.getLogger("receptionist.composer")


class PromptKey(str, Enum):
    GREETING = "greeting"
    GREETING_KNOWN = "greeting_known"
    NOT_UNDERSTOOD = "not_understood"
    ASK_NAME = "ask_name"
    ASK_NAME_AGAIN = "ask_name_again"
    ASK_NAME_OTHER = "ask_name_other"
    ASK_NEW_PATIENT = "ask_new_patient"
    ASK_TIME = "ask_time"
    ASK_TIME_AGAIN = "ask_time_again"
    OFFER_SLOT = "offer_slot"
    OFFER_ANOTHER = "offer_another"
    NO_SLOTS = "no_slots"
    BOOKED = "booked"
    REPROMPT_YES_NO = "reprompt_yes_no"
    ASK_GROUP_NAMES = "ask_group_names"
    ASK_GROUP_NAMES_AGAIN = "ask_group_names_again"
    GROUP_ASK_TIME = "group_ask_time"
    GROUP_BOOKED = "group_booked"
    GROUP_NO_SLOTS = "group_no_slots"
    GROUP_FAILED = "group_failed"
    CONFIRM_RESCHEDULE_APPT = "confirm_reschedule_appt"
    CONFIRM_CANCEL_APPT = "confirm_cancel_appt"
    RESCHEDULE_ASK_TIME = "reschedule_ask_time"
    RESCHEDULED = "rescheduled"
    CANCELLED_OFFER_REBOOK = "cancelled_offer_rebook"
    NO_APPOINTMENT_OFFER_BOOK = "no_appointment_offer_book"
    APPOINTMENT_KEPT = "appointment_kept"
    APPOINTMENT_UNAVAILABLE = "appointment_unavailable"
    SLOT_TAKEN = "slot_taken"
    INFO = "info"
    FEES = "fees"
    ANYTHING_ELSE = "anything_else"
    HOW_CAN_I_HELP = "how_can_i_help"
    GOODBYE = "goodbye"
    HANDOFF_TRANSFER = "handoff_transfer"
    HANDOFF_CALLBACK = "handoff_callback"
    TRY_LATER = "try_later"
    MALFORMED_STATE = "malformed_state"
    FATAL = "fatal"
    EMERGENCY = "emergency"
    FRUSTRATED = "frustrated"
    RESCHEDULE_INCOMPLETE = "reschedule_incomplete"


TEMPLATES: dict[PromptKey, str] = {
    PromptKey.GREETING: "Thanks for calling {clinic}. How can I help you today?",
    PromptKey.GREETING_KNOWN: "Thanks for calling {clinic}. Hi {name}, how can I help you today?",
    PromptKey.NOT_UNDERSTOOD: (
        "Sorry, I didn't quite catch that. I can book, change or cancel an appointment for you."
    ),
    PromptKey.ASK_NAME: "Sure. Can I get your full name, please?",
    PromptKey.ASK_NAME_AGAIN: "Sorry, I didn't get that. What's your first and last name?",
    PromptKey.ASK_NAME_OTHER: "Of course. What's the name of the person the appointment is for?",
    PromptKey.ASK_NEW_PATIENT: "Thanks {name}. Have you been to see us before?",
    PromptKey.ASK_TIME: "What day and time would suit you best?",
    PromptKey.ASK_TIME_AGAIN: (
        "Sorry, I didn't catch a time. You can say something like tomorrow morning, "
        "or Thursday at 2 pm."
    ),
    PromptKey.OFFER_SLOT: "I have {when}{with_practitioner}. Would that work for you?",
    PromptKey.OFFER_ANOTHER: "No problem. How about {when}{with_practitioner}?",
    PromptKey.NO_SLOTS: (
        "Sorry, I don't have anything free {preference}. Is there another day or time that would suit?"
    ),
    PromptKey.BOOKED: "You're all booked in for {when}{with_practitioner}.",
    PromptKey.REPROMPT_YES_NO: (
        "Sorry, was that a yes or a no? You can also press 1 for yes, or 2 for no."
    ),
    PromptKey.ASK_GROUP_NAMES: (
        "Sure, I can book you in together. What are the names of everyone who needs an appointment?"
    ),
    PromptKey.ASK_GROUP_NAMES_AGAIN: (
        "Sorry, I need each person's name. Could you say them again, like Sam Smith and Alex Smith?"
    ),
    PromptKey.GROUP_ASK_TIME: "Thanks. What day and time would suit {names}?",
    PromptKey.GROUP_BOOKED: "All done. I've booked {summary}.",
    PromptKey.GROUP_NO_SLOTS: (
        "Sorry, I couldn't find {count} appointments close together {preference}. "
        "Is there another day or time that would work?"
    ),
    PromptKey.GROUP_FAILED: (
        "I'm sorry, I wasn't able to finish all of those bookings, so I'll have one of our team "
        "sort it out for you."
    ),
    PromptKey.CONFIRM_RESCHEDULE_APPT: (
        "I can see your appointment {when}{with_practitioner}. Is that the one you'd like to move?"
    ),
    PromptKey.CONFIRM_CANCEL_APPT: (
        "I can see your appointment {when}{with_practitioner}. Would you like me to cancel it?"
    ),
    PromptKey.RESCHEDULE_ASK_TIME: "No problem. When would you like to move it to?",
    PromptKey.RESCHEDULED: "Done. Your appointment has been moved to {when}{with_practitioner}.",
    PromptKey.CANCELLED_OFFER_REBOOK: (
        "Your appointment {when} has been cancelled. Would you like to book a new time?"
    ),
    PromptKey.NO_APPOINTMENT_OFFER_BOOK: (
        "I couldn't find an upcoming appointment for you. Would you like to book one instead?"
    ),
    PromptKey.APPOINTMENT_KEPT: "Okay, I'll leave your appointment as it is.",
    PromptKey.APPOINTMENT_UNAVAILABLE: (
        "Sorry, that appointment is no longer available. Let me check again."
    ),
    PromptKey.SLOT_TAKEN: "Sorry, that time was just taken.",
    PromptKey.INFO: "We're open {hours}.{address}",
    PromptKey.FEES: "{fees}",
    PromptKey.ANYTHING_ELSE: "Is there anything else I can help you with?",
    PromptKey.HOW_CAN_I_HELP: "Sure, what can I help you with?",
    PromptKey.GOODBYE: "Thanks for calling {clinic}. Have a lovely day. Goodbye!",
    PromptKey.HANDOFF_TRANSFER: "I'll put you through to one of our team now. Please hold.",
    PromptKey.HANDOFF_CALLBACK: (
        "I'll ask one of our team to call you back as soon as possible. Thanks for calling. Goodbye!"
    ),
    PromptKey.TRY_LATER: (
        "Sorry, I'm having trouble reaching our booking system right now. "
        "Could you try again in a moment?"
    ),
    PromptKey.MALFORMED_STATE: (
        "I'm sorry, something went wrong on our end. Please call us back. Goodbye."
    ),
    PromptKey.FATAL: "I'm sorry, something went wrong. Let me get one of our team to help you.",
    PromptKey.EMERGENCY: (
        "If this is a medical emergency, please hang up now and call triple zero."
    ),
    PromptKey.FRUSTRATED: "I'm sorry about that.",
    PromptKey.RESCHEDULE_INCOMPLETE: (
        "I'm sorry, your appointment {when} was cancelled but I couldn't book the new time, "
        "so I'll have one of our team book you back in."
    ),
}


@dataclass
class Prompt:
    key: PromptKey
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def of(cls, key: PromptKey, **params: Any) -> "Prompt":
        return cls(key, params)


# ── Sanitizer ───────────────────────────────────────────────────

SYSTEM_TOKENS = frozenset({
    "redirect_to_wizard", "build__wizard", "build_canary", "canary",
    "ASK_EMAIL", "CONFIRM_EMAIL_OK", "CONFIRM_EMAIL_NO", "ASK_DAY",
    "ASK_MORNING_AFTERNOON", "BOOK_PARTIAL", "REPROMPT_GENERIC",
    "FALLBACK_TO_STAFF", "GOODBYE",
})

_CONTROL_WORD = re.compile(r"^(?:\w*_\w*|[A-Z][A-Z0-9]{4,})$")
_ASCII_MAP = str.maketrans({
    "\u2018": "'", "\u2019": "'", "\u201c": '"', "\u201d": '"',
    "\u2013": "-", "\u2014": ", ", "\u2026": "...", "&": " and ",
})
_UNSAFE = re.compile(r"[<>{}\[\]|\\*#~^`@]")


def _is_control_token(word: str) -> bool:
    core = word.strip(".,!?;:'\"()")
    if not core:
        return False
    return core in SYSTEM_TOKENS or "__" in core or bool(_CONTROL_WORD.match(core))


def sanitize(text: Any) -> str:
    """Make ``text`` safe to speak. Never raises; may return ``""``."""
    if text is None:
        return ""
    if not isinstance(text, str):
        text = str(text)
    stripped = text.strip()
    if stripped in SYSTEM_TOKENS or _CONTROL_WORD.match(stripped):
        return ""
    text = text.translate(_ASCII_MAP)
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    text = _UNSAFE.sub(" ", text)
    text = "".join(ch if ch.isprintable() else " " for ch in text)
    words = [w for w in text.split() if not _is_control_token(w)]
    text = " ".join(words)
    return re.sub(r"\s+([.,!?])", r"\1", text).strip()


# ── Spoken times ────────────────────────────────────────────────


def speak_clock(dt: datetime) -> str:
    hour = dt.hour % 12 or 12
    meridiem = "am" if dt.hour < 12 else "pm"
    if dt.minute:
        return f"{hour}:{dt.minute:02d} {meridiem}"
    return f"{hour} {meridiem}"


def _ordinal(day: int) -> str:
    if 11 <= day % 100 <= 13:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix}"


def speak_when(dt: datetime, now: datetime) -> str:
    """``"today at 2 pm"``, ``"tomorrow at 9:30 am"``, ``"on Thursday at 4 pm"``."""
    local = dt.astimezone(now.tzinfo) if now.tzinfo else dt
    days = (local.date() - now.date()).days
    clock = speak_clock(local)
    if days == 0:
        return f"today at {clock}"
    if days == 1:
        return f"tomorrow at {clock}"
    if 1 < days < 7:
        return f"on {local:%A} at {clock}"
    return f"on {local:%A} the {_ordinal(local.day)} of {local:%B} at {clock}"


class _Params(dict):
    def __missing__(self, key: str) -> str:
        return ""


class ResponseComposer:
    """Renders prompts with clinic details from configuration."""

    def __init__(self, config: Settings) -> None:
        self._config = config

    def _defaults(self) -> dict[str, str]:
        cfg = self._config
        return {
            "clinic": cfg.clinic_name,
            "hours": cfg.clinic_hours,
            "address": f" We're at {cfg.clinic_address}." if cfg.clinic_address else "",
            "fees": cfg.clinic_fees or (
                "Fees depend on the type of appointment. One of our team can give you the details."
            ),
        }

    def render_one(self, prompt: Prompt) -> str:
        template = TEMPLATES.get(prompt.key, "")
        params = _Params(self._defaults())
        params.update({k: v for k, v in prompt.params.items() if v is not None})
        return sanitize(template.format_map(params))

    def render(self, prompts: Iterable[Prompt]) -> str:
        parts = [self.render_one(p) for p in prompts]
        return " ".join(p for p in parts if p)

    def practitioner_phrase(self, practitioner_id: Optional[str]) -> str:
        name = self._config.practitioner_name(practitioner_id or "")
        return f" with {name}" if name else ""


_PERIODS = ("morning", "afternoon", "evening")
_CLOCK_PREFERENCE = re.compile(r"^(\w+) (\d{1,2}):(\d{2})(am|pm)$")


def speak_preference(time_preference: Optional[str]) -> str:
    """``"today afternoon"`` -> ``"this afternoon"``, ``"monday"`` -> ``"on Monday"``."""
    if not time_preference:
        return "at that time"
    m = _CLOCK_PREFERENCE.match(time_preference)
    if m:
        day, hour, minute, meridiem = m.groups()
        clock = f"{int(hour)} {meridiem}" if minute == "00" else f"{int(hour)}:{minute} {meridiem}"
        return f"{day} at {clock}"
    parts = time_preference.split()
    if len(parts) == 2 and parts[1] in _PERIODS:
        day = "this" if parts[0] == "today" else parts[0]
        return f"{day} {parts[1]}"
    if len(parts) == 1 and parts[0] not in ("today", "tomorrow"):
        return f"on {parts[0].capitalize()}"
    return time_preference
