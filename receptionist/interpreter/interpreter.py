"""Turns one utterance into an Interpretation.

Deterministic extractors always run. The probabilistic classifier only runs
when the call is at an open question ("how can I help?"); while a specific
slot is pending the cheap keyword lexicon is used instead so the turn never
waits on the network for a yes/no or a time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from receptionist.interpreter import extractors
from receptionist.interpreter.classifier import (
    Classification,
    IntentClassifier,
    KeywordIntentClassifier,
)
from receptionist.interpreter.time_preference import extract_time_preference
from receptionist.models.call_state import CallState, FlowStage, Intent, Participant

log = logging.getLogger("receptionist.interpreter")

# Stages where the caller is answering an open question.
OPEN_STAGES = frozenset({
    FlowStage.GREETING,
    FlowStage.AWAIT_INTENT,
    FlowStage.CONFIRMED,
})


@dataclass
class Interpretation:
    """Slots extracted from one utterance. ``None`` means "not said"."""

    intent: Optional[Intent] = None
    confidence: float = 0.0
    time_preference: Optional[str] = None
    participants: Optional[list[Participant]] = None
    confirmation: Optional[bool] = None
    caller_name: Optional[str] = None
    new_patient: Optional[bool] = None
    group_booking: bool = False
    operator_request: bool = False
    correction: bool = False
    secondary_booking: bool = False
    same_time: bool = False
    other_person_name: Optional[str] = None
    emergency: bool = False
    profanity: bool = False

    @property
    def is_empty(self) -> bool:
        return (
            self.intent in (None, Intent.UNKNOWN)
            and self.time_preference is None
            and self.participants is None
            and self.confirmation is None
            and self.caller_name is None
            and self.new_patient is None
            and not self.group_booking
            and not self.operator_request
            and not self.secondary_booking
        )


class UtteranceInterpreter:
    def __init__(
        self,
        classifier: IntentClassifier,
        keywords: Optional[KeywordIntentClassifier] = None,
    ) -> None:
        self._classifier = classifier
        self._keywords = keywords or KeywordIntentClassifier()

    async def aclose(self) -> None:
        await self._classifier.aclose()

    async def interpret(
        self,
        utterance: str,
        state: CallState,
        digits: Optional[str] = None,
    ) -> Interpretation:
        text = utterance or ""
        expecting_name = state.stage == FlowStage.IDENTIFY_CALLER and state.caller_name is None

        result = Interpretation(
            time_preference=extract_time_preference(text),
            confirmation=extractors.extract_confirmation(text, digits),
            caller_name=extractors.extract_caller_name(text, expecting_name=expecting_name),
            new_patient=extractors.extract_new_patient(text),
            group_booking=extractors.detect_group_booking(text),
            operator_request=extractors.detect_operator_request(text),
            correction=extractors.detect_correction(text),
            secondary_booking=extractors.detect_secondary_booking(text),
            same_time=extractors.wants_same_time(text),
            emergency=extractors.detect_emergency(text),
            profanity=extractors.detect_profanity(text),
        )

        if result.secondary_booking:
            result.other_person_name = extractors.extract_other_person_name(text)

        if state.stage == FlowStage.GROUP_BOOKING_COLLECT or result.group_booking:
            result.participants = extractors.extract_participant_names(text)

        if text.strip():
            classification = await self._classify(text, state)
            result.intent = classification.intent
            result.confidence = classification.confidence

        log.debug(
            "Interpreted [%s] intent=%s tp=%s confirm=%s",
            state.stage.value,
            result.intent.value if result.intent else None,
            result.time_preference,
            result.confirmation,
        )
        return result

    async def _classify(self, text: str, state: CallState) -> Classification:
        if state.stage in OPEN_STAGES:
            return await self._classifier.classify(text, context_hint=state.stage.value)
        return self._keywords.classify(text)
