"""Flow router: the per-call state machine.

Each turn the router

  1. applies the interpretation to the stage the call is waiting in
     (the stage consumers below), then
  2. advances through every step that needs no further input from the
     caller, calling the scheduling executor where needed, until it reaches
     a question (``_advance``).

Stages::

  GREETING -> IDENTIFY_CALLER -> AWAIT_INTENT
      -> BOOKING_SLOT_NEGOTIATION | RESCHEDULE_CONFIRM | CANCEL_CONFIRM
         | GROUP_BOOKING_COLLECT | GROUP_BOOKING_SLOT_NEGOTIATION
      -> CONFIRMED | HANDOFF -> END

A reschedule confirms the existing appointment in RESCHEDULE_CONFIRM and
then negotiates the new time in BOOKING_SLOT_NEGOTIATION with
``is_reschedule`` set. Handoff is absorbing.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from receptionist.composer import Prompt, PromptKey, ResponseComposer, speak_preference, speak_when
from receptionist.config import Settings
from receptionist.errors import (
    BackendError,
    RescheduleIncomplete,
    SchedulingConflict,
    UpstreamUnavailable,
    ValidationFailure,
)
from receptionist.executor import SchedulingExecutor
from receptionist.interpreter.interpreter import OPEN_STAGES, Interpretation
from receptionist.interpreter.time_preference import preference_window
from receptionist.models.call_state import (
    CallState,
    FlowStage,
    Intent,
    ProposedSlot,
)
from receptionist.models.slots import AppointmentRecord, SlotOption

log = logging.getLogger("receptionist.router")

_FAREWELL = re.compile(r"\b(bye|goodbye|that's all|that's it|nothing else|all good|i'm good)\b")
# A bare decline to "anything else?", not a sentence that happens to contain "no".
_SHORT_DECLINE = re.compile(
    r"^(?:(?:yeah|oh|um|uh) )?(?:no|nope|nah)(?: (?:thanks|thank you|thanks mate|cheers|mate|"
    r"that's it|that's all|i'm good|all good|i'm fine|i'm right|that's fine))*$"
)

# Stages from which a group-booking phrase may start a group booking.
GROUP_ENTRY_STAGES = OPEN_STAGES | {FlowStage.IDENTIFY_CALLER, FlowStage.BOOKING_SLOT_NEGOTIATION}


@dataclass
class RouteResult:
    """Prompts for this turn and what the telephony layer does next."""

    prompts: list[Prompt] = field(default_factory=list)
    gather_next: bool = True
    transfer: bool = False


class FlowRouter:
    def __init__(
        self,
        executor: SchedulingExecutor,
        composer: ResponseComposer,
        config: Settings,
    ) -> None:
        self._executor = executor
        self._composer = composer
        self._config = config

    # ── Public API ────────────────────────────────────────────

    def forget_call(self, call_sid: str) -> None:
        self._executor.forget_call(call_sid)

    async def aclose(self) -> None:
        await self._executor.aclose()

    async def transition(
        self,
        state: CallState,
        interp: Interpretation,
        turn_index: int,
        utterance: str = "",
    ) -> RouteResult:
        """Apply one interpreted turn to ``state`` (in place) and return the reply."""
        if state.handoff_triggered:
            return self._handoff_result(state)
        if state.stage == FlowStage.END:
            return RouteResult([Prompt.of(PromptKey.GOODBYE)], gather_next=False)

        if interp.emergency:
            log.warning("Possible emergency on call %s", state.call_sid)
            return self.trigger_handoff(state, "emergency", lead=[Prompt.of(PromptKey.EMERGENCY)])
        if interp.profanity:
            return self.trigger_handoff(state, "caller_frustrated", lead=[Prompt.of(PromptKey.FRUSTRATED)])
        if interp.operator_request or interp.intent == Intent.OPERATOR:
            return self.trigger_handoff(state, "caller_requested")

        stage_before = state.stage
        try:
            result = await self._dispatch(state, interp, turn_index, utterance)
        except ValidationFailure as e:
            state.failed_turns += 1
            log.info(
                "No usable answer in %s (%d/%d)",
                state.stage.value, state.failed_turns, self._config.max_failed_turns,
            )
            if state.failed_turns >= self._config.max_failed_turns:
                return self.trigger_handoff(state, "no_match_consecutive")
            return RouteResult([Prompt.of(PromptKey(e.reprompt))])
        except RescheduleIncomplete as e:
            log.error("Reschedule left call %s without an appointment: %s", state.call_sid, e)
            lead = Prompt.of(PromptKey.RESCHEDULE_INCOMPLETE, when=self._when(state.appointment_start))
            return self.trigger_handoff(state, "reschedule_incomplete", lead=[lead])
        except SchedulingConflict as e:
            log.warning("Scheduling conflict in %s: %s", state.stage.value, e)
            state.failed_turns = 0
            return await self._recover_from_conflict(state, turn_index)
        except UpstreamUnavailable as e:
            return self._upstream_failed(state, e)
        except BackendError as e:
            log.error("Scheduling write failed in %s: %s", state.stage.value, e)
            return self.trigger_handoff(state, "scheduling_error")

        state.failed_turns = 0
        state.upstream_failures = 0
        if state.stage != stage_before:
            log.info("Stage %s -> %s (call %s)", stage_before.value, state.stage.value, state.call_sid)
        if state.handoff_triggered:
            # Handoff raised while advancing: stop listening.
            result.gather_next = False
            result.transfer = bool(self._config.handoff_number)
        return result

    def trigger_handoff(
        self,
        state: CallState,
        reason: str,
        lead: Optional[list[Prompt]] = None,
    ) -> RouteResult:
        state.handoff_triggered = True
        state.handoff_reason = reason
        state.stage = FlowStage.HANDOFF
        state.clear_offer()
        log.info("Handoff triggered for call %s: %s", state.call_sid, reason)
        result = self._handoff_result(state)
        result.prompts = (lead or []) + result.prompts
        return result

    # ── Internal: helpers ─────────────────────────────────────

    def _upstream_failed(
        self,
        state: CallState,
        error: Exception,
        lead: Optional[list[Prompt]] = None,
    ) -> RouteResult:
        state.upstream_failures += 1
        log.warning(
            "Scheduling backend unavailable in %s (%d/%d): %s",
            state.stage.value, state.upstream_failures, self._config.max_failed_turns, error,
        )
        if state.upstream_failures >= self._config.max_failed_turns:
            return self.trigger_handoff(state, "upstream_unavailable", lead=lead)
        return RouteResult((lead or []) + [Prompt.of(PromptKey.TRY_LATER)])

    def _handoff_result(self, state: CallState) -> RouteResult:
        if self._config.handoff_number:
            return RouteResult([Prompt.of(PromptKey.HANDOFF_TRANSFER)], gather_next=False, transfer=True)
        return RouteResult([Prompt.of(PromptKey.HANDOFF_CALLBACK)], gather_next=False)

    def _when(self, iso: Optional[str]) -> str:
        if not iso:
            return ""
        return speak_when(datetime.fromisoformat(iso), self._executor.now())

    def _with(self, practitioner_id: Optional[str]) -> str:
        return self._composer.practitioner_phrase(practitioner_id)

    def _merge_time_preference(self, state: CallState, interp: Interpretation) -> bool:
        """Set the time preference once per attempt; replace it only on correction."""
        if interp.time_preference is None:
            return False
        if state.time_preference is None:
            state.time_preference = interp.time_preference
        elif interp.correction and interp.time_preference != state.time_preference:
            log.info("Time preference corrected: %s -> %s", state.time_preference, interp.time_preference)
            state.time_preference = interp.time_preference
            state.offer_index = 0
            state.clear_offer()
        else:
            return False
        state.request_slots = True
        return True

    def _merge_caller(self, state: CallState, interp: Interpretation) -> bool:
        changed = False
        if state.caller_name is None and interp.caller_name is not None:
            state.caller_name = interp.caller_name
            changed = True
        if state.new_patient is None:
            if interp.new_patient is not None:
                state.new_patient = interp.new_patient
                changed = True
            elif state.caller_name is not None and state.stage == FlowStage.IDENTIFY_CALLER \
                    and interp.confirmation is not None and not changed:
                # Answer to "have you been to see us before?"
                state.new_patient = not interp.confirmation
                changed = True
        return changed

    def _reset_appointment(self, state: CallState) -> None:
        state.appointment_created = False
        state.appointment_id = None
        state.appointment_start = None
        state.appointment_practitioner_id = None
        state.appointment_type_id = None

    # ── Internal: stage consumers ─────────────────────────────

    async def _dispatch(
        self,
        state: CallState,
        interp: Interpretation,
        turn_index: int,
        utterance: str,
    ) -> RouteResult:
        if state.stage == FlowStage.GREETING:
            return RouteResult(await self._greet(state))

        # Group phrases seed a group booking from any stage before a booking exists.
        if interp.group_booking and not state.group_booking and not state.appointment_created \
                and state.stage in GROUP_ENTRY_STAGES:
            self._start_group_booking(state, interp)
            return RouteResult(await self._advance(state, turn_index))

        if interp.secondary_booking and state.appointment_created and state.stage == FlowStage.CONFIRMED:
            self._start_secondary_booking(state, interp)
            return RouteResult(await self._advance(state, turn_index))

        handler = {
            FlowStage.AWAIT_INTENT: self._on_open_question,
            FlowStage.CONFIRMED: self._on_open_question,
            FlowStage.IDENTIFY_CALLER: self._on_identify_caller,
            FlowStage.BOOKING_SLOT_NEGOTIATION: self._on_slot_negotiation,
            FlowStage.RESCHEDULE_CONFIRM: self._on_existing_confirm,
            FlowStage.CANCEL_CONFIRM: self._on_existing_confirm,
            FlowStage.REBOOK_OFFER: self._on_rebook_offer,
            FlowStage.GROUP_BOOKING_COLLECT: self._on_group_collect,
            FlowStage.GROUP_BOOKING_SLOT_NEGOTIATION: self._on_group_collect,
        }[state.stage]
        return await handler(state, interp, turn_index, utterance)

    async def _greet(self, state: CallState) -> list[Prompt]:
        state.stage = FlowStage.IDENTIFY_CALLER
        if state.caller_phone and state.patient_id is None:
            try:
                patient = await self._executor.find_patient(state.caller_phone)
            except UpstreamUnavailable as e:
                log.warning("Caller lookup failed, greeting anonymously: %s", e)
                patient = None
            if patient is not None:
                state.patient_id = patient.id
                state.caller_name = patient.full_name or None
                state.new_patient = False
        state.stage = FlowStage.AWAIT_INTENT
        if state.caller_name:
            first = state.caller_name.split()[0]
            return [Prompt.of(PromptKey.GREETING_KNOWN, name=first)]
        return [Prompt.of(PromptKey.GREETING)]

    async def _on_open_question(self, state, interp, turn_index, utterance) -> RouteResult:
        intent = interp.intent or Intent.UNKNOWN

        if intent in (Intent.INFO, Intent.FEES):
            key = PromptKey.INFO if intent == Intent.INFO else PromptKey.FEES
            return RouteResult([Prompt.of(key), Prompt.of(PromptKey.ANYTHING_ELSE)])

        if intent == Intent.BOOK or (intent == Intent.UNKNOWN and interp.time_preference is not None):
            self._start_booking(state, interp)
            return RouteResult(await self._advance(state, turn_index))

        if intent in (Intent.RESCHEDULE, Intent.CANCEL):
            self._start_change(state, intent)
            return RouteResult(await self._advance(state, turn_index))

        if interp.confirmation is True:
            return RouteResult([Prompt.of(PromptKey.HOW_CAN_I_HELP)])

        text = " ".join(re.sub(r"[.,!?;]", " ", utterance.lower()).split())
        declined = interp.confirmation is False and (not text or _SHORT_DECLINE.match(text))
        if declined or _FAREWELL.search(text):
            state.stage = FlowStage.END
            return RouteResult([Prompt.of(PromptKey.GOODBYE)], gather_next=False)

        raise ValidationFailure(PromptKey.NOT_UNDERSTOOD.value)

    async def _on_identify_caller(self, state, interp, turn_index, utterance) -> RouteResult:
        progressed = self._merge_caller(state, interp)
        progressed = self._merge_time_preference(state, interp) or progressed
        if not progressed:
            if state.caller_name is None:
                raise ValidationFailure(PromptKey.ASK_NAME_AGAIN.value)
            raise ValidationFailure(PromptKey.REPROMPT_YES_NO.value)
        return RouteResult(await self._advance(state, turn_index))

    async def _on_slot_negotiation(self, state, interp, turn_index, utterance) -> RouteResult:
        if state.proposed_slot is None:
            if not self._merge_time_preference(state, interp) and state.time_preference is None:
                raise ValidationFailure(PromptKey.ASK_TIME_AGAIN.value)
            return RouteResult(await self._advance(state, turn_index))

        if interp.correction and self._merge_time_preference(state, interp):
            return RouteResult(await self._advance(state, turn_index))

        if interp.confirmation is True:
            return RouteResult(await self._confirm_slot(state, turn_index))

        if interp.confirmation is False:
            state.offer_index += 1
            state.proposed_slot = None
            state.request_slots = True
            return RouteResult(await self._advance(state, turn_index))

        if interp.intent == Intent.CANCEL and not state.is_reschedule:
            self._start_change(state, Intent.CANCEL)
            return RouteResult(await self._advance(state, turn_index))

        raise ValidationFailure(PromptKey.REPROMPT_YES_NO.value)

    async def _on_existing_confirm(self, state, interp, turn_index, utterance) -> RouteResult:
        if interp.confirmation is None:
            raise ValidationFailure(PromptKey.REPROMPT_YES_NO.value)

        if interp.confirmation is False:
            log.info("Caller kept appointment %s", state.appointment_id)
            self._reset_appointment(state)
            state.is_reschedule = False
            state.intent = Intent.NONE
            state.stage = FlowStage.AWAIT_INTENT
            return RouteResult([Prompt.of(PromptKey.APPOINTMENT_KEPT), Prompt.of(PromptKey.ANYTHING_ELSE)])

        if state.stage == FlowStage.RESCHEDULE_CONFIRM:
            state.stage = FlowStage.BOOKING_SLOT_NEGOTIATION
            self._merge_time_preference(state, interp)
            return RouteResult(await self._advance(state, turn_index))

        when = self._when(state.appointment_start)
        await self._executor.cancel_appointment(state.appointment_id)
        log.info("Cancelled appointment %s for call %s", state.appointment_id, state.call_sid)
        self._reset_appointment(state)
        state.stage = FlowStage.REBOOK_OFFER
        return RouteResult([Prompt.of(PromptKey.CANCELLED_OFFER_REBOOK, when=when)])

    async def _on_rebook_offer(self, state, interp, turn_index, utterance) -> RouteResult:
        if interp.confirmation is False:
            state.stage = FlowStage.END
            return RouteResult([Prompt.of(PromptKey.GOODBYE)], gather_next=False)
        if interp.confirmation is True or interp.time_preference is not None or interp.intent == Intent.BOOK:
            self._start_booking(state, interp)
            return RouteResult(await self._advance(state, turn_index))
        raise ValidationFailure(PromptKey.REPROMPT_YES_NO.value)

    async def _on_group_collect(self, state, interp, turn_index, utterance) -> RouteResult:
        progressed = False
        if len(state.participants) < 2 and interp.participants is not None and len(interp.participants) >= 2:
            state.participants = interp.participants
            progressed = True
        progressed = self._merge_time_preference(state, interp) or progressed
        if not progressed and not state.group_booking_ready:
            if len(state.participants) < 2:
                raise ValidationFailure(PromptKey.ASK_GROUP_NAMES_AGAIN.value)
            raise ValidationFailure(PromptKey.ASK_TIME_AGAIN.value)
        return RouteResult(await self._advance(state, turn_index))

    # ── Internal: flow starts ─────────────────────────────────

    def _start_booking(self, state: CallState, interp: Interpretation) -> None:
        state.intent = Intent.BOOK
        state.is_reschedule = False
        if state.appointment_created or state.appointment_id is not None:
            self._reset_appointment(state)
        state.clear_booking_attempt()
        self._merge_caller(state, interp)
        self._merge_time_preference(state, interp)

    def _start_change(self, state: CallState, intent: Intent) -> None:
        state.intent = intent
        state.is_reschedule = intent == Intent.RESCHEDULE
        state.clear_booking_attempt()
        self._reset_appointment(state)
        state.stage = FlowStage.RESCHEDULE_CONFIRM if state.is_reschedule else FlowStage.CANCEL_CONFIRM

    def _start_group_booking(self, state: CallState, interp: Interpretation) -> None:
        log.info("Group booking detected for call %s", state.call_sid)
        state.intent = Intent.BOOK
        state.group_booking = True
        state.is_reschedule = False
        state.stage = FlowStage.GROUP_BOOKING_COLLECT
        if interp.participants is not None and len(interp.participants) >= 2:
            state.participants = interp.participants
        self._merge_time_preference(state, interp)

    def _start_secondary_booking(self, state: CallState, interp: Interpretation) -> None:
        log.info("Secondary booking requested after appointment %s", state.appointment_id)
        keep = state.time_preference if interp.same_time else None
        self._reset_appointment(state)
        state.clear_booking_attempt()
        state.time_preference = keep
        state.group_booking = False
        state.participants = []
        state.group_booking_complete = None
        state.intent = Intent.BOOK
        state.is_reschedule = False
        state.booking_for_other = True
        state.patient_id = None
        state.caller_name = interp.other_person_name
        state.new_patient = True
        state.stage = FlowStage.IDENTIFY_CALLER

    # ── Internal: advance until the caller must answer ────────

    async def _advance(self, state: CallState, turn_index: int) -> list[Prompt]:
        if state.group_booking and state.group_booking_complete is None and not state.appointment_created:
            return await self._advance_group(state, turn_index)
        if state.stage in (FlowStage.RESCHEDULE_CONFIRM, FlowStage.CANCEL_CONFIRM) \
                and state.appointment_id is None:
            return await self._lookup_existing(state)
        if state.intent == Intent.BOOK or state.is_reschedule:
            return await self._advance_booking(state)
        state.stage = FlowStage.AWAIT_INTENT
        return [Prompt.of(PromptKey.ANYTHING_ELSE)]

    async def _advance_booking(self, state: CallState) -> list[Prompt]:
        if not state.is_reschedule:
            if state.caller_name is None:
                state.stage = FlowStage.IDENTIFY_CALLER
                key = PromptKey.ASK_NAME_OTHER if state.booking_for_other else PromptKey.ASK_NAME
                return [Prompt.of(key)]
            if state.new_patient is None:
                state.stage = FlowStage.IDENTIFY_CALLER
                return [Prompt.of(PromptKey.ASK_NEW_PATIENT, name=state.caller_name.split()[0])]

        state.stage = FlowStage.BOOKING_SLOT_NEGOTIATION
        if state.time_preference is None:
            key = PromptKey.RESCHEDULE_ASK_TIME if state.is_reschedule else PromptKey.ASK_TIME
            return [Prompt.of(key)]

        if state.proposed_slot is not None:
            return [self._offer_prompt(state)]

        slots = await self._fetch_slots(state)
        if state.offer_index >= len(slots):
            preference = speak_preference(state.time_preference)
            log.info("No slots left for %r (declined %d)", state.time_preference, state.offer_index)
            # Explicit correction flow: the caller must give a new time.
            state.clear_booking_attempt()
            return [Prompt.of(PromptKey.NO_SLOTS, preference=preference)]

        slot = slots[state.offer_index]
        state.proposed_slot = ProposedSlot(
            start=slot.start.isoformat(),
            end=slot.end.isoformat(),
            practitioner_id=slot.practitioner_id,
            appointment_type_id=slot.appointment_type_id,
        )
        return [self._offer_prompt(state)]

    def _offer_prompt(self, state: CallState) -> Prompt:
        slot = state.proposed_slot
        key = PromptKey.OFFER_ANOTHER if state.offer_index > 0 else PromptKey.OFFER_SLOT
        return Prompt.of(key, when=self._when(slot.start), with_practitioner=self._with(slot.practitioner_id))

    async def _fetch_slots(self, state: CallState) -> list[SlotOption]:
        window = preference_window(state.time_preference, self._executor.now())
        state.request_slots = False
        if state.is_reschedule:
            type_id = state.appointment_type_id or self._config.appointment_type_for(False)
            practitioners = [state.appointment_practitioner_id] if state.appointment_practitioner_id else None
            return await self._executor.find_availability(window, type_id, practitioners)
        return await self._executor.find_availability(
            window, self._config.appointment_type_for(state.new_patient)
        )

    async def _confirm_slot(self, state: CallState, turn_index: int) -> list[Prompt]:
        slot = state.proposed_slot
        start = datetime.fromisoformat(slot.start)

        if state.is_reschedule:
            existing = AppointmentRecord(
                id=state.appointment_id,
                start=datetime.fromisoformat(state.appointment_start),
                practitioner_id=state.appointment_practitioner_id or slot.practitioner_id,
                appointment_type_id=state.appointment_type_id or slot.appointment_type_id,
                patient_id=state.patient_id or "",
            )
            new_id = await self._executor.reschedule_appointment(
                state.call_sid, turn_index, existing, start
            )
            key = PromptKey.RESCHEDULED
        else:
            if state.patient_id is None:
                state.patient_id = await self._executor.ensure_patient(
                    state.call_sid, state.caller_name, state.caller_phone
                )
            new_id = await self._executor.create_appointment(
                state.call_sid,
                1 if state.booking_for_other else 0,
                turn_index,
                state.patient_id,
                slot.practitioner_id,
                slot.appointment_type_id,
                start,
            )
            key = PromptKey.BOOKED

        state.appointment_id = new_id
        state.appointment_created = True
        state.appointment_start = slot.start
        state.appointment_practitioner_id = slot.practitioner_id
        state.appointment_type_id = slot.appointment_type_id
        state.clear_offer()
        state.stage = FlowStage.CONFIRMED
        log.info("Appointment %s %s for call %s", new_id, key.value, state.call_sid)
        return [
            Prompt.of(key, when=self._when(slot.start), with_practitioner=self._with(slot.practitioner_id)),
            Prompt.of(PromptKey.ANYTHING_ELSE),
        ]

    async def _lookup_existing(self, state: CallState) -> list[Prompt]:
        if state.patient_id is None:
            patient = await self._executor.find_patient(state.caller_phone)
            if patient is not None:
                state.patient_id = patient.id
                state.caller_name = state.caller_name or patient.full_name or None
                state.new_patient = False

        appointment = None
        if state.patient_id is not None:
            appointment = await self._executor.next_upcoming_appointment(state.patient_id)

        if appointment is None:
            log.info("No upcoming appointment for call %s", state.call_sid)
            state.is_reschedule = False
            state.stage = FlowStage.REBOOK_OFFER
            return [Prompt.of(PromptKey.NO_APPOINTMENT_OFFER_BOOK)]

        state.appointment_id = appointment.id
        state.appointment_start = appointment.start.isoformat()
        state.appointment_practitioner_id = appointment.practitioner_id or None
        state.appointment_type_id = appointment.appointment_type_id or None
        key = (
            PromptKey.CONFIRM_RESCHEDULE_APPT
            if state.stage == FlowStage.RESCHEDULE_CONFIRM
            else PromptKey.CONFIRM_CANCEL_APPT
        )
        return [Prompt.of(
            key,
            when=self._when(state.appointment_start),
            with_practitioner=self._with(state.appointment_practitioner_id),
        )]

    # ── Internal: group booking ───────────────────────────────

    async def _advance_group(self, state: CallState, turn_index: int) -> list[Prompt]:
        if len(state.participants) < 2:
            state.stage = FlowStage.GROUP_BOOKING_COLLECT
            return [Prompt.of(PromptKey.ASK_GROUP_NAMES)]
        if state.time_preference is None:
            state.stage = FlowStage.GROUP_BOOKING_COLLECT
            names = " and ".join(p.name.split()[0] for p in state.participants)
            return [Prompt.of(PromptKey.GROUP_ASK_TIME, names=names)]
        return await self._execute_group(state, turn_index)

    async def _execute_group(self, state: CallState, turn_index: int) -> list[Prompt]:
        state.stage = FlowStage.GROUP_BOOKING_SLOT_NEGOTIATION
        count = len(state.participants)
        window = preference_window(state.time_preference, self._executor.now())
        slots = await self._executor.find_availability(
            window, self._config.appointment_type_for(state.new_patient)
        )
        state.request_slots = False

        if len(slots) < count:
            preference = speak_preference(state.time_preference)
            log.info("Only %d slots for %d participants", len(slots), count)
            state.clear_booking_attempt()
            state.stage = FlowStage.GROUP_BOOKING_COLLECT
            return [Prompt.of(PromptKey.GROUP_NO_SLOTS, count=count, preference=preference)]

        booked: list[tuple[str, SlotOption]] = []
        try:
            for index, (person, slot) in enumerate(zip(state.participants, slots)):
                if index == 0 and state.patient_id is not None:
                    patient_id = state.patient_id
                else:
                    patient_id = await self._executor.ensure_patient(
                        state.call_sid, person.name, state.caller_phone
                    )
                appointment_id = await self._executor.create_appointment(
                    state.call_sid, index, turn_index, patient_id,
                    slot.practitioner_id, slot.appointment_type_id, slot.start,
                )
                booked.append((appointment_id, slot))
        except (UpstreamUnavailable, BackendError, SchedulingConflict) as e:
            log.error(
                "Group booking failed after %d of %d for call %s: %s",
                len(booked), count, state.call_sid, e,
            )
            if booked:
                # Keep the gate closed so nothing is booked twice.
                state.appointment_created = True
                state.appointment_id = booked[0][0]
                state.appointment_start = booked[0][1].start.isoformat()
            result = self.trigger_handoff(
                state, "group_booking_failed", lead=[Prompt.of(PromptKey.GROUP_FAILED)]
            )
            return result.prompts

        first_id, first_slot = booked[0]
        state.appointment_created = True
        state.appointment_id = first_id
        state.appointment_start = first_slot.start.isoformat()
        state.appointment_practitioner_id = first_slot.practitioner_id
        state.appointment_type_id = first_slot.appointment_type_id
        state.group_booking_complete = len(booked)
        state.stage = FlowStage.CONFIRMED

        now = self._executor.now()
        summary = ", and ".join(
            f"{person.name.split()[0]} {speak_when(slot.start, now)}"
            for person, (_, slot) in zip(state.participants, booked)
        )
        log.info("Group booking complete for call %s: %d appointments", state.call_sid, len(booked))
        return [Prompt.of(PromptKey.GROUP_BOOKED, summary=summary), Prompt.of(PromptKey.ANYTHING_ELSE)]

    # ── Internal: conflict recovery ───────────────────────────

    async def _recover_from_conflict(self, state: CallState, turn_index: int) -> RouteResult:
        if state.intent in (Intent.RESCHEDULE, Intent.CANCEL) and not state.appointment_created:
            lead = Prompt.of(PromptKey.APPOINTMENT_UNAVAILABLE)
            self._start_change(state, state.intent)
        else:
            lead = Prompt.of(PromptKey.SLOT_TAKEN)
            state.clear_offer()
            state.request_slots = True
        try:
            return RouteResult([lead] + await self._advance(state, turn_index))
        except UpstreamUnavailable as e:
            return self._upstream_failed(state, e, lead=[lead])
        except BackendError as e:
            log.error("Scheduling failed while recovering from conflict: %s", e)
            return self.trigger_handoff(state, "scheduling_error", lead=[lead])
