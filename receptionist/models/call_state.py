"""Pydantic model tracking one call's conversation through the flow router."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class Intent(str, Enum):
    BOOK = "book"
    RESCHEDULE = "reschedule"
    CANCEL = "cancel"
    OPERATOR = "operator"
    INFO = "info"
    FEES = "fees"
    UNKNOWN = "unknown"
    NONE = "none"


class FlowStage(str, Enum):
    GREETING = "greeting"
    IDENTIFY_CALLER = "identify_caller"
    AWAIT_INTENT = "await_intent"
    BOOKING_SLOT_NEGOTIATION = "booking_slot_negotiation"
    RESCHEDULE_CONFIRM = "reschedule_confirm"
    CANCEL_CONFIRM = "cancel_confirm"
    REBOOK_OFFER = "rebook_offer"
    GROUP_BOOKING_COLLECT = "group_booking_collect"
    GROUP_BOOKING_SLOT_NEGOTIATION = "group_booking_slot_negotiation"
    CONFIRMED = "confirmed"
    HANDOFF = "handoff"
    END = "end"


class Participant(BaseModel):
    """One person being booked in a group booking."""

    model_config = ConfigDict(extra="forbid")

    name: str
    relation: Optional[str] = None


class ProposedSlot(BaseModel):
    """Identifying fields of the slot currently offered to the caller."""

    model_config = ConfigDict(extra="forbid")

    start: str  # ISO 8601 with offset
    end: str
    practitioner_id: str
    appointment_type_id: str


class CallState(BaseModel):
    """Persisted conversation state for a single inbound call.

    Fields are populated progressively as the receptionist gathers
    information from the caller. Optional fields use ``None`` for "not
    known yet"; nothing is inferred from falsy values.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    call_sid: str
    tenant_id: Optional[str] = None
    turn_index: int = 0

    intent: Intent = Intent.NONE
    stage: FlowStage = FlowStage.GREETING

    # Caller
    caller_phone: str = ""
    caller_name: Optional[str] = None
    new_patient: Optional[bool] = None
    patient_id: Optional[str] = None

    # Group booking
    group_booking: bool = False
    participants: list[Participant] = []
    group_booking_complete: Optional[int] = None
    booking_for_other: bool = False

    # Slot negotiation
    time_preference: Optional[str] = None
    request_slots: bool = False
    proposed_slot: Optional[ProposedSlot] = None
    offer_index: int = 0

    # Appointment being created, moved or cancelled
    appointment_created: bool = False
    appointment_id: Optional[str] = None
    appointment_start: Optional[str] = None
    appointment_practitioner_id: Optional[str] = None
    appointment_type_id: Optional[str] = None
    is_reschedule: bool = False

    # Escalation
    failed_turns: int = 0
    upstream_failures: int = 0
    handoff_triggered: bool = False
    handoff_reason: Optional[str] = None

    @property
    def group_booking_ready(self) -> bool:
        """The group booking executor gate."""
        return (
            self.group_booking
            and len(self.participants) >= 2
            and self.time_preference is not None
            and self.group_booking_complete is None
            and not self.appointment_created
        )

    def clear_offer(self) -> None:
        self.proposed_slot = None
        self.request_slots = False

    def clear_booking_attempt(self) -> None:
        """Forget slot negotiation so a fresh booking attempt can start."""
        self.time_preference = None
        self.offer_index = 0
        self.clear_offer()
