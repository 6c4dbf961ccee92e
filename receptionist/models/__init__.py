from receptionist.models.call_state import (
    CallState,
    FlowStage,
    Intent,
    Participant,
    ProposedSlot,
)
from receptionist.models.slots import (
    AppointmentRecord,
    PatientRecord,
    SlotOption,
    TimeWindow,
)
from receptionist.models.turn import InboundTurn, TurnResponse

__all__ = [
    "AppointmentRecord",
    "CallState",
    "FlowStage",
    "InboundTurn",
    "Intent",
    "Participant",
    "PatientRecord",
    "ProposedSlot",
    "SlotOption",
    "TimeWindow",
    "TurnResponse",
]
