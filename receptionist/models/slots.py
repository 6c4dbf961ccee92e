"""Records exchanged with the scheduling backend.

These are ephemeral: produced by backend queries and never persisted as a
whole. Only the identifying fields of a chosen slot are folded into CallState.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class TimeWindow:
    """Search window derived from a caller's time preference."""

    start: datetime
    end: datetime


@dataclass(frozen=True)
class SlotOption:
    """A bookable time returned by an availability query."""

    start: datetime
    end: datetime
    practitioner_id: str
    appointment_type_id: str


@dataclass
class AppointmentRecord:
    """An existing appointment as reported by the backend."""

    id: str
    start: datetime
    practitioner_id: str = ""
    appointment_type_id: str = ""
    patient_id: str = ""
    cancelled_at: Optional[datetime] = None

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None


@dataclass
class PatientRecord:
    id: str
    first_name: str = ""
    last_name: str = ""
    phone: str = ""

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)
