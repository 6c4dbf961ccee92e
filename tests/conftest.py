"""Shared fixtures: an in-memory scheduling backend and a fixed clinic clock."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

import pytest

from receptionist import codec
from receptionist.app import build_controller
from receptionist.backends.base import SchedulingBackend
from receptionist.composer import ResponseComposer
from receptionist.config import Settings
from receptionist.errors import BackendError
from receptionist.executor import SchedulingExecutor
from receptionist.models.call_state import CallState
from receptionist.models.slots import AppointmentRecord, PatientRecord, SlotOption
from receptionist.models.turn import InboundTurn, TurnResponse

TZ = ZoneInfo("Australia/Brisbane")
# Monday 19 October 2026, 9:00 am clinic time
NOW = datetime(2026, 10, 19, 9, 0, tzinfo=TZ)
CALLER_PHONE = "+61400111222"


def at(days: int, hour: int, minute: int = 0) -> datetime:
    """A clinic-local time ``days`` after NOW's date."""
    return (NOW + timedelta(days=days)).replace(hour=hour, minute=minute)


class FakeSchedulingBackend(SchedulingBackend):
    """Practice management system held in dicts.

    ``fail[method]`` is raised on every call to that method.
    """

    def __init__(self) -> None:
        self.slots: list[SlotOption] = []
        self.appointments: dict[str, AppointmentRecord] = {}
        self.patients: dict[str, PatientRecord] = {}
        self.calls: list[tuple] = []
        self.fail: dict[str, Exception] = {}
        self._next_id = 0

    def _record(self, method: str, *args) -> None:
        self.calls.append((method, *args))
        exc = self.fail.get(method)
        if exc is not None:
            raise exc

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}-{self._next_id}"

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    # ── Seeding ────────────────────────────────────────────────

    def add_slot(self, start: datetime, practitioner_id: str = "p1", type_id: str = "std") -> None:
        self.slots.append(SlotOption(
            start=start,
            end=start + timedelta(minutes=30),
            practitioner_id=practitioner_id,
            appointment_type_id=type_id,
        ))

    def add_patient(self, patient_id: str, first: str, last: str, phone: str = CALLER_PHONE) -> None:
        self.patients[phone] = PatientRecord(id=patient_id, first_name=first, last_name=last, phone=phone)

    def add_appointment(self, appointment_id: str, patient_id: str, start: datetime,
                        practitioner_id: str = "p1", type_id: str = "std") -> None:
        self.appointments[appointment_id] = AppointmentRecord(
            id=appointment_id,
            start=start,
            practitioner_id=practitioner_id,
            appointment_type_id=type_id,
            patient_id=patient_id,
        )

    # ── SchedulingBackend interface ────────────────────────────

    async def list_available_times(self, practitioner_id, appointment_type_id, start, end):
        self._record("list_available_times", practitioner_id, appointment_type_id)
        return [
            s for s in self.slots
            if s.practitioner_id == practitioner_id
            and s.appointment_type_id == appointment_type_id
            and start <= s.start < end
        ]

    async def create_appointment(self, patient_id, practitioner_id, appointment_type_id, start):
        self._record("create_appointment", patient_id, practitioner_id, start)
        slot = next(
            (s for s in self.slots if s.practitioner_id == practitioner_id and s.start == start),
            None,
        )
        if slot is None:
            raise BackendError(409, "slot not available")
        self.slots.remove(slot)
        appointment_id = self._new_id("appt")
        self.add_appointment(appointment_id, patient_id, start, practitioner_id, appointment_type_id)
        return appointment_id

    async def patch_appointment(self, appointment_id, new_start):
        self._record("patch_appointment", appointment_id, new_start)
        if appointment_id not in self.appointments:
            raise BackendError(404, "not found")
        self.appointments[appointment_id].start = new_start

    async def cancel_appointment(self, appointment_id):
        self._record("cancel_appointment", appointment_id)
        record = self.appointments.get(appointment_id)
        if record is None:
            raise BackendError(404, "not found")
        if record.is_cancelled:
            raise BackendError(409, "already cancelled")
        record.cancelled_at = NOW

    async def list_appointments(self, patient_id, since):
        self._record("list_appointments", patient_id)
        return [r for r in self.appointments.values() if r.patient_id == patient_id and r.start >= since]

    async def find_patient_by_phone(self, phone) -> Optional[PatientRecord]:
        self._record("find_patient_by_phone", phone)
        return self.patients.get(phone)

    async def create_patient(self, first_name, last_name, phone):
        self._record("create_patient", first_name, last_name, phone)
        patient_id = self._new_id("pat")
        self.patients.setdefault(phone, PatientRecord(patient_id, first_name, last_name, phone))
        return patient_id


class CallHarness:
    """Drives one call through a TurnController, numbering turns like Twilio."""

    def __init__(self, controller, call_sid: str = "CA100", from_number: str = CALLER_PHONE) -> None:
        self.controller = controller
        self.call_sid = call_sid
        self.from_number = from_number
        self.turn = 0

    async def say(self, speech: Optional[str] = None, digits: Optional[str] = None) -> TurnResponse:
        self.turn += 1
        return await self.controller.handle_turn(self.inbound(speech, digits))

    def inbound(self, speech: Optional[str] = None, digits: Optional[str] = None,
                turn: Optional[int] = None) -> InboundTurn:
        return InboundTurn(
            call_sid=self.call_sid,
            from_number=self.from_number,
            to_number="+61733334444",
            speech_text=speech,
            confirmation_digits=digits,
            turn_index=turn or self.turn,
        )

    async def state(self) -> CallState:
        record = await self.controller._store.get(self.call_sid)
        return codec.decode(record.blob)


# ── Fixtures ────────────────────────────────────────────────────


@pytest.fixture
def config():
    return Settings(
        _env_file=None,
        llm_provider="none",
        clinic_name="Harbour Physio",
        clinic_address="12 Wharf Street",
        clinic_fees="A standard consult is $85.",
        timezone="Australia/Brisbane",
        practitioner_ids=["p1"],
        practitioner_names={"p1": "Dr Lee"},
        appointment_type_id="std",
        new_patient_appointment_type_id="",
        scheduling_timeout_seconds=1.0,
        scheduling_read_retries=1,
        handoff_number="",
        max_failed_turns=3,
    )


@pytest.fixture
def backend():
    return FakeSchedulingBackend()


@pytest.fixture
def executor(backend, config):
    return SchedulingExecutor(backend, config, clock=lambda: NOW)


@pytest.fixture
def composer(config):
    return ResponseComposer(config)


@pytest.fixture
def controller(config, backend):
    return build_controller(config, backend=backend, clock=lambda: NOW)


@pytest.fixture
def call(controller):
    return CallHarness(controller)
