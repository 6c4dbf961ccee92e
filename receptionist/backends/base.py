"""Abstract base class for scheduling backends.

Defines the capability surface the executor needs from a practice
management system. Implementations raise ``BackendError`` for non-success
responses and ``UpstreamUnavailable`` when the service cannot be reached.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from receptionist.models.slots import AppointmentRecord, PatientRecord, SlotOption


class SchedulingBackend(ABC):
    """Abstract scheduling backend."""

    @abstractmethod
    async def list_available_times(
        self,
        practitioner_id: str,
        appointment_type_id: str,
        start: datetime,
        end: datetime,
    ) -> list[SlotOption]:
        """Return bookable slots for one practitioner within the window.

        An empty list is a valid answer.
        """

    @abstractmethod
    async def create_appointment(
        self,
        patient_id: str,
        practitioner_id: str,
        appointment_type_id: str,
        start: datetime,
    ) -> str:
        """Create an appointment and return its identifier."""

    @abstractmethod
    async def patch_appointment(self, appointment_id: str, new_start: datetime) -> None:
        """Move an appointment to ``new_start``."""

    @abstractmethod
    async def cancel_appointment(self, appointment_id: str) -> None:
        """Cancel an appointment."""

    @abstractmethod
    async def list_appointments(
        self, patient_id: str, since: datetime
    ) -> list[AppointmentRecord]:
        """Return the patient's appointments starting at or after ``since``."""

    @abstractmethod
    async def find_patient_by_phone(self, phone: str) -> Optional[PatientRecord]:
        """Look up a patient by phone number, or None."""

    @abstractmethod
    async def create_patient(self, first_name: str, last_name: str, phone: str) -> str:
        """Create a patient record and return its identifier."""

    async def aclose(self) -> None:
        """Release connections. Backends without any may keep the default."""
