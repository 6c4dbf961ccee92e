"""Idempotent scheduling executor over a SchedulingBackend.

Every backend call is bounded by ``scheduling_timeout_seconds``. Reads are
retried ``scheduling_read_retries`` times and, when the backend stays
unreachable, availability is served from the last successful answer for the
same practitioner and window.

Writes run as tasks keyed by their idempotency key:

  * a retried request with the same key joins the in-flight task or gets the
    stored result, so it can never create a second appointment;
  * the caller awaits the task through ``asyncio.shield``, so a webhook that
    is cancelled because the caller hung up does not abort the write. The
    outcome is logged when the task finishes either way.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Hashable, Optional
from zoneinfo import ZoneInfo

from receptionist.backends.base import SchedulingBackend
from receptionist.config import Settings
from receptionist.errors import (
    BackendError,
    RescheduleIncomplete,
    SchedulingConflict,
    UpstreamUnavailable,
)
from receptionist.models.slots import AppointmentRecord, PatientRecord, SlotOption, TimeWindow

log = logging.getLogger("receptionist.executor")


class SchedulingExecutor:
    def __init__(
        self,
        backend: SchedulingBackend,
        config: Settings,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._backend = backend
        self._config = config
        self._tz = ZoneInfo(config.timezone)
        self._clock = clock or (lambda: datetime.now(self._tz))

        # key -> (finished_at, result); kept for the life of a call
        self._results: dict[Hashable, tuple[float, Any]] = {}
        self._inflight: dict[Hashable, asyncio.Task] = {}
        # appointment id -> cancelled_at
        self._cancelled: dict[str, float] = {}
        # (practitioner, type, window end) -> (fetched_at, slots)
        self._availability_cache: dict[tuple, tuple[float, list[SlotOption]]] = {}

    @property
    def tz(self) -> ZoneInfo:
        return self._tz

    def now(self) -> datetime:
        return self._clock().astimezone(self._tz)

    # ── Housekeeping ───────────────────────────────────────────

    def forget_call(self, call_sid: str) -> None:
        """Drop idempotency results recorded for a finished call."""
        keys = [k for k in self._results if isinstance(k, tuple) and len(k) > 1 and k[1] == call_sid]
        for key in keys:
            del self._results[key]
        if keys:
            log.debug("Forgot %d results for call %s", len(keys), call_sid)

    def _evict(self) -> None:
        now = time.monotonic()
        ttl = self._config.call_state_ttl_seconds
        for key in [k for k, (at, _) in self._results.items() if now - at > ttl]:
            del self._results[key]
        for appointment_id in [a for a, at in self._cancelled.items() if now - at > ttl]:
            del self._cancelled[appointment_id]
        cache_ttl = self._config.availability_cache_ttl_seconds
        for key in [k for k, (at, _) in self._availability_cache.items() if now - at > cache_ttl]:
            del self._availability_cache[key]

    async def aclose(self) -> None:
        await self._backend.aclose()

    # ── Internal: bounded calls ─────────────────────────────────

    async def _call(self, label: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await asyncio.wait_for(factory(), timeout=self._config.scheduling_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise UpstreamUnavailable(f"{label} timed out") from e

    async def _read(self, label: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        attempts = 1 + max(0, self._config.scheduling_read_retries)
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._call(label, factory)
            except UpstreamUnavailable as e:
                error, retryable = e, True
            except BackendError as e:
                error, retryable = UpstreamUnavailable(str(e)), e.status_code >= 500
            if not retryable or attempt >= attempts:
                raise error
            log.warning("%s failed (attempt %d/%d): %s", label, attempt, attempts, error)

    async def _mutate(self, key: Hashable, label: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        self._evict()
        if key in self._results:
            log.info("%s already done for %s, reusing result", label, key)
            return self._results[key][1]

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._call(label, factory))
            self._inflight[key] = task
            task.add_done_callback(lambda t: self._mutation_done(key, label, t))
        else:
            log.info("%s already in flight for %s, joining", label, key)
        return await asyncio.shield(task)

    def _mutation_done(self, key: Hashable, label: str, task: asyncio.Task) -> None:
        self._inflight.pop(key, None)
        if task.cancelled():
            log.error("%s for %s was cancelled before completing", label, key)
            return
        exc = task.exception()
        if exc is not None:
            log.error("%s for %s failed: %s", label, key, exc)
            return
        self._results[key] = (time.monotonic(), task.result())
        log.info("%s for %s completed: %s", label, key, task.result())

    # ── Availability ────────────────────────────────────────────

    def _bookable(self, slots: list[SlotOption], window: TimeWindow) -> list[SlotOption]:
        earliest = self.now() + timedelta(minutes=self._config.slot_lead_minutes)
        return [
            s for s in slots
            if s.start >= earliest and s.start >= window.start and s.start < window.end
        ]

    async def list_availability(
        self,
        window: TimeWindow,
        practitioner_id: str,
        appointment_type_id: str,
    ) -> list[SlotOption]:
        """Bookable slots for one practitioner, earliest first.

        Raises UpstreamUnavailable when the backend cannot be reached and no
        fresh cached answer exists.
        """
        if window.end <= window.start:
            return []

        self._evict()
        cache_key = (practitioner_id, appointment_type_id, window.end.isoformat())
        try:
            slots = await self._read(
                "list_availability",
                lambda: self._backend.list_available_times(
                    practitioner_id, appointment_type_id, window.start, window.end
                ),
            )
        except UpstreamUnavailable:
            cached = self._availability_cache.get(cache_key)
            if cached is None or time.monotonic() - cached[0] > self._config.availability_cache_ttl_seconds:
                raise
            log.warning("Serving cached availability for practitioner %s", practitioner_id)
            slots = cached[1]
        else:
            self._availability_cache[cache_key] = (time.monotonic(), list(slots))

        return sorted(self._bookable(slots, window), key=lambda s: s.start)

    async def find_availability(
        self,
        window: TimeWindow,
        appointment_type_id: str,
        practitioner_ids: Optional[list[str]] = None,
    ) -> list[SlotOption]:
        """Merge availability across practitioners in start order.

        A practitioner whose lookup fails is skipped as long as at least one
        lookup succeeds.
        """
        ids = practitioner_ids if practitioner_ids is not None else self._config.practitioner_ids
        merged: list[SlotOption] = []
        failures = 0
        for practitioner_id in ids:
            try:
                merged.extend(await self.list_availability(window, practitioner_id, appointment_type_id))
            except UpstreamUnavailable as e:
                failures += 1
                log.warning("Availability for practitioner %s unavailable: %s", practitioner_id, e)
        if ids and failures == len(ids):
            raise UpstreamUnavailable("no practitioner availability could be fetched")
        return sorted(merged, key=lambda s: (s.start, s.practitioner_id))

    # ── Appointments ────────────────────────────────────────────

    async def create_appointment(
        self,
        call_sid: str,
        participant_index: int,
        turn_index: int,
        patient_id: str,
        practitioner_id: str,
        appointment_type_id: str,
        start: datetime,
    ) -> str:
        """Create an appointment once per (call_sid, participant_index, turn_index)."""
        key = ("create", call_sid, participant_index, turn_index)
        return await self._mutate(
            key,
            "create_appointment",
            lambda: self._create(patient_id, practitioner_id, appointment_type_id, start),
        )

    async def _create(self, patient_id, practitioner_id, appointment_type_id, start) -> str:
        try:
            return await self._backend.create_appointment(
                patient_id, practitioner_id, appointment_type_id, start
            )
        except BackendError as e:
            if e.status_code == 409:
                raise SchedulingConflict(f"slot at {start.isoformat()} was taken") from e
            raise

    async def patch_appointment(self, appointment_id: str, new_start: datetime) -> None:
        await self._call(
            "patch_appointment",
            lambda: self._backend.patch_appointment(appointment_id, new_start),
        )

    async def cancel_appointment(self, appointment_id: str) -> None:
        """Cancel, treating an already-cancelled appointment as success.

        Raises SchedulingConflict when the appointment no longer exists.
        """
        if appointment_id in self._cancelled:
            log.info("Appointment %s already cancelled by this process", appointment_id)
            return
        await self._mutate(
            ("cancel", appointment_id),
            "cancel_appointment",
            lambda: self._cancel(appointment_id),
        )

    async def _cancel(self, appointment_id: str) -> None:
        try:
            await self._backend.cancel_appointment(appointment_id)
        except BackendError as e:
            if e.status_code in self._config.already_cancelled_statuses:
                log.info("Appointment %s was already cancelled (%d)", appointment_id, e.status_code)
            elif e.status_code == 404:
                raise SchedulingConflict(f"appointment {appointment_id} not found") from e
            else:
                raise
        self._cancelled[appointment_id] = time.monotonic()

    async def reschedule_appointment(
        self,
        call_sid: str,
        turn_index: int,
        appointment: AppointmentRecord,
        new_start: datetime,
    ) -> str:
        """Move ``appointment`` to ``new_start`` and return the resulting id.

        PATCH is tried first. A status listed in ``reschedule_fallback_statuses``
        means the backend cannot move appointments, so the old one is
        cancelled and a new one created for the same patient, practitioner
        and type. Any other failure is raised; RescheduleIncomplete when the
        old appointment is already cancelled but the replacement was not made.
        """
        key = ("reschedule", call_sid, turn_index)
        try:
            return await self._mutate(
                key,
                "reschedule_appointment",
                lambda: self._reschedule(call_sid, turn_index, appointment, new_start),
            )
        except UpstreamUnavailable as e:
            if appointment.id in self._cancelled:
                raise RescheduleIncomplete(appointment.id, str(e)) from e
            raise

    async def _reschedule(
        self,
        call_sid: str,
        turn_index: int,
        appointment: AppointmentRecord,
        new_start: datetime,
    ) -> str:
        try:
            await self._backend.patch_appointment(appointment.id, new_start)
            return appointment.id
        except BackendError as e:
            if e.status_code not in self._config.reschedule_fallback_statuses:
                raise
            log.info(
                "PATCH unsupported for %s (%d), falling back to cancel + create",
                appointment.id,
                e.status_code,
            )

        await self._cancel(appointment.id)
        try:
            return await self._create(
                appointment.patient_id,
                appointment.practitioner_id,
                appointment.appointment_type_id,
                new_start,
            )
        except (SchedulingConflict, BackendError, UpstreamUnavailable) as e:
            log.error("Replacement for cancelled appointment %s failed: %s", appointment.id, e)
            raise RescheduleIncomplete(appointment.id, str(e)) from e

    async def next_upcoming_appointment(self, patient_id: str) -> Optional[AppointmentRecord]:
        """The patient's earliest future appointment that is not cancelled."""
        now = self.now()
        records = await self._read(
            "list_appointments",
            lambda: self._backend.list_appointments(patient_id, now),
        )
        upcoming = [
            r for r in records
            if not r.is_cancelled and r.id not in self._cancelled and r.start > now
        ]
        if not upcoming:
            return None
        upcoming.sort(key=lambda r: r.start)
        return upcoming[0]

    # ── Patients ────────────────────────────────────────────────

    async def find_patient(self, phone: str) -> Optional[PatientRecord]:
        if not phone:
            return None
        return await self._read(
            "find_patient_by_phone",
            lambda: self._backend.find_patient_by_phone(phone),
        )

    async def ensure_patient(self, call_sid: str, name: str, phone: str) -> str:
        """Create a patient for ``name`` once per call and name."""
        first, _, last = name.partition(" ")
        return await self._mutate(
            ("patient", call_sid, name.lower()),
            "create_patient",
            lambda: self._backend.create_patient(first, last, phone),
        )
