"""REST scheduling backend over httpx.

Endpoints::

  GET   /availability?practitionerId&typeId&from&to -> [{start, end, practitionerId}]
  POST  /appointments {patientId, practitionerId, typeId, start} -> {id}
  PATCH /appointments/{id} {start}
  PATCH /appointments/{id}/cancel
  GET   /appointments?patientId&from -> [{id, start, cancelledAt?, ...}]
  GET   /patients?phone -> [{id, firstName, lastName, phone}]
  POST  /patients {firstName, lastName, phone} -> {id}

List endpoints may return a bare array or ``{"items": [...]}``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

import httpx

from receptionist.backends.base import SchedulingBackend
from receptionist.config import Settings
from receptionist.errors import BackendError, UpstreamUnavailable
from receptionist.models.slots import AppointmentRecord, PatientRecord, SlotOption

log = logging.getLogger("receptionist.backends.rest")


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _items(payload: Any) -> list[dict]:
    if isinstance(payload, dict):
        payload = payload.get("items", [])
    return [item for item in payload or [] if isinstance(item, dict)]


class RestSchedulingBackend(SchedulingBackend):
    """Scheduling backend speaking JSON over HTTP with basic auth."""

    def __init__(self, config: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient(
            base_url=config.scheduling_base_url,
            auth=(config.scheduling_api_key, "") if config.scheduling_api_key else None,
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Transport ──────────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise UpstreamUnavailable(f"{method} {path}: {e}") from e

        if resp.status_code >= 400:
            log.warning("%s %s -> %d", method, path, resp.status_code)
            raise BackendError(resp.status_code, resp.text[:200])
        if not resp.content:
            return None
        return resp.json()

    # ── SchedulingBackend interface ────────────────────────────

    async def list_available_times(self, practitioner_id, appointment_type_id, start, end):
        payload = await self._request(
            "GET",
            "/availability",
            params={
                "practitionerId": practitioner_id,
                "typeId": appointment_type_id,
                "from": start.isoformat(),
                "to": end.isoformat(),
            },
        )
        slots = []
        for item in _items(payload):
            slot_start = _parse_time(item.get("start"))
            slot_end = _parse_time(item.get("end"))
            if slot_start is None or slot_end is None:
                continue
            slots.append(SlotOption(
                start=slot_start,
                end=slot_end,
                practitioner_id=str(item.get("practitionerId") or practitioner_id),
                appointment_type_id=appointment_type_id,
            ))
        return slots

    async def create_appointment(self, patient_id, practitioner_id, appointment_type_id, start):
        payload = await self._request(
            "POST",
            "/appointments",
            json={
                "patientId": patient_id,
                "practitionerId": practitioner_id,
                "typeId": appointment_type_id,
                "start": start.isoformat(),
            },
        )
        return str(payload["id"])

    async def patch_appointment(self, appointment_id, new_start):
        await self._request(
            "PATCH", f"/appointments/{appointment_id}", json={"start": new_start.isoformat()}
        )

    async def cancel_appointment(self, appointment_id):
        await self._request("PATCH", f"/appointments/{appointment_id}/cancel")

    async def list_appointments(self, patient_id, since):
        payload = await self._request(
            "GET", "/appointments", params={"patientId": patient_id, "from": since.isoformat()}
        )
        records = []
        for item in _items(payload):
            start = _parse_time(item.get("start"))
            if start is None:
                continue
            records.append(AppointmentRecord(
                id=str(item["id"]),
                start=start,
                practitioner_id=str(item.get("practitionerId") or ""),
                appointment_type_id=str(item.get("typeId") or ""),
                patient_id=str(item.get("patientId") or patient_id),
                cancelled_at=_parse_time(item.get("cancelledAt")),
            ))
        return records

    async def find_patient_by_phone(self, phone):
        payload = await self._request("GET", "/patients", params={"phone": phone})
        for item in _items(payload):
            return PatientRecord(
                id=str(item["id"]),
                first_name=item.get("firstName") or "",
                last_name=item.get("lastName") or "",
                phone=item.get("phone") or phone,
            )
        return None

    async def create_patient(self, first_name, last_name, phone):
        payload = await self._request(
            "POST",
            "/patients",
            json={"firstName": first_name, "lastName": last_name, "phone": phone},
        )
        return str(payload["id"])
