"""Compact persisted form of CallState.

The blob is a JSON object with short field codes, sorted keys, compact
separators and default-valued fields omitted, so the same state always
encodes to the same string. Translation only: no business rules live here.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from receptionist.errors import MalformedState
from receptionist.models.call_state import CallState

# field name -> code
FIELD_CODES: dict[str, str] = {
    "call_sid": "cs",
    "tenant_id": "tn",
    "turn_index": "ti",
    "intent": "im",
    "stage": "st",
    "caller_phone": "ph",
    "caller_name": "nm",
    "new_patient": "np",
    "patient_id": "pi",
    "group_booking": "gb",
    "participants": "gp",
    "group_booking_complete": "gc",
    "booking_for_other": "bo",
    "time_preference": "tp",
    "request_slots": "rs",
    "proposed_slot": "ps",
    "offer_index": "oi",
    "appointment_created": "ac",
    "appointment_id": "ai",
    "appointment_start": "as",
    "appointment_practitioner_id": "ap",
    "appointment_type_id": "at",
    "is_reschedule": "rx",
    "failed_turns": "ff",
    "upstream_failures": "uf",
    "handoff_triggered": "ho",
    "handoff_reason": "hr",
}

PARTICIPANT_CODES: dict[str, str] = {"name": "n", "relation": "r"}

SLOT_CODES: dict[str, str] = {
    "start": "s",
    "end": "e",
    "practitioner_id": "p",
    "appointment_type_id": "t",
}

_NESTED: dict[str, tuple[dict[str, str], bool]] = {
    # field -> (code table, is_list)
    "participants": (PARTICIPANT_CODES, True),
    "proposed_slot": (SLOT_CODES, False),
}


def _invert(table: dict[str, str]) -> dict[str, str]:
    return {code: name for name, code in table.items()}


_FIELD_NAMES = _invert(FIELD_CODES)
_NESTED_NAMES = {name: (_invert(table), is_list) for name, (table, is_list) in _NESTED.items()}


def _rename(obj: dict[str, Any], table: dict[str, str]) -> dict[str, Any]:
    out = {}
    for key, value in obj.items():
        if key not in table:
            raise MalformedState(f"unknown field {key!r}")
        out[table[key]] = value
    return out


def encode(state: CallState) -> str:
    """Serialize ``state`` to its compact, deterministic string form."""
    data = state.model_dump(mode="json", exclude_defaults=True)
    out: dict[str, Any] = {}
    for name, value in data.items():
        if name in _NESTED and value is not None:
            table, is_list = _NESTED[name]
            if is_list:
                value = [{table[k]: v for k, v in item.items()} for item in value]
            else:
                value = {table[k]: v for k, v in value.items()}
        out[FIELD_CODES[name]] = value
    return json.dumps(out, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def decode(raw: str | bytes) -> CallState:
    """Parse a compact blob back into a validated CallState.

    Raises:
        MalformedState: the blob is not a JSON object of known field codes
            or its values do not validate.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise MalformedState(f"state blob is not JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise MalformedState("state blob is not an object")

    fields = _rename(data, _FIELD_NAMES)
    for name, (table, is_list) in _NESTED_NAMES.items():
        value = fields.get(name)
        if value is None:
            continue
        if is_list:
            if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
                raise MalformedState(f"{name} must be a list of objects")
            fields[name] = [_rename(item, table) for item in value]
        else:
            if not isinstance(value, dict):
                raise MalformedState(f"{name} must be an object")
            fields[name] = _rename(value, table)

    try:
        return CallState.model_validate(fields)
    except ValidationError as exc:
        raise MalformedState(f"state blob failed validation: {exc.error_count()} error(s)") from exc
