"""Inbound webhook turn and outbound response models."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class InboundTurn(BaseModel):
    """One telephony webhook delivery.

    ``turn_index`` comes from the Gather action URL; the first webhook of a
    call carries turn 1.
    """

    call_sid: str
    from_number: str = ""
    to_number: str = ""
    speech_text: Optional[str] = None
    confirmation_digits: Optional[str] = None
    turn_index: int = 1


class TurnResponse(BaseModel):
    """What the caller hears this turn, and whether we listen afterwards."""

    text: str
    gather_next: bool = True
    timeout_seconds: int = 8
    # Transfer target when the call is handed to staff
    dial: Optional[str] = None
    next_turn: Optional[int] = None
