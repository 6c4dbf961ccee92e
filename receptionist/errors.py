"""Failure taxonomy for a single call turn.

Everything here is caught at the turn boundary (TurnController); none of it
may reach the telephony layer as an unrendered response.
"""

from __future__ import annotations


class ReceptionistError(Exception):
    """Base class for classified turn failures."""


class MalformedState(ReceptionistError):
    """The persisted state blob could not be decoded into a CallState."""


class UpstreamUnavailable(ReceptionistError):
    """Classifier or scheduling backend unreachable, timing out or erroring."""


class ValidationFailure(ReceptionistError):
    """The utterance produced no usable slot when one was required.

    ``reprompt`` names the prompt the router should ask again.
    """

    def __init__(self, reprompt: str, detail: str = "") -> None:
        super().__init__(detail or reprompt)
        self.reprompt = reprompt


class SchedulingConflict(ReceptionistError):
    """The target appointment no longer exists or was changed elsewhere."""


class BackendError(ReceptionistError):
    """Non-success HTTP response from the scheduling backend."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        super().__init__(f"scheduling backend returned {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class RescheduleIncomplete(ReceptionistError):
    """Cancel + create fallback cancelled the old appointment but the new one failed."""

    def __init__(self, cancelled_id: str, detail: str = "") -> None:
        super().__init__(f"appointment {cancelled_id} cancelled, replacement failed: {detail}")
        self.cancelled_id = cancelled_id
