"""Turn controller: one call per inbound webhook.

decode state -> interpret -> route -> encode state -> compose reply,
all under the call's lock so two deliveries of the same call never
interleave. Every failure is turned into something the caller hears.
"""

from __future__ import annotations

import logging

from receptionist import codec
from receptionist.composer import Prompt, PromptKey, ResponseComposer
from receptionist.config import Settings
from receptionist.errors import MalformedState
from receptionist.interpreter.interpreter import UtteranceInterpreter
from receptionist.models.call_state import CallState
from receptionist.models.turn import InboundTurn, TurnResponse
from receptionist.router import FlowRouter, RouteResult
from receptionist.store import CallStateStore, StoredCall

log = logging.getLogger("receptionist.controller")


def redact_pii(value: str) -> str:
    """Mask PII for logging: show first 3 and last 2 chars only."""
    if not value or len(value) <= 5:
        return "***"
    return value[:3] + "***" + value[-2:]


class TurnController:
    def __init__(
        self,
        store: CallStateStore,
        interpreter: UtteranceInterpreter,
        router: FlowRouter,
        composer: ResponseComposer,
        config: Settings,
    ) -> None:
        self._store = store
        self._interpreter = interpreter
        self._router = router
        self._composer = composer
        self._config = config

    async def handle_turn(self, turn: InboundTurn) -> TurnResponse:
        async with self._store.lock(turn.call_sid):
            record = await self._store.get(turn.call_sid)

            if record is None:
                state = CallState(
                    call_sid=turn.call_sid,
                    tenant_id=self._config.tenant_id or None,
                    caller_phone=turn.from_number,
                )
                log.info(
                    "New call %s from %s", turn.call_sid, redact_pii(turn.from_number)
                )
            else:
                try:
                    state = codec.decode(record.blob)
                except MalformedState as e:
                    log.error("Malformed state for call %s: %s", turn.call_sid, e)
                    await self._store.delete(turn.call_sid)
                    return self._respond(
                        RouteResult([Prompt.of(PromptKey.MALFORMED_STATE)], gather_next=False),
                        turn.turn_index,
                    )

                if turn.turn_index <= state.turn_index:
                    replay = record.response_for(turn.turn_index)
                    if replay is not None:
                        log.info(
                            "Duplicate delivery of turn %d for call %s (committed %d), replaying",
                            turn.turn_index, turn.call_sid, state.turn_index,
                        )
                        return replay

            speech = (turn.speech_text or "").strip()
            try:
                interp = await self._interpreter.interpret(speech, state, turn.confirmation_digits)
                result = await self._router.transition(state, interp, turn.turn_index, speech)
            except Exception:
                log.exception(
                    "Unexpected failure on turn %d of call %s (stage=%s)",
                    turn.turn_index, turn.call_sid, state.stage.value,
                )
                result = self._router.trigger_handoff(
                    state, "fatal_error", lead=[Prompt.of(PromptKey.FATAL)]
                )

            state.turn_index = max(turn.turn_index, state.turn_index + 1)
            response = self._respond(result, state.turn_index)

            record = record or StoredCall(blob="")
            record.blob = codec.encode(state)
            record.remember(state.turn_index, response)
            if turn.turn_index != state.turn_index:
                record.remember(turn.turn_index, response)
            await self._store.put(turn.call_sid, record)

            log.info(
                "Turn %d call=%s stage=%s said=%r",
                state.turn_index, turn.call_sid, state.stage.value, response.text[:80],
            )
            return response

    async def end_call(self, call_sid: str) -> None:
        """Retire a call's state once the telephony layer reports it ended."""
        async with self._store.lock(call_sid):
            await self._store.delete(call_sid)
        self._router.forget_call(call_sid)
        log.info("Call %s ended, state retired", call_sid)

    async def aclose(self) -> None:
        """Close the classifier and backend HTTP clients."""
        await self._interpreter.aclose()
        await self._router.aclose()

    def _respond(self, result: RouteResult, turn_index: int) -> TurnResponse:
        return TurnResponse(
            text=self._composer.render(result.prompts),
            gather_next=result.gather_next,
            timeout_seconds=self._config.gather_timeout_seconds,
            dial=self._config.handoff_number if result.transfer else None,
            next_turn=turn_index + 1 if result.gather_next else None,
        )
