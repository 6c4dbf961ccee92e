"""Tests for the turn controller: replay, locking and failure containment."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import asyncio
from unittest.mock import AsyncMock

import pytest

from receptionist.controller import redact_pii
from receptionist.models.call_state import FlowStage
from receptionist.store import StoredCall

from conftest import at


class TestTurnIndexing:
    @pytest.mark.asyncio
    async def test_turns_advance(self, call):
        first = await call.say()
        assert first.next_turn == 2
        assert (await call.state()).turn_index == 1
        second = await call.say("what are your opening hours")
        assert second.next_turn == 3
        assert (await call.state()).turn_index == 2

    @pytest.mark.asyncio
    async def test_final_turn_has_no_next(self, call):
        await call.say()
        goodbye = await call.say("no thanks, bye")
        assert goodbye.gather_next is False
        assert goodbye.next_turn is None


class TestDuplicateDelivery:
    @pytest.mark.asyncio
    async def test_redelivery_replays_response(self, call, backend):
        await call.say()
        reply = await call.say("what are your opening hours")
        replay = await call.controller.handle_turn(call.inbound("what are your opening hours", turn=2))
        assert replay == reply
        assert (await call.state()).turn_index == 2

    @pytest.mark.asyncio
    async def test_redelivered_confirmation_books_once(self, call, backend):
        backend.add_slot(at(1, 14))
        await call.say()
        await call.say("I'd like to book an appointment for tomorrow afternoon")
        await call.say("Sam Taylor")
        await call.say("no this is my first time")
        booked = await call.say("yes please")

        again = await call.controller.handle_turn(call.inbound("yes please", turn=call.turn))
        assert again == booked
        assert backend.count("create_appointment") == 1

    @pytest.mark.asyncio
    async def test_concurrent_deliveries_are_serialised(self, call, backend):
        turn = call.inbound(None, turn=1)
        first, second = await asyncio.gather(
            call.controller.handle_turn(turn),
            call.controller.handle_turn(turn),
        )
        assert first == second
        assert backend.count("find_patient_by_phone") == 1


class TestFailureContainment:
    @pytest.mark.asyncio
    async def test_malformed_state_ends_call(self, call, controller):
        await controller._store.put(call.call_sid, StoredCall(blob="{broken"))
        reply = await call.say("hello")
        assert reply.text == "I'm sorry, something went wrong on our end. Please call us back. Goodbye."
        assert reply.gather_next is False
        assert await controller._store.get(call.call_sid) is None

    @pytest.mark.asyncio
    async def test_unexpected_error_hands_off(self, call, controller):
        await call.say()
        controller._interpreter.interpret = AsyncMock(side_effect=RuntimeError("boom"))
        reply = await call.say("hello")
        assert reply.text.startswith("I'm sorry, something went wrong. Let me get one of our team")
        assert reply.gather_next is False
        state = await call.state()
        assert state.handoff_reason == "fatal_error"
        assert state.stage == FlowStage.HANDOFF

    @pytest.mark.asyncio
    async def test_end_call_retires_state(self, call, controller):
        await call.say()
        await controller.end_call(call.call_sid)
        assert await controller._store.get(call.call_sid) is None

    @pytest.mark.asyncio
    async def test_end_call_forgets_write_results(self, call, controller, backend):
        backend.add_slot(at(1, 14))
        await call.say()
        await call.say("I'd like to book an appointment for tomorrow afternoon")
        await call.say("Sam Taylor")
        await call.say("no this is my first time")
        await call.say("yes")
        results = controller._router._executor._results
        assert any(key[1] == call.call_sid for key in results)

        await controller.end_call(call.call_sid)
        assert not any(key[1] == call.call_sid for key in results)

    @pytest.mark.asyncio
    async def test_aclose_closes_clients(self, controller, backend):
        backend.aclose = AsyncMock()
        await controller.aclose()
        backend.aclose.assert_awaited_once()


class TestRedactPII:
    def test_phone(self):
        assert redact_pii("+61400111222") == "+61***22"

    def test_short(self):
        assert redact_pii("12345") == "***"
        assert redact_pii("") == "***"
