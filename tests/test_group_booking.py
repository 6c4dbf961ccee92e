"""Tests for group bookings and follow-up bookings for someone else."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

from receptionist.errors import BackendError
from receptionist.models.call_state import CallState, FlowStage, Participant

from conftest import at


def _pair():
    return [Participant(name="Sam Taylor", relation="caller"), Participant(name="Alex Taylor")]


# ── Executor gate ───────────────────────────────────────────────


class TestGroupBookingGate:
    def test_ready_when_everything_known(self):
        state = CallState(call_sid="CA1", group_booking=True, participants=_pair(),
                          time_preference="tomorrow afternoon")
        assert state.group_booking_ready is True

    def test_needs_two_participants(self):
        state = CallState(call_sid="CA1", group_booking=True, participants=_pair()[:1],
                          time_preference="tomorrow afternoon")
        assert state.group_booking_ready is False

    def test_needs_time_preference(self):
        state = CallState(call_sid="CA1", group_booking=True, participants=_pair())
        assert state.group_booking_ready is False

    def test_closed_once_complete(self):
        state = CallState(call_sid="CA1", group_booking=True, participants=_pair(),
                          time_preference="tomorrow afternoon", group_booking_complete=2)
        assert state.group_booking_ready is False

    def test_closed_once_anything_booked(self):
        state = CallState(call_sid="CA1", group_booking=True, participants=_pair(),
                          time_preference="tomorrow afternoon", appointment_created=True)
        assert state.group_booking_ready is False

    def test_stays_open_until_something_is_booked(self):
        state = CallState(call_sid="CA1", group_booking=True, participants=_pair())
        assert state.group_booking_ready is False

        state.time_preference = "tomorrow afternoon"
        assert [state.group_booking_ready for _ in range(3)] == [True, True, True]

        state.failed_turns = 2
        state.caller_name = "Sam Taylor"
        state.offer_index = 1
        state.stage = FlowStage.BOOKING_SLOT_NEGOTIATION
        assert state.group_booking_ready is True

        state.appointment_created = True
        assert state.group_booking_ready is False
        state.failed_turns = 0
        assert state.group_booking_ready is False


# ── Conversations ───────────────────────────────────────────────


class TestGroupBookingFlow:
    @pytest.mark.asyncio
    async def test_names_then_booking(self, call, backend):
        backend.add_slot(at(1, 14))
        backend.add_slot(at(1, 14, 30))
        await call.say()

        ask_names = await call.say("I'd like to book for myself and my son tomorrow afternoon")
        assert ask_names.text == (
            "Sure, I can book you in together. "
            "What are the names of everyone who needs an appointment?"
        )
        state = await call.state()
        assert state.stage == FlowStage.GROUP_BOOKING_COLLECT
        assert state.group_booking is True
        assert state.participants == []

        booked = await call.say("Sam Taylor and Alex Taylor")
        assert booked.text == (
            "All done. I've booked Sam tomorrow at 2 pm, and Alex tomorrow at 2:30 pm. "
            "Is there anything else I can help you with?"
        )
        state = await call.state()
        assert state.group_booking_complete == 2
        assert state.group_booking_ready is False
        assert state.stage == FlowStage.CONFIRMED
        assert len(backend.appointments) == 2
        assert len({a.patient_id for a in backend.appointments.values()}) == 2

    @pytest.mark.asyncio
    async def test_everything_in_one_utterance(self, call, backend):
        backend.add_slot(at(1, 14))
        backend.add_slot(at(1, 14, 30))
        await call.say()
        booked = await call.say("I'd like to book for both of us, Sam and Alex, tomorrow afternoon")
        assert booked.text.startswith("All done. I've booked Sam tomorrow at 2 pm, and Alex")
        assert len(backend.appointments) == 2

    @pytest.mark.asyncio
    async def test_asks_time_after_names(self, call, backend):
        await call.say()
        await call.say("can I book myself and my daughter in")
        ask_time = await call.say("Sam and Alex")
        assert ask_time.text == "Thanks. What day and time would suit Sam and Alex?"

    @pytest.mark.asyncio
    async def test_not_enough_slots(self, call, backend):
        backend.add_slot(at(1, 14))
        await call.say()
        await call.say("I'd like to book for myself and my son tomorrow afternoon")
        short = await call.say("Sam Taylor and Alex Taylor")
        assert short.text == (
            "Sorry, I couldn't find 2 appointments close together tomorrow afternoon. "
            "Is there another day or time that would work?"
        )
        state = await call.state()
        assert state.time_preference is None
        assert state.stage == FlowStage.GROUP_BOOKING_COLLECT
        assert backend.appointments == {}

        backend.add_slot(at(2, 9))
        backend.add_slot(at(2, 9, 30))
        booked = await call.say("Wednesday then")
        assert booked.text.startswith(
            "All done. I've booked Sam on Wednesday at 9 am, and Alex on Wednesday at 9:30 am."
        )

    @pytest.mark.asyncio
    async def test_repeated_turn_never_books_twice(self, call, backend):
        backend.add_slot(at(1, 14))
        backend.add_slot(at(1, 14, 30))
        backend.add_slot(at(1, 15))
        backend.add_slot(at(1, 15, 30))
        await call.say()
        await call.say("I'd like to book for myself and my son tomorrow afternoon")
        first = await call.say("Sam Taylor and Alex Taylor")

        replay = await call.controller.handle_turn(call.inbound("Sam Taylor and Alex Taylor", turn=call.turn))
        assert replay == first

        await call.say("Sam Taylor and Alex Taylor")
        assert backend.count("create_appointment") == 2

    @pytest.mark.asyncio
    async def test_partial_failure_hands_off(self, call, backend):
        backend.add_slot(at(1, 14))
        backend.add_slot(at(1, 14, 30))
        original = backend.create_appointment
        attempts = []

        async def second_fails(*args):
            attempts.append(args)
            if len(attempts) == 2:
                raise BackendError(500, "server error")
            return await original(*args)

        backend.create_appointment = second_fails
        await call.say()
        await call.say("I'd like to book for myself and my son tomorrow afternoon")
        failed = await call.say("Sam Taylor and Alex Taylor")

        assert failed.text.startswith("I'm sorry, I wasn't able to finish all of those bookings")
        assert failed.gather_next is False
        state = await call.state()
        assert state.handoff_reason == "group_booking_failed"
        assert state.appointment_created is True
        assert state.group_booking_ready is False
        assert len(backend.appointments) == 1


class TestSecondaryBooking:
    @pytest.mark.asyncio
    async def test_book_someone_else_at_same_time(self, call, backend):
        backend.add_slot(at(1, 14))
        backend.add_slot(at(1, 15, 30))
        await call.say()
        await call.say("I'd like to book an appointment for tomorrow afternoon")
        await call.say("Sam Taylor")
        await call.say("no this is my first time")
        await call.say("yes")
        first_id = (await call.state()).appointment_id

        offer = await call.say("can you also book my son Jack in at the same time")
        assert offer.text == "I have tomorrow at 3:30 pm with Dr Lee. Would that work for you?"
        state = await call.state()
        assert state.caller_name == "Jack"
        assert state.booking_for_other is True
        assert state.new_patient is True

        booked = await call.say("yes")
        assert booked.text.startswith("You're all booked in for tomorrow at 3:30 pm")
        second = (await call.state()).appointment_id
        assert second != first_id
        assert backend.appointments[second].patient_id != backend.appointments[first_id].patient_id

    @pytest.mark.asyncio
    async def test_unnamed_person_is_asked_for(self, call, backend):
        backend.add_slot(at(1, 14))
        await call.say()
        await call.say("I'd like to book an appointment for tomorrow afternoon")
        await call.say("Sam Taylor")
        await call.say("no this is my first time")
        await call.say("yes")

        ask = await call.say("could you book for my daughter as well")
        assert ask.text == "Of course. What's the name of the person the appointment is for?"
        assert (await call.state()).time_preference is None
