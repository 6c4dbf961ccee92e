"""Tests for prompt rendering, spoken times and the outbound sanitizer."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from datetime import datetime

import pytest

from receptionist.composer import (
    TEMPLATES,
    Prompt,
    PromptKey,
    sanitize,
    speak_clock,
    speak_preference,
    speak_when,
)

from conftest import NOW, at


class TestSanitize:
    @pytest.mark.parametrize("text", [None, "", "GOODBYE", "ASK_EMAIL", "REPROMPT_GENERIC"])
    def test_bare_tokens_are_silenced(self, text):
        assert sanitize(text) == ""

    @pytest.mark.parametrize("text", ["OK", "NO", "Hi", "DR LEE"])
    def test_short_capitals_are_spoken(self, text):
        assert sanitize(text) == text

    def test_embedded_tokens_are_removed(self):
        assert sanitize("Sure redirect_to_wizard thing") == "Sure thing"
        assert sanitize("Okay CONFIRM_EMAIL_OK, see you then.") == "Okay see you then."
        assert sanitize("Your reference BOOKREF99 is set") == "Your reference is set"

    def test_keeps_ordinary_text(self):
        text = "I have tomorrow at 2 pm with Dr Lee. Would that work for you?"
        assert sanitize(text) == text

    def test_keeps_prices(self):
        assert sanitize("A standard consult is $85.") == "A standard consult is $85."

    def test_ascii_only(self):
        assert sanitize("That\u2019s booked \u2014 see you soon") == "That's booked, see you soon"
        assert sanitize("9\u201310 am") == "9-10 am"
        assert sanitize("Café") == "Cafe"

    def test_markup_characters_removed(self):
        assert sanitize("Call <us> *now*") == "Call us now"

    def test_ampersand_is_spoken(self):
        assert sanitize("Smith & Jones") == "Smith and Jones"

    def test_never_raises_on_non_strings(self):
        assert sanitize(42) == "42"


class TestSpokenTimes:
    def test_clock(self):
        assert speak_clock(at(0, 14)) == "2 pm"
        assert speak_clock(at(0, 9, 30)) == "9:30 am"
        assert speak_clock(at(0, 12)) == "12 pm"

    def test_relative_days(self):
        assert speak_when(at(0, 15), NOW) == "today at 3 pm"
        assert speak_when(at(1, 9, 30), NOW) == "tomorrow at 9:30 am"
        assert speak_when(at(3, 16), NOW) == "on Thursday at 4 pm"

    def test_far_dates_include_the_date(self):
        assert speak_when(at(14, 9, 30), NOW) == "on Monday the 2nd of November at 9:30 am"
        assert speak_when(datetime(2026, 11, 11, 10, 0, tzinfo=NOW.tzinfo), NOW) == (
            "on Wednesday the 11th of November at 10 am"
        )

    @pytest.mark.parametrize("preference, spoken", [
        ("today afternoon", "this afternoon"),
        ("tomorrow morning", "tomorrow morning"),
        ("tomorrow 3:00pm", "tomorrow at 3 pm"),
        ("today 9:30am", "today at 9:30 am"),
        ("thursday", "on Thursday"),
        ("next week", "next week"),
        (None, "at that time"),
    ])
    def test_preferences(self, preference, spoken):
        assert speak_preference(preference) == spoken


class TestResponseComposer:
    def test_every_prompt_has_wording(self):
        assert set(TEMPLATES) == set(PromptKey)

    def test_clinic_details_filled_in(self, composer):
        assert composer.render_one(Prompt.of(PromptKey.GOODBYE)) == (
            "Thanks for calling Harbour Physio. Have a lovely day. Goodbye!"
        )
        assert "12 Wharf Street" in composer.render_one(Prompt.of(PromptKey.INFO))
        assert composer.render_one(Prompt.of(PromptKey.FEES)) == "A standard consult is $85."

    def test_offer_with_practitioner(self, composer):
        prompt = Prompt.of(
            PromptKey.OFFER_SLOT,
            when="tomorrow at 2 pm",
            with_practitioner=composer.practitioner_phrase("p1"),
        )
        assert composer.render_one(prompt) == "I have tomorrow at 2 pm with Dr Lee. Would that work for you?"

    def test_unknown_practitioner_is_omitted(self, composer):
        assert composer.practitioner_phrase("p9") == ""
        assert composer.practitioner_phrase(None) == ""

    def test_missing_params_render_empty(self, composer):
        assert composer.render_one(Prompt.of(PromptKey.BOOKED)) == "You're all booked in for."

    def test_render_joins_prompts(self, composer):
        text = composer.render([Prompt.of(PromptKey.SLOT_TAKEN), Prompt.of(PromptKey.ANYTHING_ELSE)])
        assert text == "Sorry, that time was just taken. Is there anything else I can help you with?"
