"""TwiML rendering for the "speak, then listen or hang up" contract."""

from __future__ import annotations

from typing import Optional
from xml.etree.ElementTree import Element, SubElement, tostring

from receptionist.models.turn import TurnResponse

VOICE = "Polly.Olivia-Neural"
LANGUAGE = "en-AU"
XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'


def render(
    text: str,
    gather_next: bool,
    timeout_seconds: int,
    action_url: Optional[str] = None,
    dial: Optional[str] = None,
) -> str:
    """Build a TwiML document.

    With ``gather_next`` the text is spoken inside a speech+DTMF Gather that
    posts to ``action_url`` (also on silence). Otherwise the text is spoken
    and the call is transferred to ``dial`` when given, or hung up. Empty
    text produces no Say element.
    """
    response_el = Element("Response")

    if gather_next:
        gather_el = SubElement(response_el, "Gather")
        gather_el.set("input", "speech dtmf")
        gather_el.set("numDigits", "1")
        gather_el.set("speechTimeout", "auto")
        gather_el.set("timeout", str(timeout_seconds))
        gather_el.set("language", LANGUAGE)
        gather_el.set("actionOnEmptyResult", "true")
        if action_url:
            gather_el.set("action", action_url)
            gather_el.set("method", "POST")
        _say(gather_el, text)
    else:
        _say(response_el, text)
        if dial:
            dial_el = SubElement(response_el, "Dial")
            dial_el.text = dial
        else:
            SubElement(response_el, "Hangup")

    return XML_DECLARATION + tostring(response_el, encoding="unicode")


def _say(parent: Element, text: str) -> None:
    if not text:
        return
    say_el = SubElement(parent, "Say")
    say_el.set("voice", VOICE)
    say_el.set("language", LANGUAGE)
    say_el.text = text


def render_response(response: TurnResponse, action_base: str = "/twilio/continue") -> str:
    action_url = None
    if response.gather_next and response.next_turn is not None:
        action_url = f"{action_base}?turn={response.next_turn}"
    return render(
        response.text,
        response.gather_next,
        response.timeout_seconds,
        action_url=action_url,
        dial=response.dial,
    )
