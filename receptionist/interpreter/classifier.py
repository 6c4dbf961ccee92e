"""Intent classification for free-form utterances.

``IntentClassifier`` is the hybrid used by the interpreter: it asks the LLM
classifier within a short timeout and falls back to the keyword classifier
on timeout, error or missing configuration. The keyword layer never fails.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx

from receptionist.config import Settings
from receptionist.models.call_state import Intent

log = logging.getLogger("receptionist.classifier")

CLASSIFIABLE = (
    Intent.BOOK,
    Intent.RESCHEDULE,
    Intent.CANCEL,
    Intent.OPERATOR,
    Intent.INFO,
    Intent.FEES,
    Intent.UNKNOWN,
)


@dataclass(frozen=True)
class Classification:
    intent: Intent
    confidence: float
    source: str = "keyword"


# ── Keyword layer ───────────────────────────────────────────────

# Checked in order; first lexicon with a hit wins.
KEYWORD_LEXICON: tuple[tuple[Intent, tuple[str, ...], float], ...] = (
    (Intent.OPERATOR, ("speak to", "talk to", "real person", "operator", "human",
                       "receptionist", "staff member", "front desk"), 0.85),
    (Intent.CANCEL, ("cancel", "call off", "can't make it", "cannot make it"), 0.85),
    (Intent.RESCHEDULE, ("reschedule", "change", "move", "push back", "bring forward",
                         "different time", "different day"), 0.8),
    (Intent.FEES, ("how much", "cost", "price", "fee", "charge", "pay", "rebate"), 0.8),
    (Intent.INFO, ("hours", "open", "close", "where are you", "address", "located",
                   "parking", "directions", "when are you"), 0.8),
    (Intent.BOOK, ("book", "appointment", "schedule", "new", "see someone", "come in",
                   "available", "availability", "get in"), 0.75),
)


class KeywordIntentClassifier:
    """Deterministic lexicon lookup. Returns ``unknown`` when nothing matches."""

    def classify(self, utterance: str) -> Classification:
        text = " ".join(utterance.lower().split())
        for intent, keywords, confidence in KEYWORD_LEXICON:
            if any(re.search(rf"\b{re.escape(k)}", text) for k in keywords):
                return Classification(intent, confidence)
        return Classification(Intent.UNKNOWN, 0.0)


# ── LLM layer ───────────────────────────────────────────────────

_SYSTEM_PROMPT = (
    "You classify what a caller to a medical clinic's phone line wants. "
    "Reply with JSON only: {\"intent\": <one of book, reschedule, cancel, "
    "operator, info, fees, unknown>, \"confidence\": <0..1>}. "
    "book = make a new appointment; reschedule = move an existing one; "
    "cancel = cancel an existing one; operator = wants a human; "
    "info = opening hours, location or general questions; "
    "fees = prices or payment; unknown = anything else."
)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def parse_classification(content: str) -> Classification:
    """Parse the model's JSON reply. Raises ValueError when unusable."""
    match = _JSON_OBJECT.search(content or "")
    if not match:
        raise ValueError("no JSON object in classifier reply")
    data = json.loads(match.group(0))
    intent = Intent(str(data.get("intent", "unknown")).lower())
    if intent not in CLASSIFIABLE:
        raise ValueError(f"intent {intent.value!r} is not classifiable")
    confidence = float(data.get("confidence", 0.8))
    return Classification(intent, max(0.0, min(1.0, confidence)), source="llm")


class LLMIntentClassifier:
    """Calls the Anthropic Messages API or a local Ollama chat endpoint.

    One client is kept for the process so each turn reuses its connection.
    """

    def __init__(self, config: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def classify(self, utterance: str, context_hint: str = "") -> Classification:
        user = f"Conversation context: {context_hint}\nCaller said: \"{utterance}\""
        cfg = self._config
        client = self._client
        if cfg.llm_provider == "ollama":
            resp = await client.post(
                f"{cfg.ollama_url.rstrip('/')}/api/chat",
                json={
                    "model": cfg.ollama_model,
                    "stream": False,
                    "format": "json",
                    "messages": [
                        {"role": "system", "content": _SYSTEM_PROMPT},
                        {"role": "user", "content": user},
                    ],
                },
            )
            resp.raise_for_status()
            return parse_classification(resp.json()["message"]["content"])

        resp = await client.post(
            cfg.anthropic_url,
            headers={
                "x-api-key": cfg.anthropic_api_key,
                "anthropic-version": "2023-06-01",
            },
            json={
                "model": cfg.anthropic_model,
                "max_tokens": 60,
                "temperature": 0,
                "system": _SYSTEM_PROMPT,
                "messages": [{"role": "user", "content": user}],
            },
        )
        resp.raise_for_status()
        blocks = resp.json().get("content", [])
        text = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
        return parse_classification(text)


# ── Hybrid ──────────────────────────────────────────────────────


class IntentClassifier:
    """LLM first, bounded by ``classifier_timeout_seconds``; keywords otherwise."""

    def __init__(
        self,
        config: Settings,
        llm: Optional[LLMIntentClassifier] = None,
        keywords: Optional[KeywordIntentClassifier] = None,
    ) -> None:
        self._config = config
        self._llm = llm if llm is not None else (
            LLMIntentClassifier(config) if config.classifier_configured else None
        )
        self._keywords = keywords or KeywordIntentClassifier()

    async def aclose(self) -> None:
        if self._llm is not None:
            await self._llm.aclose()

    async def classify(self, utterance: str, context_hint: str = "") -> Classification:
        if not utterance.strip():
            return Classification(Intent.UNKNOWN, 0.0)

        if self._llm is not None:
            try:
                return await asyncio.wait_for(
                    self._llm.classify(utterance, context_hint),
                    timeout=self._config.classifier_timeout_seconds,
                )
            except asyncio.TimeoutError:
                log.warning(
                    "Classifier timed out after %.2fs, using keywords",
                    self._config.classifier_timeout_seconds,
                )
            except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
                log.warning("Classifier failed (%s), using keywords", e)

        return self._keywords.classify(utterance)
