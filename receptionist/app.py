"""FastAPI application: Twilio webhooks driving the receptionist turn by turn.

Endpoints:

  GET  /health                 Health check
  POST /twilio/voice           Incoming call (turn 1)
  POST /twilio/continue?turn=N Gather action for every later turn
  POST /twilio/status          Call status callback; retires the call's state

Each webhook is answered with TwiML that speaks the reply and either
gathers the next utterance (posting back to /twilio/continue with the next
turn number) or ends the call.
"""

from __future__ import annotations

from dotenv import load_dotenv
load_dotenv()

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

# Configure root logger early so all receptionist loggers have a handler
# when run via `uvicorn receptionist.app:app`.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-24s %(levelname)-7s %(message)s",
)

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from receptionist import __version__
from receptionist.backends.base import SchedulingBackend
from receptionist.backends.rest import RestSchedulingBackend
from receptionist.composer import ResponseComposer
from receptionist.config import Settings, settings as default_settings
from receptionist.controller import TurnController
from receptionist.executor import SchedulingExecutor
from receptionist.interpreter.classifier import IntentClassifier
from receptionist.interpreter.interpreter import UtteranceInterpreter
from receptionist.models.turn import InboundTurn
from receptionist.router import FlowRouter
from receptionist.store import InMemoryCallStateStore
from receptionist.twiml import render, render_response

log = logging.getLogger("receptionist.app")

_START_TIME = time.time()

# Twilio CallStatus values meaning the call is over.
TERMINAL_STATUSES = frozenset({"completed", "busy", "failed", "no-answer", "canceled"})


def build_controller(
    config: Settings,
    backend: Optional[SchedulingBackend] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> TurnController:
    """Wire the turn pipeline. Defaults to the REST backend and the wall clock."""
    composer = ResponseComposer(config)
    executor = SchedulingExecutor(backend or RestSchedulingBackend(config), config, clock=clock)
    interpreter = UtteranceInterpreter(IntentClassifier(config))
    router = FlowRouter(executor, composer, config)
    store = InMemoryCallStateStore(ttl_seconds=config.call_state_ttl_seconds)
    return TurnController(store, interpreter, router, composer, config)


def create_app(
    config: Optional[Settings] = None,
    controller: Optional[TurnController] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or default_settings
    for warning in config.validate_startup():
        log.warning("Config: %s", warning)

    controller = controller or build_controller(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        log.info("Shutting down, closing HTTP clients")
        await controller.aclose()

    app = FastAPI(
        title="Phone Receptionist",
        description="Webhook-driven appointment receptionist for Twilio voice calls",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.controller = controller

    def twiml_response(body: str) -> Response:
        return Response(content=body, media_type="application/xml")

    async def handle(request: Request, turn_index: int) -> Response:
        form = await request.form()
        call_sid = str(form.get("CallSid") or "")
        if not call_sid:
            log.warning("Webhook without CallSid from %s", request.client)
            return JSONResponse({"error": "CallSid is required"}, status_code=400)

        turn = InboundTurn(
            call_sid=call_sid,
            from_number=str(form.get("From") or ""),
            to_number=str(form.get("To") or ""),
            speech_text=form.get("SpeechResult") or None,
            confirmation_digits=form.get("Digits") or None,
            turn_index=turn_index,
        )
        response = await controller.handle_turn(turn)
        return twiml_response(render_response(response))

    # ── Health check ───────────────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        """Lightweight health check: confirms the event loop is responsive."""
        uptime = round(time.time() - _START_TIME, 1)
        return JSONResponse({"status": "ok", "uptime": uptime})

    # ── Twilio voice webhooks ──────────────────────────────────

    @app.post("/twilio/voice")
    async def twilio_voice(request: Request) -> Response:
        """First webhook of an incoming call."""
        return await handle(request, turn_index=1)

    @app.post("/twilio/continue")
    async def twilio_continue(request: Request, turn: int = 2) -> Response:
        """Gather action: the caller's answer for turn ``turn``."""
        if turn < 1:
            log.warning("Invalid turn number %d", turn)
            return twiml_response(render("", gather_next=False, timeout_seconds=0))
        return await handle(request, turn_index=turn)

    @app.post("/twilio/status")
    async def twilio_status(request: Request) -> JSONResponse:
        """Status callback. Terminal statuses retire the call's state."""
        form = await request.form()
        call_sid = str(form.get("CallSid") or "")
        status = str(form.get("CallStatus") or "")
        if call_sid and status in TERMINAL_STATUSES:
            await controller.end_call(call_sid)
        return JSONResponse({"ok": True})

    return app


# ── Module-level app instance for uvicorn ──────────────────────

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "receptionist.app:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
    )
