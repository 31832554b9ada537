"""FastAPI application: WhatsApp webhook verification, intake, and health.

WHY: WhatsApp Cloud API delivers events by POSTing to a public webhook
and expects a fast 200; slow or failed acknowledgements are retried,
which would mean duplicate summaries. It also verifies the endpoint once
with a GET challenge handshake.

HOW: create_app() builds one FastAPI instance around one RelayServices
bundle. POST /webhook parses the body, schedules the batch on FastAPI
BackgroundTasks, and returns immediately; the batch then runs through
WebhookDispatcher after the response is sent. The lifespan hook loads
the opt-out list, opens the API clients it created, and runs a periodic
sweep of idle admission entries.

RULES:
- POST /webhook always answers 200, even for unparsable bodies
- GET /webhook echoes hub.challenge only for mode=subscribe + matching token
- A failed verification answers 403 with an empty body
- An unset verify token never matches
- Clients passed in by the caller are not opened or closed here
"""

from __future__ import annotations

import asyncio
import hmac
import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, Optional

from fastapi import BackgroundTasks, FastAPI, Query, Request
from fastapi.responses import PlainTextResponse, Response

from voicenote_relay import __version__
from voicenote_relay.api.models import describe_error
from voicenote_relay.config import Settings, load_settings, log_missing_settings
from voicenote_relay.core.admission import AdmissionController
from voicenote_relay.core.services import RelayServices, build_services
from voicenote_relay.server.dispatcher import WebhookDispatcher
from voicenote_relay.server.models import HealthResponse

logger = logging.getLogger(__name__)


async def _periodic_sweep(admission: AdmissionController) -> None:
    """Drop idle admission entries once per rate-limit window."""
    while True:
        await asyncio.sleep(admission.window_s)
        admission.sweep()


def _token_matches(supplied: Optional[str], expected: str) -> bool:
    if not supplied or not expected:
        return False
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[RelayServices] = None,
) -> FastAPI:
    """Build the relay app.

    WHY: Factory instead of a module-level app so every instance (and
    every test) owns its own opt-out cache and admission ledger.

    RULES:
    - services=None → real collaborators built from settings, opened
      and closed by the lifespan hook
    - settings=None → services.settings if given, else load_settings()
    """
    if settings is None:
        settings = services.settings if services is not None else load_settings()
    owns_clients = services is None
    if services is None:
        services = build_services(settings)
    dispatcher = WebhookDispatcher(services)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Load state and open clients on startup; close them on shutdown."""
        log_missing_settings(settings)
        await services.opt_outs.load()
        async with AsyncExitStack() as stack:
            if owns_clients:
                await stack.enter_async_context(services.whatsapp)
                await stack.enter_async_context(services.gemini)
            task = asyncio.create_task(_periodic_sweep(services.admission))
            try:
                yield
            finally:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    app = FastAPI(
        lifespan=lifespan,
        title="Voice-Note Relay",
        description=(
            "Receives WhatsApp Cloud API webhooks, summarizes voice notes "
            "with Gemini, and replies to the sender."
        ),
        version=__version__,
    )
    app.state.settings = settings
    app.state.services = services
    app.state.dispatcher = dispatcher

    async def _process_batch(payload: Any) -> None:
        try:
            count = await dispatcher.dispatch(payload)
        except Exception as exc:
            logger.exception("[webhook] Processing error: %s", describe_error(exc))
            return
        logger.debug("[webhook] Processed %d message(s)", count)

    # -----------------------------------------------------------------------
    # Endpoints: Webhook
    # -----------------------------------------------------------------------

    @app.get(
        "/webhook",
        tags=["webhook"],
        summary="WhatsApp webhook verification",
        response_class=PlainTextResponse,
        responses={403: {"description": "Mode or verify token did not match"}},
    )
    async def verify_webhook(
        mode: Optional[str] = Query(default=None, alias="hub.mode"),
        verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
        challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    ) -> Response:
        if mode == "subscribe" and _token_matches(verify_token, settings.verify_token):
            logger.info("[webhook] Verification successful")
            return PlainTextResponse(challenge or "", status_code=200)
        logger.warning("[webhook] Verification failed")
        return Response(status_code=403)

    @app.post(
        "/webhook",
        tags=["webhook"],
        summary="Receive WhatsApp events",
        response_class=PlainTextResponse,
    )
    async def receive_webhook(request: Request, background_tasks: BackgroundTasks) -> Response:
        raw = await request.body()
        try:
            payload = json.loads(raw) if raw else None
        except ValueError:
            logger.warning("[webhook] Ignoring body that is not valid JSON (%d bytes)", len(raw))
            payload = None
        if payload is not None:
            background_tasks.add_task(_process_batch, payload)
        return PlainTextResponse("OK", status_code=200)

    # -----------------------------------------------------------------------
    # Endpoints: Health
    # -----------------------------------------------------------------------

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["health"],
        summary="Health check",
        description="Liveness check for load balancers and orchestrators.",
    )
    async def health_check() -> HealthResponse:
        return HealthResponse(status="ok", version=__version__)

    return app


def run_server(settings: Optional[Settings] = None) -> None:
    """Serve the relay with uvicorn on settings.host:settings.port."""
    import uvicorn

    settings = settings or load_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
