"""Route inbound WhatsApp messages to text commands or the audio pipeline.

WHY: A webhook batch can hold many messages from many users. Each must be
handled independently: a crash while summarizing one voice note must not
stop a STOP command in the same batch from being honoured.

HOW: iter_messages() walks entry[].changes[].value.messages[] and
validates each message with InboundMessage, skipping malformed ones.
dispatch() runs one isolated coroutine per message concurrently with
asyncio.gather. Audio goes to AudioPipeline; text is matched against the
command vocabulary (STOP, START, HUMAN) with a help reply otherwise.

RULES:
- Missing sender, missing arrays, or wrong types → skipped with a warning
- Exceptions from one message are logged and never escape dispatch()
- Audio without a media ID is skipped (no reply, no usage event)
- Empty text bodies are ignored
- STOP/START persist the opt-out set before confirming to the user
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterator, Optional

from pydantic import ValidationError

from voicenote_relay.api.models import describe_error
from voicenote_relay.core.optout import OptOutPersistenceError
from voicenote_relay.core.pipeline import AudioPipeline, record_usage
from voicenote_relay.core.services import RelayServices
from voicenote_relay.core.usage import UsageEvent, UsageEventKind
from voicenote_relay.messages import (
    COMMAND_REPLIES,
    HELP_REPLY,
    PREFERENCE_FAILED_REPLY,
    Command,
    parse_command,
)
from voicenote_relay.server.models import InboundMessage

logger = logging.getLogger(__name__)

_COMMAND_EVENTS = {
    Command.STOP: UsageEventKind.OPT_OUT,
    Command.START: UsageEventKind.OPT_IN,
    Command.HUMAN: UsageEventKind.HUMAN_REQUESTED,
}


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def iter_messages(payload: Any) -> Iterator[InboundMessage]:
    """Yield every well-formed message in a webhook payload."""
    if not isinstance(payload, dict):
        return
    for entry in _as_list(payload.get("entry")):
        if not isinstance(entry, dict):
            continue
        for change in _as_list(entry.get("changes")):
            if not isinstance(change, dict):
                continue
            value = change.get("value")
            if not isinstance(value, dict):
                continue
            for raw in _as_list(value.get("messages")):
                try:
                    yield InboundMessage.model_validate(raw)
                except ValidationError as exc:
                    logger.warning(
                        "[webhook] Skipping malformed message: %d validation error(s)",
                        exc.error_count(),
                    )


class WebhookDispatcher:
    """Processes webhook payloads for one app instance."""

    def __init__(
        self,
        services: RelayServices,
        pipeline: Optional[AudioPipeline] = None,
    ) -> None:
        self._services = services
        self._pipeline = pipeline or AudioPipeline(services)

    async def dispatch(self, payload: Any) -> int:
        """Handle every message in payload concurrently. Returns the count."""
        messages = list(iter_messages(payload))
        if messages:
            await asyncio.gather(*(self._handle_isolated(m) for m in messages))
        return len(messages)

    async def _handle_isolated(self, message: InboundMessage) -> None:
        try:
            await self.handle_message(message)
        except Exception as exc:
            logger.exception(
                "[webhook] Processing error for message %s from %s: %s",
                message.id,
                message.sender,
                describe_error(exc),
            )

    async def handle_message(self, message: InboundMessage) -> None:
        if message.type == "audio":
            media_id = message.audio.id if message.audio else None
            if not media_id:
                logger.warning("[audio] Missing media id on message %s", message.id)
                return
            await self._pipeline.run(message.sender, media_id)
        elif message.type == "text":
            await self.handle_text(message.sender, message.text.body if message.text else "")
        else:
            logger.debug("[webhook] Ignoring %s message from %s", message.type, message.sender)

    async def handle_text(self, user_id: str, body: str) -> None:
        """Apply a text command, or reply with help for free text."""
        if not body.strip():
            return

        whatsapp = self._services.whatsapp
        command = parse_command(body)
        if command is None:
            await whatsapp.send_text(user_id, HELP_REPLY)
            return

        try:
            if command is Command.STOP:
                await self._services.opt_outs.opt_out(user_id)
            elif command is Command.START:
                await self._services.opt_outs.opt_in(user_id)
        except OptOutPersistenceError:
            # Surface to the user, then let the isolation boundary log it
            await whatsapp.send_text(user_id, PREFERENCE_FAILED_REPLY)
            raise

        await whatsapp.send_text(user_id, COMMAND_REPLIES[command])
        await record_usage(self._services.usage, UsageEvent(_COMMAND_EVENTS[command], user_id))
