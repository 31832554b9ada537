"""End-to-end processing of one inbound voice note.

WHY: A voice note goes through six external steps (metadata, download,
transcode, summarize, reply, audit). Any of them can fail, and every
failure must end the same way: an apology to the user, a failure event
in the usage log, and no files left behind.

HOW: AudioPipeline.run() gates on opt-out then admission, creates a
private temp directory, and runs the stages in order inside one
try/except/finally. The except branch converges all failures on the
apology path; the finally branch tells the admission controller the
pipeline is done and removes the temp directory. Payload file reads and
writes, usage appends and temp cleanup run in worker threads
(asyncio.to_thread) so a large voice note never stalls the event loop
that serves every other message.

RULES:
- Opted-out users: dropped silently, no external call of any kind
- Throttled users: wait notice + rate_limited event, nothing else
- The temp directory is removed on every exit path
- The apology send is best-effort; its own failure is only logged
- A usage event is recorded for every admitted request
- No retries; the user resends
"""

from __future__ import annotations

import asyncio
import enum
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from voicenote_relay.api.models import describe_error, extension_for_mime
from voicenote_relay.core.services import RelayServices
from voicenote_relay.core.usage import UsageEvent, UsageEventKind, UsageLog
from voicenote_relay.messages import FAILURE_REPLY, RATE_LIMITED_REPLY, build_summary_reply

logger = logging.getLogger(__name__)

TEMP_DIR_PREFIX = "wa-audio-"


class MediaUnavailableError(Exception):
    """Raised when WhatsApp returns metadata without a download URL."""


class PipelineOutcome(str, enum.Enum):
    """How a single run() ended."""

    OPTED_OUT = "opted_out"
    RATE_LIMITED = "rate_limited"
    SUMMARIZED = "summarized"
    NO_SUMMARY = "no_summary"
    FAILED = "failed"


class AudioPipeline:
    """Runs voice notes through summarization for one app instance.

    RULES:
    - temp_root=None uses the system temp directory
    """

    def __init__(self, services: RelayServices, temp_root: Optional[Path] = None) -> None:
        self._services = services
        self._temp_root = temp_root

    async def run(self, user_id: str, media_id: str) -> PipelineOutcome:
        services = self._services

        if await services.opt_outs.is_opted_out(user_id):
            logger.info("[audio] Ignoring %s (opted out).", user_id)
            return PipelineOutcome.OPTED_OUT

        decision = services.admission.try_admit(user_id)
        if not decision:
            logger.warning(
                "[audio] Rate limited %s (retry in %d ms)", user_id, decision.retry_after_ms
            )
            await self._send_best_effort(user_id, RATE_LIMITED_REPLY, "wait notice")
            await self._record(UsageEvent(UsageEventKind.RATE_LIMITED, user_id, media_id=media_id))
            return PipelineOutcome.RATE_LIMITED

        temp_dir: Optional[Path] = None
        try:
            await self._record(UsageEvent(UsageEventKind.AUDIO_RECEIVED, user_id, media_id=media_id))

            metadata = await services.whatsapp.fetch_media_metadata(media_id)
            if not metadata.url:
                raise MediaUnavailableError("Media download URL not available.")
            logger.info(
                "[audio] Fetching %s for %s (%s, %s bytes declared)",
                media_id,
                user_id,
                metadata.mime_type,
                metadata.file_size,
            )

            temp_dir = Path(
                tempfile.mkdtemp(
                    prefix=TEMP_DIR_PREFIX,
                    dir=str(self._temp_root) if self._temp_root else None,
                )
            )
            input_path = temp_dir / "input{}".format(extension_for_mime(metadata.mime_type))
            audio = await services.whatsapp.download_media(metadata.url)
            await asyncio.to_thread(input_path.write_bytes, audio)

            prepared = await services.transcoder.prepare(input_path, metadata.mime_type)
            prepared_audio = await asyncio.to_thread(prepared.path.read_bytes)
            summary = await services.gemini.summarize(prepared_audio, prepared.mime_type)

            await services.whatsapp.send_text(user_id, build_summary_reply(summary))
            await self._record(
                UsageEvent(
                    UsageEventKind.SUMMARY_SENT,
                    user_id,
                    media_id=media_id,
                    success=bool(summary),
                )
            )
            logger.info("[audio] Replied to %s (summary=%s)", user_id, bool(summary))
            return PipelineOutcome.SUMMARIZED if summary else PipelineOutcome.NO_SUMMARY

        except Exception as exc:
            logger.exception("[audio] Processing failed for %s: %s", user_id, describe_error(exc))
            await self._send_best_effort(user_id, FAILURE_REPLY, "error notification")
            await self._record(
                UsageEvent(
                    UsageEventKind.SUMMARY_FAILED,
                    user_id,
                    media_id=media_id,
                    error=describe_error(exc),
                )
            )
            return PipelineOutcome.FAILED

        finally:
            services.admission.release(user_id)
            if temp_dir is not None:
                await asyncio.to_thread(_remove_temp_dir, temp_dir)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _send_best_effort(self, user_id: str, body: str, what: str) -> None:
        try:
            await self._services.whatsapp.send_text(user_id, body)
        except Exception as exc:
            logger.error("[audio] Failed sending %s to %s: %s", what, user_id, describe_error(exc))

    async def _record(self, event: UsageEvent) -> None:
        await record_usage(self._services.usage, event)


def _remove_temp_dir(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except OSError:
        logger.warning("Failed to clean up temp dir: %s", path)


async def record_usage(usage: UsageLog, event: UsageEvent) -> None:
    """Append a usage event off the event loop, logging (not raising) on I/O failure."""
    try:
        await asyncio.to_thread(usage.record, event)
    except OSError:
        logger.exception("Failed to write usage event %s", event.kind.value)
