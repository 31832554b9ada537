"""Shared test fixtures for the voicenote_relay test suite.

WHY: Pipeline, dispatcher, and server tests all need the same isolated
relay instance: settings pointing at a temp data dir, a controllable
clock for the admission window, and test doubles for WhatsApp, Gemini,
and ffmpeg.

HOW: Collaborators are MagicMock objects with AsyncMock coroutines so
tests can assert on exactly which external calls happened. The fake
transcoder writes a real .mp3 file next to its input, like ffmpeg would.

RULES:
- No test talks to the network or runs ffmpeg
- Every test gets fresh state (new registry, ledger, and log file)
- FakeClock starts at 1000.0 seconds and only moves when told to
"""

from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest

from voicenote_relay.api.models import MediaMetadata
from voicenote_relay.config import Settings
from voicenote_relay.core.admission import AdmissionController
from voicenote_relay.core.optout import OptOutRegistry
from voicenote_relay.core.services import RelayServices
from voicenote_relay.core.usage import UsageLog
from voicenote_relay.media.transcoder import PreparedAudio

USER = "15551234567"
OTHER_USER = "447700900123"
MEDIA_ID = "media-123"
SUMMARY = "Alex is running late. They will call after the meeting."


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def read_usage_events(path: Path) -> List[Dict[str, Any]]:
    """Parse every line of a usage log file."""
    if not path.exists():
        return []
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]


async def _watch_loop(coro, interval: float = 0.005):
    gaps: List[float] = []
    done = asyncio.Event()

    async def _tick() -> None:
        last = time.monotonic()
        while not done.is_set():
            await asyncio.sleep(interval)
            now = time.monotonic()
            gaps.append(now - last)
            last = now

    ticker = asyncio.create_task(_tick())
    await asyncio.sleep(0)
    try:
        result = await coro
    finally:
        done.set()
        await ticker
    return result, max(gaps, default=0.0)


def run_watching_loop(coro) -> Tuple[Any, float]:
    """Run coro next to a ticker; return its result and the longest loop stall."""
    return asyncio.run(_watch_loop(coro))


def slow_down(original, seconds: float, predicate):
    """Wrap a blocking method so matching calls sleep first (on the calling thread)."""

    def _slow(self, *args, **kwargs):
        if predicate(self):
            time.sleep(seconds)
        return original(self, *args, **kwargs)

    return _slow


def audio_message(
    sender: Optional[str] = USER,
    media_id: Optional[str] = MEDIA_ID,
    message_id: str = "wamid.audio",
) -> Dict[str, Any]:
    message: Dict[str, Any] = {"id": message_id, "type": "audio", "audio": {}}
    if sender is not None:
        message["from"] = sender
    if media_id is not None:
        message["audio"] = {"id": media_id, "mime_type": "audio/ogg; codecs=opus", "voice": True}
    return message


def text_message(body: str, sender: str = USER, message_id: str = "wamid.text") -> Dict[str, Any]:
    return {"from": sender, "id": message_id, "type": "text", "text": {"body": body}}


def webhook_payload(*messages: Dict[str, Any]) -> Dict[str, Any]:
    """Wrap messages in the entry[].changes[].value envelope."""
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA_ID",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {"phone_number_id": "12345"},
                            "messages": list(messages),
                        },
                    }
                ],
            }
        ],
    }


async def _fake_prepare(input_path: Path, mime_type: Optional[str]) -> PreparedAudio:
    if mime_type in ("audio/mpeg", "audio/mp3"):
        return PreparedAudio(path=input_path, mime_type=mime_type, transcoded=False)
    output = input_path.with_name(input_path.name + ".mp3")
    output.write_bytes(b"ID3 fake mp3")
    return PreparedAudio(path=output, mime_type="audio/mpeg", transcoded=True)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        verify_token="verify-secret",
        waba_token="waba-token",
        phone_id="12345",
        gemini_api_key="gemini-key",
        rate_limit_window_ms=15000,
        data_dir=tmp_path / "data",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def whatsapp() -> MagicMock:
    client = MagicMock()
    client.send_text = AsyncMock(return_value={"messages": [{"id": "wamid.reply"}]})
    client.fetch_media_metadata = AsyncMock(
        return_value=MediaMetadata(
            id=MEDIA_ID,
            mime_type="audio/ogg",
            file_size=2048,
            url="https://lookaside.example.com/media-123",
        )
    )
    client.download_media = AsyncMock(return_value=b"OggS fake opus")
    return client


@pytest.fixture
def gemini() -> MagicMock:
    client = MagicMock()
    client.summarize = AsyncMock(return_value=SUMMARY)
    return client


@pytest.fixture
def transcoder() -> MagicMock:
    fake = MagicMock()
    fake.prepare = AsyncMock(side_effect=_fake_prepare)
    return fake


@pytest.fixture
def services(settings, clock, whatsapp, gemini, transcoder) -> RelayServices:
    return RelayServices(
        settings=settings,
        opt_outs=OptOutRegistry(settings.opt_out_path),
        admission=AdmissionController(settings.rate_limit_window_ms, clock=clock),
        usage=UsageLog(settings.usage_log_path),
        whatsapp=whatsapp,
        gemini=gemini,
        transcoder=transcoder,
    )
