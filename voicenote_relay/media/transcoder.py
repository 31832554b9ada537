"""Normalize voice notes to mono 16 kHz MP3 with ffmpeg.

WHY: WhatsApp voice notes arrive as Ogg/Opus (sometimes AAC or WAV).
Gemini handles MP3 reliably, and mono 16 kHz is plenty for speech while
keeping uploads small.

HOW: prepare() passes MP3 input through untouched and otherwise runs
ffmpeg as an asyncio subprocess (the event loop keeps serving other
requests), writing "<input>.mp3" next to the input file. The subprocess
is killed if it exceeds the timeout.

RULES:
- Input mime in MP3_MIME_TYPES → returned unchanged
- Output is always audio/mpeg, 1 channel, 16000 Hz, libmp3lame
- Non-zero exit, missing binary, or empty output → TranscodeError
- Timeout → TranscodeTimeoutError (subclass of TranscodeError)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from voicenote_relay.config import DEFAULT_TRANSCODE_TIMEOUT_S, MP3_MIME_TYPES

logger = logging.getLogger(__name__)

OUTPUT_MIME_TYPE = "audio/mpeg"
TARGET_SAMPLE_RATE = 16000
TARGET_CHANNELS = 1

_STDERR_TAIL_CHARS = 500


class TranscodeError(Exception):
    """Raised when ffmpeg fails to produce the output file."""


class TranscodeTimeoutError(TranscodeError):
    """Raised when ffmpeg runs longer than the configured timeout."""


@dataclass(frozen=True)
class PreparedAudio:
    """Audio ready for summarization."""

    path: Path
    mime_type: str
    transcoded: bool


def is_mp3_mime(mime_type: Optional[str]) -> bool:
    return mime_type in MP3_MIME_TYPES


class MediaTranscoder:
    """Thin async wrapper around the ffmpeg CLI."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        timeout_s: float = DEFAULT_TRANSCODE_TIMEOUT_S,
    ) -> None:
        self._ffmpeg_path = ffmpeg_path
        self._timeout_s = timeout_s

    def build_command(self, input_path: Path, output_path: Path) -> List[str]:
        return [
            self._ffmpeg_path,
            "-y",
            "-hide_banner",
            "-loglevel", "error",
            "-i", str(input_path),
            "-vn",
            "-ac", str(TARGET_CHANNELS),
            "-ar", str(TARGET_SAMPLE_RATE),
            "-codec:a", "libmp3lame",
            "-f", "mp3",
            str(output_path),
        ]

    async def prepare(self, input_path: Path, mime_type: Optional[str]) -> PreparedAudio:
        """Return MP3 audio for input_path, transcoding only when needed."""
        input_path = Path(input_path)
        if is_mp3_mime(mime_type):
            return PreparedAudio(path=input_path, mime_type=mime_type, transcoded=False)

        output_path = input_path.with_name(input_path.name + ".mp3")
        await self.transcode(input_path, output_path)
        return PreparedAudio(path=output_path, mime_type=OUTPUT_MIME_TYPE, transcoded=True)

    async def transcode(self, input_path: Path, output_path: Path) -> Path:
        """Run ffmpeg and wait for it to finish.

        RULES:
        - Overwrites output_path if it exists
        - Raises TranscodeError / TranscodeTimeoutError on failure
        """
        cmd = self.build_command(input_path, output_path)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TranscodeError(
                "Could not start ffmpeg ({}): {}".format(self._ffmpeg_path, exc)
            ) from exc

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout_s)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise TranscodeTimeoutError(
                "ffmpeg timed out after {:.0f}s".format(self._timeout_s)
            ) from None

        if proc.returncode != 0:
            tail = (stderr or b"").decode("utf-8", errors="replace")[-_STDERR_TAIL_CHARS:]
            raise TranscodeError(
                "ffmpeg exited with code {}: {}".format(proc.returncode, tail.strip())
            )

        if not output_path.exists() or output_path.stat().st_size == 0:
            raise TranscodeError("ffmpeg produced no output at {}".format(output_path))

        logger.debug("Transcoded %s → %s", input_path.name, output_path.name)
        return output_path
