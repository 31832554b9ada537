"""Tests for the ffmpeg-backed media transcoder.

WHY: Voice notes arrive as Ogg/Opus; Gemini gets mono 16 kHz MP3. The
pass-through rule for MP3 input and every failure mode of the ffmpeg
subprocess (exit code, missing binary, no output, timeout) are checked.

HOW: asyncio.create_subprocess_exec is patched with a fake process so
no ffmpeg binary is needed.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from voicenote_relay.media.transcoder import (
    OUTPUT_MIME_TYPE,
    MediaTranscoder,
    TranscodeError,
    TranscodeTimeoutError,
)

_EXEC = "voicenote_relay.media.transcoder.asyncio.create_subprocess_exec"


def _fake_process(returncode: int = 0, stderr: bytes = b"") -> MagicMock:
    proc = MagicMock()
    proc.returncode = returncode
    proc.communicate = AsyncMock(return_value=(b"", stderr))
    proc.wait = AsyncMock(return_value=returncode)
    return proc


def _exec_writing_output(proc: MagicMock, content: bytes = b"ID3 mp3"):
    calls = []

    async def _exec(*cmd, **kwargs):
        calls.append(list(cmd))
        Path(cmd[-1]).write_bytes(content)
        return proc

    return _exec, calls


@pytest.fixture
def ogg_file(tmp_path: Path) -> Path:
    path = tmp_path / "input.ogg"
    path.write_bytes(b"OggS fake")
    return path


class TestPrepare:
    @pytest.mark.parametrize("mime", ["audio/mpeg", "audio/mp3"])
    def test_mp3_passes_through(self, tmp_path, mime):
        path = tmp_path / "input.mp3"
        path.write_bytes(b"ID3")
        with patch(_EXEC) as exec_mock:
            prepared = asyncio.run(MediaTranscoder().prepare(path, mime))
        exec_mock.assert_not_called()
        assert prepared.path == path
        assert prepared.mime_type == mime
        assert prepared.transcoded is False

    def test_ogg_is_transcoded_to_mp3(self, ogg_file):
        fake_exec, calls = _exec_writing_output(_fake_process())
        with patch(_EXEC, side_effect=fake_exec):
            prepared = asyncio.run(MediaTranscoder().prepare(ogg_file, "audio/ogg"))

        assert prepared.path == ogg_file.with_name("input.ogg.mp3")
        assert prepared.mime_type == OUTPUT_MIME_TYPE
        assert prepared.transcoded is True
        assert prepared.path.read_bytes() == b"ID3 mp3"
        assert len(calls) == 1

    def test_unknown_mime_is_transcoded(self, tmp_path):
        path = tmp_path / "input.bin"
        path.write_bytes(b"???")
        fake_exec, calls = _exec_writing_output(_fake_process())
        with patch(_EXEC, side_effect=fake_exec):
            prepared = asyncio.run(MediaTranscoder().prepare(path, None))
        assert prepared.transcoded is True


class TestCommand:
    def test_mono_16k_libmp3lame(self, tmp_path):
        cmd = MediaTranscoder(ffmpeg_path="/opt/ffmpeg").build_command(
            tmp_path / "in.ogg", tmp_path / "in.ogg.mp3"
        )
        assert cmd[0] == "/opt/ffmpeg"
        assert cmd[cmd.index("-ac") + 1] == "1"
        assert cmd[cmd.index("-ar") + 1] == "16000"
        assert cmd[cmd.index("-codec:a") + 1] == "libmp3lame"
        assert cmd[cmd.index("-f") + 1] == "mp3"
        assert cmd[cmd.index("-i") + 1] == str(tmp_path / "in.ogg")
        assert cmd[-1] == str(tmp_path / "in.ogg.mp3")


class TestFailures:
    def test_non_zero_exit_raises_with_stderr(self, ogg_file):
        proc = _fake_process(returncode=1, stderr=b"Invalid data found when processing input")
        with patch(_EXEC, AsyncMock(return_value=proc)):
            with pytest.raises(TranscodeError, match="Invalid data"):
                asyncio.run(MediaTranscoder().prepare(ogg_file, "audio/ogg"))

    def test_missing_binary_raises(self, ogg_file):
        with patch(_EXEC, AsyncMock(side_effect=FileNotFoundError("ffmpeg"))):
            with pytest.raises(TranscodeError, match="Could not start ffmpeg"):
                asyncio.run(MediaTranscoder().prepare(ogg_file, "audio/ogg"))

    def test_empty_output_raises(self, ogg_file):
        fake_exec, _ = _exec_writing_output(_fake_process(), content=b"")
        with patch(_EXEC, side_effect=fake_exec):
            with pytest.raises(TranscodeError, match="no output"):
                asyncio.run(MediaTranscoder().prepare(ogg_file, "audio/ogg"))

    def test_timeout_kills_process(self, ogg_file):
        proc = _fake_process()

        async def _hang():
            await asyncio.sleep(10)

        proc.communicate = AsyncMock(side_effect=_hang)
        with patch(_EXEC, AsyncMock(return_value=proc)):
            with pytest.raises(TranscodeTimeoutError):
                asyncio.run(MediaTranscoder(timeout_s=0.05).prepare(ogg_file, "audio/ogg"))
        proc.kill.assert_called_once()
        proc.wait.assert_awaited_once()

    def test_timeout_is_a_transcode_error(self):
        assert issubclass(TranscodeTimeoutError, TranscodeError)
