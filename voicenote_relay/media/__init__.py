"""Audio transcoding via ffmpeg."""

from voicenote_relay.media.transcoder import (
    MediaTranscoder,
    PreparedAudio,
    TranscodeError,
    TranscodeTimeoutError,
)

__all__ = ["MediaTranscoder", "PreparedAudio", "TranscodeError", "TranscodeTimeoutError"]
