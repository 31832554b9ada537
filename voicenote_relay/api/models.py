"""Response dataclasses and parsing helpers for the outbound APIs.

WHY: The WhatsApp and Gemini APIs return nested JSON. Parsing it in one
place keeps the clients thin and the pipeline free of dict-walking.

RULES:
- MediaMetadata.mime_type is normalized (parameters stripped, lowercase)
- extract_summary_text() returns None when no usable text exists
- describe_error() never raises
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

# Temp-file extensions for the mime types WhatsApp sends for voice notes
_MIME_EXTENSIONS = {
    "audio/ogg": ".ogg",
    "audio/mp3": ".mp3",
    "audio/mpeg": ".mp3",
    "audio/wav": ".wav",
}


def normalize_mime_type(mime: Optional[str]) -> Optional[str]:
    """Strip parameters and lowercase: "audio/ogg; codecs=opus" → "audio/ogg"."""
    if not mime:
        return None
    base = mime.split(";", 1)[0].strip().lower()
    return base or None


def extension_for_mime(mime: Optional[str]) -> str:
    """Return a file extension for a normalized mime type (".bin" if unknown)."""
    if not mime:
        return ".bin"
    return _MIME_EXTENSIONS.get(mime, ".bin")


@dataclass(frozen=True)
class MediaMetadata:
    """WhatsApp media object as returned by GET /{media-id}.

    RULES:
    - url is None when WhatsApp did not return a download URL
    - file_size is None when absent or not an integer
    """

    id: str
    mime_type: Optional[str]
    file_size: Optional[int]
    url: Optional[str]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> MediaMetadata:
        size = data.get("file_size")
        try:
            file_size = int(size) if size is not None else None
        except (TypeError, ValueError):
            file_size = None
        return cls(
            id=str(data.get("id", "")),
            mime_type=normalize_mime_type(data.get("mime_type")),
            file_size=file_size,
            url=data.get("url") or None,
        )


def extract_summary_text(response: Any) -> Optional[str]:
    """Join the text parts of the first Gemini candidate.

    HOW: candidates[0].content.parts[*].text, skipping parts without
    text, joined with newlines and stripped.

    RULES:
    - Missing candidates/content/parts → None
    - Whitespace-only result → None
    """
    if not isinstance(response, dict):
        return None
    candidates = response.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return None
    content = candidates[0].get("content")
    if not isinstance(content, dict):
        return None
    parts = content.get("parts") or []
    texts = [
        part["text"]
        for part in parts
        if isinstance(part, dict) and isinstance(part.get("text"), str) and part["text"]
    ]
    joined = "\n".join(texts).strip()
    return joined or None


def describe_error(exc: BaseException) -> str:
    """Render an exception for logs and usage events.

    RULES:
    - API errors with a status code → JSON {"status", "body"}
    - Anything else → the exception message (or its class name)
    """
    status_code = getattr(exc, "status_code", None)
    if status_code is not None:
        return json.dumps(
            {"status": status_code, "body": getattr(exc, "message", str(exc))}
        )
    message = str(exc)
    return message or type(exc).__name__
