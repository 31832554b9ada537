"""Outbound API clients for the WhatsApp Cloud API and Gemini.

WHY: The relay talks to two third-party HTTP APIs. Each gets one async
client class so the pipeline never builds URLs or headers itself.

HOW: Both clients wrap httpx.AsyncClient and are async context managers.
Response payloads are parsed into the dataclasses in models.py.

RULES:
- All HTTP calls go through WhatsAppClient or GeminiClient
- Non-2xx responses raise the client's typed API error
- Network errors and timeouts propagate as httpx.HTTPError
"""

from voicenote_relay.api.gemini import GeminiAPIError, GeminiClient, UploadProtocolError
from voicenote_relay.api.models import MediaMetadata, describe_error, extract_summary_text
from voicenote_relay.api.whatsapp import WhatsAppAPIError, WhatsAppClient

__all__ = [
    "GeminiAPIError",
    "GeminiClient",
    "MediaMetadata",
    "UploadProtocolError",
    "WhatsAppAPIError",
    "WhatsAppClient",
    "describe_error",
    "extract_summary_text",
]
