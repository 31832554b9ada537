"""Async client for the WhatsApp Cloud API (Meta Graph API).

WHY: The relay sends text replies, looks up voice-note media metadata,
and downloads the audio bytes. All three need the same bearer token and
Graph API version, so they live behind one client.

HOW: Wraps httpx.AsyncClient with Bearer auth and a base URL of
https://graph.facebook.com/{version}. Use as an async context manager.
Each call logs a structured error and raises WhatsAppAPIError on a
non-2xx response; httpx network errors are logged and re-raised.

RULES:
- Use as: async with WhatsAppClient(...) as client: ...
- Media download URLs are absolute and still need the bearer token
- Text replies never request link previews
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Dict, Optional

import httpx

from voicenote_relay.api.models import MediaMetadata, describe_error
from voicenote_relay.config import DEFAULT_GRAPH_VERSION, DEFAULT_HTTP_TIMEOUT_S, GRAPH_API_ROOT

logger = logging.getLogger(__name__)

_MEDIA_FIELDS = "id,mime_type,file_size,url"


class WhatsAppAPIError(Exception):
    """Raised when the Graph API returns a non-2xx response."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"WhatsApp API error {status_code}: {message}")


class WhatsAppClient:
    """Send messages and fetch media through the WhatsApp Cloud API.

    RULES:
    - access_token and phone_id are required for every call
    - transport is for tests (httpx.MockTransport)
    """

    def __init__(
        self,
        access_token: str,
        phone_id: str,
        graph_version: str = DEFAULT_GRAPH_VERSION,
        timeout_s: float = DEFAULT_HTTP_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._access_token = access_token
        self._phone_id = phone_id
        self._base_url = "{}/{}".format(GRAPH_API_ROOT, graph_version)
        self._timeout_s = timeout_s
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> WhatsAppClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Authorization": f"Bearer {self._access_token}"},
            timeout=httpx.Timeout(self._timeout_s, connect=10.0),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(
                "WhatsAppClient must be used as an async context manager: "
                "async with WhatsAppClient(...) as client: ..."
            )
        return self._client

    async def send_text(self, to: str, body: str) -> Dict[str, Any]:
        """Send a plain text message to a WhatsApp user.

        Returns the Graph API response JSON (message IDs).
        """
        client = self._ensure_client()
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"preview_url": False, "body": body},
        }
        resp = await self._request(
            "Failed to send message",
            client.post(f"/{self._phone_id}/messages", json=payload),
        )
        return resp.json()

    async def fetch_media_metadata(self, media_id: str) -> MediaMetadata:
        """Look up mime type, size, and download URL for a media ID."""
        client = self._ensure_client()
        resp = await self._request(
            "Failed fetching media metadata",
            client.get(f"/{media_id}", params={"fields": _MEDIA_FIELDS}),
        )
        return MediaMetadata.from_dict(resp.json())

    async def download_media(self, url: str) -> bytes:
        """Download media bytes from a URL returned by fetch_media_metadata()."""
        client = self._ensure_client()
        resp = await self._request("Failed downloading media file", client.get(url))
        return resp.content

    @staticmethod
    async def _request(what: str, pending: Awaitable[httpx.Response]) -> httpx.Response:
        try:
            resp = await pending
        except httpx.HTTPError as exc:
            logger.error("[whatsapp] %s: %s", what, describe_error(exc))
            raise
        if not resp.is_success:
            error = WhatsAppAPIError(resp.status_code, resp.text)
            logger.error("[whatsapp] %s: %s", what, describe_error(error))
            raise error
        return resp
