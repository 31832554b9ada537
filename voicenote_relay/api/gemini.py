"""Async client for the Gemini generateContent and Files APIs.

WHY: Voice notes are summarized by Gemini. The API accepts audio either
inline (base64 inside the request, up to 20 MB) or by reference to a
file uploaded through the resumable Files API. Which path is used is
dictated by the payload size, not by preference.

HOW: Wraps httpx.AsyncClient with the x-goog-api-key header. summarize()
picks the path with uses_resumable_upload(), builds the media part,
calls generateContent, and extracts the first candidate's text.
The resumable path is two requests: start (declares size and type,
returns an upload URL in a response header) then "upload, finalize"
(sends the bytes, returns the file resource with its URI).

RULES:
- size <= MAX_INLINE_BYTES → inline_data; size > MAX_INLINE_BYTES → file_data
- Exactly one path is used per call
- Missing upload URL or file URI → UploadProtocolError
- Non-2xx → GeminiAPIError; httpx errors propagate
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from typing import Any, Awaitable, Dict, Optional

import httpx

from voicenote_relay.api.models import describe_error, extract_summary_text
from voicenote_relay.config import (
    DEFAULT_GEMINI_MODEL,
    DEFAULT_HTTP_TIMEOUT_S,
    GEMINI_API_ROOT,
    MAX_INLINE_BYTES,
    SUMMARY_PROMPT,
)

logger = logging.getLogger(__name__)


class GeminiAPIError(Exception):
    """Raised when a Gemini endpoint returns a non-2xx response."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Gemini API error {status_code}: {message}")


class UploadProtocolError(Exception):
    """Raised when a resumable upload response lacks the expected fields."""


def uses_resumable_upload(size_bytes: int) -> bool:
    """True when a payload of this size must go through the Files API."""
    return size_bytes > MAX_INLINE_BYTES


def _encode_inline(audio: bytes) -> str:
    return base64.b64encode(audio).decode("ascii")


class GeminiClient:
    """Summarize audio with Gemini.

    RULES:
    - Use as: async with GeminiClient(api_key) as client: ...
    - prompt defaults to SUMMARY_PROMPT
    - transport is for tests (httpx.MockTransport)
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_GEMINI_MODEL,
        timeout_s: float = DEFAULT_HTTP_TIMEOUT_S,
        prompt: str = SUMMARY_PROMPT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._timeout_s = timeout_s
        self._prompt = prompt
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> GeminiClient:
        self._client = httpx.AsyncClient(
            base_url=GEMINI_API_ROOT,
            headers={"x-goog-api-key": self._api_key},
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
                "GeminiClient must be used as an async context manager: "
                "async with GeminiClient(...) as client: ..."
            )
        return self._client

    # ------------------------------------------------------------------
    # Summarization
    # ------------------------------------------------------------------

    async def summarize(self, audio: bytes, mime_type: str) -> Optional[str]:
        """Summarize an audio payload. Returns None when Gemini gave no text.

        Args:
            audio: Encoded audio bytes (normally MP3).
            mime_type: Mime type of `audio`.

        Returns:
            The joined text of the first candidate, or None.
        """
        if uses_resumable_upload(len(audio)):
            file_uri = await self.upload_file(audio, mime_type)
            media_part: Dict[str, Any] = {
                "file_data": {"mime_type": mime_type, "file_uri": file_uri}
            }
        else:
            # Up to 20 MB of base64; encode in a worker thread
            data = await asyncio.to_thread(_encode_inline, audio)
            media_part = {"inline_data": {"mime_type": mime_type, "data": data}}

        response = await self.generate_content(media_part)
        return extract_summary_text(response)

    async def generate_content(self, media_part: Dict[str, Any]) -> Dict[str, Any]:
        """POST the prompt plus one media part to models/{model}:generateContent."""
        client = self._ensure_client()
        body = {
            "contents": [
                {
                    "role": "user",
                    "parts": [{"text": self._prompt}, media_part],
                }
            ]
        }
        resp = await self._request(
            "Summarization failed",
            client.post(f"/v1beta/models/{self._model}:generateContent", json=body),
        )
        return resp.json()

    # ------------------------------------------------------------------
    # Resumable upload
    # ------------------------------------------------------------------

    async def upload_file(self, data: bytes, mime_type: str) -> str:
        """Upload bytes via the resumable Files API and return the file URI."""
        client = self._ensure_client()
        size = str(len(data))

        start_resp = await self._request(
            "Upload start failed",
            client.post(
                "/upload/v1beta/files",
                json={"file": {"display_name": "whatsapp-audio-{}".format(int(time.time() * 1000))}},
                headers={
                    "X-Goog-Upload-Protocol": "resumable",
                    "X-Goog-Upload-Command": "start",
                    "X-Goog-Upload-Header-Content-Length": size,
                    "X-Goog-Upload-Header-Content-Type": mime_type,
                },
            ),
        )
        upload_url = start_resp.headers.get("x-goog-upload-url")
        if not upload_url:
            raise UploadProtocolError("Gemini upload URL missing from response.")

        finish_resp = await self._request(
            "Upload finalize failed",
            client.post(
                upload_url,
                content=data,
                headers={
                    "Content-Length": size,
                    "Content-Type": mime_type,
                    "X-Goog-Upload-Offset": "0",
                    "X-Goog-Upload-Command": "upload, finalize",
                },
            ),
        )
        file_uri = (finish_resp.json().get("file") or {}).get("uri")
        if not file_uri:
            raise UploadProtocolError("Gemini file URI missing after upload.")
        return file_uri

    @staticmethod
    async def _request(what: str, pending: Awaitable[httpx.Response]) -> httpx.Response:
        try:
            resp = await pending
        except httpx.HTTPError as exc:
            logger.error("[gemini] %s: %s", what, describe_error(exc))
            raise
        if not resp.is_success:
            error = GeminiAPIError(resp.status_code, resp.text)
            logger.error("[gemini] %s: %s", what, describe_error(error))
            raise error
        return resp
