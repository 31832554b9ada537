"""Pydantic models for inbound webhook messages and API responses.

WHY: WhatsApp webhook bodies are deeply nested and loosely shaped. Each
message is validated on its own so one malformed message is skipped
instead of failing the whole batch.

HOW: Only the leaf message objects (entry[].changes[].value.messages[])
are modelled; the envelope is walked with plain dict access by the
dispatcher. Unknown fields are ignored.

RULES:
- InboundMessage.sender maps the JSON "from" field and must be non-empty
- type is free-form; only "audio" and "text" are acted on
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AudioRef(BaseModel):
    """The "audio" object of an audio message."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = Field(default=None, description="WhatsApp media ID.")
    mime_type: Optional[str] = Field(default=None, description="Mime type as sent by WhatsApp.")
    voice: Optional[bool] = Field(default=None, description="True for recorded voice notes.")


class TextBody(BaseModel):
    """The "text" object of a text message."""

    model_config = ConfigDict(extra="ignore")

    body: str = Field(default="", description="Message text.")


class InboundMessage(BaseModel):
    """One element of value.messages[] in a WhatsApp webhook."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    sender: str = Field(alias="from", min_length=1, description="Sender phone number.")
    id: Optional[str] = Field(default=None, description="WhatsApp message ID.")
    type: str = Field(default="", description="Message kind: audio, text, image, ...")
    audio: Optional[AudioRef] = None
    text: Optional[TextBody] = None


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str = Field(description="Always 'ok' when the process is serving.")
    version: str = Field(description="Relay package version.")
