"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class SimulateChatRequest(BaseModel):
    """A message typed into the website's chat simulator."""

    message: str = Field(..., min_length=1, max_length=2000, description="The user's message")
    session_id: str = Field(
        "simulator-session",
        min_length=1,
        max_length=100,
        alias="sessionId",
        description="Stands in for the sender's phone number",
    )
    media_url: str | None = Field(None, alias="mediaUrl", description="Optional attached image URL")

    model_config = {"populate_by_name": True}


class ChatResponse(BaseModel):
    reply: str = Field(..., description="The assistant's reply")


class BookingResponseRequest(BaseModel):
    action: Literal["approved", "rejected"]


class BookingResponseResult(BaseModel):
    success: bool = True
    status: str
    calendar_link: str | None = None


# ── WhatsApp Cloud API webhook payload ───────────────────────────────
# Only the fields the assistant reads; everything else is ignored.


class WhatsAppText(BaseModel):
    body: str = ""


class WhatsAppImage(BaseModel):
    id: str
    caption: str | None = None


class WhatsAppMessage(BaseModel):
    id: str
    from_: str = Field(..., alias="from")
    type: str
    text: WhatsAppText | None = None
    image: WhatsAppImage | None = None

    model_config = {"populate_by_name": True}


class WhatsAppMetadata(BaseModel):
    display_phone_number: str | None = None
    phone_number_id: str | None = None


class WhatsAppValue(BaseModel):
    metadata: WhatsAppMetadata | None = None
    messages: list[WhatsAppMessage] = Field(default_factory=list)


class WhatsAppChange(BaseModel):
    value: WhatsAppValue
    field: str | None = None


class WhatsAppEntry(BaseModel):
    id: str | None = None
    changes: list[WhatsAppChange] = Field(default_factory=list)


class WhatsAppWebhook(BaseModel):
    object: str | None = None
    entry: list[WhatsAppEntry] = Field(default_factory=list)


class WebhookAck(BaseModel):
    status: str = "ok"
    processed: int = 0


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "heykaelo-assistant"
