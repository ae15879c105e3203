"""FastAPI route definitions for the HeyKaelo assistant API."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from heykaelo.api.schemas import (
    BookingResponseRequest,
    BookingResponseResult,
    ChatResponse,
    HealthResponse,
    SimulateChatRequest,
    WebhookAck,
    WhatsAppMessage,
    WhatsAppWebhook,
)
from heykaelo.config import WHATSAPP_VERIFY_TOKEN
from heykaelo.dispatcher import Dispatcher
from heykaelo.services.approvals import ApprovalResult
from heykaelo.services.whatsapp_client import WhatsAppAPIError, WhatsAppClient

logger = logging.getLogger(__name__)

router = APIRouter()
webhook_router = APIRouter()


def _get_state(request: Request, name: str):
    """Retrieve a shared resource built during the FastAPI lifespan."""
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=503,
            detail="The assistant is still starting up. Please try again in a moment.",
        )
    return value


# ── API endpoints ────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/simulate-chat", response_model=ChatResponse)
async def simulate_chat(request: SimulateChatRequest, http_request: Request):
    """Talk to the assistant as if from WhatsApp, keyed by ``sessionId``.

    ``Dispatcher.handle`` blocks on the database and the Anthropic API, so
    it runs in the default thread-pool to keep the event loop free.
    """
    dispatcher: Dispatcher = _get_state(http_request, "dispatcher")
    reply = await asyncio.to_thread(
        dispatcher.handle, request.session_id, request.message, request.media_url,
    )
    return ChatResponse(reply=reply)


@router.post("/bookings/{booking_id}/respond", response_model=BookingResponseResult)
async def respond_to_booking(booking_id: int, request: BookingResponseRequest, http_request: Request):
    """Approve or reject a pending booking from the owner dashboard."""
    approvals = _get_state(http_request, "approvals")
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        outcome = await asyncio.to_thread(
            approvals.respond, booking_id, request.action == "approved",
        )
    except Exception as e:
        logger.exception("[%s] Error responding to booking #%d", request_id, booking_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e

    if outcome.result is ApprovalResult.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Booking not found")
    if outcome.result is ApprovalResult.ALREADY_DECIDED:
        raise HTTPException(
            status_code=409, detail=f"Booking is already {outcome.booking.status}",
        )
    return BookingResponseResult(status=outcome.booking.status, calendar_link=outcome.calendar_link)


# ── WhatsApp Cloud API webhook ───────────────────────────────────────


@webhook_router.get("/webhooks/whatsapp", response_class=PlainTextResponse)
async def verify_webhook(
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
):
    """Meta's subscription handshake: echo the challenge if the token matches."""
    if hub_mode == "subscribe" and WHATSAPP_VERIFY_TOKEN and hub_verify_token == WHATSAPP_VERIFY_TOKEN:
        logger.info("WhatsApp webhook verified")
        return hub_challenge or ""
    raise HTTPException(status_code=403, detail="Verification failed.")


def _process_message(
    dispatcher: Dispatcher,
    whatsapp: WhatsAppClient,
    message: WhatsAppMessage,
    to_phone: str | None,
) -> None:
    """Run one inbound message through the dispatcher and send the reply."""
    media_url = None
    if message.type == "text" and message.text is not None:
        body = message.text.body
    elif message.type == "image" and message.image is not None:
        body = message.image.caption or ""
        try:
            media_url = whatsapp.get_media_url(message.image.id)
        except WhatsAppAPIError as e:
            logger.warning("Could not resolve media %s: %s", message.image.id, e)
        media_url = media_url or f"whatsapp-media:{message.image.id}"
    else:
        logger.info("Ignoring unsupported %s message %s", message.type, message.id)
        return

    reply = dispatcher.handle(message.from_, body, media_url, to_phone)
    try:
        whatsapp.send_message(message.from_, reply)
    except WhatsAppAPIError as e:
        logger.error("Failed to send reply to %s: %s", message.from_, e)


@webhook_router.post("/webhooks/whatsapp", response_model=WebhookAck)
async def receive_webhook(payload: WhatsAppWebhook, http_request: Request):
    """Handle inbound WhatsApp messages.

    Every message id is claimed once in ``webhook_events`` so Meta's
    redeliveries are acknowledged without a second reply.
    """
    dispatcher: Dispatcher = _get_state(http_request, "dispatcher")
    whatsapp: WhatsAppClient = _get_state(http_request, "whatsapp")
    ledger = _get_state(http_request, "webhook_events")
    request_id = getattr(http_request.state, "request_id", "?")

    processed = 0
    for entry in payload.entry:
        for change in entry.changes:
            metadata = change.value.metadata
            to_phone = metadata.display_phone_number if metadata else None
            for message in change.value.messages:
                if not await asyncio.to_thread(ledger.claim, message.id):
                    continue
                logger.info("[%s] Message %s from %s", request_id, message.id, message.from_)
                await asyncio.to_thread(_process_message, dispatcher, whatsapp, message, to_phone)
                processed += 1
    return WebhookAck(processed=processed)
