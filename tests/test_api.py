"""Tests for the FastAPI endpoints."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from heykaelo.dispatcher import Dispatcher
from heykaelo.server import app
from heykaelo.services.approvals import ApprovalOutcome, ApprovalResult, ApprovalService
from heykaelo.services.bookings import BookingRecord
from heykaelo.services.webhook_events import WebhookEventLedger
from heykaelo.services.whatsapp_client import WhatsAppAPIError, WhatsAppClient

STATE_NAMES = ("dispatcher", "approvals", "whatsapp", "webhook_events")


def _booking(status: str) -> BookingRecord:
    return BookingRecord(
        id=5, business_id="biz", customer_id=1, name="Alice", phone="27821234567",
        start_time=None, status=status,
    )


def _webhook_payload(*messages: dict, display_number: str = "27110001111") -> dict:
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": "WABA_ID",
            "changes": [{
                "field": "messages",
                "value": {
                    "messaging_product": "whatsapp",
                    "metadata": {"display_phone_number": display_number, "phone_number_id": "PNID"},
                    "contacts": [{"wa_id": "27821234567", "profile": {"name": "Alice"}}],
                    "messages": list(messages),
                },
            }],
        }],
    }


def _text_message(message_id: str, body: str) -> dict:
    return {"from": "27821234567", "id": message_id, "timestamp": "1700000000", "type": "text", "text": {"body": body}}


@pytest.fixture
def mock_dispatcher():
    dispatcher = MagicMock(spec=Dispatcher)
    dispatcher.handle.return_value = "Aweh! How can I help?"
    return dispatcher


@pytest.fixture
def mock_approvals():
    approvals = MagicMock(spec=ApprovalService)
    approvals.respond.return_value = ApprovalOutcome(
        ApprovalResult.UPDATED, _booking("approved"), "https://calendar.google.com/evt",
    )
    return approvals


@pytest.fixture
def mock_wa():
    client = MagicMock(spec=WhatsAppClient)
    client.get_media_url.return_value = "https://lookaside.fbsbx.com/media/123"
    return client


@pytest.fixture
def client(mock_dispatcher, mock_approvals, mock_wa, session_factory):
    """FastAPI test client with the shared resources wired up as the lifespan would."""
    app.state.dispatcher = mock_dispatcher
    app.state.approvals = mock_approvals
    app.state.whatsapp = mock_wa
    app.state.webhook_events = WebhookEventLedger(session_factory)
    yield TestClient(app)
    for name in STATE_NAMES:
        setattr(app.state, name, None)


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "heykaelo-assistant"}


class TestSimulateChat:
    def test_returns_reply(self, client, mock_dispatcher):
        response = client.post("/api/simulate-chat", json={"message": "Hello!", "sessionId": "web-42"})
        assert response.status_code == 200
        assert response.json() == {"reply": "Aweh! How can I help?"}
        mock_dispatcher.handle.assert_called_once_with("web-42", "Hello!", None)

    def test_session_id_defaults(self, client, mock_dispatcher):
        client.post("/api/simulate-chat", json={"message": "Hello!", "mediaUrl": "https://x/sig.jpg"})
        mock_dispatcher.handle.assert_called_once_with("simulator-session", "Hello!", "https://x/sig.jpg")

    def test_validates_empty_message(self, client):
        response = client.post("/api/simulate-chat", json={"message": ""})
        assert response.status_code == 422

    def test_response_includes_request_id_header(self, client):
        response = client.post(
            "/api/simulate-chat",
            json={"message": "Hello!"},
            headers={"X-Request-ID": "my-trace-id-123"},
        )
        assert response.headers["X-Request-ID"] == "my-trace-id-123"


class TestBookingRespond:
    def test_approve(self, client, mock_approvals):
        response = client.post("/api/bookings/5/respond", json={"action": "approved"})
        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "status": "approved",
            "calendar_link": "https://calendar.google.com/evt",
        }
        mock_approvals.respond.assert_called_once_with(5, True)

    def test_reject(self, client, mock_approvals):
        mock_approvals.respond.return_value = ApprovalOutcome(ApprovalResult.UPDATED, _booking("rejected"))
        response = client.post("/api/bookings/5/respond", json={"action": "rejected"})
        assert response.json()["status"] == "rejected"
        mock_approvals.respond.assert_called_once_with(5, False)

    def test_invalid_action(self, client):
        response = client.post("/api/bookings/5/respond", json={"action": "maybe"})
        assert response.status_code == 422

    def test_not_found(self, client, mock_approvals):
        mock_approvals.respond.return_value = ApprovalOutcome(ApprovalResult.NOT_FOUND)
        assert client.post("/api/bookings/5/respond", json={"action": "approved"}).status_code == 404

    def test_already_decided(self, client, mock_approvals):
        mock_approvals.respond.return_value = ApprovalOutcome(ApprovalResult.ALREADY_DECIDED, _booking("rejected"))
        response = client.post("/api/bookings/5/respond", json={"action": "approved"})
        assert response.status_code == 409
        assert "rejected" in response.json()["detail"]

    def test_internal_error_is_not_leaked(self, client, mock_approvals):
        mock_approvals.respond.side_effect = RuntimeError("database exploded")
        response = client.post("/api/bookings/5/respond", json={"action": "approved"})
        assert response.status_code == 500
        detail = response.json()["detail"]
        assert "exploded" not in detail
        assert "internal error" in detail.lower()


class TestWebhookVerification:
    def test_echoes_challenge_for_matching_token(self, client, monkeypatch):
        monkeypatch.setattr("heykaelo.api.routes.WHATSAPP_VERIFY_TOKEN", "secret-token")
        response = client.get(
            "/webhooks/whatsapp",
            params={"hub.mode": "subscribe", "hub.verify_token": "secret-token", "hub.challenge": "1158201444"},
        )
        assert response.status_code == 200
        assert response.text == "1158201444"

    def test_rejects_wrong_token(self, client, monkeypatch):
        monkeypatch.setattr("heykaelo.api.routes.WHATSAPP_VERIFY_TOKEN", "secret-token")
        response = client.get(
            "/webhooks/whatsapp",
            params={"hub.mode": "subscribe", "hub.verify_token": "guess", "hub.challenge": "1"},
        )
        assert response.status_code == 403

    def test_rejects_when_no_token_configured(self, client, monkeypatch):
        monkeypatch.setattr("heykaelo.api.routes.WHATSAPP_VERIFY_TOKEN", None)
        response = client.get(
            "/webhooks/whatsapp",
            params={"hub.mode": "subscribe", "hub.verify_token": "", "hub.challenge": "1"},
        )
        assert response.status_code == 403


class TestWebhookMessages:
    def test_text_message_is_dispatched_and_answered(self, client, mock_dispatcher, mock_wa):
        response = client.post("/webhooks/whatsapp", json=_webhook_payload(_text_message("wamid.1", "Hi")))

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "processed": 1}
        mock_dispatcher.handle.assert_called_once_with("27821234567", "Hi", None, "27110001111")
        mock_wa.send_message.assert_called_once_with("27821234567", "Aweh! How can I help?")

    def test_redelivered_message_is_ignored(self, client, mock_dispatcher):
        payload = _webhook_payload(_text_message("wamid.dup", "Hi"))
        client.post("/webhooks/whatsapp", json=payload)
        response = client.post("/webhooks/whatsapp", json=payload)

        assert response.json()["processed"] == 0
        assert mock_dispatcher.handle.call_count == 1

    def test_image_message_resolves_media(self, client, mock_dispatcher, mock_wa):
        image = {"from": "27821234567", "id": "wamid.img", "type": "image", "image": {"id": "MEDIA1", "caption": "sig"}}
        client.post("/webhooks/whatsapp", json=_webhook_payload(image))

        mock_wa.get_media_url.assert_called_once_with("MEDIA1")
        mock_dispatcher.handle.assert_called_once_with(
            "27821234567", "sig", "https://lookaside.fbsbx.com/media/123", "27110001111",
        )

    def test_unresolvable_media_still_counts_as_image(self, client, mock_dispatcher, mock_wa):
        mock_wa.get_media_url.side_effect = WhatsAppAPIError("Meta API error 404")
        image = {"from": "27821234567", "id": "wamid.img2", "type": "image", "image": {"id": "MEDIA2"}}
        client.post("/webhooks/whatsapp", json=_webhook_payload(image))

        mock_dispatcher.handle.assert_called_once_with("27821234567", "", "whatsapp-media:MEDIA2", "27110001111")

    def test_unsupported_message_type_is_skipped(self, client, mock_dispatcher):
        sticker = {"from": "27821234567", "id": "wamid.stk", "type": "sticker"}
        response = client.post("/webhooks/whatsapp", json=_webhook_payload(sticker))
        assert response.status_code == 200
        mock_dispatcher.handle.assert_not_called()

    def test_failed_reply_send_is_not_an_error(self, client, mock_wa):
        mock_wa.send_message.side_effect = WhatsAppAPIError("Meta API error 500")
        response = client.post("/webhooks/whatsapp", json=_webhook_payload(_text_message("wamid.2", "Hi")))
        assert response.status_code == 200

    def test_status_updates_without_messages(self, client, mock_dispatcher):
        payload = _webhook_payload()
        payload["entry"][0]["changes"][0]["value"].pop("messages")
        payload["entry"][0]["changes"][0]["value"]["statuses"] = [{"id": "wamid.1", "status": "read"}]
        response = client.post("/webhooks/whatsapp", json=payload)
        assert response.json() == {"status": "ok", "processed": 0}


class TestNotReady:
    def test_returns_503_before_startup(self):
        for name in STATE_NAMES:
            setattr(app.state, name, None)
        response = TestClient(app).post("/api/simulate-chat", json={"message": "Hello!"})
        assert response.status_code == 503
        assert "starting up" in response.json()["detail"].lower()


class TestRootEndpoint:
    def test_root_returns_service_info(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "HeyKaelo Assistant"
        assert data["webhook"] == "/webhooks/whatsapp"
