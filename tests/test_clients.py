"""Tests for the WhatsApp client and the system prompt builder."""

from __future__ import annotations

from unittest.mock import patch

import httpx
import pytest

from heykaelo.prompts import get_system_prompt
from heykaelo.services.profiles import BusinessProfile
from heykaelo.services.webhook_events import WebhookEventLedger
from heykaelo.services.whatsapp_client import WhatsAppAPIError, WhatsAppClient


def _client() -> WhatsAppClient:
    return WhatsAppClient(phone_number_id="PNID", access_token="wa-token", base_url="https://graph.test/v19.0")


# ── WhatsAppClient ───────────────────────────────────────────────────


class TestWhatsAppSend:
    def test_send_message_posts_text(self, mock_http_response):
        client = _client()
        response = mock_http_response({"messages": [{"id": "wamid.1"}]})
        with patch.object(client._client, "request", return_value=response) as mock_req:
            client.send_message("whatsapp:+27 82 123 4567", "Sharp!")

        args, kwargs = mock_req.call_args
        assert args == ("POST", "/PNID/messages")
        assert kwargs["json"] == {
            "messaging_product": "whatsapp",
            "to": "27821234567",
            "type": "text",
            "text": {"body": "Sharp!"},
        }

    def test_error_status_raises(self, mock_http_response):
        client = _client()
        with patch.object(client._client, "request", return_value=mock_http_response({"error": {}}, 401)):
            with pytest.raises(WhatsAppAPIError) as exc_info:
                client.send_message("27821234567", "hi")
        assert exc_info.value.status_code == 401

    def test_network_error_raises(self):
        client = _client()
        with patch.object(client._client, "request", side_effect=httpx.ConnectError("down")):
            with pytest.raises(WhatsAppAPIError, match="unreachable"):
                client.send_message("27821234567", "hi")

    def test_unconfigured_client_refuses(self):
        client = WhatsAppClient(phone_number_id="", access_token="")
        assert client.is_configured is False
        with pytest.raises(WhatsAppAPIError):
            client.send_message("27821234567", "hi")

    def test_get_media_url(self, mock_http_response):
        client = _client()
        response = mock_http_response({"url": "https://lookaside.fbsbx.com/x", "id": "MEDIA1"})
        with patch.object(client._client, "request", return_value=response) as mock_req:
            assert client.get_media_url("MEDIA1") == "https://lookaside.fbsbx.com/x"
        assert mock_req.call_args[0] == ("GET", "/MEDIA1")


# ── Webhook ledger ───────────────────────────────────────────────────


class TestWebhookEventLedger:
    def test_claims_each_message_once(self, session_factory):
        ledger = WebhookEventLedger(session_factory)
        assert ledger.claim("wamid.1") is True
        assert ledger.claim("wamid.1") is False
        assert ledger.claim("wamid.2") is True


# ── System prompt ────────────────────────────────────────────────────


class TestSystemPrompt:
    def _profile(self, **overrides) -> BusinessProfile:
        fields = {
            "id": "biz",
            "phone_number": "27839990000",
            "business_name": "Dr Nkosi Physio",
            "slug": "dr-nkosi-physio-1",
            "role_category": "professional",
            "role_type": "Physio",
        }
        fields.update(overrides)
        return BusinessProfile(**fields)

    def test_includes_business_and_customer(self):
        prompt = get_system_prompt(self._profile(), "27821234567")
        assert "**Dr Nkosi Physio**" in prompt
        assert "Business Type: Physio" in prompt
        assert "**27821234567**" in prompt
        assert "Goal: confirm an appointment" in prompt

    def test_knowledge_base_only_when_context_present(self):
        assert "Knowledge Base" not in get_system_prompt(self._profile(context="  "), "1")
        prompt = get_system_prompt(self._profile(context="Sessions are R650."), "1")
        assert "Sessions are R650." in prompt

    def test_category_picks_flow(self):
        prompt = get_system_prompt(self._profile(role_category="tradesperson"), "1")
        assert "Goal: qualify the lead" in prompt

    def test_without_profile_uses_generic_hybrid_prompt(self):
        prompt = get_system_prompt(None, "1")
        assert "a local business" in prompt
        assert "Goal: handle studio bookings OR mobile call-outs" in prompt
