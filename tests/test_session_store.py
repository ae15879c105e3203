"""Tests for the conversation session store and the mode discriminator."""

from __future__ import annotations

from heykaelo.flows.session import (
    ONBOARDING_ACTIVE,
    ONBOARDING_DATA,
    ONBOARDING_STEP,
    REGISTRATION_ACTIVE,
    ConversationSession,
    Idle,
    Onboarding,
    Registration,
    onboarding_patch,
    registration_patch,
    session_mode,
)


class TestSessionStoreMerge:
    def test_get_unknown_phone_returns_none(self, sessions):
        assert sessions.get("27820000000") is None

    def test_upsert_creates_row(self, sessions):
        session = sessions.upsert("27821234567", {"foo": 1})
        assert session.phone_number == "27821234567"
        assert session.intent == "general"
        assert sessions.get("27821234567").metadata == {"foo": 1}

    def test_upsert_merges_instead_of_overwriting(self, sessions):
        sessions.upsert("27821234567", {"history": [{"role": "user", "text": "hi"}]})
        sessions.upsert("27821234567", {ONBOARDING_STEP: "root"})
        meta = sessions.get("27821234567").metadata
        assert meta["history"] == [{"role": "user", "text": "hi"}]
        assert meta[ONBOARDING_STEP] == "root"

    def test_remove_drops_only_named_keys(self, sessions):
        sessions.upsert("27821234567", {"a": 1, "b": 2, "c": 3})
        sessions.upsert("27821234567", remove=("a", "missing"))
        assert sessions.get("27821234567").metadata == {"b": 2, "c": 3}

    def test_business_id_written_only_when_given(self, sessions):
        sessions.upsert("27821234567", business_id="biz-1")
        sessions.upsert("27821234567", {"x": 1})
        assert sessions.get("27821234567").business_id == "biz-1"
        sessions.upsert("27821234567", business_id=None)
        assert sessions.get("27821234567").business_id is None

    def test_phones_do_not_share_state(self, sessions):
        sessions.upsert("27821111111", {ONBOARDING_ACTIVE: True})
        sessions.upsert("27822222222", {"history": []})
        assert ONBOARDING_ACTIVE not in sessions.get("27822222222").metadata
        assert "history" not in sessions.get("27821111111").metadata

    def test_reset_and_list_states(self, sessions):
        sessions.upsert("27821111111", {"a": 1})
        sessions.upsert("27822222222", {"b": 2})
        assert {s.phone_number for s in sessions.list_states()} == {"27821111111", "27822222222"}
        assert sessions.reset("27821111111") is True
        assert sessions.reset("27821111111") is False
        assert sessions.get("27821111111") is None


class TestSessionMode:
    def test_missing_or_empty_session_is_idle(self):
        assert session_mode(None) == Idle()
        assert session_mode(ConversationSession("1")) == Idle()

    def test_onboarding(self):
        session = ConversationSession("1", metadata={
            ONBOARDING_ACTIVE: True, ONBOARDING_STEP: "pro_role_type", ONBOARDING_DATA: {"business_name": "X"},
        })
        assert session_mode(session) == Onboarding("pro_role_type", {"business_name": "X"})

    def test_onboarding_wins_over_registration(self):
        session = ConversationSession("1", metadata={ONBOARDING_ACTIVE: True, REGISTRATION_ACTIVE: True})
        assert isinstance(session_mode(session), Onboarding)

    def test_registration(self):
        patch, _ = registration_patch("REG_ID", "REG_NAME", 7, {"full_name": "Alice"})
        mode = session_mode(ConversationSession("1", metadata=patch))
        assert mode == Registration("REG_ID", "REG_NAME", 7, {"full_name": "Alice"})

    def test_entering_a_mode_clears_the_other(self, sessions):
        patch, remove = registration_patch("REG_NAME", None, 7, {})
        sessions.upsert("1", patch, remove=remove)
        patch, remove = onboarding_patch("root", {})
        session = sessions.upsert("1", patch, remove=remove)
        assert REGISTRATION_ACTIVE not in session.metadata
        assert isinstance(session_mode(session), Onboarding)
