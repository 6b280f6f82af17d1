"""Tests for follow-up drafting and approval."""

from unittest.mock import patch

import pytest
from jinja2 import TemplateNotFound

from leadflow import followup
from leadflow.followup import FollowupDesk, render_followup
from leadflow.records import CONNECTED, READY, SUBMITTED


@pytest.fixture
def desk(memory_store):
    return FollowupDesk(memory_store, renderer=lambda record: f"Hi {record.first_name}!")


@pytest.fixture
def connected(memory_store, make_record):
    return make_record(
        memory_store,
        stage=CONNECTED,
        name="Grace Hopper",
        company="Navy Labs",
        title="Rear Admiral",
        classification={"decision": "TIER_1", "strengths": ["Compilers"], "approach": "Talk tooling"},
    )


@pytest.mark.unit
class TestDrafting:

    def test_next_needing_draft_in_creation_order(self, memory_store, make_record, desk):
        make_record(memory_store, stage=SUBMITTED)
        first = make_record(memory_store, stage=CONNECTED)
        make_record(memory_store, stage=CONNECTED)
        assert desk.next_needing_draft().id == first.id

    def test_save_draft(self, memory_store, desk, connected):
        assert desk.save_draft(connected, "Hello there")
        stored = memory_store.get(connected.id)
        assert stored.followup["text"] == "Hello there"
        assert stored.followup["approved"] is False
        assert stored.followup["sent"] is False
        assert stored.followup["generated_at"]
        assert stored.stage == CONNECTED
        assert desk.next_needing_draft() is None

    def test_cannot_draft_twice(self, desk, connected):
        assert desk.save_draft(connected, "one")
        assert not desk.save_draft(connected, "two")
        assert connected.followup["text"] == "one"

    def test_cannot_draft_before_connection(self, memory_store, make_record, desk):
        record = make_record(memory_store, stage=SUBMITTED)
        assert not desk.save_draft(record, "too early")
        assert memory_store.get(record.id).followup is None

    def test_generate_draft_uses_renderer(self, desk, connected):
        assert desk.generate_draft(connected) == "Hi Grace!"


@pytest.mark.unit
class TestApprovalFlow:

    def test_approve_then_send(self, memory_store, desk, connected):
        desk.save_draft(connected, "draft")
        assert desk.approve(connected)
        assert [r.id for r in desk.ready_to_send()] == [connected.id]

        assert desk.mark_sent(connected)
        stored = memory_store.get(connected.id)
        assert stored.stage == READY
        assert stored.followup["sent"] is True
        assert stored.followup["sent_at"]
        assert desk.ready_to_send() == []

    def test_cannot_send_unapproved(self, memory_store, desk, connected):
        desk.save_draft(connected, "draft")
        assert not desk.mark_sent(connected)
        assert memory_store.get(connected.id).stage == CONNECTED

    def test_cannot_approve_without_draft(self, desk, connected):
        assert not desk.approve(connected)

    def test_revise_clears_approval(self, memory_store, desk, connected):
        desk.save_draft(connected, "draft")
        desk.approve(connected)

        assert desk.revise(connected, "better draft")

        stored = memory_store.get(connected.id)
        assert stored.followup["text"] == "better draft"
        assert stored.followup["approved"] is False
        assert stored.followup["approved_at"] is None
        assert stored.followup["revised_at"]
        assert stored.stage == CONNECTED
        assert [r.id for r in desk.pending_review()] == [connected.id]
        assert not desk.mark_sent(connected)

    def test_cannot_revise_after_sending(self, desk, connected):
        desk.save_draft(connected, "draft")
        desk.approve(connected)
        desk.mark_sent(connected)
        assert not desk.revise(connected, "too late")

    def test_pending_review(self, desk, connected):
        assert desk.pending_review() == []
        desk.save_draft(connected, "draft")
        assert [r.id for r in desk.pending_review()] == [connected.id]
        desk.approve(connected)
        assert desk.pending_review() == []


@pytest.mark.unit
class TestRendering:

    def test_template_renders_context(self, connected):
        with patch.dict(followup.LEAD_CONFIG, {"SENDER_NAME": "Sam", "SENDER_COMPANY": "Sender Ltd"}):
            text = render_followup(connected)
        assert text.startswith("Hi Grace,")
        assert "Navy Labs" in text
        assert "Sam" in text
        assert "Sender Ltd" in text

    def test_falls_back_when_template_missing(self, connected):
        with patch.object(followup, "_get_env") as mock_env:
            mock_env.return_value.get_template.side_effect = TemplateNotFound("followup_message.txt")
            text = render_followup(connected)
        assert text.startswith("Hi Grace,")
        assert "Navy Labs" in text
