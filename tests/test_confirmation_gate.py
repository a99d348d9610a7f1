"""Tests for the confirmation gate decision."""

import pytest

from proddy.core.action_policy import (
    build_cancellation_message,
    build_confirmation_required_message,
)
from proddy.core.confirmation_gate import GateAction, evaluate_gate, last_assistant_message
from proddy.core.types import ProposedCall


def _history_asking_for(*names: str) -> list[dict]:
    return [
        {"role": "user", "content": "Delete all messages in #general"},
        {"role": "assistant", "content": build_confirmation_required_message(list(names))},
    ]


class TestGateWithoutHighImpact:
    def test_reads_execute(self):
        calls = [ProposedCall("GMAIL_FETCH_EMAILS"), ProposedCall("getMyTasksToday")]
        decision = evaluate_gate(calls, "what's in my inbox?")
        assert decision.action == GateAction.EXECUTE
        assert decision.blocked is False
        assert decision.high_impact_names == []

    def test_no_calls(self):
        assert evaluate_gate([], "confirm").action == GateAction.EXECUTE


class TestGateBlocks:
    def test_first_request_needs_confirmation(self):
        decision = evaluate_gate([ProposedCall("delete_channel_messages")], "Delete all messages in #general")
        assert decision.action == GateAction.CONFIRMATION_REQUIRED
        assert decision.blocked
        assert decision.message == build_confirmation_required_message(["delete_channel_messages"])

    def test_cancel(self):
        decision = evaluate_gate(
            [ProposedCall("delete_channel_messages")], "cancel", _history_asking_for("delete_channel_messages"),
        )
        assert decision.action == GateAction.CANCELLED
        assert decision.message == build_cancellation_message(["delete_channel_messages"])

    def test_cancel_without_prior_request(self):
        decision = evaluate_gate([ProposedCall("GMAIL_SEND_EMAIL")], "never mind")
        assert decision.action == GateAction.CANCELLED

    def test_confirm_without_prior_request_is_gated(self):
        decision = evaluate_gate([ProposedCall("delete_channel_messages")], "confirm", [])
        assert decision.action == GateAction.CONFIRMATION_REQUIRED

    def test_confirm_for_different_action_is_gated(self):
        decision = evaluate_gate(
            [ProposedCall("GMAIL_SEND_EMAIL")], "confirm", _history_asking_for("delete_channel_messages"),
        )
        assert decision.action == GateAction.CONFIRMATION_REQUIRED
        assert decision.high_impact_names == ["GMAIL_SEND_EMAIL"]

    def test_confirm_must_cover_every_high_impact_call(self):
        calls = [ProposedCall("delete_channel_messages"), ProposedCall("SLACK_ARCHIVE_CHANNEL")]
        decision = evaluate_gate(calls, "confirm", _history_asking_for("delete_channel_messages"))
        assert decision.action == GateAction.CONFIRMATION_REQUIRED

    def test_request_not_in_last_assistant_message(self):
        history = [
            *_history_asking_for("delete_channel_messages"),
            {"role": "user", "content": "actually, what's on my calendar?"},
            {"role": "assistant", "content": "You have two meetings today."},
        ]
        decision = evaluate_gate([ProposedCall("delete_channel_messages")], "confirm", history)
        assert decision.action == GateAction.CONFIRMATION_REQUIRED


class TestGateExecutes:
    def test_confirm_after_matching_request(self):
        decision = evaluate_gate(
            [ProposedCall("delete_channel_messages")], "confirm", _history_asking_for("delete_channel_messages"),
        )
        assert decision.action == GateAction.EXECUTE
        assert decision.high_impact_names == ["delete_channel_messages"]

    def test_confirm_subset_of_pending(self):
        decision = evaluate_gate(
            [ProposedCall("GMAIL_SEND_EMAIL"), ProposedCall("GMAIL_FETCH_EMAILS")],
            "go ahead",
            _history_asking_for("GMAIL_SEND_EMAIL", "delete_file"),
        )
        assert decision.action == GateAction.EXECUTE

    def test_prior_request_binding_disabled(self):
        decision = evaluate_gate(
            [ProposedCall("delete_channel_messages")], "confirm", [], require_prior_request=False,
        )
        assert decision.action == GateAction.EXECUTE


class TestLastAssistantMessage:
    def test_picks_latest(self):
        history = [
            {"role": "assistant", "content": "first"},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "second"},
            {"role": "user", "content": "confirm"},
        ]
        assert last_assistant_message(history) == "second"

    @pytest.mark.parametrize("history", [[], None, [{"role": "user", "content": "hi"}]])
    def test_none(self, history):
        assert last_assistant_message(history) is None
