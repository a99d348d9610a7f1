"""Tests for user-facing error sanitization and payloads."""

import pytest

from proddy.core.errors import (
    GENERATION_FAILED,
    MAX_ERROR_MESSAGE_LENGTH,
    build_actionable_error,
    build_recoverable_fallback,
    sanitize_error_message,
)


class TestSanitizeErrorMessage:
    @pytest.mark.parametrize("raw,leaked", [
        ("401: Bearer sk-live-abc", "sk-live-abc"),
        ("request failed api_key=AKIA123", "AKIA123"),
        ('{"password": "hunter2"}', "hunter2"),
        ("Cookie: session=zzz", "session=zzz"),
        ('{"authorization": "Basic abc", "client_credential": "c-1"}', "abc"),
        ('{"authorization": "Basic abc", "client_credential": "c-1"}', "c-1"),
    ])
    def test_redacts(self, raw, leaked):
        assert leaked not in sanitize_error_message(raw)

    def test_capped(self):
        assert len(sanitize_error_message("x" * 1000)) == MAX_ERROR_MESSAGE_LENGTH

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_never_empty(self, raw):
        assert sanitize_error_message(raw) == "Unknown error"

    def test_exceptions(self):
        assert sanitize_error_message(ValueError("bad input")) == "bad input"


class TestActionableError:
    def test_payload(self):
        err = build_actionable_error(
            RuntimeError("token=abc upstream"), "Try again.", GENERATION_FAILED, recoverable=True,
        )
        payload = err.to_dict()
        assert payload["success"] is False
        assert payload["code"] == GENERATION_FAILED
        assert payload["recoverable"] is True
        assert "abc" not in payload["message"]

    def test_fallback_text(self):
        assert "Reason: timeout." in build_recoverable_fallback("timeout")
        assert "Reason" not in build_recoverable_fallback()
