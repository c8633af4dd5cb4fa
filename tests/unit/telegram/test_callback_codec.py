"""
Unit Tests for Callback Data Encoding.
"""

import json

import pytest

from modules.backend.core.exceptions import ValidationError
from modules.telegram.callbacks.common import (
    MAX_CALLBACK_BYTES,
    CallbackAction,
    CallbackPayload,
    decode_callback,
    encode_callback,
    resolve_action,
)


def _size(data: str) -> int:
    return len(data.encode("utf-8"))


class TestEncodeCallback:
    def test_bare_action(self):
        assert encode_callback(CallbackAction.STATUS_REFRESH) == "status_refresh"

    def test_full_payload_when_it_fits(self):
        encoded = encode_callback(CallbackAction.CLOSE_POSITION, {"positionId": "abc123"}, caller_id=42)

        assert _size(encoded) <= MAX_CALLBACK_BYTES
        assert json.loads(encoded) == {"a": "close_position", "d": {"positionId": "abc123"}, "u": "42"}

    def test_truncates_to_action_and_id(self):
        encoded = encode_callback(
            CallbackAction.CLOSE_POSITION,
            {"positionId": "abc123"},
            caller_id=42,
            timestamp=1700000000,
        )

        assert _size(encoded) <= MAX_CALLBACK_BYTES
        assert json.loads(encoded) == {"a": "close_position", "d": {"id": "abc123"}}

    def test_truncation_is_deterministic(self):
        args = (CallbackAction.CLOSE_POSITION, {"positionId": "abc123", "note": "x" * 40})

        assert encode_callback(*args, caller_id=1) == encode_callback(*args, caller_id=1)

    def test_drops_data_without_id_field(self):
        encoded = encode_callback(CallbackAction.SETTINGS, {"note": "x" * 80})

        assert encoded == '{"a":"settings"}'

    def test_multibyte_text_counts_bytes(self):
        encoded = encode_callback(CallbackAction.SETTINGS, {"id": "é" * 15, "note": "x" * 10})

        assert _size(encoded) <= MAX_CALLBACK_BYTES
        assert json.loads(encoded) == {"a": "settings", "d": {"id": "é" * 15}}

    def test_id_that_cannot_fit_is_rejected(self):
        with pytest.raises(ValidationError, match="id does not fit"):
            encode_callback(CallbackAction.CLOSE_POSITION, {"positionId": "x" * 60})

        with pytest.raises(ValidationError, match="id does not fit"):
            encode_callback(CallbackAction.SETTINGS, {"id": "é" * 40})

    def test_oversized_action_is_rejected(self):
        with pytest.raises(ValidationError, match="64 bytes"):
            encode_callback("a" * 65)

        with pytest.raises(ValidationError):
            encode_callback("a" * 70, {"id": "1"})

    def test_every_action_fits(self):
        for action in CallbackAction:
            assert _size(encode_callback(action)) <= MAX_CALLBACK_BYTES


class TestDecodeCallback:
    def test_bare_action(self):
        assert decode_callback("help") == CallbackPayload(action="help")

    def test_round_trip(self):
        encoded = encode_callback(CallbackAction.CLOSE_POSITION, {"positionId": "abc123"}, caller_id=42)

        payload = decode_callback(encoded)

        assert payload.action == "close_position"
        assert payload.caller_id == "42"
        assert payload.ref == "abc123"

    def test_ref_prefers_id_key(self):
        payload = CallbackPayload(action="x", data={"position_id": "p", "id": "i"})

        assert payload.ref == "i"
        assert CallbackPayload(action="x").ref is None

    def test_ignores_wrongly_typed_fields(self):
        payload = decode_callback('{"a":"help","d":[1],"t":"soon"}')

        assert payload.data == {}
        assert payload.timestamp is None

    @pytest.mark.parametrize("raw", ['{"a":', '{"d":{}}', '{"a":5}'])
    def test_malformed_payloads(self, raw):
        with pytest.raises(ValidationError):
            decode_callback(raw)


class TestResolveAction:
    def test_exact_match(self):
        assert resolve_action("status_ai") is CallbackAction.STATUS_AI

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("status_share", CallbackAction.STATUS),
            ("balance_history", CallbackAction.BALANCE),
            ("settings_language", CallbackAction.SETTINGS),
            ("emergency_call", CallbackAction.EMERGENCY),
        ],
    )
    def test_prefix_fallback(self, raw, expected):
        assert resolve_action(raw) is expected

    @pytest.mark.parametrize("raw", ["frobnicate", "back_to_nowhere", ""])
    def test_unknown(self, raw):
        assert resolve_action(raw) is None
