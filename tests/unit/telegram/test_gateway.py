"""
Unit Tests for the Webhook Gateway.

Each validation step has its own error kind; checks run in a fixed order
and the first failure wins.
"""

import json

import pytest

from modules.telegram.gateway import (
    GatewayError,
    GatewayErrorKind,
    InboundCallback,
    InboundMessage,
    Update,
    WebhookGateway,
)

SECRET = "a-sufficiently-long-secret"
JSON_HEADERS = {"Content-Type": "application/json", "X-Shared-Secret": SECRET}


def _body(payload) -> bytes:
    return json.dumps(payload).encode()


def _message_payload(update_id=1, text="/status"):
    return {
        "update_id": update_id,
        "message": {
            "message_id": 10,
            "from": {"id": 42, "username": "ada", "first_name": "Ada"},
            "chat": {"id": 42},
            "text": text,
        },
    }


def _callback_payload(update_id=2, data="status_refresh"):
    return {
        "update_id": update_id,
        "callback_query": {
            "id": "cb-1",
            "from": {"id": 42},
            "message": {"message_id": 11, "chat": {"id": -100}},
            "data": data,
        },
    }


@pytest.fixture
def gateway():
    return WebhookGateway(secret=SECRET, max_body_bytes=1024)


class TestAcceptedUpdates:
    def test_parses_message(self, gateway):
        update = gateway.process(_body(_message_payload()), JSON_HEADERS)

        assert isinstance(update, Update)
        assert update.kind == "message"
        assert update.message == InboundMessage(
            message_id=10, caller_id=42, chat_id=42, text="/status", username="ada", first_name="Ada",
        )
        assert update.caller_id == 42
        assert update.message.is_command

    def test_parses_callback(self, gateway):
        update = gateway.process(_body(_callback_payload()), JSON_HEADERS)

        assert update.kind == "callback"
        assert update.callback == InboundCallback(
            callback_id="cb-1", caller_id=42, data="status_refresh", chat_id=-100, message_id=11,
        )
        assert update.chat_id == -100

    def test_callback_without_origin_replies_to_caller(self, gateway):
        payload = {"update_id": 3, "callback_query": {"id": 7, "from": {"id": 42}, "data": "help"}}
        update = gateway.process(_body(payload), JSON_HEADERS)

        assert update.callback.callback_id == "7"
        assert update.chat_id == 42

    def test_header_names_are_case_insensitive(self, gateway):
        headers = {"content-type": "application/json; charset=utf-8", "x-shared-secret": SECRET}

        assert isinstance(gateway.process(_body(_message_payload()), headers), Update)

    def test_no_secret_configured_skips_check(self):
        gateway = WebhookGateway()
        headers = {"Content-Type": "application/json"}

        assert isinstance(gateway.process(_body(_message_payload()), headers), Update)

    def test_custom_secret_header(self):
        gateway = WebhookGateway(secret=SECRET, secret_header="X-Telegram-Bot-Api-Secret-Token")
        headers = {"Content-Type": "application/json", "X-Telegram-Bot-Api-Secret-Token": SECRET}

        assert isinstance(gateway.process(_body(_message_payload()), headers), Update)

    def test_telegram_secret_header_accepted_alongside_default(self, gateway):
        headers = {"Content-Type": "application/json", "X-Telegram-Bot-Api-Secret-Token": SECRET}

        assert isinstance(gateway.process(_body(_message_payload(text="/start")), headers), Update)

    def test_duplicate_update_ids_are_not_deduplicated(self, gateway):
        body = _body(_message_payload(update_id=5))

        assert isinstance(gateway.process(body, JSON_HEADERS), Update)
        assert isinstance(gateway.process(body, JSON_HEADERS), Update)


class TestRejections:
    @pytest.mark.parametrize(
        ("body", "headers", "kind", "status"),
        [
            (b"x" * 2048, {}, GatewayErrorKind.TOO_LARGE, 413),
            (b"", JSON_HEADERS, GatewayErrorKind.EMPTY_BODY, 400),
            (b"   ", JSON_HEADERS, GatewayErrorKind.EMPTY_BODY, 400),
            (b"{}", {"Content-Type": "application/json"}, GatewayErrorKind.UNAUTHORIZED, 401),
            (b"{}", {"Content-Type": "application/json", "X-Shared-Secret": "wrong"},
             GatewayErrorKind.UNAUTHORIZED, 401),
            (b"{}", {"Content-Type": "application/json", "X-Telegram-Bot-Api-Secret-Token": "wrong"},
             GatewayErrorKind.UNAUTHORIZED, 401),
            (b"{}", {"X-Shared-Secret": SECRET, "Content-Type": "text/plain"},
             GatewayErrorKind.UNSUPPORTED_MEDIA, 400),
            (b"{not json", JSON_HEADERS, GatewayErrorKind.MALFORMED, 400),
            (b"[1, 2]", JSON_HEADERS, GatewayErrorKind.MALFORMED, 400),
            (b'{"message": {}}', JSON_HEADERS, GatewayErrorKind.MISSING_UPDATE_ID, 400),
            (b'{"update_id": "1"}', JSON_HEADERS, GatewayErrorKind.MISSING_UPDATE_ID, 400),
            (b'{"update_id": true}', JSON_HEADERS, GatewayErrorKind.MISSING_UPDATE_ID, 400),
            (b'{"update_id": 1}', JSON_HEADERS, GatewayErrorKind.MISSING_FIELDS, 400),
        ],
    )
    def test_error_kinds(self, gateway, body, headers, kind, status):
        result = gateway.process(body, headers)

        assert isinstance(result, GatewayError)
        assert result.kind is kind
        assert result.status_code == status

    def test_size_is_checked_before_secret(self, gateway):
        result = gateway.process(b"x" * 2048, {"X-Shared-Secret": "wrong"})

        assert result.kind is GatewayErrorKind.TOO_LARGE

    def test_secret_is_checked_before_content_type(self, gateway):
        result = gateway.process(b"{}", {"Content-Type": "text/plain", "X-Shared-Secret": "nope"})

        assert result.kind is GatewayErrorKind.UNAUTHORIZED

    def test_message_missing_chat(self, gateway):
        payload = _message_payload()
        del payload["message"]["chat"]

        result = gateway.process(_body(payload), JSON_HEADERS)

        assert result.kind is GatewayErrorKind.MISSING_FIELDS
        assert "chat" in result.detail

    def test_callback_missing_sender(self, gateway):
        payload = _callback_payload()
        del payload["callback_query"]["from"]

        result = gateway.process(_body(payload), JSON_HEADERS)

        assert result.kind is GatewayErrorKind.MISSING_FIELDS
        assert "from" in result.detail

    def test_both_message_and_callback(self, gateway):
        payload = _message_payload()
        payload["callback_query"] = _callback_payload()["callback_query"]

        result = gateway.process(_body(payload), JSON_HEADERS)

        assert result.kind is GatewayErrorKind.MISSING_FIELDS

    def test_invalid_utf8(self, gateway):
        result = gateway.process(b"\xff\xfe{}", JSON_HEADERS)

        assert result.kind is GatewayErrorKind.MALFORMED
