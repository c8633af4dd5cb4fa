"""
Webhook Gateway.

Validates raw webhook requests and parses them into a canonical Update.

Validation runs in a fixed order and stops at the first failure, each
failure producing its own error kind:

    0. body size within the configured limit
    1. body non-empty
    2. shared secret matches (constant-time compare), if configured. It is
       read from the configured header or from the header Telegram fills
       with the secret_token given to setWebhook
    3. content type declares JSON
    4. JSON object with a numeric update_id
    5. message carries id/from/chat; callback carries id/from;
       exactly one of the two is present

A failed request never reaches the router, and the gateway never raises:
callers get either an Update or a GatewayError. The gateway does not
deduplicate by update_id.

Usage:
    gateway = WebhookGateway(secret=settings.telegram_webhook_secret)
    result = gateway.process(await request.body(), request.headers)
    if isinstance(result, GatewayError):
        return Response(status_code=result.status_code)
"""

import hmac
import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from modules.backend.core.logging import get_logger, log_with_source

logger = get_logger(__name__)

DEFAULT_SECRET_HEADER = "X-Shared-Secret"
TELEGRAM_SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"
DEFAULT_MAX_BODY_BYTES = 1024 * 1024


@dataclass(frozen=True)
class InboundMessage:
    """A text message sent by a caller."""

    message_id: int
    caller_id: int
    chat_id: int
    text: str = ""
    username: str | None = None
    first_name: str | None = None

    @property
    def is_command(self) -> bool:
        return self.text.startswith("/")


@dataclass(frozen=True)
class InboundCallback:
    """An inline-button press."""

    callback_id: str
    caller_id: int
    data: str = ""
    chat_id: int | None = None
    message_id: int | None = None
    username: str | None = None


@dataclass(frozen=True)
class Update:
    """Canonical inbound event. Exactly one of message/callback is set."""

    id: int
    message: InboundMessage | None = None
    callback: InboundCallback | None = None

    @property
    def caller_id(self) -> int:
        if self.message is not None:
            return self.message.caller_id
        assert self.callback is not None
        return self.callback.caller_id

    @property
    def chat_id(self) -> int | None:
        if self.message is not None:
            return self.message.chat_id
        assert self.callback is not None
        return self.callback.chat_id if self.callback.chat_id is not None else self.callback.caller_id

    @property
    def kind(self) -> str:
        return "message" if self.message is not None else "callback"


class GatewayErrorKind(str, Enum):
    """Distinct validation failures, in check order."""

    TOO_LARGE = "too_large"
    EMPTY_BODY = "empty_body"
    UNAUTHORIZED = "unauthorized"
    UNSUPPORTED_MEDIA = "unsupported_media"
    MALFORMED = "malformed"
    MISSING_UPDATE_ID = "missing_update_id"
    MISSING_FIELDS = "missing_fields"


_STATUS_BY_KIND = {
    GatewayErrorKind.TOO_LARGE: 413,
    GatewayErrorKind.UNAUTHORIZED: 401,
}


@dataclass(frozen=True)
class GatewayError:
    """Typed rejection of an inbound request."""

    kind: GatewayErrorKind
    detail: str

    @property
    def status_code(self) -> int:
        return _STATUS_BY_KIND.get(self.kind, 400)


class WebhookGateway:
    """Stateless validator and parser for webhook requests."""

    def __init__(
        self,
        secret: str | None = None,
        secret_header: str = DEFAULT_SECRET_HEADER,
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
    ) -> None:
        self._secret = secret or None
        # Telegram echoes the setWebhook secret_token in its own header.
        self._secret_headers = tuple(dict.fromkeys((secret_header.lower(), TELEGRAM_SECRET_HEADER.lower())))
        self._max_body_bytes = max_body_bytes

    def process(self, raw_body: bytes, headers: Mapping[str, str]) -> Update | GatewayError:
        """
        Validate a raw request and return the parsed Update.

        Args:
            raw_body: Request body bytes
            headers: Request headers (any casing)

        Returns:
            Update on success, GatewayError describing the first failed check
        """
        lowered = {k.lower(): v for k, v in headers.items()}

        if len(raw_body) > self._max_body_bytes:
            return self._reject(
                GatewayErrorKind.TOO_LARGE,
                f"Request too large: {len(raw_body)}/{self._max_body_bytes} bytes",
            )

        if not raw_body or not raw_body.strip():
            return self._reject(GatewayErrorKind.EMPTY_BODY, "Request body is empty")

        if self._secret is not None and not self._secret_matches(lowered):
            return self._reject(GatewayErrorKind.UNAUTHORIZED, "Invalid shared secret")

        content_type = lowered.get("content-type", "").lower()
        if "application/json" not in content_type:
            return self._reject(
                GatewayErrorKind.UNSUPPORTED_MEDIA,
                f"Unsupported content type: {content_type or 'missing'}",
            )

        try:
            payload = json.loads(raw_body)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            return self._reject(GatewayErrorKind.MALFORMED, f"Invalid JSON: {e}")

        if not isinstance(payload, dict):
            return self._reject(GatewayErrorKind.MALFORMED, "Payload must be a JSON object")

        update_id = payload.get("update_id")
        if not _is_int(update_id):
            return self._reject(GatewayErrorKind.MISSING_UPDATE_ID, "Missing or invalid update_id")

        return self._parse_update(update_id, payload)

    def _secret_matches(self, lowered: Mapping[str, str]) -> bool:
        expected = self._secret.encode("utf-8")
        return any(
            hmac.compare_digest(lowered[name].encode("utf-8"), expected)
            for name in self._secret_headers
            if lowered.get(name)
        )

    def _parse_update(self, update_id: int, payload: dict[str, Any]) -> Update | GatewayError:
        raw_message = payload.get("message")
        raw_callback = payload.get("callback_query", payload.get("callback"))

        if raw_message is not None and raw_callback is not None:
            return self._reject(
                GatewayErrorKind.MISSING_FIELDS,
                "Update must carry exactly one of message or callback",
            )

        if raw_message is not None:
            message = _parse_message(raw_message)
            if isinstance(message, str):
                return self._reject(GatewayErrorKind.MISSING_FIELDS, message)
            return Update(id=update_id, message=message)

        if raw_callback is not None:
            callback = _parse_callback(raw_callback)
            if isinstance(callback, str):
                return self._reject(GatewayErrorKind.MISSING_FIELDS, callback)
            return Update(id=update_id, callback=callback)

        return self._reject(
            GatewayErrorKind.MISSING_FIELDS,
            "Update carries neither a message nor a callback",
        )

    def _reject(self, kind: GatewayErrorKind, detail: str) -> GatewayError:
        level = "warning" if kind is GatewayErrorKind.UNAUTHORIZED else "info"
        log_with_source(logger, "telegram", level, "Webhook request rejected", kind=kind.value, detail=detail)
        return GatewayError(kind=kind, detail=detail)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _entity_id(entity: Any) -> int | None:
    if isinstance(entity, dict) and _is_int(entity.get("id")):
        return entity["id"]
    return None


def _parse_message(raw: Any) -> InboundMessage | str:
    if not isinstance(raw, dict):
        return "message must be an object"

    message_id = raw.get("message_id", raw.get("id"))
    missing = [
        name
        for name, ok in (
            ("id", _is_int(message_id)),
            ("from", _entity_id(raw.get("from")) is not None),
            ("chat", _entity_id(raw.get("chat")) is not None),
        )
        if not ok
    ]
    if missing:
        return f"message missing required fields: {', '.join(missing)}"

    sender = raw["from"]
    text = raw.get("text")
    return InboundMessage(
        message_id=message_id,
        caller_id=sender["id"],
        chat_id=raw["chat"]["id"],
        text=text if isinstance(text, str) else "",
        username=sender.get("username"),
        first_name=sender.get("first_name"),
    )


def _parse_callback(raw: Any) -> InboundCallback | str:
    if not isinstance(raw, dict):
        return "callback must be an object"

    callback_id = raw.get("id")
    missing = [
        name
        for name, ok in (
            ("id", isinstance(callback_id, (str, int)) and not isinstance(callback_id, bool)),
            ("from", _entity_id(raw.get("from")) is not None),
        )
        if not ok
    ]
    if missing:
        return f"callback missing required fields: {', '.join(missing)}"

    sender = raw["from"]
    origin = raw.get("message") if isinstance(raw.get("message"), dict) else {}
    data = raw.get("data")
    message_id = origin.get("message_id")
    return InboundCallback(
        callback_id=str(callback_id),
        caller_id=sender["id"],
        data=data if isinstance(data, str) else "",
        chat_id=_entity_id(origin.get("chat")),
        message_id=message_id if _is_int(message_id) else None,
        username=sender.get("username"),
    )
