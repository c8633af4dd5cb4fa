"""
Callback Actions and Payload Codec.

Every inline button carries callback data of at most 64 bytes. Buttons
either carry a bare action string ("status_refresh") or a compact JSON
payload with the action, its data, the caller id, and a timestamp:

    {"a":"close_position","d":{"positionId":"abc123"},"u":"42","t":1700000000}

When the full payload does not fit, it is deterministically truncated to
the action plus its id field ({"a":..., "d":{"id":...}}). A payload whose
action alone cannot fit is rejected with ValidationError rather than sent
and silently cut.

CallbackAction enumerates every action the router understands. Members
whose value is a single segment ("status", "balance", ...) also act as the
prefix fallback for unregistered variants such as "status_share".

Usage:
    data = encode_callback(CallbackAction.CLOSE_POSITION, {"positionId": "abc123"}, caller_id=42)
    payload = decode_callback(data)
    assert payload.action == "close_position"
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from modules.backend.core.exceptions import ValidationError

MAX_CALLBACK_BYTES = 64

# Data keys kept when a payload has to be truncated, in preference order
ESSENTIAL_ID_KEYS = ("id", "positionId", "position_id")


class CallbackAction(str, Enum):
    """Closed set of callback actions handled by the callback router."""

    # Status and balance views
    STATUS = "status"
    STATUS_REFRESH = "status_refresh"
    STATUS_POSITIONS = "status_positions"
    STATUS_AI = "status_ai"
    BALANCE = "balance"
    BALANCE_REFRESH = "balance_refresh"
    BALANCE_BREAKDOWN = "balance_breakdown"

    # Trading control confirmations
    CONFIRM_PAUSE = "confirm_pause_trading"
    CONFIRM_RESUME = "confirm_resume_trading"
    CANCEL_CONTROL = "cancel_control_action"
    CLOSE_POSITION = "close_position"

    # Settings and notification toggles
    SETTINGS = "settings"
    SETTINGS_NOTIFICATIONS = "settings_notifications"
    TOGGLE_DAILY_REPORTS = "toggle_daily_notifications"

    # Help
    HELP = "help"
    HELP_COMMANDS = "help_commands"

    # Recovery menu targets
    BACK_TO_STATUS = "back_to_status"
    BACK_TO_BALANCE = "back_to_balance"
    BACK_TO_SETTINGS = "back_to_settings"
    BACK_TO_HELP = "back_to_help"

    # Report buttons
    SHOW_ANALYTICS = "show_analytics"
    SHOW_POSITIONS = "show_positions"
    SHOW_SETTINGS = "show_settings"
    SHOW_MARKET_ANALYSIS = "show_market_analysis"
    SHOW_FULL_REPORT = "show_full_report"
    MARKET_SCAN = "market_scan"
    REDUCE_RISK = "reduce_risk"

    # Emergency actions
    EMERGENCY = "emergency"
    EMERGENCY_STOP = "emergency_stop_all"
    EMERGENCY_RISK_REVIEW = "emergency_risk_review"

    # Error recovery
    RETRY_LAST_COMMAND = "retry_last_command"
    REFRESH_DATA = "refresh_data"


@dataclass(frozen=True)
class CallbackPayload:
    """Decoded callback data."""

    action: str
    data: dict[str, Any] = field(default_factory=dict)
    caller_id: str | None = None
    timestamp: int | None = None

    @property
    def ref(self) -> str | None:
        """The id-like field of the payload, whichever key carried it."""
        for key in ESSENTIAL_ID_KEYS:
            value = self.data.get(key)
            if value is not None:
                return str(value)
        return None


def _dump(obj: dict[str, Any]) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def _fits(serialized: str) -> bool:
    return len(serialized.encode("utf-8")) <= MAX_CALLBACK_BYTES


def encode_callback(
    action: str | CallbackAction,
    data: dict[str, Any] | None = None,
    caller_id: int | str | None = None,
    timestamp: int | None = None,
) -> str:
    """
    Serialize callback data within the 64-byte limit.

    Without data, caller, or timestamp the bare action string is used.

    Raises:
        ValidationError: If even the action alone exceeds the limit, or the
            data carries an id that cannot fit next to the action
    """
    action_value = action.value if isinstance(action, CallbackAction) else str(action)
    data = data or {}

    if not data and caller_id is None and timestamp is None:
        if _fits(action_value):
            return action_value
        raise ValidationError(
            "Callback action exceeds 64 bytes",
            details={"action": action_value},
        )

    full: dict[str, Any] = {"a": action_value}
    if data:
        full["d"] = data
    if caller_id is not None:
        full["u"] = str(caller_id)
    if timestamp is not None:
        full["t"] = int(timestamp)

    serialized = _dump(full)
    if _fits(serialized):
        return serialized

    essential: dict[str, Any] = {"a": action_value}
    ref = CallbackPayload(action=action_value, data=data).ref
    if ref is not None:
        essential["d"] = {"id": ref}

    serialized = _dump(essential)
    if _fits(serialized):
        return serialized

    if ref is not None and _fits(_dump({"a": action_value})):
        raise ValidationError(
            "Callback id does not fit in 64 bytes",
            details={"action": action_value, "id_bytes": len(ref.encode("utf-8"))},
        )
    raise ValidationError(
        "Callback action exceeds 64 bytes",
        details={"action": action_value},
    )


def decode_callback(raw: str) -> CallbackPayload:
    """
    Parse callback data produced by encode_callback (or a bare action).

    Raises:
        ValidationError: If a JSON payload is malformed or lacks an action
    """
    raw = raw.strip()
    if not raw.startswith("{"):
        return CallbackPayload(action=raw)

    try:
        obj = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError("Malformed callback data", details={"raw": raw}) from e

    if not isinstance(obj, dict) or not isinstance(obj.get("a"), str):
        raise ValidationError("Callback data has no action", details={"raw": raw})

    data = obj.get("d")
    timestamp = obj.get("t")
    return CallbackPayload(
        action=obj["a"],
        data=data if isinstance(data, dict) else {},
        caller_id=str(obj["u"]) if obj.get("u") is not None else None,
        timestamp=timestamp if isinstance(timestamp, int) else None,
    )


def resolve_action(action: str) -> CallbackAction | None:
    """
    Map an action string onto the closed action set.

    Exact values win; otherwise the first `_`-separated segment is tried.
    Returns None for genuinely unknown input.
    """
    try:
        return CallbackAction(action)
    except ValueError:
        pass

    segment = action.split("_", 1)[0]
    try:
        return CallbackAction(segment)
    except ValueError:
        return None
