"""
Callback Data.

Compact callback payloads (at most 64 bytes) and the tagged action enum
every inline button dispatches on.

Example:
    data = encode_callback(CallbackAction.CLOSE_POSITION, {"positionId": "abc123"})
    payload = decode_callback(data)
    action = resolve_action(payload.action)
"""

from modules.telegram.callbacks.common import (
    CallbackAction,
    CallbackPayload,
    decode_callback,
    encode_callback,
    resolve_action,
)

__all__ = [
    "CallbackAction",
    "CallbackPayload",
    "decode_callback",
    "encode_callback",
    "resolve_action",
]
