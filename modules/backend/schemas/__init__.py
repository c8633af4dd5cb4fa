# Pydantic schemas package
from modules.backend.schemas.base import (
    ErrorDetail,
    ErrorResponse,
    ResponseMetadata,
    WebhookAck,
)

__all__ = [
    "ErrorDetail",
    "ErrorResponse",
    "ResponseMetadata",
    "WebhookAck",
]
