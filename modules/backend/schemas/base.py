"""
Base Schemas.

Response envelopes shared by the HTTP surface (webhook, health, errors).
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from modules.backend.core.utils import utc_now


class ResponseMetadata(BaseModel):
    """Metadata included in every error response."""

    timestamp: datetime = Field(default_factory=utc_now)
    request_id: str | None = None


class ErrorDetail(BaseModel):
    """Error detail structure."""

    code: str
    message: str
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    """Standard error response."""

    success: bool = False
    data: None = None
    error: ErrorDetail
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)


class WebhookAck(BaseModel):
    """Body returned to the chat platform for an accepted update."""

    ok: bool = True
