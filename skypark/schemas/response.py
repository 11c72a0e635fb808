"""
Response envelopes shared by every endpoint
"""

from datetime import datetime, timezone
from typing import Any, Dict

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Body of every non-2xx response raised from a SkyParkException"""
    success: bool = False
    error: ErrorDetail
    timestamp: datetime = Field(default_factory=_now)


class MessageResponse(BaseModel):
    """Acknowledgement for maintenance operations"""
    success: bool = True
    message: str
    timestamp: datetime = Field(default_factory=_now)
