"""Pydantic schemas for push notifications.

Learn: PushPayload is the *output* contract: what every WebSocket
subscriber receives. Field declaration order is the serialization
order, so clients can rely on pusher, msg, type, level, date. Absent
optional fields serialize as null.

PushResult is what the publisher gets back from POST /push.
"""

from typing import Optional

from pydantic import BaseModel, Field


class PushPayload(BaseModel):
    """Normalized message broadcast to subscribers."""
    pusher: Optional[str] = Field(None, description="Who sent it (service, script, host)")
    msg: str = Field(..., description="Notification body")
    type: Optional[str] = Field(None, description="Free-form category")
    level: Optional[str] = Field(
        None, description="Severity hint, e.g. info, success, warning, critical"
    )
    date: Optional[str] = Field(None, description="Publisher-supplied timestamp")

    def to_frame(self) -> str:
        """Compact JSON text frame, e.g. {"pusher":"svc1","msg":"hi",...}."""
        return self.model_dump_json()


class PushResult(BaseModel):
    status: str = "ok"
    token: str
    subscribers: int = Field(..., description="Subscribers the message was queued for")
