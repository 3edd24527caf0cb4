"""Notification models."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .ca import utcnow


class NotificationChannel(str, Enum):
    """Delivery channel."""

    WEBHOOK = "webhook"
    EMAIL = "email"


class NotificationStatus(str, Enum):
    """Notification delivery status."""

    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class NotificationEvent(BaseModel):
    """Event published after a committed mutation."""

    event: str
    ca_id: Optional[str] = None
    entity_id: str
    actor: str
    summary: str
    data: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utcnow)


class NotificationResult(BaseModel):
    """Outcome of a single delivery attempt."""

    channel: NotificationChannel
    target: str
    status: NotificationStatus
    error: Optional[str] = None
