"""Notification schemas for approval messages."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class NotificationChannel(str, Enum):
    """Notification channel types."""

    SLACK = "SLACK"
    WEBHOOK = "WEBHOOK"
    LOG = "LOG"  # Always available


class NotificationKind(str, Enum):
    """Approval notification types."""

    APPROVAL_REQUEST = "approval_request"
    REMINDER = "reminder"
    ESCALATION = "escalation"
    APPROVED = "approved"
    REJECTED = "rejected"


class NotificationStatus(str, Enum):
    """Notification delivery status."""

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class ChannelConfig(BaseModel):
    """Configuration for a notification channel."""

    channel: NotificationChannel = Field(..., description="Channel type")
    enabled: bool = Field(default=True, description="Is channel enabled")
    endpoint: str = Field(..., description="Webhook URL")
    api_key: str | None = Field(default=None, description="Bearer key if required")


class NotificationMessage(BaseModel):
    """Notification to be delivered."""

    message_id: str = Field(..., description="Unique message ID")
    kind: NotificationKind = Field(..., description="Notification type")
    recipient_id: str | None = Field(None, description="Recipient employee ID")
    title: str = Field(..., description="Message title")
    body: str = Field(..., description="Message body")
    transaction_type: str = Field(..., description="Transaction type")
    transaction_id: str = Field(..., description="Transaction ID")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Extra data")
    created_at: datetime = Field(..., description="Creation time")


class NotificationRecord(BaseModel):
    """Record of a delivery attempt."""

    record_id: str = Field(..., description="Record ID")
    message_id: str = Field(..., description="Source message ID")
    kind: NotificationKind = Field(..., description="Notification type")
    channel: NotificationChannel = Field(..., description="Channel used")
    status: NotificationStatus = Field(..., description="Delivery status")
    sent_at: datetime | None = Field(None, description="Send time")
    error: str | None = Field(None, description="Error if failed")
