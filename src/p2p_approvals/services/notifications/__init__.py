"""Approval notification delivery."""

from p2p_approvals.services.notifications.schemas import (
    ChannelConfig,
    NotificationChannel,
    NotificationKind,
    NotificationMessage,
    NotificationRecord,
    NotificationStatus,
)
from p2p_approvals.services.notifications.service import (
    ApprovalNotifier,
    get_notifier,
)

__all__ = [
    "ApprovalNotifier",
    "get_notifier",
    "ChannelConfig",
    "NotificationChannel",
    "NotificationKind",
    "NotificationMessage",
    "NotificationRecord",
    "NotificationStatus",
]
