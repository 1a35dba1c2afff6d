"""Best-effort approval notifications.

Delivery never raises: failures are logged and kept as FAILED records so
the workflow action that triggered them is never blocked or rolled back.
"""

import logging
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any

import httpx

from p2p_approvals.core.config import Settings, get_settings
from p2p_approvals.services.notifications.schemas import (
    ChannelConfig,
    NotificationChannel,
    NotificationKind,
    NotificationMessage,
    NotificationRecord,
    NotificationStatus,
)

logger = logging.getLogger(__name__)

_SLACK_COLORS = {
    NotificationKind.APPROVAL_REQUEST: "#36a64f",
    NotificationKind.REMINDER: "#f2c744",
    NotificationKind.ESCALATION: "#ff6b35",
    NotificationKind.APPROVED: "#2eb886",
    NotificationKind.REJECTED: "#dc3545",
}


class ApprovalNotifier:
    """Sends approval notifications to every enabled channel.

    Features:
    - LOG channel is always on
    - Slack and generic webhook channels via httpx
    - In-memory delivery records, oldest dropped past max_records
    """

    def __init__(
        self,
        channels: list[ChannelConfig] | None = None,
        link_base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        max_records: int = 1000,
    ):
        """Initialize notifier.

        Args:
            channels: Extra channel configurations (LOG needs none)
            link_base_url: Base URL for email approval links
            http_client: Optional preconfigured HTTP client
            max_records: Delivery records kept before the oldest are dropped
        """
        self._channels: dict[NotificationChannel, ChannelConfig] = {}
        self._records: deque[NotificationRecord] = deque(maxlen=max_records)
        self._http_client = http_client
        self.link_base_url = link_base_url or ""
        for config in channels or []:
            self.configure_channel(config)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ApprovalNotifier":
        """Create notifier with channels configured from settings.

        Args:
            settings: Application settings

        Returns:
            Configured notifier
        """
        channels = []
        if settings.slack_webhook_url:
            channels.append(ChannelConfig(
                channel=NotificationChannel.SLACK,
                endpoint=settings.slack_webhook_url,
            ))
        if settings.notification_webhook_url:
            channels.append(ChannelConfig(
                channel=NotificationChannel.WEBHOOK,
                endpoint=settings.notification_webhook_url,
                api_key=settings.notification_webhook_api_key,
            ))
        return cls(
            channels=channels,
            link_base_url=settings.approval_link_base_url,
            max_records=settings.notification_max_records,
        )

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=10.0)
        return self._http_client

    def configure_channel(self, config: ChannelConfig) -> None:
        """Configure a notification channel.

        Args:
            config: Channel configuration
        """
        self._channels[config.channel] = config
        logger.info(f"Configured notification channel: {config.channel.value}")

    def active_channels(self) -> list[NotificationChannel]:
        """Channels a message is delivered to."""
        channels = [NotificationChannel.LOG]
        channels.extend(
            channel
            for channel, config in self._channels.items()
            if config.enabled and channel != NotificationChannel.LOG
        )
        return channels

    # ------------------------------------------------------------------
    # Approval notifications
    # ------------------------------------------------------------------

    async def send_approval_request(
        self,
        *,
        approver_id: str,
        transaction_type: str,
        transaction_id: str,
        task_id: str,
        token: str | None = None,
        step_name: str | None = None,
        original_approver_id: str | None = None,
    ) -> list[NotificationRecord]:
        """Ask an approver to act on a task.

        Args:
            approver_id: Effective approver (delegate if delegated)
            transaction_type: Transaction type
            transaction_id: Transaction ID
            task_id: Task ID
            token: Email approval token
            step_name: Step name
            original_approver_id: Approver of record when delegated

        Returns:
            Delivery records
        """
        body = f"{transaction_type} {transaction_id} is waiting for your approval"
        if step_name:
            body += f" ({step_name})"
        if original_approver_id and original_approver_id != approver_id:
            body += f" on behalf of {original_approver_id}"
        metadata: dict[str, Any] = {"task_id": task_id}
        if token:
            metadata["approve_url"] = self.build_action_link(token, "approve")
            metadata["reject_url"] = self.build_action_link(token, "reject")
        return await self._send(
            NotificationKind.APPROVAL_REQUEST,
            recipient_id=approver_id,
            title="Approval requested",
            body=body,
            transaction_type=transaction_type,
            transaction_id=transaction_id,
            metadata=metadata,
        )

    async def send_reminder(
        self,
        *,
        approver_id: str,
        transaction_type: str,
        transaction_id: str,
        task_id: str,
        reminder_number: int,
    ) -> list[NotificationRecord]:
        """Remind an approver of a pending task.

        Args:
            approver_id: Effective approver
            transaction_type: Transaction type
            transaction_id: Transaction ID
            task_id: Task ID
            reminder_number: 1-based reminder count

        Returns:
            Delivery records
        """
        return await self._send(
            NotificationKind.REMINDER,
            recipient_id=approver_id,
            title=f"Reminder {reminder_number}: approval pending",
            body=f"{transaction_type} {transaction_id} is still waiting for your approval",
            transaction_type=transaction_type,
            transaction_id=transaction_id,
            metadata={"task_id": task_id, "reminder_number": reminder_number},
        )

    async def send_escalation(
        self,
        *,
        escalated_to: str,
        original_approver_id: str,
        transaction_type: str,
        transaction_id: str,
        task_id: str,
    ) -> list[NotificationRecord]:
        """Notify a supervisor that an overdue task was escalated to them.

        Args:
            escalated_to: Supervisor receiving the task
            original_approver_id: Approver who did not act
            transaction_type: Transaction type
            transaction_id: Transaction ID
            task_id: Task ID

        Returns:
            Delivery records
        """
        return await self._send(
            NotificationKind.ESCALATION,
            recipient_id=escalated_to,
            title="Approval escalated",
            body=(
                f"{transaction_type} {transaction_id} was escalated to you; "
                f"{original_approver_id} has not acted"
            ),
            transaction_type=transaction_type,
            transaction_id=transaction_id,
            metadata={"task_id": task_id, "original_approver_id": original_approver_id},
        )

    async def send_approved_notification(
        self,
        *,
        requester_id: str | None,
        transaction_type: str,
        transaction_id: str,
    ) -> list[NotificationRecord]:
        """Tell the requester their transaction was approved.

        Args:
            requester_id: Requester / creator
            transaction_type: Transaction type
            transaction_id: Transaction ID

        Returns:
            Delivery records
        """
        return await self._send(
            NotificationKind.APPROVED,
            recipient_id=requester_id,
            title="Transaction approved",
            body=f"{transaction_type} {transaction_id} has been approved",
            transaction_type=transaction_type,
            transaction_id=transaction_id,
        )

    async def send_rejected_notification(
        self,
        *,
        requester_id: str | None,
        transaction_type: str,
        transaction_id: str,
        comment: str | None = None,
        rejected_by: str | None = None,
    ) -> list[NotificationRecord]:
        """Tell the requester their transaction was rejected.

        Args:
            requester_id: Requester / creator
            transaction_type: Transaction type
            transaction_id: Transaction ID
            comment: Rejection comment
            rejected_by: Rejecting approver

        Returns:
            Delivery records
        """
        body = f"{transaction_type} {transaction_id} has been rejected"
        if rejected_by:
            body += f" by {rejected_by}"
        if comment:
            body += f": {comment}"
        return await self._send(
            NotificationKind.REJECTED,
            recipient_id=requester_id,
            title="Transaction rejected",
            body=body,
            transaction_type=transaction_type,
            transaction_id=transaction_id,
            metadata={"comment": comment} if comment else {},
        )

    def build_action_link(self, token: str, action: str) -> str:
        """Build an email approval link for a token."""
        return f"{self.link_base_url}?token={token}&action={action}"

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _send(
        self,
        kind: NotificationKind,
        *,
        recipient_id: str | None,
        title: str,
        body: str,
        transaction_type: str,
        transaction_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> list[NotificationRecord]:
        """Deliver a message to every active channel.

        Args:
            kind: Notification type
            recipient_id: Recipient
            title: Title
            body: Body
            transaction_type: Transaction type
            transaction_id: Transaction ID
            metadata: Extra data

        Returns:
            Delivery records
        """
        message = NotificationMessage(
            message_id=f"MSG-{uuid.uuid4().hex[:8].upper()}",
            kind=kind,
            recipient_id=recipient_id,
            title=title,
            body=body,
            transaction_type=transaction_type,
            transaction_id=transaction_id,
            metadata=metadata or {},
            created_at=datetime.now(timezone.utc),
        )
        records = []
        for channel in self.active_channels():
            record = await self._send_to_channel(message, channel)
            self._records.append(record)
            records.append(record)
        return records

    async def _send_to_channel(
        self,
        message: NotificationMessage,
        channel: NotificationChannel,
    ) -> NotificationRecord:
        """Send a message to one channel.

        Args:
            message: Notification message
            channel: Target channel

        Returns:
            Delivery record
        """
        record = NotificationRecord(
            record_id=f"NTF-{uuid.uuid4().hex[:8].upper()}",
            message_id=message.message_id,
            kind=message.kind,
            channel=channel,
            status=NotificationStatus.PENDING,
        )

        try:
            if channel == NotificationChannel.LOG:
                self._send_log(message)
            elif channel == NotificationChannel.SLACK:
                await self._send_slack(message, self._channels[channel])
            elif channel == NotificationChannel.WEBHOOK:
                await self._send_webhook(message, self._channels[channel])

            record.status = NotificationStatus.SENT
            record.sent_at = datetime.now(timezone.utc)

        except Exception as e:
            record.status = NotificationStatus.FAILED
            record.error = str(e)
            logger.error(
                f"Failed to send {message.kind.value} notification to "
                f"{channel.value}: {e}"
            )

        return record

    def _send_log(self, message: NotificationMessage) -> None:
        """Log notification.

        Args:
            message: Notification message
        """
        logger.info(
            f"[NOTIFY] {message.kind.value} to {message.recipient_id}: "
            f"{message.title} - {message.body}"
        )

    async def _send_slack(
        self,
        message: NotificationMessage,
        config: ChannelConfig,
    ) -> None:
        """Send notification to Slack.

        Args:
            message: Notification message
            config: Slack configuration
        """
        payload = {
            "attachments": [
                {
                    "color": _SLACK_COLORS[message.kind],
                    "title": message.title,
                    "text": message.body,
                    "fields": [
                        {"title": "Transaction", "value": f"{message.transaction_type} {message.transaction_id}", "short": True},
                        {"title": "Recipient", "value": message.recipient_id or "-", "short": True},
                    ],
                    "footer": "P2P Approvals",
                }
            ]
        }

        client = await self._get_http_client()
        response = await client.post(config.endpoint, json=payload)
        response.raise_for_status()

    async def _send_webhook(
        self,
        message: NotificationMessage,
        config: ChannelConfig,
    ) -> None:
        """Send notification to generic webhook.

        Args:
            message: Notification message
            config: Webhook configuration
        """
        payload = message.model_dump(mode="json")

        headers = {}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"

        client = await self._get_http_client()
        response = await client.post(config.endpoint, json=payload, headers=headers)
        response.raise_for_status()

    def get_delivery_records(
        self,
        kind: NotificationKind | None = None,
        status: NotificationStatus | None = None,
        limit: int = 100,
    ) -> list[NotificationRecord]:
        """Get notification delivery records.

        Args:
            kind: Filter by notification type
            status: Filter by status
            limit: Max records to return

        Returns:
            List of records
        """
        records = list(self._records)
        if kind:
            records = [r for r in records if r.kind == kind]
        if status:
            records = [r for r in records if r.status == status]
        return records[-limit:]

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


# Singleton instance
_notifier: ApprovalNotifier | None = None


def get_notifier() -> ApprovalNotifier:
    """Get or create notifier singleton."""
    global _notifier
    if _notifier is None:
        _notifier = ApprovalNotifier.from_settings(get_settings())
    return _notifier
