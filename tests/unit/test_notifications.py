"""Tests for approval notifications."""

import json

import httpx
import pytest

from p2p_approvals.core.config import Settings
from p2p_approvals.services.notifications import (
    ApprovalNotifier,
    ChannelConfig,
    NotificationChannel,
    NotificationKind,
    NotificationStatus,
)


class RecordingTransport:
    """Collects requests and answers with a fixed status code."""

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"ok": True})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class TestNotifierChannels:
    """Tests for channel configuration."""

    def test_log_channel_always_active(self):
        notifier = ApprovalNotifier()

        assert notifier.active_channels() == [NotificationChannel.LOG]

    def test_disabled_channel_skipped(self):
        notifier = ApprovalNotifier(channels=[
            ChannelConfig(
                channel=NotificationChannel.SLACK,
                endpoint="https://hooks.example.com/slack",
                enabled=False,
            )
        ])

        assert notifier.active_channels() == [NotificationChannel.LOG]

    def test_from_settings(self):
        settings = Settings(
            slack_webhook_url="https://hooks.example.com/slack",
            notification_webhook_url="https://erp.example.com/notify",
            notification_webhook_api_key="secret",
            approval_link_base_url="https://approvals.example.com/act",
            notification_max_records=50,
        )

        notifier = ApprovalNotifier.from_settings(settings)

        assert notifier.active_channels() == [
            NotificationChannel.LOG,
            NotificationChannel.SLACK,
            NotificationChannel.WEBHOOK,
        ]
        assert notifier.build_action_link("abc", "approve") == (
            "https://approvals.example.com/act?token=abc&action=approve"
        )
        assert notifier._records.maxlen == 50


class TestNotificationDelivery:
    """Tests for message delivery."""

    def setup_method(self):
        """Set up test fixtures."""
        self.transport = RecordingTransport()
        self.notifier = ApprovalNotifier(
            channels=[
                ChannelConfig(
                    channel=NotificationChannel.WEBHOOK,
                    endpoint="https://erp.example.com/notify",
                    api_key="secret",
                ),
                ChannelConfig(
                    channel=NotificationChannel.SLACK,
                    endpoint="https://hooks.example.com/slack",
                ),
            ],
            link_base_url="https://approvals.example.com/act",
            http_client=self.transport.client(),
        )

    @pytest.mark.asyncio
    async def test_approval_request_reaches_every_channel(self):
        records = await self.notifier.send_approval_request(
            approver_id="EMP-DIR",
            transaction_type="purchase_order",
            transaction_id="PO-1",
            task_id="TSK-1",
            token="t0k",
            step_name="Manager",
            original_approver_id="EMP-MGR",
        )

        assert [r.channel for r in records] == [
            NotificationChannel.LOG,
            NotificationChannel.WEBHOOK,
            NotificationChannel.SLACK,
        ]
        assert all(r.status == NotificationStatus.SENT for r in records)

        webhook = self.transport.requests[0]
        assert webhook.headers["Authorization"] == "Bearer secret"
        payload = json.loads(webhook.content)
        assert payload["recipient_id"] == "EMP-DIR"
        assert payload["kind"] == "approval_request"
        assert payload["body"] == (
            "purchase_order PO-1 is waiting for your approval (Manager) "
            "on behalf of EMP-MGR"
        )
        assert payload["metadata"]["approve_url"] == (
            "https://approvals.example.com/act?token=t0k&action=approve"
        )

        slack = json.loads(self.transport.requests[1].content)
        assert slack["attachments"][0]["title"] == "Approval requested"

    @pytest.mark.asyncio
    async def test_failed_channel_does_not_raise(self):
        """HTTP failures are recorded rather than raised."""
        failing = RecordingTransport(status_code=500)
        notifier = ApprovalNotifier(
            channels=[
                ChannelConfig(
                    channel=NotificationChannel.WEBHOOK,
                    endpoint="https://erp.example.com/notify",
                )
            ],
            http_client=failing.client(),
        )

        records = await notifier.send_rejected_notification(
            requester_id="EMP-REQ",
            transaction_type="invoice",
            transaction_id="INV-1",
            comment="Duplicate",
            rejected_by="EMP-MGR",
        )

        assert [r.status for r in records] == [
            NotificationStatus.SENT,
            NotificationStatus.FAILED,
        ]
        assert records[1].error
        failed = notifier.get_delivery_records(status=NotificationStatus.FAILED)
        assert len(failed) == 1

    @pytest.mark.asyncio
    async def test_reminder_and_escalation_content(self):
        await self.notifier.send_reminder(
            approver_id="EMP-MGR",
            transaction_type="purchase_order",
            transaction_id="PO-1",
            task_id="TSK-1",
            reminder_number=2,
        )
        await self.notifier.send_escalation(
            escalated_to="EMP-DIR",
            original_approver_id="EMP-MGR",
            transaction_type="purchase_order",
            transaction_id="PO-1",
            task_id="TSK-1",
        )

        reminder = json.loads(self.transport.requests[0].content)
        escalation = json.loads(self.transport.requests[2].content)
        assert reminder["title"] == "Reminder 2: approval pending"
        assert reminder["metadata"]["reminder_number"] == 2
        assert escalation["recipient_id"] == "EMP-DIR"
        assert escalation["metadata"]["original_approver_id"] == "EMP-MGR"

    @pytest.mark.asyncio
    async def test_delivery_records_filter(self):
        await self.notifier.send_approved_notification(
            requester_id="EMP-REQ", transaction_type="purchase_order", transaction_id="PO-1"
        )
        await self.notifier.send_rejected_notification(
            requester_id="EMP-REQ", transaction_type="purchase_order", transaction_id="PO-2"
        )

        approved = self.notifier.get_delivery_records(kind=NotificationKind.APPROVED)

        assert len(approved) == 3
        assert len(self.notifier.get_delivery_records(limit=2)) == 2

    @pytest.mark.asyncio
    async def test_delivery_records_capped(self):
        notifier = ApprovalNotifier(max_records=2)

        for transaction_id in ("PO-1", "PO-2", "PO-3"):
            await notifier.send_approved_notification(
                requester_id="EMP-REQ",
                transaction_type="purchase_order",
                transaction_id=transaction_id,
            )

        records = notifier.get_delivery_records()
        assert len(records) == 2
        assert all(r.status == NotificationStatus.SENT for r in records)

    @pytest.mark.asyncio
    async def test_close_releases_client(self):
        await self.notifier.close()

        assert self.notifier._http_client is None
