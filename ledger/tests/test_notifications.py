"""
Unit Tests for Notification Dispatch

Tests cover:
1. Channel registration and delivery results
2. Failing channels never raise into the caller
3. Serialization
4. Bounded delivery history
"""

import pytest

from ledger.config import LedgerSettings
from ledger.service import LedgerService
from notifications import (
    Notification,
    NotificationCategory,
    NotificationDispatcher,
    NotificationType,
)


def receipt_rejected(recipient_id="member-1"):
    return Notification(
        type=NotificationType.RECEIPT_REJECTED,
        recipient_id=recipient_id,
        event_id="farewell-2024",
        title="Expense Rejected",
        message="Your expense claim for Catering was rejected. Reason: Blurry photo",
        link="/dashboard/farewell-2024/duties",
        metadata={"receipt_id": "r-1"},
    )


class TestDispatch:
    """Tests for delivering to channels."""

    def test_default_log_channel(self):
        dispatcher = NotificationDispatcher()

        results = dispatcher.dispatch(receipt_rejected())

        assert results == [{"channel": "log", "success": True, "result": {"status": "logged"}}]

    def test_registered_channel_receives_notification(self):
        inbox = []
        dispatcher = NotificationDispatcher()
        dispatcher.register_channel("inbox", inbox.append)

        dispatcher.dispatch(receipt_rejected())

        assert [n.recipient_id for n in inbox] == ["member-1"]

    def test_failing_channel_is_reported_not_raised(self):
        def broken(notification):
            raise ConnectionError("push gateway down")

        dispatcher = NotificationDispatcher(channels={"push": broken})

        results = dispatcher.dispatch(receipt_rejected())

        by_channel = {r["channel"]: r for r in results}
        assert by_channel["log"]["success"] is True
        assert by_channel["push"]["success"] is False
        assert "push gateway down" in by_channel["push"]["error"]
        assert len(dispatcher.sent) == 1

    def test_remove_channel(self):
        dispatcher = NotificationDispatcher()
        dispatcher.remove_channel("log")

        assert dispatcher.dispatch(receipt_rejected()) == []

    def test_dispatch_many_and_sent_to(self):
        dispatcher = NotificationDispatcher()

        summary = dispatcher.dispatch_many([receipt_rejected("member-1"), receipt_rejected("member-2")])

        assert [s["recipient_id"] for s in summary] == ["member-1", "member-2"]
        assert len(dispatcher.sent_to("member-2")) == 1
        assert dispatcher.sent_to("member-2", NotificationType.DUTY_ASSIGNED) == []



class TestHistory:
    """Only the most recent notifications are kept."""

    def test_oldest_fall_off(self):
        dispatcher = NotificationDispatcher(history_size=50)

        for index in range(300):
            dispatcher.dispatch(receipt_rejected(f"member-{index}"))

        assert len(dispatcher.sent) == 50
        assert dispatcher.sent[0].recipient_id == "member-250"
        assert dispatcher.sent[-1].recipient_id == "member-299"
        assert dispatcher.sent_to("member-0") == []

    def test_service_uses_configured_size(self):
        service = LedgerService(settings=LedgerSettings(notification_history_size=3))

        for index in range(5):
            service.notifier.dispatch(receipt_rejected(f"member-{index}"))

        assert [n.recipient_id for n in service.notifier.sent] == ["member-2", "member-3", "member-4"]


class TestNotificationPayload:

    def test_category(self):
        assert receipt_rejected().category == NotificationCategory.FINANCE

    def test_dict_round_trip(self):
        original = receipt_rejected()

        restored = Notification.from_dict(original.to_dict())

        assert restored == original

    def test_json_contains_type(self):
        assert '"type": "receipt_rejected"' in receipt_rejected().to_json()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
