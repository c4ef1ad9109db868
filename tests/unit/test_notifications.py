"""
Unit tests for the notification bus.
"""

from unittest.mock import AsyncMock

import pytest
from labtriage.core.notifications import Notification, NotificationBus, NotificationLevel


def _notification(message="Could not fetch data", level=NotificationLevel.WARNING):
    return Notification(level=level, message=message, source="legacy-vitals")


class TestNotificationBus:
    """Tests for publishing and history."""

    @pytest.mark.asyncio
    async def test_subscribers_receive_notifications(self):
        bus = NotificationBus()
        handler = AsyncMock()
        bus.subscribe(handler)

        notification = _notification()
        await bus.publish(notification)

        handler.assert_awaited_once_with(notification)
        assert bus.get_history() == [notification]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_propagate(self):
        bus = NotificationBus()
        broken = AsyncMock(side_effect=RuntimeError("boom"))
        healthy = AsyncMock()
        bus.subscribe(broken)
        bus.subscribe(healthy)

        await bus.publish(_notification())

        healthy.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = NotificationBus()
        handler = AsyncMock()
        bus.subscribe(handler)

        assert bus.unsubscribe(handler) is True
        assert bus.unsubscribe(handler) is False

        await bus.publish(_notification())
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_history_bounded(self):
        bus = NotificationBus(max_history=2)
        for i in range(3):
            await bus.publish(_notification(message=f"message {i}"))

        assert [n.message for n in bus.get_history()] == ["message 1", "message 2"]
        assert [n.message for n in bus.get_history(limit=1)] == ["message 2"]

        bus.clear_history()
        assert bus.get_history() == []

    def test_to_dict(self):
        data = _notification(level=NotificationLevel.ERROR).to_dict()

        assert data["level"] == "error"
        assert data["source"] == "legacy-vitals"
        assert data["timestamp"]
