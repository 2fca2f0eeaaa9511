"""
Tests for notification dispatch and Telegram formatting
"""

import asyncio
import logging
import threading
import time
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from taskledger.models import EventType, LedgerEvent
from taskledger.notifications import NotificationDispatcher, TelegramNotifier, format_event


ADMIN_CHAT = 42


def make_event(event_type: EventType, account_id: int = 1001, **fields) -> LedgerEvent:
    return LedgerEvent(type=event_type, account_id=account_id, created_at=datetime.now(timezone.utc), **fields)


@pytest.fixture
def bot_loop():
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()
    yield loop
    loop.call_soon_threadsafe(loop.stop)
    thread.join(5)
    loop.close()


class TestDispatcher:
    """Tests for the background dispatcher."""

    def test_delivers_to_every_sink(self):
        """Test that each sink receives each event."""
        first, second = [], []
        dispatcher = NotificationDispatcher([first.append])
        dispatcher.add_sink(second.append)
        dispatcher.start()

        dispatcher.emit(make_event(EventType.NEW_ACCOUNT))
        dispatcher.flush()
        dispatcher.stop()

        assert len(first) == 1
        assert len(second) == 1

    def test_failing_sink_is_logged_and_skipped(self, caplog):
        """Test that a raising sink is logged and later sinks still run."""
        received = []

        def broken(event):
            raise RuntimeError("channel down")

        dispatcher = NotificationDispatcher([broken, received.append])
        dispatcher.start()

        with caplog.at_level(logging.ERROR, logger="taskledger.notifications"):
            dispatcher.emit(make_event(EventType.WITHDRAWAL_APPROVED, amount=Decimal("3")))
            dispatcher.flush()
        dispatcher.stop()

        assert len(received) == 1
        assert "Notification sink" in caplog.text
        assert "channel down" in caplog.text

    def test_events_queue_until_started(self):
        """Test that events emitted before start are delivered afterwards."""
        received = []
        dispatcher = NotificationDispatcher([received.append])

        dispatcher.emit(make_event(EventType.NEW_ACCOUNT))
        assert received == []

        dispatcher.start()
        dispatcher.flush()
        dispatcher.stop()
        assert len(received) == 1

    def test_stop_is_safe_when_not_running(self):
        """Test that stop and flush are no-ops on an idle dispatcher."""
        dispatcher = NotificationDispatcher()

        dispatcher.flush()
        dispatcher.stop()

        assert dispatcher.is_running is False

    def test_flush_times_out_on_stuck_sink(self, caplog):
        """Test that flush gives up after its timeout while a sink is stuck."""
        release = threading.Event()
        dispatcher = NotificationDispatcher([lambda event: release.wait(5)])
        dispatcher.start()
        dispatcher.emit(make_event(EventType.NEW_ACCOUNT))

        started = time.monotonic()
        with caplog.at_level(logging.WARNING, logger="taskledger.notifications"):
            assert dispatcher.flush(timeout=0.1) is False
        assert time.monotonic() - started < 2
        assert "still pending after flush timeout" in caplog.text

        release.set()
        assert dispatcher.flush() is True
        dispatcher.stop()

    def test_flush_on_idle_dispatcher_reports_backlog(self):
        """Test that flush without a worker reports whether events are queued."""
        dispatcher = NotificationDispatcher()
        assert dispatcher.flush() is True

        dispatcher.emit(make_event(EventType.NEW_ACCOUNT))
        assert dispatcher.flush() is False


class TestFormatting:
    """Tests for human-readable event text."""

    def test_referral_text(self):
        """Test the referral bonus message."""
        event = make_event(EventType.REFERRAL_BONUS_GRANTED, amount=Decimal("5"), display_name="bob")

        assert format_event(event) == "🎁 You got 5 coins from @bob's referral!"

    def test_withdraw_request_text(self):
        """Test the admin alert for a withdrawal request."""
        event = make_event(
            EventType.WITHDRAWAL_REQUESTED, amount=Decimal("15"), request_id=3, display_name="alice"
        )

        assert format_event(event) == "💸 Withdraw request: @alice → 15 coins (id: 3)"

    def test_new_account_without_name(self):
        """Test that the account id stands in for a missing name."""
        assert format_event(make_event(EventType.NEW_ACCOUNT)) == "🆕 New user joined: 1001 (1001)"


class TestTelegramNotifier:
    """Tests for the Telegram sink."""

    def test_routes_admin_and_user_events(self):
        """Test recipient selection per event type."""
        notifier = TelegramNotifier(MagicMock(), ADMIN_CHAT)

        assert notifier.recipient(make_event(EventType.NEW_ACCOUNT)) == ADMIN_CHAT
        assert notifier.recipient(make_event(EventType.WITHDRAWAL_REQUESTED)) == ADMIN_CHAT
        assert notifier.recipient(make_event(EventType.WITHDRAWAL_APPROVED)) == 1001
        assert notifier.recipient(make_event(EventType.REFERRAL_BONUS_GRANTED, account_id=7)) == 7
        assert notifier.recipient(make_event(EventType.TASK_COMPLETED)) is None

    def test_admin_events_dropped_without_admin(self):
        """Test that admin alerts are skipped when no admin chat is configured."""
        bot = MagicMock()
        bot.send_message = AsyncMock()
        notifier = TelegramNotifier(bot)

        notifier(make_event(EventType.NEW_ACCOUNT))

        bot.send_message.assert_not_called()

    def test_dropped_without_loop(self, caplog):
        """Test that events before the bot starts are dropped with a warning."""
        bot = MagicMock()
        bot.send_message = AsyncMock()
        notifier = TelegramNotifier(bot, ADMIN_CHAT)

        with caplog.at_level(logging.WARNING, logger="taskledger.notifications"):
            notifier(make_event(EventType.WITHDRAWAL_APPROVED, amount=Decimal("1")))

        bot.send_message.assert_not_called()
        assert "dropping" in caplog.text

    def test_sends_on_bot_loop(self, bot_loop):
        """Test that messages are scheduled on the attached loop."""
        bot = MagicMock()
        bot.send_message = AsyncMock()
        notifier = TelegramNotifier(bot, ADMIN_CHAT)
        notifier.attach(bot_loop)

        notifier(make_event(EventType.WITHDRAWAL_APPROVED, amount=Decimal("15")))

        for _ in range(200):
            if bot.send_message.await_count:
                break
            time.sleep(0.01)
        bot.send_message.assert_awaited_once_with(
            chat_id=1001, text="✅ Your withdraw of 15 coins has been approved!"
        )

    def test_send_failure_is_logged(self, bot_loop, caplog):
        """Test that a failed Telegram call is logged, not raised."""
        bot = MagicMock()
        bot.send_message = AsyncMock(side_effect=RuntimeError("Forbidden: bot was blocked"))
        notifier = TelegramNotifier(bot, ADMIN_CHAT)
        notifier.attach(bot_loop)

        with caplog.at_level(logging.ERROR, logger="taskledger.notifications"):
            notifier(make_event(EventType.WITHDRAWAL_APPROVED, amount=Decimal("15")))
            for _ in range(200):
                if "Failed to send notification" in caplog.text:
                    break
                time.sleep(0.01)

        assert "bot was blocked" in caplog.text
