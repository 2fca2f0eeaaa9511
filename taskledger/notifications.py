import asyncio
import logging
import queue
import threading
import time
from typing import Callable, Iterable, Optional

from .models import EventType, LedgerEvent

logger = logging.getLogger(__name__)

NotificationSink = Callable[[LedgerEvent], None]

_STOP = object()


def format_event(event: LedgerEvent) -> str:
    name = f"@{event.display_name}" if event.display_name else str(event.account_id)
    if event.type == EventType.NEW_ACCOUNT:
        return f"🆕 New user joined: {name} ({event.account_id})"
    if event.type == EventType.REFERRAL_BONUS_GRANTED:
        return f"🎁 You got {event.amount} coins from {name}'s referral!"
    if event.type == EventType.TASK_COMPLETED:
        return f"✅ You earned {event.amount} coins for task {event.task_id}!"
    if event.type == EventType.WITHDRAWAL_REQUESTED:
        return f"💸 Withdraw request: {name} → {event.amount} coins (id: {event.request_id})"
    if event.type == EventType.WITHDRAWAL_APPROVED:
        return f"✅ Your withdraw of {event.amount} coins has been approved!"
    return f"{event.type.value}: {event.account_id}"


class NotificationDispatcher:
    """Delivers ledger events to sinks from a background worker thread.

    ``emit`` only enqueues, so a slow or failing sink never holds up the
    operation that produced the event. Sink errors are logged and dropped.
    """

    def __init__(self, sinks: Optional[Iterable[NotificationSink]] = None):
        self._sinks: list[NotificationSink] = list(sinks or [])
        self._queue: queue.Queue = queue.Queue()
        self._worker: Optional[threading.Thread] = None

    def add_sink(self, sink: NotificationSink) -> None:
        self._sinks.append(sink)

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._worker = threading.Thread(target=self._run, name="ledger-notifications", daemon=True)
        self._worker.start()

    def emit(self, event: LedgerEvent) -> None:
        self._queue.put(event)

    def flush(self, timeout: Optional[float] = 5.0) -> bool:
        """Wait until every queued event has been handed to the sinks.

        Returns False if events are still outstanding after ``timeout`` seconds
        (``None`` waits without a bound).
        """
        if not self.is_running:
            return self._queue.unfinished_tasks == 0

        deadline = None if timeout is None else time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                if deadline is None:
                    self._queue.all_tasks_done.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning("%d notification(s) still pending after flush timeout", self._queue.unfinished_tasks)
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def stop(self, timeout: float = 5.0) -> None:
        if not self.is_running:
            return
        self._queue.put(_STOP)
        self._worker.join(timeout)
        self._worker = None

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            try:
                if event is _STOP:
                    return
                self._deliver(event)
            finally:
                self._queue.task_done()

    def _deliver(self, event: LedgerEvent) -> None:
        for sink in list(self._sinks):
            try:
                sink(event)
            except Exception:
                logger.exception("Notification sink %r failed for %s event", sink, event.type.value)


class TelegramNotifier:
    """Sink that sends formatted events through a python-telegram-bot ``Bot``.

    Called from the dispatcher thread; messages are scheduled onto the bot's
    event loop once ``attach`` has been given that loop.
    """

    ADMIN_EVENTS = (EventType.NEW_ACCOUNT, EventType.WITHDRAWAL_REQUESTED)
    # The /done reply already tells the user.
    SILENT_EVENTS = (EventType.TASK_COMPLETED,)

    def __init__(self, bot, admin_chat_id: Optional[int] = None):
        self.bot = bot
        self.admin_chat_id = admin_chat_id
        self.loop: Optional[asyncio.AbstractEventLoop] = None

    def attach(self, loop: asyncio.AbstractEventLoop) -> None:
        self.loop = loop

    def recipient(self, event: LedgerEvent) -> Optional[int]:
        if event.type in self.SILENT_EVENTS:
            return None
        if event.type in self.ADMIN_EVENTS:
            return self.admin_chat_id
        return event.account_id

    def __call__(self, event: LedgerEvent) -> None:
        chat_id = self.recipient(event)
        if chat_id is None:
            return
        if self.loop is None or self.loop.is_closed():
            logger.warning("Bot event loop not available, dropping %s notification", event.type.value)
            return

        future = asyncio.run_coroutine_threadsafe(
            self.bot.send_message(chat_id=chat_id, text=format_event(event)), self.loop
        )
        future.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error("Failed to send notification: %s", error)
