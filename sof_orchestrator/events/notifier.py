from __future__ import annotations

import asyncio
import logging
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from sof_orchestrator.domain.models import Notification

logger = logging.getLogger(__name__)

InvalidationKey = tuple[Any, ...]
NotificationListener = Callable[[Notification], None]
StatusListener = Callable[[str], None]
InvalidationListener = Callable[[InvalidationKey], None]


class Notifier:
    """
    Outbound signals of the core: notifications, status messages, invalidation keys.

    Once closed (the requesting context was torn down) everything is dropped, so a
    late confirmation cannot notify a view that no longer exists.
    """

    def __init__(self, *, journal: bool = False, history_size: int = 500) -> None:
        self.journal = journal
        self._notification_listeners: list[NotificationListener] = []
        self._status_listeners: list[StatusListener] = []
        self._invalidation_listeners: list[InvalidationListener] = []
        self._closed = False
        self.notifications: deque[Notification] = deque(maxlen=history_size)
        self.status_messages: deque[str] = deque(maxlen=history_size)
        self.invalidations: deque[InvalidationKey] = deque(maxlen=history_size)
        # Journal writes issued from inside an event loop go through one worker thread, in order.
        self._journal_pool: ThreadPoolExecutor | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True
        if self._journal_pool is not None:
            # Queued journal writes land before the database connection is closed.
            self._journal_pool.shutdown(wait=True)
            self._journal_pool = None

    def on_notification(self, listener: NotificationListener) -> None:
        self._notification_listeners.append(listener)

    def on_status(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    def on_invalidate(self, listener: InvalidationListener) -> None:
        self._invalidation_listeners.append(listener)

    def notify(
        self,
        type_: str,
        message: str,
        transaction_id: str | None = None,
        *,
        season_id: int | None = None,
        step: str | None = None,
    ) -> None:
        if self._closed:
            logger.debug("Dropping notification after close: %s", message)
            return
        note = Notification(type=type_, message=message, transaction_id=transaction_id or None)
        self.notifications.append(note)
        for listener in list(self._notification_listeners):
            self._call(listener, note)
        self._journal("ERROR" if type_ == "error" else "INFO", message, season_id, step or "notify", transaction_id)

    def success(self, message: str, transaction_id: str | None = None, **kwargs: Any) -> None:
        self.notify("success", message, transaction_id, **kwargs)

    def error(self, message: str, transaction_id: str | None = None, **kwargs: Any) -> None:
        self.notify("error", message, transaction_id, **kwargs)

    def status(self, message: str, *, season_id: int | None = None, step: str | None = None) -> None:
        if self._closed:
            return
        logger.info("%s%s", f"[season {season_id}] " if season_id is not None else "", message)
        self.status_messages.append(message)
        for listener in list(self._status_listeners):
            self._call(listener, message)
        self._journal("INFO", message, season_id, step or "status", None)

    def invalidate(self, *keys: InvalidationKey) -> None:
        if self._closed:
            return
        for key in keys:
            self.invalidations.append(key)
            for listener in list(self._invalidation_listeners):
                self._call(listener, key)

    def _call(self, listener: Callable[[Any], None], payload: Any) -> None:
        # A faulty consumer must not abort a trade or a lifecycle step mid-flight.
        try:
            listener(payload)
        except Exception as e:
            logger.warning(f"Listener {getattr(listener, '__name__', listener)!r} failed: {e}")

    def _journal(self, level: str, message: str, season_id: int | None, step: str, tx_id: str | None) -> None:
        if not self.journal:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self._write_event(level, message, season_id, step, tx_id)
            return
        if self._journal_pool is None:
            self._journal_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sof-journal")
        self._journal_pool.submit(self._write_event, level, message, season_id, step, tx_id)

    @staticmethod
    def _write_event(level: str, message: str, season_id: int | None, step: str, tx_id: str | None) -> None:
        from sof_orchestrator.utils.database import log_event

        try:
            log_event(level, message, season_id=season_id, step=step, tx_id=tx_id)
        except Exception as e:
            logger.warning(f"Failed to journal event: {type(e).__name__}: {e}")


def balance_keys(network: str, token: str, account: str) -> list[InvalidationKey]:
    return [
        ("sofBalance", network, token, account),
        ("raffleTokenBalances", network, account),
    ]


def position_keys(network: str, curve: str, account: str) -> list[InvalidationKey]:
    return [
        ("curveState", network, curve),
        ("playerTickets", network, curve, account),
    ]


def season_keys(network: str, season_id: int) -> list[InvalidationKey]:
    return [
        ("raffle", network, "season", season_id),
        ("allSeasons",),
    ]
