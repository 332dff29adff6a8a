"""
Change feed subscriber: snapshot plus live deltas for one (table, filter).

The subscriber joins the table's feed group *before* reading the
snapshot, so nothing committed after the read can be missed; events
buffered during the read are applied afterwards, one at a time and in
arrival order.  Listeners are plain callables invoked synchronously
after every change with the subscriber itself.
"""
from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Callable, Dict, List, Optional

from channels.layers import get_channel_layer
from django.conf import settings

from records.exceptions import StoreUnavailable
from records.realtime.reconciler import Reconciler, filter_predicate
from records.services.feed import MESSAGE_TYPE, ChangeEvent, group_name
from records.services.store import get_store

logger = logging.getLogger(__name__)

Listener = Callable[['ChangeFeedSubscriber'], None]


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential backoff with up to 50% jitter, never above ``max_delay``."""
    delay = min(max_delay, base_delay * (2 ** attempt))
    if delay:
        delay = min(max_delay, delay + random.uniform(0, delay / 2))
    return delay


class ChangeFeedSubscriber:
    def __init__(self, table: str, filters: Optional[Dict[str, Any]] = None, *,
                 store=None, channel_layer=None, order_by=None, limit: Optional[int] = None,
                 attempts: Optional[int] = None, base_delay: Optional[float] = None,
                 max_delay: Optional[float] = None):
        self.table = table
        self.filters = dict(filters or {})
        self.store = store or get_store()
        self.channel_layer = channel_layer or get_channel_layer()
        self.order_by = order_by
        self.limit = limit or getattr(settings, 'CHANGE_FEED_SNAPSHOT_LIMIT', 500)
        self.attempts = attempts or getattr(settings, 'CHANGE_FEED_SNAPSHOT_ATTEMPTS', 4)
        self.base_delay = getattr(settings, 'CHANGE_FEED_RETRY_BASE_DELAY', 0.5) if base_delay is None else base_delay
        self.max_delay = getattr(settings, 'CHANGE_FEED_RETRY_MAX_DELAY', 8.0) if max_delay is None else max_delay
        self.reconciler = Reconciler(filter_predicate(self.filters))
        self.listeners: List[Listener] = []
        self.loading = True
        self.error: Optional[Exception] = None
        self.closed = False
        self.channel_name: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def rows(self) -> List[Dict[str, Any]]:
        return self.reconciler.view()

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self.listeners.append(listener)

        def remove():
            if listener in self.listeners:
                self.listeners.remove(listener)
        return remove

    def _notify(self) -> None:
        for listener in list(self.listeners):
            try:
                listener(self)
            except Exception:
                # one broken listener must not starve the others or the pump
                logger.exception("Listener on %s feed failed", self.table)

    # ------------------------------------------------------------------
    # synchronous reconciliation
    # ------------------------------------------------------------------
    def load(self, rows: List[Dict[str, Any]]) -> None:
        self.reconciler.reset(rows)
        self.loading = False
        self.error = None
        self._notify()

    def apply(self, event: ChangeEvent) -> bool:
        if self.closed or event.table != self.table:
            return False
        changed = self.reconciler.apply(event)
        if changed:
            self._notify()
        return changed

    def patch_locally(self, key, patch: Dict[str, Any]) -> None:
        self.reconciler.patch_locally(key, patch)
        self._notify()

    def discard_local(self, key) -> None:
        if self.reconciler.discard_local(key):
            self._notify()

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    async def subscribe(self) -> 'ChangeFeedSubscriber':
        if self.channel_layer is None:
            raise RuntimeError('no channel layer configured')
        self.channel_name = await self.channel_layer.new_channel(prefix=f'feed.{self.table}.')
        await self.channel_layer.group_add(group_name(self.table), self.channel_name)
        await self.refresh()
        if not self.closed:
            self._task = asyncio.ensure_future(self._pump())
        return self

    async def refresh(self) -> None:
        """(Re)load the snapshot, retrying transient store failures."""
        for attempt in range(self.attempts):
            try:
                rows = await self.store.aselect(self.table, self.filters, order_by=self.order_by, limit=self.limit)
            except StoreUnavailable as exc:
                if attempt >= self.attempts - 1:
                    logger.warning("Snapshot of %s unavailable after %d attempts", self.table, self.attempts)
                    self.error = exc
                    self.loading = False
                    self._notify()
                    return
                delay = backoff_delay(attempt, self.base_delay, self.max_delay)
                logger.warning("Snapshot of %s failed, retrying", self.table, exc_info=exc)
                if delay:
                    await asyncio.sleep(delay)
                continue
            if not self.closed:
                self.load(rows)
            return

    def _fail(self, exc: Exception) -> None:
        self.error = exc
        self._notify()

    async def _rejoin(self) -> None:
        """Re-enter the feed group and reload the snapshot after a lost receive."""
        await self.channel_layer.group_add(group_name(self.table), self.channel_name)
        await self.refresh()

    async def _pump(self) -> None:
        failures = 0
        while not self.closed:
            try:
                message = await self.channel_layer.receive(self.channel_name)
            except Exception as exc:
                if self.closed:
                    return
                logger.warning("Feed receive on %s failed", self.table, exc_info=exc)
                self._fail(exc)
                await asyncio.sleep(backoff_delay(failures, self.base_delay, self.max_delay))
                failures += 1
                try:
                    await self._rejoin()
                except Exception as rejoin_exc:
                    logger.warning("Rejoining %s feed failed", self.table, exc_info=rejoin_exc)
                    self._fail(rejoin_exc)
                continue
            failures = 0
            if message.get('type') != MESSAGE_TYPE:
                continue
            try:
                self.apply(ChangeEvent.from_message(message))
            except Exception as exc:
                logger.exception("Could not apply %s feed message", self.table)
                self._fail(exc)

    async def unsubscribe(self) -> None:
        """Stop delivery immediately; safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        self.listeners.clear()
        task, self._task = self._task, None
        try:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception:
                    logger.warning("Feed pump for %s ended with an error", self.table, exc_info=True)
        finally:
            if self.channel_name and self.channel_layer is not None:
                await self.channel_layer.group_discard(group_name(self.table), self.channel_name)
