"""
In-process change feed: publish/subscribe for row-level change events.

Every subscription owns a queue and a worker task, so a slow or failing
handler never blocks publishers or other subscribers. Delivery is in
publish order per subscription; nothing is promised across subscriptions.
"""

import asyncio
import inspect
from typing import Awaitable, Callable, List, Optional, Union

from ..exceptions import FeedClosed
from ..logging import get_logger
from ..schemas.realtime import ChangeEvent


logger = get_logger(__name__)

Handler = Callable[[ChangeEvent], Union[None, Awaitable[None]]]

ANY_EVENT = "*"
ANY_TABLE = "*"


class Subscription:
    """A handler bound to one table (or every table) and event type."""

    def __init__(self, feed: "ChangeFeed", table: str, event: str, handler: Handler, name: Optional[str] = None):
        self.feed = feed
        self.table = table
        self.event = event
        self.handler = handler
        self.name = name or f"{table}:{event}"
        self.queue: asyncio.Queue = asyncio.Queue()
        self.pending = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def matches(self, event: ChangeEvent) -> bool:
        if self.table != ANY_TABLE and event.table != self.table:
            return False
        return self.event == ANY_EVENT or self.event == event.type

    def start(self):
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"feed-{self.name}")

    def enqueue(self, event: ChangeEvent):
        self.pending += 1
        self.queue.put_nowait(event)

    async def _run(self):
        while True:
            event = await self.queue.get()
            try:
                result = self.handler(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("change_handler_failed", subscription=self.name, table=event.table, type=event.type)
            finally:
                self.pending -= 1
                self.queue.task_done()

    async def unsubscribe(self):
        """Stop delivery. Events still queued are dropped."""
        self.feed._remove(self)
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        while not self.queue.empty():
            self.queue.get_nowait()
            self.pending -= 1
            self.queue.task_done()


class ChangeFeed:
    """Process-wide pub/sub hub for store change events."""

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriptions(self) -> List[Subscription]:
        return list(self._subscriptions)

    def subscribe(self, table: str, handler: Handler, event: str = ANY_EVENT, name: Optional[str] = None) -> Subscription:
        """Deliver every matching event to ``handler``. Must run inside an event loop.

        ``ANY_TABLE`` receives every table through one queue, so the handler
        sees events in publish order across tables.
        """
        if self._closed:
            raise FeedClosed("change feed is closed")
        subscription = Subscription(self, table, event, handler, name=name)
        subscription.start()
        self._subscriptions.append(subscription)
        logger.debug("feed_subscribed", subscription=subscription.name)
        return subscription

    async def publish(self, event: ChangeEvent):
        if self._closed:
            raise FeedClosed("change feed is closed")
        for subscription in list(self._subscriptions):
            if subscription.matches(event):
                subscription.enqueue(event)

    async def publish_many(self, events: List[ChangeEvent]):
        for event in events:
            await self.publish(event)

    async def drain(self):
        """Wait until every queued event has been handled.

        Handlers may publish further events, so keep waiting until all
        subscriptions are idle at once.
        """
        while any(sub.pending for sub in self._subscriptions):
            for subscription in list(self._subscriptions):
                await subscription.queue.join()

    async def close(self):
        self._closed = True
        for subscription in list(self._subscriptions):
            await subscription.unsubscribe()

    def _remove(self, subscription: Subscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
