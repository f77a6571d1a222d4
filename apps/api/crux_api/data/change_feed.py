"""In-process change feed for tenant data.

subscribe() returns a Subscription handle owned by the consuming view (an
SSE response, a test). The handle is the only way to stop delivery:

    async with feed.subscribe(scope, table="reviews") as subscription:
        async for event in subscription:
            ...

Events are only delivered to subscriptions of the publishing tenant.
publish() may be called from any thread (sync endpoints run in the
threadpool); delivery is marshalled onto each subscriber's event loop.
A slow subscriber drops its oldest queued event rather than blocking
publishers.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Any, Optional

from crux_api.data.scope import TenantScope
from crux_api.db.models import utcnow

logger = logging.getLogger(__name__)

_CLOSED = object()


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    operation: str  # INSERT | UPDATE | DELETE
    tenant_id: str
    row_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "operation": self.operation,
            "row_id": self.row_id,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


class Subscription:
    def __init__(
        self,
        feed: "ChangeFeed",
        tenant_id: str,
        table: Optional[str],
        loop: asyncio.AbstractEventLoop,
        max_queue: int,
    ):
        self._feed = feed
        self.tenant_id = tenant_id
        self.table = table
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self.active = True
        self.dropped = 0

    def matches(self, event: ChangeEvent) -> bool:
        return event.tenant_id == self.tenant_id and (self.table is None or self.table == event.table)

    def _offer(self, item: Any) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(item)

    def _deliver(self, event: ChangeEvent) -> None:
        if self._loop.is_closed():
            # Consumer went away without unsubscribing
            self.active = False
            self._feed._remove(self)
            return
        self._loop.call_soon_threadsafe(self._offer, event)

    def unsubscribe(self) -> None:
        """Stop delivery. Idempotent."""
        if not self.active:
            return
        self.active = False
        self._feed._remove(self)
        if not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._offer, _CLOSED)

    async def get(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """Next event, or None on timeout / after unsubscribe."""
        if not self.active and self._queue.empty():
            return None
        try:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None
        if item is _CLOSED:
            return None
        return item

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.unsubscribe()


class ChangeFeed:
    def __init__(self, max_queue: int = 100):
        self._max_queue = max_queue
        self._lock = threading.Lock()
        self._subscriptions: list[Subscription] = []

    def subscribe(self, scope: TenantScope, table: Optional[str] = None) -> Subscription:
        """Must be called from the event loop that will consume the handle."""
        subscription = Subscription(
            self, scope.tenant_id, table, asyncio.get_running_loop(), self._max_queue
        )
        with self._lock:
            self._subscriptions.append(subscription)
        logger.info(
            "Change feed subscription opened",
            extra={"event": "change_feed.subscribed", "table": table, "scope_tenant_id": scope.tenant_id},
        )
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
        logger.info(
            "Change feed subscription closed",
            extra={
                "event": "change_feed.unsubscribed",
                "table": subscription.table,
                "dropped": subscription.dropped,
            },
        )

    def publish(self, event: ChangeEvent) -> int:
        """Deliver to matching subscriptions. Returns how many matched."""
        with self._lock:
            targets = [s for s in self._subscriptions if s.active and s.matches(event)]
        for subscription in targets:
            subscription._deliver(event)
        return len(targets)

    def subscriber_count(self, tenant_id: Optional[str] = None) -> int:
        with self._lock:
            if tenant_id is None:
                return len(self._subscriptions)
            return sum(1 for s in self._subscriptions if s.tenant_id == tenant_id)


@lru_cache(maxsize=1)
def get_change_feed() -> ChangeFeed:
    """Process-wide feed (FastAPI dependency)."""
    return ChangeFeed()
