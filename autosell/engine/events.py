"""Domain events and the event bus.

The set of event types is closed (``DOMAIN_EVENTS``); subscribers register per
type and are called in subscription order.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Union

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MarketTrade:
    """A buy or sell by any participant, from the live feed."""

    asset_id: str
    side: str  # "buy" or "sell"
    amount: float
    reference: str
    timestamp: float | None = None  # epoch ms


@dataclass(frozen=True)
class BuySubmitted:
    asset_id: str
    reference: str
    amount: float
    slippage_bps: int
    submitted_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class BuyLanded:
    asset_id: str
    reference: str
    slot: int | None
    quantity: float
    price: float
    total_cost: float
    confirmed_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class BuyFailed:
    asset_id: str
    reference: str | None
    reason: str
    failed_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class SellSubmitted:
    asset_id: str
    reference: str
    quantity: float
    slippage_bps: int
    reason: str
    submitted_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class SellLanded:
    asset_id: str
    reference: str
    slot: int | None
    quantity: float
    value_received: float
    price: float
    pnl: float | None
    partial: bool = False
    confirmed_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class SellFailed:
    asset_id: str
    reference: str | None
    reason: str
    failed_at: datetime = field(default_factory=_now)


DomainEvent = Union[MarketTrade, BuySubmitted, BuyLanded, BuyFailed, SellSubmitted, SellLanded, SellFailed]
DOMAIN_EVENTS = (MarketTrade, BuySubmitted, BuyLanded, BuyFailed, SellSubmitted, SellLanded, SellFailed)

Handler = Callable[[DomainEvent], object]


class EventBus:
    def __init__(self):
        self._subscribers: dict[type, list[Handler]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, event_type: type, handler: Handler):
        if event_type not in DOMAIN_EVENTS:
            raise TypeError(f"Unknown event type: {event_type!r}")
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: type, handler: Handler):
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def subscriber_count(self, event_type: type) -> int:
        return len(self._subscribers.get(event_type, []))

    def publish(self, event: DomainEvent):
        """Deliver to every subscriber of the event's type.

        A failing handler is logged and does not stop delivery. Coroutine
        handlers are scheduled on the running loop.
        """
        event_type = type(event)
        if event_type not in DOMAIN_EVENTS:
            raise TypeError(f"Unknown event type: {event_type!r}")

        for handler in list(self._subscribers.get(event_type, [])):
            try:
                result = handler(event)
            except Exception as e:
                logger.error(f"{event_type.__name__} handler {handler!r} failed: {e}", exc_info=True)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async event handler failed: {task.exception()}")

    async def drain(self):
        """Wait for scheduled coroutine handlers to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def clear(self):
        self._subscribers.clear()
