"""Routes live market trades to the manager that owns the asset."""

import logging

from autosell.engine.book import PositionBook
from autosell.engine.events import EventBus, MarketTrade

logger = logging.getLogger(__name__)


class TradeFeedRouter:
    def __init__(self, book: PositionBook):
        self.book = book
        self.routed = 0
        self.ignored = 0

    def attach(self, bus: EventBus):
        bus.subscribe(MarketTrade, self.handle)

    def handle(self, event: MarketTrade) -> bool:
        manager = self.book.get(event.asset_id)
        position = manager.get_position() if manager else None
        if position is None:
            self.ignored += 1
            return False

        # Our own entry shows up on the feed too; it is not outside interest
        if event.reference == position.entry_reference:
            self.ignored += 1
            return False

        if event.side == "buy":
            manager.record_buy(event.amount, event.reference, event.timestamp)
        elif event.side == "sell":
            manager.record_sell(event.amount, event.reference, event.timestamp)
        else:
            logger.warning(f"Unknown trade side {event.side!r} for {event.asset_id[:8]}")
            self.ignored += 1
            return False

        self.routed += 1
        return True
