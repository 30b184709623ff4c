"""Position book: one Position Manager per asset identifier.

The book is the only owner of the managers. A manager removes itself from
the book when its position stops.
"""

import logging
from typing import Callable

from autosell.engine.momentum import wall_clock_ms
from autosell.engine.position_manager import PositionManager, SellAction
from autosell.engine.scheduler import TickScheduler
from autosell.errors import DuplicatePositionError, PositionLimitReached
from autosell.schemas.strategy import StrategyConfig
from autosell.services.market_value import MarketValueEstimator

logger = logging.getLogger(__name__)


class PositionBook:
    """Managers indexed by asset, plus slots reserved by entries still in flight.

    A reservation counts against the concurrency limit from the moment it is
    taken, so entries racing through their submissions cannot overfill it.
    """

    def __init__(
        self,
        strategy: StrategyConfig,
        estimator: MarketValueEstimator | None = None,
        scheduler: TickScheduler | None = None,
        clock: Callable[[], float] = wall_clock_ms,
    ):
        self.strategy = strategy
        self.estimator = estimator
        self.scheduler = scheduler
        self._clock = clock
        self._managers: dict[str, PositionManager] = {}
        self._reserved: set[str] = set()

    @property
    def max_positions(self) -> int:
        return self.strategy.risk.max_concurrent_positions

    @property
    def active_count(self) -> int:
        return len(self._managers)

    @property
    def reserved_count(self) -> int:
        return len(self._reserved)

    def get(self, asset_id: str) -> PositionManager | None:
        return self._managers.get(asset_id)

    def reserve(self, asset_id: str):
        """Take a slot for ``asset_id`` or raise; never awaits."""
        if asset_id in self._managers or asset_id in self._reserved:
            raise DuplicatePositionError(asset_id)
        taken = len(self._managers) + len(self._reserved)
        if taken >= self.max_positions:
            raise PositionLimitReached(f"Max concurrent positions reached ({taken}/{self.max_positions})")
        self._reserved.add(asset_id)

    def release(self, asset_id: str):
        """Give back an unused reservation. No-op once the position is open."""
        self._reserved.discard(asset_id)

    def open(
        self,
        asset_id: str,
        entry_reference: str,
        amount: float,
        quantity: float,
        on_sell: SellAction,
    ) -> PositionManager:
        if asset_id not in self._reserved:
            self.reserve(asset_id)
        self._reserved.discard(asset_id)
        manager = PositionManager(
            self.strategy,
            on_sell,
            estimator=self.estimator,
            scheduler=self.scheduler,
            clock=self._clock,
            on_stopped=self._forget,
        )
        self._managers[asset_id] = manager
        manager.start_position(asset_id, entry_reference, amount, quantity)
        return manager

    def close(self, asset_id: str) -> bool:
        manager = self._managers.get(asset_id)
        if manager is None:
            return False
        manager.stop_position()
        return True

    def stop_all(self) -> int:
        """Emergency stop: cancel every tick and drop every position."""
        stopped = 0
        for asset_id in list(self._managers):
            if self.close(asset_id):
                stopped += 1
        if stopped:
            logger.warning(f"Emergency stop: {stopped} positions dropped")
        return stopped

    def _forget(self, asset_id: str):
        self._managers.pop(asset_id, None)
