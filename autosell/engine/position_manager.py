"""Position manager: owns the exit decision loop for one active position.

Every tick evaluates, in strict precedence order, first match wins:

1. breakeven partial sell (risk reduction; never skipped by an exit signal)
2. momentum exit (lull or sell pressure)
3. timeout exit (max hold time)
4. periodic status line

Ticks run on a single event loop and never overlap for the same position
(``max_instances=1``). Any await inside a tick is a suspension point, so the
decision is recorded on the position (``action_in_flight``) before the sell
action is awaited and re-checked after the market-value estimate returns.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from autosell.engine.momentum import MomentumTracker, wall_clock_ms
from autosell.engine.scheduler import TickScheduler
from autosell.errors import ConfirmationTimeout, DuplicatePositionError, PositionNotFoundError
from autosell.schemas.strategy import StrategyConfig
from autosell.services.market_value import MarketValueEstimator
from autosell.utils.constants import STATUS_EVERY_SECONDS

logger = logging.getLogger(__name__)

FULL_EXIT_PCT = 100.0

SellAction = Callable[[str, float, str], Awaitable[None]]


class ManagerStatus(str, Enum):
    ACTIVE = "active"
    PARTIAL_EXIT = "partial_exit"
    EXITED = "exited"


@dataclass
class ManagedPosition:
    asset_id: str
    entry_reference: str
    entry_time: float  # epoch ms
    amount: float
    quantity: float
    breakeven_sold: bool = False
    status: ManagerStatus = ManagerStatus.ACTIVE
    action_in_flight: str | None = None  # reason of the sell currently awaited

    def hold_seconds(self, now_ms: float) -> float:
        return (now_ms - self.entry_time) / 1000


class PositionManager:
    def __init__(
        self,
        strategy: StrategyConfig,
        on_sell: SellAction,
        estimator: MarketValueEstimator | None = None,
        scheduler: TickScheduler | None = None,
        clock: Callable[[], float] = wall_clock_ms,
        on_stopped: Callable[[str], None] | None = None,
    ):
        self.strategy = strategy
        self._on_sell = on_sell
        self._estimator = estimator
        self._scheduler = scheduler
        self._clock = clock
        self._on_stopped = on_stopped
        self._position: ManagedPosition | None = None
        self._tracker: MomentumTracker | None = None
        self._last_status_second = -1
        self.exit_attempts = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_position(
        self,
        asset_id: str,
        entry_reference: str,
        amount: float,
        quantity: float,
    ) -> ManagedPosition:
        if self._position is not None:
            raise DuplicatePositionError(self._position.asset_id)

        self._position = ManagedPosition(
            asset_id=asset_id,
            entry_reference=entry_reference,
            entry_time=self._clock(),
            amount=amount,
            quantity=quantity,
        )
        self._tracker = MomentumTracker(asset_id, self.strategy.momentum_config(), clock=self._clock)
        self._last_status_second = -1
        self.exit_attempts = 0

        logger.info(f"Position started: {asset_id[:8]} amount={amount} quantity={quantity:,.0f}")

        if self._scheduler is not None:
            self._scheduler.add_position_job(
                asset_id, self.check_position, self.strategy.monitoring.check_interval_ms
            )
        return self._position

    def stop_position(self):
        """Cancel the tick and drop the position. Safe to call repeatedly."""
        position = self._position
        if position is not None and self._scheduler is not None:
            self._scheduler.remove_position_job(position.asset_id)

        self._position = None
        self._tracker = None

        if position is not None:
            position.status = ManagerStatus.EXITED
            logger.info(f"Position closed: {position.asset_id[:8]}")
            if self._on_stopped is not None:
                self._on_stopped(position.asset_id)

    def record_buy(self, amount: float, reference: str, timestamp: float | None = None):
        if self._tracker is not None:
            self._tracker.record_buy(amount, reference, timestamp)

    def record_sell(self, amount: float, reference: str, timestamp: float | None = None):
        if self._tracker is not None:
            self._tracker.record_sell(amount, reference, timestamp)

    def get_position(self) -> ManagedPosition | None:
        return self._position

    def has_position(self) -> bool:
        return self._position is not None

    @property
    def tracker(self) -> MomentumTracker | None:
        return self._tracker

    # ------------------------------------------------------------------
    # Decision loop
    # ------------------------------------------------------------------

    async def check_position(self):
        """One tick. Errors are logged so the schedule survives them."""
        position = self._position
        try:
            await self._evaluate()
        except Exception as e:
            asset = position.asset_id[:8] if position else "?"
            logger.error(f"[{asset}] Tick error: {e}", exc_info=True)

    async def _evaluate(self):
        position = self._position
        if position is None or self._tracker is None:
            return
        if position.action_in_flight:
            logger.debug(f"[{position.asset_id[:8]}] {position.action_in_flight} in flight, skipping tick")
            return

        breakeven = self.strategy.breakeven_sell
        market_value = None
        if not position.breakeven_sold and breakeven.enabled:
            market_value = await self._estimate_market_value(position.asset_id)
            # The estimate suspended us; the position may have moved on meanwhile
            if self._position is not position or position.action_in_flight:
                return
            if market_value is not None and market_value >= self.strategy.targets.breakeven_market_cap:
                await self._sell_breakeven(position, market_value)
                return

        tracker = self._tracker
        state = tracker.get_state()
        if state.should_exit:
            reason = "lull detected" if state.has_lull else "sell pressure"
            logger.info(f"[{position.asset_id[:8]}] Momentum lost: {reason} | {tracker.status_line()}")
            await self._sell_all(position, reason)
            return

        hold = position.hold_seconds(self._clock())
        if hold >= self.strategy.exit.time_based_exit_seconds:
            logger.info(f"[{position.asset_id[:8]}] Max hold time reached ({hold:.0f}s)")
            await self._sell_all(position, "timeout")
            return

        whole = int(hold)
        if whole % STATUS_EVERY_SECONDS == 0 and whole != self._last_status_second:
            self._last_status_second = whole
            mv = f"{market_value:,.0f}" if market_value is not None else "n/a"
            logger.info(f"[{position.asset_id[:8]}] [{whole}s] {tracker.status_line()}, MV: ~{mv}")

    async def _estimate_market_value(self, asset_id: str) -> float | None:
        if self._estimator is None:
            return None
        try:
            return await self._estimator.estimate(asset_id)
        except Exception as e:
            logger.warning(f"[{asset_id[:8]}] Market value unavailable, skipping breakeven check: {e}")
            return None

    async def _sell_breakeven(self, position: ManagedPosition, market_value: float):
        pct = self.strategy.breakeven_sell.sell_percentage
        logger.info(
            f"[{position.asset_id[:8]}] Breakeven target reached (MV {market_value:,.0f}), selling {pct}%"
        )
        position.action_in_flight = "breakeven"
        position.breakeven_sold = True
        position.status = ManagerStatus.PARTIAL_EXIT
        try:
            await self._on_sell(position.asset_id, pct, "breakeven")
        except ConfirmationTimeout as e:
            logger.warning(f"[{position.asset_id[:8]}] Breakeven sell outcome unknown, keeping it marked sold: {e}")
        except PositionNotFoundError as e:
            logger.error(f"[{position.asset_id[:8]}] {e}; stopping manager")
            self.stop_position()
        except Exception as e:
            logger.error(f"[{position.asset_id[:8]}] Breakeven sell failed, will retry: {e}")
            position.breakeven_sold = False
            position.status = ManagerStatus.ACTIVE
        finally:
            position.action_in_flight = None

    async def _sell_all(self, position: ManagedPosition, reason: str):
        position.action_in_flight = reason
        self.exit_attempts += 1
        try:
            await self._on_sell(position.asset_id, FULL_EXIT_PCT, reason)
        except ConfirmationTimeout as e:
            # Submitted but unconfirmed; resubmitting could sell twice
            logger.warning(f"[{position.asset_id[:8]}] Exit outcome unknown, not resubmitting: {e}")
        except PositionNotFoundError as e:
            logger.error(f"[{position.asset_id[:8]}] {e}; stopping manager")
        except Exception as e:
            logger.error(f"[{position.asset_id[:8]}] Exit ({reason}) failed, will retry: {e}")
            position.action_in_flight = None
            return
        self.stop_position()
