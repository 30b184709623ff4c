"""Rolling-window momentum signal for one asset.

Answers "has buying interest died out?" from the live trade feed. Pure
in-memory computation; timestamps are epoch milliseconds from an injectable
clock.
"""

import time
from dataclasses import dataclass
from typing import Callable

from autosell.schemas.strategy import MomentumConfig
from autosell.utils.constants import MIN_EVENTS_FOR_RATIO_EXIT


def wall_clock_ms() -> float:
    return time.time() * 1000


@dataclass(frozen=True)
class MomentumEvent:
    side: str  # "buy" or "sell"
    timestamp: float
    amount: float
    reference: str


@dataclass(frozen=True)
class MomentumState:
    last_buy_time: float
    last_sell_time: float
    recent_buys: int
    recent_sells: int
    buy_sell_ratio: float
    time_since_last_buy_ms: float
    has_lull: bool
    should_exit: bool

    @property
    def total_recent_events(self) -> int:
        return self.recent_buys + self.recent_sells


class MomentumTracker:
    def __init__(
        self,
        asset_id: str,
        config: MomentumConfig,
        clock: Callable[[], float] = wall_clock_ms,
    ):
        self.asset_id = asset_id
        self.config = config
        self._clock = clock
        self._events: list[MomentumEvent] = []
        self._last_buy_time = clock()

    def record_buy(self, amount: float, reference: str, timestamp: float | None = None):
        ts = self._clock() if timestamp is None else timestamp
        self._events.append(MomentumEvent("buy", ts, amount, reference))
        # Late deliveries never move the last-buy baseline backwards
        self._last_buy_time = max(self._last_buy_time, ts)
        self._prune()

    def record_sell(self, amount: float, reference: str, timestamp: float | None = None):
        ts = self._clock() if timestamp is None else timestamp
        self._events.append(MomentumEvent("sell", ts, amount, reference))
        self._prune()

    def get_state(self) -> MomentumState:
        now = self._clock()
        window_start = now - self.config.window_ms

        # Filter by timestamp, not position: delivery order is best-effort
        recent = [e for e in self._events if window_start <= e.timestamp <= now]
        recent_buys = sum(1 for e in recent if e.side == "buy")
        recent_sells = len(recent) - recent_buys

        # No sell pressure observed in-window counts as maximally bullish
        if recent_sells > 0:
            ratio = recent_buys / (recent_buys + recent_sells)
        else:
            ratio = 1.0

        since_last_buy = now - self._last_buy_time
        has_lull = since_last_buy > self.config.lull_threshold_ms
        should_exit = has_lull or (
            ratio < self.config.buy_sell_ratio_threshold and len(recent) > MIN_EVENTS_FOR_RATIO_EXIT
        )

        sells = [e.timestamp for e in self._events if e.side == "sell"]
        return MomentumState(
            last_buy_time=self._last_buy_time,
            last_sell_time=max(sells, default=0.0),
            recent_buys=recent_buys,
            recent_sells=recent_sells,
            buy_sell_ratio=ratio,
            time_since_last_buy_ms=since_last_buy,
            has_lull=has_lull,
            should_exit=should_exit,
        )

    def should_exit(self) -> bool:
        return self.get_state().should_exit

    def status_line(self) -> str:
        state = self.get_state()
        return (
            f"Buys: {state.recent_buys}, Sells: {state.recent_sells}, "
            f"Ratio: {state.buy_sell_ratio * 100:.0f}%, "
            f"Last buy: {int(state.time_since_last_buy_ms // 1000)}s ago, "
            f"Lull: {'YES' if state.has_lull else 'NO'}"
        )

    def reset(self):
        """Forget all events; "now" becomes the new last-buy baseline."""
        self._events = []
        self._last_buy_time = self._clock()

    def _prune(self):
        cutoff = self._clock() - self.config.window_ms
        self._events = [e for e in self._events if e.timestamp >= cutoff]
