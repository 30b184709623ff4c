"""Composition root: wires settings and strategy into a running engine."""

import logging
from dataclasses import dataclass
from typing import Callable, Sequence

from autosell.config import Settings
from autosell.database import make_engine
from autosell.engine.book import PositionBook
from autosell.engine.events import EventBus
from autosell.engine.executor import TradeExecutor
from autosell.engine.feed import TradeFeedRouter
from autosell.engine.scheduler import TickScheduler
from autosell.schemas.strategy import StrategyConfig, load_strategy_config
from autosell.services.connection_pool import ConnectionPool, create_connection_pool
from autosell.services.fills import RpcFillReader
from autosell.services.market_value import BondingCurveEstimator
from autosell.services.payloads import Signer, TradeBuilder
from autosell.services.submission import SubmissionChannel
from autosell.services.trade_store import TradeStore, create_trade_store
from autosell.utils.logging import setup_logging

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    strategy: StrategyConfig
    pool: ConnectionPool
    store: TradeStore
    bus: EventBus
    scheduler: TickScheduler
    book: PositionBook
    executor: TradeExecutor
    router: TradeFeedRouter

    def start(self):
        self.scheduler.start()
        logger.info(f"Engine started: strategy={self.strategy.name} endpoints={self.pool.size}")

    async def shutdown(self):
        stopped = self.book.stop_all()
        self.scheduler.stop()
        await self.bus.drain()
        await self.pool.close()
        logger.info(f"Engine stopped ({stopped} positions dropped)")


def create_runtime(
    settings: Settings,
    builder: TradeBuilder,
    signers: Sequence[Signer] = (),
    strategy: StrategyConfig | None = None,
    curve_address_for: Callable[[str], str] | None = None,
) -> Runtime:
    """Build every component from ``settings``; call ``start()`` inside a running loop."""
    setup_logging(settings.log_level)

    if strategy is None:
        if not settings.strategy_file:
            raise ValueError("No strategy given and AS_STRATEGY_FILE is not set")
        strategy = load_strategy_config(settings.strategy_file)

    pool = create_connection_pool(settings)
    engine = make_engine(settings.database_url) if settings.store_backend == "sql" else None
    store = create_trade_store(settings.store_backend, engine=engine)

    estimator = BondingCurveEstimator(pool, curve_address_for) if curve_address_for else None
    fill_reader = RpcFillReader(pool, settings.wallet_address) if settings.wallet_address else None

    bus = EventBus()
    scheduler = TickScheduler()
    book = PositionBook(strategy, estimator=estimator, scheduler=scheduler)
    channel = SubmissionChannel(
        pool,
        commitment=settings.rpc_commitment,
        confirmation_timeout_ms=settings.confirmation_timeout_ms,
        simulate=settings.simulation_enabled,
        skip_preflight=settings.skip_preflight,
    )
    executor = TradeExecutor(
        builder,
        channel,
        store,
        book,
        strategy,
        bus=bus,
        signers=signers,
        fill_reader=fill_reader,
        retry_policy=settings.retry_policy(),
        balance_reader=fill_reader.native_balance if fill_reader else None,
    )
    router = TradeFeedRouter(book)
    router.attach(bus)

    return Runtime(settings, strategy, pool, store, bus, scheduler, book, executor, router)
