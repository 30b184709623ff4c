"""Tests for the position manager decision loop."""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from autosell.engine.position_manager import FULL_EXIT_PCT, ManagerStatus, PositionManager
from autosell.errors import (
    ConfirmationTimeout,
    DuplicatePositionError,
    EstimationError,
    PositionNotFoundError,
    SubmissionError,
)

from fakes import FakeClock, make_strategy

ASSET = "MintAaaaaaaaaaaa"


def _estimator(value=None, error=None):
    estimator = MagicMock()
    estimator.estimate = AsyncMock(return_value=value, side_effect=error)
    return estimator


def _manager(clock, on_sell=None, estimator=None, scheduler=None, on_stopped=None, **strategy_overrides):
    strategy = make_strategy(**strategy_overrides)
    manager = PositionManager(
        strategy,
        on_sell or AsyncMock(),
        estimator=estimator,
        scheduler=scheduler,
        clock=clock,
        on_stopped=on_stopped,
    )
    manager.start_position(ASSET, "entry-sig", amount=0.1, quantity=1_000_000)
    return manager


# ---------------------------------------------------------------------------
# 1. Lifecycle
# ---------------------------------------------------------------------------

def test_start_position_registers_tick_job():
    scheduler = MagicMock()
    manager = _manager(FakeClock(), scheduler=scheduler)
    scheduler.add_position_job.assert_called_once_with(ASSET, manager.check_position, 1000)
    assert manager.has_position()
    assert manager.get_position().status == ManagerStatus.ACTIVE


def test_second_start_is_rejected():
    manager = _manager(FakeClock())
    with pytest.raises(DuplicatePositionError):
        manager.start_position(ASSET, "other", amount=0.1, quantity=1)


def test_stop_position_is_idempotent():
    scheduler = MagicMock()
    on_stopped = MagicMock()
    manager = _manager(FakeClock(), scheduler=scheduler, on_stopped=on_stopped)

    manager.stop_position()
    manager.stop_position()

    scheduler.remove_position_job.assert_called_once_with(ASSET)
    on_stopped.assert_called_once_with(ASSET)
    assert manager.get_position() is None
    assert manager.tracker is None


def test_trades_are_forwarded_to_tracker():
    clock = FakeClock()
    manager = _manager(clock)
    manager.record_buy(0.5, "b1")
    manager.record_sell(0.2, "s1")
    state = manager.tracker.get_state()
    assert state.recent_buys == 1
    assert state.recent_sells == 1


def test_trades_after_stop_are_ignored():
    manager = _manager(FakeClock())
    manager.stop_position()
    manager.record_buy(0.5, "b1")
    assert manager.tracker is None


# ---------------------------------------------------------------------------
# 2. Exit decisions
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_quiet_tick_does_nothing():
    on_sell = AsyncMock()
    manager = _manager(FakeClock(), on_sell=on_sell)
    await manager.check_position()
    on_sell.assert_not_called()
    assert manager.has_position()


@pytest.mark.asyncio
async def test_lull_triggers_full_exit_and_stops():
    clock = FakeClock()
    on_sell = AsyncMock()
    manager = _manager(clock, on_sell=on_sell)

    clock.advance(6_000)
    await manager.check_position()

    on_sell.assert_awaited_once_with(ASSET, FULL_EXIT_PCT, "lull detected")
    assert manager.get_position() is None


@pytest.mark.asyncio
async def test_sell_pressure_triggers_full_exit():
    clock = FakeClock()
    on_sell = AsyncMock()
    manager = _manager(clock, on_sell=on_sell)
    manager.record_buy(0.1, "b1")
    for i in range(5):
        manager.record_sell(0.1, f"s{i}")

    await manager.check_position()
    on_sell.assert_awaited_once_with(ASSET, FULL_EXIT_PCT, "sell pressure")


@pytest.mark.asyncio
async def test_timeout_exit_after_max_hold():
    clock = FakeClock()
    on_sell = AsyncMock()
    manager = _manager(clock, on_sell=on_sell, momentum={"lull_threshold_seconds": 1000})

    clock.advance(59_000)
    await manager.check_position()
    on_sell.assert_not_called()

    clock.advance(1_000)
    await manager.check_position()
    on_sell.assert_awaited_once_with(ASSET, FULL_EXIT_PCT, "timeout")


@pytest.mark.asyncio
async def test_at_most_one_full_exit_across_overlapping_ticks():
    clock = FakeClock()
    release = asyncio.Event()
    calls = []

    async def slow_sell(asset_id, pct, reason):
        calls.append(reason)
        await release.wait()

    manager = _manager(clock, on_sell=slow_sell)
    clock.advance(6_000)

    first = asyncio.create_task(manager.check_position())
    await asyncio.sleep(0)
    # The first tick is suspended inside the sell; later ticks must not submit
    for _ in range(3):
        await manager.check_position()

    release.set()
    await first
    for _ in range(3):
        await manager.check_position()

    assert calls == ["lull detected"]
    assert manager.exit_attempts == 1


@pytest.mark.asyncio
async def test_failed_exit_is_retried_next_tick():
    clock = FakeClock()
    on_sell = AsyncMock(side_effect=[SubmissionError("boom"), None])
    manager = _manager(clock, on_sell=on_sell)
    clock.advance(6_000)

    await manager.check_position()
    position = manager.get_position()
    assert position is not None
    assert position.status == ManagerStatus.ACTIVE
    assert position.action_in_flight is None

    await manager.check_position()
    assert on_sell.await_count == 2
    assert manager.get_position() is None


@pytest.mark.asyncio
async def test_unknown_exit_outcome_is_not_resubmitted():
    clock = FakeClock()
    on_sell = AsyncMock(side_effect=ConfirmationTimeout("sig", 60000))
    manager = _manager(clock, on_sell=on_sell)
    clock.advance(6_000)

    await manager.check_position()
    await manager.check_position()
    assert on_sell.await_count == 1
    assert manager.get_position() is None


@pytest.mark.asyncio
async def test_position_not_found_stops_manager():
    clock = FakeClock()
    on_sell = AsyncMock(side_effect=PositionNotFoundError(ASSET))
    manager = _manager(clock, on_sell=on_sell)
    clock.advance(6_000)

    await manager.check_position()
    assert manager.get_position() is None


# ---------------------------------------------------------------------------
# 3. Breakeven
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_breakeven_takes_precedence_over_momentum_exit():
    clock = FakeClock()
    on_sell = AsyncMock()
    manager = _manager(clock, on_sell=on_sell, estimator=_estimator(100_000))
    clock.advance(6_000)  # lull is also true

    await manager.check_position()
    on_sell.assert_awaited_once_with(ASSET, 50.0, "breakeven")
    position = manager.get_position()
    assert position.breakeven_sold is True
    assert position.status == ManagerStatus.PARTIAL_EXIT

    await manager.check_position()
    assert on_sell.await_args_list[1].args == (ASSET, FULL_EXIT_PCT, "lull detected")
    assert manager.get_position() is None


@pytest.mark.asyncio
async def test_breakeven_below_target_is_skipped():
    on_sell = AsyncMock()
    manager = _manager(FakeClock(), on_sell=on_sell, estimator=_estimator(10_000))
    await manager.check_position()
    on_sell.assert_not_called()
    assert manager.get_position().breakeven_sold is False


@pytest.mark.asyncio
async def test_breakeven_disabled_never_estimates():
    estimator = _estimator(100_000)
    manager = _manager(FakeClock(), estimator=estimator, breakeven_sell={"enabled": False})
    await manager.check_position()
    estimator.estimate.assert_not_called()


@pytest.mark.asyncio
async def test_breakeven_fires_only_once():
    clock = FakeClock()
    on_sell = AsyncMock()
    estimator = _estimator(100_000)
    manager = _manager(clock, on_sell=on_sell, estimator=estimator, momentum={"lull_threshold_seconds": 1000})

    await manager.check_position()
    await manager.check_position()
    await manager.check_position()

    assert on_sell.await_count == 1
    assert estimator.estimate.await_count == 1


@pytest.mark.asyncio
async def test_failed_breakeven_reverts_for_retry():
    on_sell = AsyncMock(side_effect=SubmissionError("boom"))
    manager = _manager(FakeClock(), on_sell=on_sell, estimator=_estimator(100_000))

    await manager.check_position()
    position = manager.get_position()
    assert position.breakeven_sold is False
    assert position.status == ManagerStatus.ACTIVE
    assert position.action_in_flight is None


@pytest.mark.asyncio
async def test_unknown_breakeven_outcome_stays_marked_sold():
    on_sell = AsyncMock(side_effect=ConfirmationTimeout("sig", 60000))
    manager = _manager(FakeClock(), on_sell=on_sell, estimator=_estimator(100_000))

    await manager.check_position()
    position = manager.get_position()
    assert position.breakeven_sold is True
    assert position.status == ManagerStatus.PARTIAL_EXIT


@pytest.mark.asyncio
async def test_estimator_failure_skips_breakeven_but_not_exits():
    clock = FakeClock()
    on_sell = AsyncMock()
    manager = _manager(clock, on_sell=on_sell, estimator=_estimator(error=EstimationError("rpc down")))

    await manager.check_position()
    on_sell.assert_not_called()
    assert manager.has_position()

    clock.advance(6_000)
    await manager.check_position()
    on_sell.assert_awaited_once_with(ASSET, FULL_EXIT_PCT, "lull detected")


@pytest.mark.asyncio
async def test_position_stopped_during_estimate_is_left_alone():
    on_sell = AsyncMock()
    manager = None

    async def estimate(asset_id):
        manager.stop_position()
        return 100_000

    estimator = MagicMock()
    estimator.estimate = estimate
    manager = _manager(FakeClock(), on_sell=on_sell, estimator=estimator)

    await manager.check_position()
    on_sell.assert_not_called()


# ---------------------------------------------------------------------------
# 4. Status line
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_status_line_every_five_seconds(caplog):
    clock = FakeClock()
    manager = _manager(clock, momentum={"lull_threshold_seconds": 1000})

    with caplog.at_level(logging.INFO, logger="autosell.engine.position_manager"):
        await manager.check_position()
        clock.advance(3_000)
        await manager.check_position()
        clock.advance(2_000)
        await manager.check_position()
        await manager.check_position()

    status_lines = [r.message for r in caplog.records if "Buys:" in r.message]
    assert len(status_lines) == 2
    assert "[0s]" in status_lines[0]
    assert "[5s]" in status_lines[1]
    assert "MV: ~n/a" in status_lines[1]
