"""Tests for the APScheduler tick wrapper."""

import pytest

from autosell.engine.scheduler import TickScheduler


async def _tick():
    return None


def test_add_position_job_configures_interval():
    ticks = TickScheduler()
    job = ticks.add_position_job("MintAaaaaaaa", _tick, 1500)

    assert job.id == "position_MintAaaaaaaa"
    assert job.max_instances == 1
    assert job.coalesce is True
    assert job.trigger.interval.total_seconds() == 1.5
    assert ticks.scheduler.get_job("position_MintAaaaaaaa") is not None


def test_adding_twice_replaces_job():
    ticks = TickScheduler()
    ticks.add_position_job("MintA", _tick, 1000)
    ticks.add_position_job("MintA", _tick, 2000)
    jobs = ticks.scheduler.get_jobs()
    assert len(jobs) == 1
    assert jobs[0].trigger.interval.total_seconds() == 2.0


def test_remove_position_job():
    ticks = TickScheduler()
    ticks.add_position_job("MintA", _tick, 1000)
    assert ticks.remove_position_job("MintA") is True
    assert ticks.remove_position_job("MintA") is False
    assert ticks.scheduler.get_job("position_MintA") is None


@pytest.mark.asyncio
async def test_start_and_stop():
    ticks = TickScheduler()
    ticks.start()
    job = ticks.add_position_job("MintA", _tick, 1000)
    assert ticks.scheduler.running is True
    assert job.next_run_time is not None

    ticks.stop()
    assert ticks.scheduler.running is False
