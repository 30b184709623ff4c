"""Tests for bonding-curve parsing and market value estimation."""

import base64
import struct
from unittest.mock import AsyncMock, MagicMock

import pytest

from autosell.errors import EstimationError
from autosell.services.connection_pool import ConnectionPool
from autosell.services.market_value import (
    CURVE_ACCOUNT_MIN_LEN,
    BondingCurveEstimator,
    parse_bonding_curve,
)


def _curve_bytes(
    virtual_tokens=1_000_000_000_000_000,
    virtual_sol=30_000_000_000,
    real_tokens=800_000_000_000_000,
    real_sol=0,
    supply=1_000_000_000_000_000,
    complete=False,
):
    discriminator = b"\x17\xb7\xf8\x37\x60\xd8\xac\x60"
    body = struct.pack("<5QB32s", virtual_tokens, virtual_sol, real_tokens, real_sol, supply, int(complete), b"\x01" * 32)
    return discriminator + body


def test_parse_reads_all_fields():
    state = parse_bonding_curve(_curve_bytes(complete=True))
    assert state.virtual_token_reserves == 1_000_000_000_000_000
    assert state.virtual_sol_reserves == 30_000_000_000
    assert state.complete is True
    assert state.creator == b"\x01" * 32
    assert len(_curve_bytes()) == CURVE_ACCOUNT_MIN_LEN


def test_price_and_market_cap():
    # 30 base units against 1e9 whole tokens, supply 1e9 whole tokens
    state = parse_bonding_curve(_curve_bytes())
    assert state.token_price == pytest.approx(30 / 1_000_000_000)
    assert state.market_cap == pytest.approx(30.0)


def test_empty_reserves_price_zero():
    state = parse_bonding_curve(_curve_bytes(virtual_tokens=0))
    assert state.token_price == 0.0


def test_short_data_rejected():
    with pytest.raises(EstimationError):
        parse_bonding_curve(b"\x00" * 40)


def _pool_with_account(account):
    conn = MagicMock()
    conn.url = "https://rpc"
    conn.get_account_info = AsyncMock(return_value=account)
    return ConnectionPool(["https://rpc"], endpoint_factory=lambda url: conn), conn


@pytest.mark.asyncio
async def test_estimator_reads_curve_account():
    encoded = base64.b64encode(_curve_bytes()).decode()
    pool, conn = _pool_with_account({"data": [encoded, "base64"]})
    estimator = BondingCurveEstimator(pool, curve_address_for=lambda asset: f"curve-{asset}")

    assert await estimator.estimate("MintA") == pytest.approx(30.0)
    conn.get_account_info.assert_awaited_once_with("curve-MintA")


@pytest.mark.asyncio
async def test_estimator_missing_account_raises():
    pool, _ = _pool_with_account(None)
    estimator = BondingCurveEstimator(pool, curve_address_for=lambda asset: "curve")
    with pytest.raises(EstimationError):
        await estimator.estimate("MintA")
