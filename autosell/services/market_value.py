"""Bonding-curve state reading and market value estimation.

Account layout after the 8-byte discriminator: five little-endian u64 fields
(virtual token reserves, virtual base reserves, real token reserves, real base
reserves, token total supply), a one-byte completion flag, and the 32-byte
creator key.
"""

import base64
import logging
import struct
from dataclasses import dataclass
from typing import Callable, Protocol

from autosell.errors import EstimationError
from autosell.services.connection_pool import ConnectionPool
from autosell.utils.constants import LAMPORTS_PER_SOL, TOKEN_UNIT

logger = logging.getLogger(__name__)

DISCRIMINATOR_LEN = 8
_LAYOUT = struct.Struct("<5QB32s")
CURVE_ACCOUNT_MIN_LEN = DISCRIMINATOR_LEN + _LAYOUT.size  # 81


@dataclass(frozen=True)
class BondingCurveState:
    virtual_token_reserves: int
    virtual_sol_reserves: int
    real_token_reserves: int
    real_sol_reserves: int
    token_total_supply: int
    complete: bool
    creator: bytes

    @property
    def token_price(self) -> float:
        """Price of one whole token in whole base units."""
        if self.virtual_token_reserves == 0:
            return 0.0
        sol = self.virtual_sol_reserves / LAMPORTS_PER_SOL
        tokens = self.virtual_token_reserves / TOKEN_UNIT
        return sol / tokens

    @property
    def market_cap(self) -> float:
        return self.token_price * (self.token_total_supply / TOKEN_UNIT)


def parse_bonding_curve(data: bytes) -> BondingCurveState:
    if len(data) < CURVE_ACCOUNT_MIN_LEN:
        raise EstimationError(f"Invalid bonding curve data length: {len(data)}")
    # Discriminators vary between deployments, so they are not checked
    fields = _LAYOUT.unpack_from(data, DISCRIMINATOR_LEN)
    return BondingCurveState(
        virtual_token_reserves=fields[0],
        virtual_sol_reserves=fields[1],
        real_token_reserves=fields[2],
        real_sol_reserves=fields[3],
        token_total_supply=fields[4],
        complete=fields[5] != 0,
        creator=fields[6],
    )


class MarketValueEstimator(Protocol):
    async def estimate(self, asset_id: str) -> float:
        """Return an approximate market value or raise."""
        ...


class BondingCurveEstimator:
    """Reads the asset's bonding-curve account through the pool."""

    def __init__(self, pool: ConnectionPool, curve_address_for: Callable[[str], str]):
        self.pool = pool
        self._curve_address_for = curve_address_for

    async def fetch_state(self, asset_id: str) -> BondingCurveState:
        address = self._curve_address_for(asset_id)
        account = await self.pool.execute_with_fallback(lambda conn: conn.get_account_info(address))
        if not account or not account.get("data"):
            raise EstimationError(f"Bonding curve account not found: {address}")

        data = account["data"]
        if isinstance(data, list):  # [payload, "base64"]
            data = data[0]
        return parse_bonding_curve(base64.b64decode(data))

    async def estimate(self, asset_id: str) -> float:
        state = await self.fetch_state(asset_id)
        if state.complete:
            logger.info(f"Bonding curve for {asset_id[:8]} is complete")
        return state.market_cap
