"""Derive fills from confirmed transactions.

The wallet's token balance delta gives the quantity moved; its native balance
delta gives the value paid or received (fees included, so prices are
approximate).
"""

import logging
from dataclasses import dataclass
from typing import Protocol

from autosell.errors import SubmissionError
from autosell.services.connection_pool import ConnectionPool
from autosell.utils.constants import LAMPORTS_PER_SOL

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Fill:
    quantity: float  # positive when acquired, negative when sold
    value: float  # positive when received, negative when paid
    slot: int | None = None

    @property
    def price(self) -> float:
        if self.quantity == 0:
            return 0.0
        return abs(self.value / self.quantity)


def _token_amount(balances: list[dict], asset_id: str, owner: str) -> float:
    for bal in balances or []:
        if bal.get("mint") == asset_id and bal.get("owner") == owner:
            ui = bal.get("uiTokenAmount") or {}
            if ui.get("uiAmount") is not None:
                return float(ui["uiAmount"])
            return float(ui.get("uiAmountString") or 0)
    return 0.0


def _account_keys(tx: dict) -> list[str]:
    message = (tx.get("transaction") or {}).get("message") or {}
    keys = []
    for key in message.get("accountKeys") or []:
        keys.append(key.get("pubkey") if isinstance(key, dict) else key)
    return keys


def fill_from_transaction(tx: dict, asset_id: str, owner: str) -> Fill:
    meta = tx.get("meta") or {}
    pre_tokens = _token_amount(meta.get("preTokenBalances"), asset_id, owner)
    post_tokens = _token_amount(meta.get("postTokenBalances"), asset_id, owner)

    value = 0.0
    keys = _account_keys(tx)
    if owner in keys:
        idx = keys.index(owner)
        pre = meta.get("preBalances") or []
        post = meta.get("postBalances") or []
        if idx < len(pre) and idx < len(post):
            value = (post[idx] - pre[idx]) / LAMPORTS_PER_SOL

    return Fill(quantity=post_tokens - pre_tokens, value=value, slot=tx.get("slot"))


class RpcFillReader:
    def __init__(self, pool: ConnectionPool, owner: str):
        self.pool = pool
        self.owner = owner

    async def read_fill(self, reference: str, asset_id: str) -> Fill:
        tx = await self.pool.execute_with_fallback(lambda conn: conn.get_transaction(reference))
        if tx is None:
            raise SubmissionError(f"Transaction {reference} not found")
        fill = fill_from_transaction(tx, asset_id, self.owner)
        logger.debug(f"Fill for {reference}: qty={fill.quantity} value={fill.value:.6f}")
        return fill

    async def native_balance(self) -> float:
        lamports = await self.pool.execute_with_fallback(lambda conn: conn.get_balance(self.owner))
        return lamports / LAMPORTS_PER_SOL

    async def token_balance(self, asset_id: str) -> float:
        return await self.pool.execute_with_fallback(lambda conn: conn.get_token_balance(self.owner, asset_id))


class FillReader(Protocol):
    async def read_fill(self, reference: str, asset_id: str) -> Fill: ...

    async def token_balance(self, asset_id: str) -> float: ...
