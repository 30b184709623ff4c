"""Collaborator contracts for building and signing trade payloads.

Wire-level encoding and signing live outside this package; the engine only
moves opaque payload bytes and the reference that identifies them on-chain.
"""

from dataclasses import dataclass, field
from typing import Protocol, Sequence

from autosell.errors import BuildError


@dataclass(frozen=True)
class TradeRequest:
    asset_id: str
    side: str  # "buy" or "sell"
    amount: float | None = None  # base-unit amount to spend (buy)
    quantity: float | None = None  # asset quantity to sell (sell)
    slippage_bps: int = 300
    priority_fee: int = 0

    def __post_init__(self):
        if self.side not in ("buy", "sell"):
            raise ValueError(f"side must be 'buy' or 'sell', got {self.side!r}")
        if self.side == "buy" and (self.amount is None or self.amount <= 0):
            raise ValueError("buy requires a positive amount")
        if self.side == "sell" and (self.quantity is None or self.quantity <= 0):
            raise ValueError("sell requires a positive quantity")


@dataclass(frozen=True)
class TradePayload:
    asset_id: str
    raw: bytes
    reference: str | None = None  # set once the first signature is applied
    signatures: tuple[str, ...] = ()
    metadata: dict = field(default_factory=dict)


class TradeBuilder(Protocol):
    async def build(self, request: TradeRequest) -> TradePayload:
        """Return an unsigned payload or raise ``BuildError``."""
        ...


class Signer(Protocol):
    def sign(self, payload: TradePayload) -> TradePayload: ...


def apply_signers(payload: TradePayload, signers: Sequence[Signer]) -> TradePayload:
    """Run every signer in order; the payload must carry a reference afterwards."""
    for signer in signers:
        payload = signer.sign(payload)
    if not payload.reference:
        raise BuildError(f"Payload for {payload.asset_id} has no reference after signing")
    return payload
