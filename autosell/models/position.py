"""TradePosition model: the store's copy of a position in flight."""

from datetime import datetime, timezone
from enum import Enum

from sqlmodel import SQLModel, Field


class TradeStatus(str, Enum):
    PENDING_ENTRY = "pending_entry"
    OPEN = "open"
    PENDING_EXIT = "pending_exit"
    CLOSED = "closed"
    FAILED = "failed"


class TradePosition(SQLModel, table=True):
    __tablename__ = "trade_position"

    id: int | None = Field(default=None, primary_key=True)
    asset_id: str = Field(index=True, unique=True)
    entry_reference: str
    entry_price: float = 0.0
    quantity: float = 0.0
    amount: float  # base units committed
    entered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    entry_slot: int | None = None
    status: TradeStatus = TradeStatus.PENDING_ENTRY
    realized_value: float = 0.0  # proceeds from partial exits so far
    exit_reference: str | None = None
    exit_price: float | None = None
    exited_at: datetime | None = None
    exit_slot: int | None = None
    pnl: float | None = None
    pnl_pct: float | None = None
    last_error: str | None = None
