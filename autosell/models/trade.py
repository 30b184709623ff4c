"""TradeHistoryEntry model: immutable record of every terminal or partial outcome."""

from datetime import datetime, timezone
from enum import Enum

from sqlmodel import SQLModel, Field


class HistoryStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


class TradeHistoryEntry(SQLModel, table=True):
    __tablename__ = "trade_history"

    id: int | None = Field(default=None, primary_key=True)
    asset_id: str = Field(index=True)
    entry_reference: str
    exit_reference: str | None = None
    entry_price: float = 0.0
    exit_price: float | None = None
    quantity: float = 0.0
    amount: float = 0.0
    entered_at: datetime
    exited_at: datetime | None = None
    pnl: float | None = None
    pnl_pct: float | None = None
    status: HistoryStatus
    reason: str  # "breakeven", "lull detected", "sell pressure", "timeout", or failure text
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
