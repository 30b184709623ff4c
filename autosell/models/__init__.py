"""Database models."""

from autosell.models.position import TradePosition, TradeStatus
from autosell.models.trade import HistoryStatus, TradeHistoryEntry

__all__ = [
    "TradePosition",
    "TradeStatus",
    "TradeHistoryEntry",
    "HistoryStatus",
]
