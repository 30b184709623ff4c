"""Trade store: authoritative record of position status transitions.

The store is bookkeeping only: it validates that transitions arrive in order
(``pending_entry -> open -> pending_exit -> closed | failed``) and keeps a
history of terminal and partial outcomes. Decisions belong to the Position
Manager.

Two backends share the transition rules below: ``InMemoryTradeStore`` for
single-process runs and ``SqlTradeStore`` on SQLModel.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from autosell.errors import DuplicatePositionError, PositionNotFoundError
from autosell.models import HistoryStatus, TradeHistoryEntry, TradePosition, TradeStatus

logger = logging.getLogger(__name__)

OPEN_STATUSES = (TradeStatus.PENDING_ENTRY, TradeStatus.OPEN, TradeStatus.PENDING_EXIT)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _copy(position: TradePosition) -> TradePosition:
    return TradePosition(**position.model_dump())


def _require(position: TradePosition | None, asset_id: str, status: TradeStatus) -> TradePosition:
    if position is None or position.status != status:
        raise PositionNotFoundError(asset_id)
    return position


def _history_entry(position: TradePosition, status: HistoryStatus, reason: str, **overrides) -> TradeHistoryEntry:
    values = dict(
        asset_id=position.asset_id,
        entry_reference=position.entry_reference,
        exit_reference=position.exit_reference,
        entry_price=position.entry_price,
        exit_price=position.exit_price,
        quantity=position.quantity,
        amount=position.amount,
        entered_at=position.entered_at,
        exited_at=position.exited_at,
        pnl=position.pnl,
        pnl_pct=position.pnl_pct,
        status=status,
        reason=reason,
    )
    values.update(overrides)
    return TradeHistoryEntry(**values)


# ---------------------------------------------------------------------------
# Transition rules (shared by every backend)
# ---------------------------------------------------------------------------

def _apply_confirm_entry(position, quantity, entry_price, slot, confirmed_at):
    position.status = TradeStatus.OPEN
    position.quantity = quantity
    position.entry_price = entry_price
    position.entry_slot = slot
    position.entered_at = confirmed_at


def _apply_pending_exit(position, reference, submitted_at):
    position.status = TradeStatus.PENDING_EXIT
    position.exit_reference = reference
    position.exited_at = submitted_at


def _apply_partial_exit(position, quantity_sold, value_received):
    position.quantity = max(position.quantity - quantity_sold, 0.0)
    position.realized_value += value_received


def _apply_confirm_exit(position, exit_price, slot, pnl, confirmed_at):
    position.status = TradeStatus.CLOSED
    position.exit_price = exit_price
    position.exit_slot = slot
    position.exited_at = confirmed_at
    position.pnl = pnl
    position.pnl_pct = (pnl / position.amount) * 100 if position.amount > 0 else 0.0


def _apply_fail_exit(position, reason):
    # Back to open so the exit can be retried
    position.status = TradeStatus.OPEN
    position.exit_reference = None
    position.exited_at = None
    position.last_error = reason


class TradeStore(ABC):
    """Contract shared by all trade store backends."""

    @abstractmethod
    async def create_pending_entry(
        self, asset_id: str, reference: str, amount: float, submitted_at: datetime | None = None
    ) -> None:
        """Record a submitted entry. Rejects a second non-terminal position for the asset."""

    @abstractmethod
    async def confirm_entry(
        self,
        asset_id: str,
        quantity: float,
        entry_price: float,
        slot: int,
        confirmed_at: datetime | None = None,
    ) -> None:
        """Promote a pending entry to open with its observed fill."""

    @abstractmethod
    async def fail_entry(self, asset_id: str, reason: str) -> None:
        """Mark a pending entry failed and move it to history."""

    @abstractmethod
    async def create_pending_exit(
        self, asset_id: str, reference: str, submitted_at: datetime | None = None
    ) -> None:
        """Record a submitted full exit for an open position."""

    @abstractmethod
    async def record_partial_exit(
        self,
        asset_id: str,
        reference: str,
        quantity_sold: float,
        value_received: float,
        reason: str,
        confirmed_at: datetime | None = None,
    ) -> None:
        """Record a confirmed partial sell; the position stays open."""

    @abstractmethod
    async def confirm_exit(
        self,
        asset_id: str,
        exit_price: float,
        slot: int,
        pnl: float,
        reason: str,
        confirmed_at: datetime | None = None,
    ) -> None:
        """Close a pending exit with realized PnL and move it to history."""

    @abstractmethod
    async def fail_exit(self, asset_id: str, reason: str) -> None:
        """Revert a pending exit to open."""

    @abstractmethod
    async def get_position(self, asset_id: str) -> TradePosition | None: ...

    @abstractmethod
    async def get_open_positions(self) -> list[TradePosition]: ...

    @abstractmethod
    async def get_history(self, limit: int = 100) -> list[TradeHistoryEntry]:
        """Newest first."""

    @abstractmethod
    async def get_open_position_count(self) -> int: ...

    @abstractmethod
    async def clear(self) -> None: ...


class InMemoryTradeStore(TradeStore):
    """Single-process store; data is lost on restart."""

    def __init__(self):
        self._positions: dict[str, TradePosition] = {}
        self._history: list[TradeHistoryEntry] = []

    async def create_pending_entry(self, asset_id, reference, amount, submitted_at=None):
        if asset_id in self._positions:
            raise DuplicatePositionError(asset_id)
        self._positions[asset_id] = TradePosition(
            asset_id=asset_id,
            entry_reference=reference,
            amount=amount,
            entered_at=submitted_at or _now(),
            status=TradeStatus.PENDING_ENTRY,
        )

    async def confirm_entry(self, asset_id, quantity, entry_price, slot, confirmed_at=None):
        position = _require(self._positions.get(asset_id), asset_id, TradeStatus.PENDING_ENTRY)
        _apply_confirm_entry(position, quantity, entry_price, slot, confirmed_at or _now())

    async def fail_entry(self, asset_id, reason):
        position = self._positions.get(asset_id)
        if position is None or position.status != TradeStatus.PENDING_ENTRY:
            logger.warning(f"fail_entry for {asset_id} ignored: no pending entry")
            return
        position.status = TradeStatus.FAILED
        self._history.append(
            _history_entry(position, HistoryStatus.FAILED, reason, entry_price=0.0, quantity=0.0)
        )
        del self._positions[asset_id]

    async def create_pending_exit(self, asset_id, reference, submitted_at=None):
        position = _require(self._positions.get(asset_id), asset_id, TradeStatus.OPEN)
        _apply_pending_exit(position, reference, submitted_at or _now())

    async def record_partial_exit(self, asset_id, reference, quantity_sold, value_received, reason, confirmed_at=None):
        position = _require(self._positions.get(asset_id), asset_id, TradeStatus.OPEN)
        _apply_partial_exit(position, quantity_sold, value_received)
        self._history.append(
            _history_entry(
                position,
                HistoryStatus.PARTIAL,
                reason,
                exit_reference=reference,
                quantity=quantity_sold,
                exit_price=value_received / quantity_sold if quantity_sold else None,
                exited_at=confirmed_at or _now(),
            )
        )

    async def confirm_exit(self, asset_id, exit_price, slot, pnl, reason, confirmed_at=None):
        position = _require(self._positions.get(asset_id), asset_id, TradeStatus.PENDING_EXIT)
        _apply_confirm_exit(position, exit_price, slot, pnl, confirmed_at or _now())
        self._history.append(_history_entry(position, HistoryStatus.SUCCESS, reason))
        del self._positions[asset_id]

    async def fail_exit(self, asset_id, reason):
        position = self._positions.get(asset_id)
        if position is None or position.status != TradeStatus.PENDING_EXIT:
            logger.warning(f"fail_exit for {asset_id} ignored: no pending exit")
            return
        _apply_fail_exit(position, reason)

    async def get_position(self, asset_id):
        position = self._positions.get(asset_id)
        return _copy(position) if position else None

    async def get_open_positions(self):
        return [_copy(p) for p in self._positions.values() if p.status in OPEN_STATUSES]

    async def get_history(self, limit=100):
        if limit <= 0:
            return []
        return list(reversed(self._history[-limit:]))

    async def get_open_position_count(self):
        return sum(1 for p in self._positions.values() if p.status == TradeStatus.OPEN)

    async def clear(self):
        self._positions.clear()
        self._history = []


class SqlTradeStore(TradeStore):
    """SQLModel-backed store."""

    def __init__(self, engine: Engine):
        from autosell.database import create_db_and_tables

        self.engine = engine
        create_db_and_tables(engine)

    def _get(self, session: Session, asset_id: str) -> TradePosition | None:
        return session.exec(select(TradePosition).where(TradePosition.asset_id == asset_id)).first()

    async def create_pending_entry(self, asset_id, reference, amount, submitted_at=None):
        with Session(self.engine) as session:
            if self._get(session, asset_id) is not None:
                raise DuplicatePositionError(asset_id)
            session.add(
                TradePosition(
                    asset_id=asset_id,
                    entry_reference=reference,
                    amount=amount,
                    entered_at=submitted_at or _now(),
                    status=TradeStatus.PENDING_ENTRY,
                )
            )
            session.commit()

    async def confirm_entry(self, asset_id, quantity, entry_price, slot, confirmed_at=None):
        with Session(self.engine) as session:
            position = _require(self._get(session, asset_id), asset_id, TradeStatus.PENDING_ENTRY)
            _apply_confirm_entry(position, quantity, entry_price, slot, confirmed_at or _now())
            session.add(position)
            session.commit()

    async def fail_entry(self, asset_id, reason):
        with Session(self.engine) as session:
            position = self._get(session, asset_id)
            if position is None or position.status != TradeStatus.PENDING_ENTRY:
                logger.warning(f"fail_entry for {asset_id} ignored: no pending entry")
                return
            session.add(
                _history_entry(position, HistoryStatus.FAILED, reason, entry_price=0.0, quantity=0.0)
            )
            session.delete(position)
            session.commit()

    async def create_pending_exit(self, asset_id, reference, submitted_at=None):
        with Session(self.engine) as session:
            position = _require(self._get(session, asset_id), asset_id, TradeStatus.OPEN)
            _apply_pending_exit(position, reference, submitted_at or _now())
            session.add(position)
            session.commit()

    async def record_partial_exit(self, asset_id, reference, quantity_sold, value_received, reason, confirmed_at=None):
        with Session(self.engine) as session:
            position = _require(self._get(session, asset_id), asset_id, TradeStatus.OPEN)
            _apply_partial_exit(position, quantity_sold, value_received)
            session.add(
                _history_entry(
                    position,
                    HistoryStatus.PARTIAL,
                    reason,
                    exit_reference=reference,
                    quantity=quantity_sold,
                    exit_price=value_received / quantity_sold if quantity_sold else None,
                    exited_at=confirmed_at or _now(),
                )
            )
            session.add(position)
            session.commit()

    async def confirm_exit(self, asset_id, exit_price, slot, pnl, reason, confirmed_at=None):
        with Session(self.engine) as session:
            position = _require(self._get(session, asset_id), asset_id, TradeStatus.PENDING_EXIT)
            _apply_confirm_exit(position, exit_price, slot, pnl, confirmed_at or _now())
            session.add(_history_entry(position, HistoryStatus.SUCCESS, reason))
            session.delete(position)
            session.commit()

    async def fail_exit(self, asset_id, reason):
        with Session(self.engine) as session:
            position = self._get(session, asset_id)
            if position is None or position.status != TradeStatus.PENDING_EXIT:
                logger.warning(f"fail_exit for {asset_id} ignored: no pending exit")
                return
            _apply_fail_exit(position, reason)
            session.add(position)
            session.commit()

    async def get_position(self, asset_id):
        with Session(self.engine) as session:
            return self._get(session, asset_id)

    async def get_open_positions(self):
        with Session(self.engine) as session:
            return list(
                session.exec(select(TradePosition).where(col(TradePosition.status).in_(OPEN_STATUSES))).all()
            )

    async def get_history(self, limit=100):
        if limit <= 0:
            return []
        with Session(self.engine) as session:
            stmt = select(TradeHistoryEntry).order_by(col(TradeHistoryEntry.id).desc()).limit(limit)
            return list(session.exec(stmt).all())

    async def get_open_position_count(self):
        with Session(self.engine) as session:
            stmt = select(TradePosition).where(TradePosition.status == TradeStatus.OPEN)
            return len(session.exec(stmt).all())

    async def clear(self):
        with Session(self.engine) as session:
            for model in (TradePosition, TradeHistoryEntry):
                for row in session.exec(select(model)).all():
                    session.delete(row)
            session.commit()


def create_trade_store(kind: str = "memory", engine: Engine | None = None) -> TradeStore:
    if kind == "memory":
        return InMemoryTradeStore()
    if kind == "sql":
        from autosell.database import make_engine

        return SqlTradeStore(engine or make_engine())
    raise ValueError(f"Unknown store type: {kind}")
