"""Trade executor: entry and exit workflows.

Glues the payload builder, the Submission Channel and the Trade Store
together. The Position Manager never talks to the network itself; its sell
action is ``TradeExecutor.sell``.
"""

import logging
from typing import Awaitable, Callable, Sequence

from autosell.engine.book import PositionBook
from autosell.engine.events import (
    BuyFailed,
    BuyLanded,
    BuySubmitted,
    EventBus,
    SellFailed,
    SellLanded,
    SellSubmitted,
)
from autosell.errors import (
    ConfirmationTimeout,
    InsufficientBalanceError,
    PositionLimitReached,
    PositionNotFoundError,
    SimulationError,
    SubmissionError,
)
from autosell.models import TradeStatus
from autosell.schemas.strategy import StrategyConfig
from autosell.services.fills import Fill, FillReader
from autosell.services.payloads import Signer, TradeBuilder, TradePayload, TradeRequest, apply_signers
from autosell.services.retry import DEFAULT_RETRY_POLICY, RetryPolicy
from autosell.services.submission import (
    CONFIRMED,
    FAILED,
    SIMULATION_FAILED,
    OnChainError,
    SubmissionChannel,
    SubmissionResult,
)
from autosell.services.trade_store import TradeStore

logger = logging.getLogger(__name__)

BalanceReader = Callable[[], Awaitable[float]]

# Exit reasons that sell at dump slippage and priority fee
DUMP_REASONS = ("lull detected", "sell pressure")


class TradeExecutor:
    def __init__(
        self,
        builder: TradeBuilder,
        channel: SubmissionChannel,
        store: TradeStore,
        book: PositionBook,
        strategy: StrategyConfig,
        bus: EventBus | None = None,
        signers: Sequence[Signer] = (),
        fill_reader: FillReader | None = None,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        balance_reader: BalanceReader | None = None,
    ):
        self.builder = builder
        self.channel = channel
        self.store = store
        self.book = book
        self.strategy = strategy
        self.bus = bus
        self.signers = tuple(signers)
        self.fill_reader = fill_reader
        self.retry_policy = retry_policy
        self.balance_reader = balance_reader

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    async def enter(self, asset_id: str, amount: float | None = None) -> SubmissionResult:
        """Buy into ``asset_id`` and hand the position to a Position Manager.

        Risk and balance checks raise before anything is submitted. After
        submission every outcome comes back as a ``SubmissionResult``. The
        asset's slot in the book is held from the risk check until the
        position opens, and given back on every other outcome.
        """
        amount = self.strategy.entry.buy_amount if amount is None else amount
        if amount > self.strategy.risk.max_position_size:
            raise PositionLimitReached(
                f"Position size {amount} exceeds max {self.strategy.risk.max_position_size}"
            )

        self.book.reserve(asset_id)
        try:
            return await self._enter_reserved(asset_id, amount)
        finally:
            self.book.release(asset_id)

    async def _enter_reserved(self, asset_id: str, amount: float) -> SubmissionResult:
        entry = self.strategy.entry
        if self.balance_reader is not None:
            balance = await self.balance_reader()
            if balance < amount:
                raise InsufficientBalanceError(f"Insufficient balance: have {balance}, need {amount}")

        request = TradeRequest(
            asset_id=asset_id,
            side="buy",
            amount=amount,
            slippage_bps=entry.max_slippage_bps,
            priority_fee=entry.priority_fee,
        )
        try:
            payload = await self._build(request)
        except Exception as e:
            self._publish(BuyFailed(asset_id, None, f"Build failed: {e}"))
            raise

        await self.store.create_pending_entry(asset_id, payload.reference, amount)
        self._publish(BuySubmitted(asset_id, payload.reference, amount, entry.max_slippage_bps))
        logger.info(f"[{asset_id[:8]}] Buy submitted: {amount} ({payload.reference})")

        result = await self.channel.send_with_retry(payload, retry_policy=self.retry_policy)
        if result.outcome_unknown:
            result = await self._poll_once_more(result)

        if result.outcome_unknown:
            logger.warning(f"[{asset_id[:8]}] Buy {result.reference} still unconfirmed; left pending")
            return result

        if not result.success:
            await self.store.fail_entry(asset_id, result.error or result.status)
            self._publish(BuyFailed(asset_id, result.reference, result.error or result.status))
            logger.error(f"[{asset_id[:8]}] Buy failed: {result.error}")
            return result

        fill = await self._read_fill(result.reference, asset_id, payload)
        bought = Fill(quantity=abs(fill.quantity), value=abs(fill.value) or amount, slot=fill.slot)

        await self.store.confirm_entry(asset_id, bought.quantity, bought.price, result.slot)
        self._publish(
            BuyLanded(asset_id, result.reference, result.slot, bought.quantity, bought.price, bought.value)
        )
        logger.info(f"[{asset_id[:8]}] Buy landed: {bought.quantity:,.0f} @ {bought.price:.10f}")

        self.book.open(asset_id, result.reference, amount, bought.quantity, on_sell=self.sell)
        return result

    # ------------------------------------------------------------------
    # Exit
    # ------------------------------------------------------------------

    async def sell(self, asset_id: str, percentage: float, reason: str) -> SubmissionResult:
        """Sell ``percentage`` of the open position.

        Raises ``ConfirmationTimeout`` when the outcome is unknown and
        ``SubmissionError`` / ``SimulationError`` on a definite failure, so the
        Position Manager can decide whether to retry.
        """
        position = await self.store.get_position(asset_id)
        if position is None or position.status != TradeStatus.OPEN:
            raise PositionNotFoundError(asset_id)

        held = await self._held_quantity(asset_id, position.quantity)
        quantity = held * min(percentage, 100.0) / 100
        if quantity <= 0:
            raise InsufficientBalanceError(f"Nothing to sell for {asset_id}")

        full = percentage >= 100
        if reason in DUMP_REASONS:
            slippage, fee = self.strategy.exit.dump_slippage_bps, self.strategy.exit.dump_priority_fee
        else:
            slippage, fee = self.strategy.entry.max_slippage_bps, self.strategy.entry.priority_fee

        request = TradeRequest(
            asset_id=asset_id,
            side="sell",
            quantity=quantity,
            slippage_bps=slippage,
            priority_fee=fee,
        )
        payload = await self._build(request)

        if full:
            await self.store.create_pending_exit(asset_id, payload.reference)
        self._publish(SellSubmitted(asset_id, payload.reference, quantity, slippage, reason))
        logger.info(
            f"[{asset_id[:8]}] Sell submitted ({reason}): {percentage}% = {quantity:,.0f} / {held:,.0f}"
        )

        result = await self.channel.send_with_retry(payload, retry_policy=self.retry_policy)
        if result.outcome_unknown:
            result = await self._poll_once_more(result)

        if result.outcome_unknown:
            raise ConfirmationTimeout(result.reference, self.channel.confirmation_timeout_ms)

        if not result.success:
            error = result.error or result.status
            if full:
                await self.store.fail_exit(asset_id, error)
            self._publish(SellFailed(asset_id, result.reference, error))
            if result.status == SIMULATION_FAILED:
                raise SimulationError(error)
            raise SubmissionError(error, attempts=result.attempts)

        fill = await self._read_fill(result.reference, asset_id, payload)
        sold = Fill(quantity=abs(fill.quantity) or quantity, value=abs(fill.value), slot=fill.slot)

        pnl = None
        try:
            if full:
                pnl = position.realized_value + sold.value - position.amount
                await self.store.confirm_exit(asset_id, sold.price, result.slot, pnl, reason)
            else:
                await self.store.record_partial_exit(asset_id, result.reference, sold.quantity, sold.value, reason)
        except PositionNotFoundError as e:
            logger.warning(f"[{asset_id[:8]}] Late confirmation for {result.reference} discarded: {e}")
            return result

        self._publish(
            SellLanded(
                asset_id,
                result.reference,
                result.slot,
                sold.quantity,
                sold.value,
                sold.price,
                pnl,
                partial=not full,
            )
        )
        if pnl is not None:
            logger.info(f"[{asset_id[:8]}] Position closed ({reason}), PnL: {pnl:+.6f}")
        else:
            logger.info(f"[{asset_id[:8]}] Partial sell landed: {sold.quantity:,.0f} for {sold.value:.6f}")
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _build(self, request: TradeRequest) -> TradePayload:
        payload = await self.builder.build(request)
        return apply_signers(payload, self.signers)

    async def _poll_once_more(self, result: SubmissionResult) -> SubmissionResult:
        try:
            confirmation = await self.channel.wait_for_confirmation(result.reference)
        except OnChainError as e:
            return SubmissionResult(
                success=False, status=FAILED, reference=result.reference, attempts=result.attempts, error=str(e)
            )
        if not confirmation.confirmed:
            return result
        logger.info(f"{result.reference} confirmed on the extra poll")
        return SubmissionResult(
            success=True,
            status=CONFIRMED,
            reference=result.reference,
            attempts=result.attempts,
            slot=confirmation.slot,
        )

    async def _held_quantity(self, asset_id: str, recorded: float) -> float:
        """Live wallet balance of the asset; the store's quantity if it cannot be read."""
        if self.fill_reader is None:
            return recorded
        try:
            held = await self.fill_reader.token_balance(asset_id)
        except SubmissionError as e:
            logger.warning(f"[{asset_id[:8]}] Token balance unavailable, using recorded {recorded:,.0f}: {e}")
            return recorded
        if held != recorded:
            logger.info(f"[{asset_id[:8]}] Wallet holds {held:,.0f}, store recorded {recorded:,.0f}")
        return held

    async def _read_fill(self, reference: str, asset_id: str, payload: TradePayload) -> Fill:
        if self.fill_reader is not None:
            try:
                return await self.fill_reader.read_fill(reference, asset_id)
            except SubmissionError as e:
                logger.warning(f"[{asset_id[:8]}] Could not read fill for {reference}, using quote: {e}")
        return Fill(
            quantity=float(payload.metadata.get("expected_quantity", 0.0)),
            value=float(payload.metadata.get("expected_value", 0.0)),
        )

    def _publish(self, event):
        if self.bus is not None:
            self.bus.publish(event)
