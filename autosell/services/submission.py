"""Submission channel: simulate, send, and confirm a signed payload.

Failures are retried per ``RetryPolicy`` and always come back as a
``SubmissionResult``; nothing raised by the network crosses this boundary.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from autosell.errors import ConfirmationTimeout, SimulationError, SubmissionError
from autosell.services.connection_pool import ConnectionPool
from autosell.services.payloads import Signer, TradePayload, apply_signers
from autosell.services.retry import DEFAULT_RETRY_POLICY, RetryPolicy
from autosell.utils.constants import CONFIRMATION_POLL_SECONDS, commitment_reached

logger = logging.getLogger(__name__)

CONFIRMED = "confirmed"
FAILED = "failed"
UNCONFIRMED = "unconfirmed"  # sent, outcome unknown
SIMULATION_FAILED = "simulation_failed"


@dataclass
class SubmissionResult:
    success: bool
    status: str
    reference: str | None = None
    attempts: int = 0
    error: str | None = None
    slot: int | None = None

    @property
    def outcome_unknown(self) -> bool:
        return self.status == UNCONFIRMED


@dataclass
class Confirmation:
    confirmed: bool
    slot: int | None = None
    commitment: str | None = None


class OnChainError(SubmissionError):
    """The ledger reported an error status for the payload; not retryable."""


class SubmissionChannel:
    def __init__(
        self,
        pool: ConnectionPool,
        commitment: str = "confirmed",
        confirmation_timeout_ms: int = 60000,
        simulate: bool = True,
        skip_preflight: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.pool = pool
        self.commitment = commitment
        self.confirmation_timeout_ms = confirmation_timeout_ms
        self.simulate_enabled = simulate
        self.skip_preflight = skip_preflight
        self._sleep = sleep
        self._clock = clock

    async def simulate(self, payload: TradePayload):
        """Pre-flight the payload; raises ``SimulationError`` on rejection."""
        value = await self.pool.execute_with_fallback(
            lambda conn: conn.simulate_transaction(payload.raw)
        )
        if value.get("err"):
            logs = value.get("logs") or []
            raise SimulationError(f"Simulation failed: {value['err']}", logs=logs)
        logger.debug(f"Simulation ok for {payload.reference}")

    async def submit(self, payload: TradePayload) -> str:
        """Send once through the pool; returns the reference reported by the endpoint."""
        reference = await self.pool.execute_with_fallback(
            lambda conn: conn.send_transaction(payload.raw, skip_preflight=self.skip_preflight)
        )
        if payload.reference and reference != payload.reference:
            logger.warning(f"Endpoint returned {reference}, expected {payload.reference}")
        return payload.reference or reference

    async def wait_for_confirmation(
        self,
        reference: str,
        commitment: str | None = None,
        timeout_ms: int | None = None,
    ) -> Confirmation:
        """Poll once per second until ``commitment`` is observed or the timeout elapses.

        Returns ``Confirmation(confirmed=False)`` on timeout. Raises
        ``OnChainError`` as soon as an error status is observed. Transient
        polling errors are logged and polling continues.
        """
        target = commitment or self.commitment
        timeout = (timeout_ms if timeout_ms is not None else self.confirmation_timeout_ms) / 1000
        start = self._clock()

        while self._clock() - start < timeout:
            try:
                status = await self.pool.execute_with_fallback(
                    lambda conn: conn.get_signature_status(reference)
                )
            except SubmissionError as e:
                logger.debug(f"Status poll for {reference} failed: {e}")
                status = None

            if status:
                if status.get("err"):
                    raise OnChainError(f"Transaction failed: {status['err']}")
                observed = status.get("confirmationStatus")
                if commitment_reached(observed, target):
                    return Confirmation(True, slot=status.get("slot"), commitment=observed)

            await self._sleep(CONFIRMATION_POLL_SECONDS)

        return Confirmation(False)

    async def send_with_retry(
        self,
        payload: TradePayload,
        signers: Sequence[Signer] = (),
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    ) -> SubmissionResult:
        """Submit and confirm, retrying with exponential backoff."""
        try:
            payload = apply_signers(payload, signers)
        except Exception as e:
            return SubmissionResult(success=False, status=FAILED, error=f"Signing failed: {e}")

        reference = payload.reference
        if self.simulate_enabled:
            try:
                await self.simulate(payload)
            except SimulationError as e:
                logger.error(f"Simulation rejected {reference}: {e}")
                return SubmissionResult(
                    success=False, status=SIMULATION_FAILED, reference=reference, error=str(e)
                )
            except SubmissionError as e:
                logger.warning(f"Simulation unavailable for {reference}: {e}")

        last_error: Exception | None = None
        for attempt in range(1, retry_policy.max_attempts + 1):
            try:
                reference = await self.submit(payload)
                confirmation = await self.wait_for_confirmation(reference)
                if confirmation.confirmed:
                    logger.info(f"Confirmed {reference} at slot {confirmation.slot} (attempt {attempt})")
                    return SubmissionResult(
                        success=True,
                        status=CONFIRMED,
                        reference=reference,
                        attempts=attempt,
                        slot=confirmation.slot,
                    )
                last_error = ConfirmationTimeout(reference, self.confirmation_timeout_ms)
            except OnChainError as e:
                logger.error(f"{reference} failed on-chain: {e}")
                return SubmissionResult(
                    success=False, status=FAILED, reference=reference, attempts=attempt, error=str(e)
                )
            except SubmissionError as e:
                last_error = e

            logger.warning(f"Attempt {attempt}/{retry_policy.max_attempts} for {reference} failed: {last_error}")
            if retry_policy.should_retry(attempt):
                await self._sleep(retry_policy.delay_ms(attempt) / 1000)

        message = (
            f"Transaction failed after {retry_policy.max_attempts} attempts: "
            f"{last_error if last_error else 'unknown error'}"
        )
        status = UNCONFIRMED if isinstance(last_error, ConfirmationTimeout) else FAILED
        return SubmissionResult(
            success=False,
            status=status,
            reference=reference,
            attempts=retry_policy.max_attempts,
            error=message,
        )
