"""
Queue processing for a single relayer.

This module contains the drain loop that submits one relayer's queued
transfers in order: it keeps the relayer's nonce in step with the ledger,
prices each submission, waits for confirmation with a timeout, retries
transient failures with exponential backoff and cools down after repeated
failures.
"""

import asyncio
import logging
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from .completion_notifier import CompletionNotifier
from .config import ProcessingConfig
from .errors import (
    ConfirmationTimeoutError,
    ErrorKind,
    InsufficientBalanceError,
    classify_error,
    is_nonce_error,
)
from .fee_estimator import estimate_fees
from .models import Confirmation, NonceMode, PriorityTier, TransferRequest, TransferResult
from .nonce_tracker import NonceTracker
from .registry import RelayerEntry

if TYPE_CHECKING:
    from .ledger_client import LedgerClient

logger = logging.getLogger(__name__)


class ProcessorState(str, Enum):
    IDLE = "idle"
    DRAINING = "draining"
    COOLING = "cooling"


class QueueProcessor:
    """
    Drains one relayer's queue, one request at a time.

    Only the relayer's own task runs this processor, so the relayer's
    statistics, queue head and nonce are never touched concurrently.
    """

    def __init__(
        self,
        entry: RelayerEntry,
        ledger: "LedgerClient",
        nonces: NonceTracker,
        notifier: CompletionNotifier,
        settings: ProcessingConfig,
        gas_priority: PriorityTier = PriorityTier.MEDIUM,
    ) -> None:
        """
        Initialize the processor.

        Args:
            entry: Registry entry of the relayer to drain
            ledger: Ledger client used for balance, fee, submission and receipts
            nonces: Shared nonce tracker
            notifier: Receives one result per terminal request
            settings: Retry, timeout and delay settings
            gas_priority: Fee tier for submissions
        """
        self.entry = entry
        self.ledger = ledger
        self.nonces = nonces
        self.notifier = notifier
        self.settings = settings
        self.gas_priority = gas_priority

        self.state = ProcessorState.IDLE
        self.consecutive_failures = 0
        # Set after a failed attempt; the next nonce read must ignore the mempool
        self.recover_nonce = False

    @property
    def address(self) -> str:
        return self.entry.address

    async def run(self) -> None:
        """
        Drain the queue until it is empty.

        If a drain pass ends with requests left (an unexpected error escaped
        an iteration), the same task pauses briefly and drains again so the
        work is never lost.
        """
        try:
            while self.entry.queue:
                try:
                    await self.drain()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Error in queue processing for relayer {self.address}: {e}", exc_info=True)

                if self.entry.queue:
                    logger.info(
                        f"Still {len(self.entry.queue)} transactions in queue for relayer "
                        f"{self.address}, continuing processing"
                    )
                    await self._pause(self.settings.reschedule_delay)
        finally:
            self.state = ProcessorState.IDLE

    async def drain(self) -> None:
        """Process queued requests until the queue is empty."""
        self.state = ProcessorState.DRAINING
        logger.info(f"Processing queue for relayer {self.address} ({len(self.entry.queue)} transactions)")

        while self.entry.queue:
            await self._refresh_nonce(NonceMode.LATEST if self.recover_nonce else NonceMode.PENDING)

            if self.consecutive_failures >= self.settings.cooldown_threshold:
                await self._cool_down()

            request = self.entry.queue[0]

            if request.retry_count >= self.settings.max_retries:
                logger.warning(
                    f"Transaction for {request.recipient} ({request.amount} tokens) has been "
                    f"retried {request.retry_count} times - removing from queue"
                )
                self._finish(
                    request,
                    success=False,
                    tx_hash=request.last_submission.tx_hash if request.last_submission else None,
                    error=f"Max retries ({self.settings.max_retries}) exceeded",
                )
                continue

            await self._process_head(request)

        self.state = ProcessorState.IDLE

    async def _process_head(self, request: TransferRequest) -> None:
        await self._pause(self.settings.tx_delay)
        logger.info(
            f"Relayer {self.address} transferring {request.amount} tokens to {request.recipient} "
            f"- attempt #{request.retry_count + 1}"
        )

        try:
            confirmation = await self._attempt(request)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._handle_failure(request, e)
            return

        self.entry.stats.record_success(confirmation.tx_hash, Decimal(request.amount))
        logger.info(
            f"✓ Transfer successful: {confirmation.tx_hash} for {request.recipient} ({request.amount} tokens)"
        )
        self._finish(request, success=True, tx_hash=confirmation.tx_hash, gas_used=confirmation.gas_used)
        self.consecutive_failures = 0
        self.recover_nonce = False
        await self._pause(self.settings.tx_delay)

    async def _attempt(self, request: TransferRequest) -> Confirmation:
        """
        Submit one transfer and wait for its receipt.

        A request that was broadcast before is not resubmitted once that
        earlier transaction has been mined.

        Raises:
            InsufficientBalanceError: If the treasury cannot cover the amount
            ConfirmationTimeoutError: If no receipt arrived in time
            Exception: Any ledger client error
        """
        if request.last_submission is not None:
            confirmation = await self.ledger.get_receipt(request.last_submission)
            if confirmation is not None:
                logger.info(
                    f"Earlier submission {request.last_submission.tx_hash} for {request.recipient} "
                    "was mined, not resubmitting"
                )
                return confirmation

        balance = await self.ledger.get_balance(self.ledger.backing_address)
        if balance < request.amount:
            raise InsufficientBalanceError(
                f"Insufficient treasury balance. Have {balance}, need {request.amount}"
            )

        fee = estimate_fees(await self.ledger.get_fee_quote(), self.gas_priority)

        nonce = self.nonces.get(self.address)
        pending = await self.ledger.submit_transfer(
            self.entry.identity, request.recipient, request.amount, nonce, fee
        )
        request.last_submission = pending
        # Optimistically consume the nonce; the next refresh corrects it
        self.nonces.advance(self.address)
        self.entry.stats.current_nonce = self.nonces.get(self.address)

        logger.info(f"Waiting for transaction {pending.tx_hash} (nonce {nonce}) to be confirmed...")
        try:
            return await asyncio.wait_for(
                self.ledger.await_confirmation(pending),
                timeout=self.settings.confirmation_timeout
            )
        except asyncio.TimeoutError:
            raise ConfirmationTimeoutError(
                f"Transaction {pending.tx_hash} confirmation timeout after "
                f"{self.settings.confirmation_timeout}s"
            ) from None

    async def _handle_failure(self, request: TransferRequest, error: Exception) -> None:
        message = str(error) or type(error).__name__
        logger.error(f"✗ Transaction error for relayer {self.address}: {message}")
        self.entry.stats.record_failure(message)
        self.recover_nonce = True

        if classify_error(error) is ErrorKind.PERMANENT:
            logger.warning("Permanent error detected, removing transaction from queue")
            self._finish(request, success=False, error=message)
            return

        previous_retries = request.retry_count
        request.retry_count += 1
        self.consecutive_failures += 1
        logger.info(f"Temporary error, consecutive failures: {self.consecutive_failures}")

        if is_nonce_error(error):
            logger.warning(f"Nonce conflict for relayer {self.address}, resyncing from the latest block")

        backoff = self.settings.backoff_for(previous_retries)
        logger.info(f"Backing off for {backoff}s before retry")
        await self._pause(backoff)

    async def _cool_down(self) -> None:
        self.state = ProcessorState.COOLING
        logger.warning(
            f"Too many consecutive failures for relayer {self.address}, "
            f"pausing queue processing for {self.settings.cooldown_seconds}s"
        )
        await self._pause(self.settings.cooldown_seconds)
        await self._refresh_nonce(NonceMode.LATEST)
        self.consecutive_failures = 0
        self.state = ProcessorState.DRAINING
        logger.info(f"Resuming queue processing for relayer {self.address} after cooldown")

    async def _refresh_nonce(self, mode: NonceMode) -> bool:
        """Re-read the nonce from the ledger; keep the cached value on failure."""
        try:
            nonce = await self.nonces.refresh(self.address, mode)
        except Exception as e:
            logger.error(f"Error refreshing nonce for {self.address} ({mode.value}): {e}")
            return False
        self.entry.stats.current_nonce = nonce
        return True

    def _finish(
        self,
        request: TransferRequest,
        success: bool,
        tx_hash: str | None = None,
        gas_used: int | None = None,
        error: str | None = None,
    ) -> None:
        """Remove the head request and report its terminal outcome."""
        self.entry.pop_head()
        self.notifier.notify(TransferResult(
            hash=tx_hash,
            recipient=request.recipient,
            amount=request.amount,
            success=success,
            relayer_address=self.address,
            relayer_index=self.entry.index,
            error=error,
            gas_used=gas_used,
        ))

    async def _pause(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)
