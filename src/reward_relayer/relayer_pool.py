"""
Relayer pool coordination.

This module contains RelayerPool, which owns the relayer identities, routes
each admitted transfer to the least loaded active relayer and keeps exactly
one queue processor task running per relayer with queued work.
"""

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from eth_account import Account
from web3 import Web3

from .completion_notifier import CompletionCallback, CompletionNotifier
from .config import ProcessingConfig
from .errors import InitializationError, InvalidRequestError, NoAvailableRelayerError
from .models import NonceMode, PriorityTier, RelayerIdentity, TransferRequest, to_base_units
from .nonce_tracker import NonceTracker
from .queue_processor import QueueProcessor
from .registry import RelayerEntry, RelayerRegistry

if TYPE_CHECKING:
    from .ledger_client import LedgerClient

logger = logging.getLogger(__name__)


class RelayerPool:
    """
    Coordinates a pool of relayer accounts with one FIFO queue each.

    Requests are assigned once, at admission, to the active relayer with the
    shortest queue. Each relayer drains its queue in its own asyncio task,
    so relayers submit in parallel while every relayer's nonces stay ordered.
    """

    def __init__(
        self,
        ledger: "LedgerClient",
        settings: ProcessingConfig | None = None,
        gas_priority: PriorityTier = PriorityTier.MEDIUM,
        min_gas_balance: Decimal = Decimal("0.01"),
    ) -> None:
        """
        Initialize the pool.

        Args:
            ledger: Ledger client shared by every relayer
            settings: Queue processing settings
            gas_priority: Fee tier used for every submission
            min_gas_balance: Native balance (ether) below which a relayer is reported
        """
        self.ledger = ledger
        self.settings = settings or ProcessingConfig()
        self.gas_priority = gas_priority
        self.min_gas_balance = min_gas_balance

        self.registry = RelayerRegistry()
        self.nonces = NonceTracker(ledger)
        self.notifier = CompletionNotifier()
        self.processors: dict[str, QueueProcessor] = {}
        self.initialized = False

    async def initialize(self, credentials: list[str]) -> bool:
        """
        Register one relayer per private key.

        Keys that cannot be loaded, or whose nonce cannot be read, are skipped.

        Args:
            credentials: Relayer private keys in pool order

        Returns:
            True once at least one relayer is registered

        Raises:
            InitializationError: If no relayer could be registered
        """
        logger.info(f"Initializing relayer pool with {len(credentials)} keys")

        for key in credentials:
            try:
                account = Account.from_key(key)
            except Exception as e:
                logger.error(f"Skipping relayer key that cannot be loaded: {e}")
                continue

            if self.registry.get(account.address) is not None:
                logger.warning(f"Skipping duplicate relayer {account.address}")
                continue

            try:
                nonce = await self.ledger.get_next_sequence_number(account.address, NonceMode.LATEST)
            except Exception as e:
                logger.error(f"Skipping relayer {account.address}, nonce could not be read: {e}")
                continue

            await self._check_gas_balance(account.address)

            identity = RelayerIdentity(index=len(self.registry), address=account.address, account=account)
            entry = self.registry.add(identity, nonce=nonce)
            self.nonces.set(identity.address, nonce)
            self.processors[identity.address] = QueueProcessor(
                entry=entry,
                ledger=self.ledger,
                nonces=self.nonces,
                notifier=self.notifier,
                settings=self.settings,
                gas_priority=self.gas_priority,
            )
            logger.info(f"Relayer {identity.index}: {identity.address} (nonce {nonce})")

        if not len(self.registry):
            raise InitializationError("No valid relayer wallets could be initialized")

        self.initialized = True
        logger.info(f"Relayer pool initialized with {len(self.registry)} relayers")
        return True

    async def _check_gas_balance(self, address: str) -> None:
        try:
            balance = await self.ledger.get_gas_balance(address)
        except Exception as e:
            logger.warning(f"Could not read gas balance of relayer {address}: {e}")
            return
        if balance < self.min_gas_balance:
            logger.warning(
                f"Relayer {address} has low balance: {balance} (min: {self.min_gas_balance})"
            )

    def select_relayer(self) -> RelayerEntry | None:
        """Pick the active relayer with the shortest queue, or None."""
        return self.registry.shortest_queue()

    def enqueue(self, recipient: str, amount: Decimal | int | str) -> TransferRequest:
        """
        Admit a transfer and start the chosen relayer's processor if idle.

        Args:
            recipient: Address receiving the tokens
            amount: Whole tokens to transfer, strictly positive with at most 18 decimals

        Returns:
            The queued request

        Raises:
            InvalidRequestError: If the pool is not initialized or the request is malformed
            NoAvailableRelayerError: If no relayer is active
        """
        if not self.initialized:
            raise InvalidRequestError("Relayer pool is not initialized")

        if not recipient or not Web3.is_address(recipient):
            raise InvalidRequestError(f"Invalid recipient address: {recipient!r}")

        try:
            value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        except InvalidOperation:
            raise InvalidRequestError(f"Invalid amount: {amount!r}") from None
        if not value.is_finite() or value <= 0:
            raise InvalidRequestError(f"Amount must be positive, got {amount!r}")
        try:
            to_base_units(value)
        except ValueError as e:
            raise InvalidRequestError(str(e)) from None

        entry = self.select_relayer()
        if entry is None:
            raise NoAvailableRelayerError("No active relayers available")

        request = TransferRequest(recipient=Web3.to_checksum_address(recipient), amount=value)
        entry.append(request)
        logger.info(
            f"Queued {value} tokens for {request.recipient} on relayer {entry.index} "
            f"({entry.address}), queue length: {len(entry.queue)}"
        )

        self._start_processor(entry)
        return request

    def _start_processor(self, entry: RelayerEntry) -> bool:
        """Start the relayer's processor task unless one is already running."""
        if entry.is_processing:
            return False
        processor = self.processors[entry.address]
        entry.task = asyncio.create_task(processor.run(), name=f"relayer-{entry.index}")
        entry.task.add_done_callback(self._on_processor_done)
        return True

    @staticmethod
    def _on_processor_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        if (error := task.exception()) is not None:
            logger.error(f"Processor task {task.get_name()} stopped: {error}")

    def set_active(self, address: str, active: bool) -> bool:
        """
        Enable or disable a relayer for new requests.

        Requests already queued on the relayer are still processed.
        """
        entry = self.registry.get(address)
        if entry is None and Web3.is_address(address):
            entry = self.registry.get(Web3.to_checksum_address(address))
        if entry is None:
            logger.warning(f"Relayer {address} not found")
            return False

        entry.stats.active = active
        logger.info(f"Relayer {entry.index} ({entry.address}) {'activated' if active else 'deactivated'}")
        return True

    async def refresh_nonce(self, index: int) -> bool:
        """Re-read one relayer's pending nonce from the ledger."""
        entry = self.registry.by_index(index)
        if entry is None:
            logger.warning(f"Invalid relayer index: {index}")
            return False

        try:
            nonce = await self.nonces.refresh(entry.address, NonceMode.PENDING)
        except Exception as e:
            logger.error(f"Error refreshing nonce for relayer {index}: {e}")
            return False

        entry.stats.current_nonce = nonce
        logger.info(f"Refreshed nonce for relayer {index}: {nonce}")
        return True

    def process_all_queues(self) -> int:
        """Start processing every non-empty queue that is not already being drained."""
        started = sum(
            1 for entry in self.registry
            if entry.queue and self._start_processor(entry)
        )
        logger.info(f"Started processing for {started} relayer queues")
        return started

    def register_completion_callback(self, callback: CompletionCallback) -> None:
        """
        Register the callback for terminal transfer outcomes.

        Raises:
            TypeError: If callback is not callable
        """
        self.notifier.register(callback)

    def get_status(self) -> dict[str, Any]:
        return {
            "total_relayers": len(self.registry),
            "active_relayers": len(self.registry.active()),
            "relayer_stats": {entry.address: entry.stats.to_dict() for entry in self.registry},
        }

    def get_queue_status(self) -> dict[str, Any]:
        return {
            "total_pending": self.registry.total_pending(),
            "queues_by_relayer": {
                entry.address: {
                    "index": entry.index,
                    "length": len(entry.queue),
                    "is_processing": entry.is_processing,
                    "state": self.processors[entry.address].state.value,
                    "transactions": [request.to_dict() for request in entry.queue],
                }
                for entry in self.registry
            },
        }

    async def wait_until_idle(self) -> None:
        """Wait until no relayer processor is running."""
        while running := [entry.task for entry in self.registry if entry.is_processing]:
            await asyncio.wait(running)

    async def close(self) -> None:
        """Cancel all processor tasks and wait for them to finish."""
        tasks = [entry.task for entry in self.registry if entry.is_processing]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Relayer pool closed")
