"""
Reward Relayer service.

This module contains the service object that wires configuration, key
loading, the ledger client and the relayer pool together and exposes the
inbound API used by the outer application layer.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any

import httpx

from .completion_notifier import CompletionCallback
from .config import RelayerConfig, load_relayer_credentials
from .errors import InitializationError, RelayerError
from .fee_estimator import estimate_fees
from .ledger_client import LedgerClient, Web3LedgerClient
from .relayer_pool import RelayerPool
from .utils.contract_utility import ContractUtility
from .utils.rofl_utility import RoflUtility

logger = logging.getLogger(__name__)


class RelayerService:
    """
    Main relayer service that owns the relayer pool.

    The service translates pool errors into boolean results for the
    inbound API and runs a periodic status logger until stopped.
    """

    STATUS_LOG_INTERVAL = 30  # seconds

    def __init__(
        self,
        config: RelayerConfig,
        ledger: LedgerClient | None = None,
        rofl_util: RoflUtility | None = None,
    ) -> None:
        """
        Initialize the service.

        Args:
            config: Relayer configuration
            ledger: Ledger client; built from the chain configuration when omitted
            rofl_util: ROFL utility for key fetching; created when not in local mode
        """
        self.config = config
        self.local_mode = config.local_mode
        self.running = False

        self.ledger = ledger or self._init_ledger()
        self.rofl_util = rofl_util or (None if self.local_mode else RoflUtility())

        self.pool = RelayerPool(
            ledger=self.ledger,
            settings=config.processing,
            gas_priority=config.pool.gas_priority,
            min_gas_balance=config.pool.min_gas_balance,
        )

        self.shutdown_event = asyncio.Event()

    def _init_ledger(self) -> Web3LedgerClient:
        chain = self.config.chain
        contract_util = ContractUtility(rpc_url=chain.rpc_url)
        treasury_account = (
            ContractUtility.load_account(chain.treasury_private_key)
            if chain.treasury_private_key else None
        )
        logger.info(f"Initialized ledger client in {'local' if self.local_mode else 'ROFL'} mode")
        return Web3LedgerClient(
            contract_util=contract_util,
            token_address=chain.token_contract_address,
            treasury_address=chain.treasury_address,
            treasury_account=treasury_account,
        )

    @classmethod
    def from_env(cls, local_mode: bool = False) -> "RelayerService":
        """
        Create a RelayerService from environment variables.

        Args:
            local_mode: Read relayer keys from the environment instead of ROFL

        Returns:
            Configured RelayerService instance

        Raises:
            ValueError: If required environment variables are missing
        """
        config = RelayerConfig.from_env(local_mode=local_mode)
        config.log_config()
        return cls(config)

    async def _load_credentials(self) -> list[str]:
        if self.rofl_util is None:
            return load_relayer_credentials(self.config)

        count = self.config.pool.num_relayers if self.config.pool.enabled else 1
        logger.info(f"Fetching {count} relayer keys from ROFL key manager")
        return await self.rofl_util.fetch_relayer_keys(count)

    async def initialize(self) -> bool:
        """
        Load relayer keys and initialize the pool.

        Returns:
            True if the pool has at least one relayer
        """
        if self.pool.initialized:
            return True

        try:
            credentials = await self._load_credentials()
            await self.pool.initialize(credentials)
        except InitializationError as e:
            logger.error(f"Failed to initialize relayer system: {e}")
            return False
        except httpx.HTTPError as e:
            logger.error(f"Failed to fetch relayer keys from ROFL: {e}")
            return False

        await self._provision_allowances()
        return True

    async def _provision_allowances(self) -> None:
        """Make sure every relayer may spend the treasury's tokens."""
        if not isinstance(self.ledger, Web3LedgerClient):
            return

        try:
            fee = estimate_fees(await self.ledger.get_fee_quote(), self.config.pool.gas_priority)
        except Exception as e:
            logger.error(f"Could not price allowance approvals: {e}")
            return

        for entry in self.pool.registry:
            try:
                await self.ledger.ensure_allowance(entry.address, fee)
            except Exception as e:
                logger.error(f"Error setting allowance for relayer {entry.address}: {e}")

    def queue_reward(self, recipient: str, amount: Decimal | int | str) -> bool:
        """
        Queue a reward transfer.

        Returns:
            True if the request was queued
        """
        try:
            self.pool.enqueue(recipient, amount)
        except RelayerError as e:
            logger.error(f"Error queueing reward for {recipient}: {e}")
            return False
        return True

    def set_relayer_status(self, address: str, active: bool) -> bool:
        return self.pool.set_active(address, active)

    async def refresh_nonce(self, index: int) -> bool:
        return await self.pool.refresh_nonce(index)

    def get_status(self) -> dict[str, Any]:
        return self.pool.get_status()

    def get_queue_status(self) -> dict[str, Any]:
        return self.pool.get_queue_status()

    def set_completion_callback(self, callback: CompletionCallback) -> bool:
        """Register the completion callback; False if it is not callable."""
        try:
            self.pool.register_completion_callback(callback)
        except TypeError as e:
            logger.error(f"Invalid completion callback: {e}")
            return False
        return True

    def process_all_queues(self) -> int:
        return self.pool.process_all_queues()

    async def _periodic_status_logger(self) -> None:
        """Log queue status periodically while running."""
        while self.running:
            await asyncio.sleep(self.STATUS_LOG_INTERVAL)
            status = self.pool.get_queue_status()
            if status["total_pending"] > 0:
                busy = sum(1 for queue in status["queues_by_relayer"].values() if queue["is_processing"])
                logger.info(
                    f"Status: {status['total_pending']} transfers pending, "
                    f"{busy} relayers processing"
                )

    async def run(self) -> None:
        """
        Main loop for the relayer service.

        Raises:
            RuntimeError: If the relayer pool cannot be initialized
        """
        self.running = True
        logger.info("Reward Relayer starting...")

        status_task: asyncio.Task | None = None
        try:
            if not await self.initialize():
                raise RuntimeError("Relayer pool could not be initialized")

            status_task = asyncio.create_task(self._periodic_status_logger())
            logger.info("Reward Relayer ready, waiting for transfers...")
            await self.shutdown_event.wait()

        except Exception as e:
            logger.error(f"Error in main loop: {e}", exc_info=True)
            raise
        finally:
            self.running = False
            if status_task and not status_task.done():
                status_task.cancel()
                try:
                    await status_task
                except asyncio.CancelledError:
                    pass  # Expected when cancelling
            await self.pool.close()
            logger.info("Reward Relayer stopped")

    def stop(self) -> None:
        """Stop the relayer service."""
        self.running = False
        self.shutdown_event.set()

    async def close(self) -> None:
        """Stop processing without running the main loop."""
        await self.pool.close()
