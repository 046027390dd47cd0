"""Configuration management for the Reward Relayer.

This module provides type-safe configuration dataclasses with validation.
Configuration is loaded from environment variables with sensible defaults
where appropriate.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import ClassVar
from urllib.parse import urlparse

from eth_account import Account
from web3 import Web3

from .fee_estimator import parse_priority_tier
from .models import PriorityTier

logger = logging.getLogger(__name__)


def _validate_private_key(key: str, name: str) -> None:
    """Check that a private key is 64 hex characters, optionally 0x-prefixed."""
    raw = key[2:] if key.startswith('0x') else key
    if len(raw) != 64:
        raise ValueError(
            f"Invalid {name} length. Expected 64 hex characters, got {len(raw)}"
        )
    try:
        int(raw, 16)
    except ValueError:
        raise ValueError(f"Invalid {name} format. Must be hexadecimal") from None


def _checksum(address: str, name: str) -> str:
    if not Web3.is_address(address):
        raise ValueError(f"Invalid {name}: {address}")
    return Web3.to_checksum_address(address)


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """Configuration for the ledger the rewards are paid on.

    Attributes:
        rpc_url: HTTP(S) RPC endpoint
        token_contract_address: Checksummed address of the reward token
        treasury_address: Checksummed address holding the reward tokens
        treasury_private_key: Treasury key, needed only to grant allowances
    """

    rpc_url: str
    token_contract_address: str
    treasury_address: str
    treasury_private_key: str | None = None

    def __post_init__(self) -> None:
        """Validate chain configuration."""
        if not self.rpc_url:
            raise ValueError("RPC URL is required (RPC_URL)")

        parsed = urlparse(self.rpc_url)
        if parsed.scheme not in ('http', 'https'):
            raise ValueError(
                f"Invalid RPC URL scheme: {parsed.scheme}. Expected http or https"
            )

        if not self.token_contract_address:
            raise ValueError("Token contract address is required (TOKEN_CONTRACT_ADDRESS)")
        object.__setattr__(
            self,
            'token_contract_address',
            _checksum(self.token_contract_address, "token contract address")
        )

        if self.treasury_private_key:
            _validate_private_key(self.treasury_private_key, "treasury private key")

        if not self.treasury_address:
            raise ValueError("Treasury address is required (TREASURY_ADDRESS)")
        object.__setattr__(
            self,
            'treasury_address',
            _checksum(self.treasury_address, "treasury address")
        )


@dataclass(frozen=True, slots=True)
class RelayerPoolConfig:
    """Configuration for the relayer accounts.

    Attributes:
        enabled: Use the multi-relayer pool; otherwise the owner key relays alone
        num_relayers: Maximum number of relayer keys to load
        private_keys: Relayer keys in slot order
        wallets_file: JSON file with relayer keys, used when no keys are set
        owner_private_key: Fallback relayer key
        min_gas_balance: Native balance (ether) below which a relayer is reported
        gas_priority: Fee priority tier for submissions
    """

    enabled: bool = True
    num_relayers: int = 20
    private_keys: tuple[str, ...] = ()
    wallets_file: str | None = None
    owner_private_key: str | None = None
    min_gas_balance: Decimal = Decimal("0.01")
    gas_priority: PriorityTier = PriorityTier.MEDIUM

    MAX_RELAYERS: ClassVar[int] = 100

    def __post_init__(self) -> None:
        """Validate relayer pool configuration."""
        if self.num_relayers <= 0:
            raise ValueError(f"Number of relayers must be positive, got {self.num_relayers}")
        if self.num_relayers > self.MAX_RELAYERS:
            raise ValueError(
                f"Number of relayers too high (max {self.MAX_RELAYERS}), got {self.num_relayers}"
            )
        if self.min_gas_balance < 0:
            raise ValueError(f"Minimum gas balance must be non-negative, got {self.min_gas_balance}")
        if self.owner_private_key:
            _validate_private_key(self.owner_private_key, "owner private key")


@dataclass(frozen=True, slots=True)
class ProcessingConfig:
    """Timing and retry settings for queue processing."""
    max_retries: int = 5
    confirmation_timeout: float = 60  # seconds
    cooldown_seconds: float = 15
    cooldown_threshold: int = 3  # consecutive failures before cooling down
    backoff_base: float = 2  # seconds
    backoff_cap: float = 30  # seconds
    tx_delay: float = 0.1  # pause around each transaction
    reschedule_delay: float = 0.1

    def __post_init__(self) -> None:
        """Validate processing configuration."""
        if self.max_retries < 0:
            raise ValueError(f"Max retries must be non-negative, got {self.max_retries}")
        if self.max_retries > 20:
            raise ValueError(f"Max retries too high (max 20), got {self.max_retries}")

        if self.confirmation_timeout <= 0:
            raise ValueError(
                f"Confirmation timeout must be positive, got {self.confirmation_timeout}"
            )
        if self.confirmation_timeout > 600:
            raise ValueError(
                f"Confirmation timeout too long (max 600s), got {self.confirmation_timeout}"
            )

        if self.cooldown_threshold <= 0:
            raise ValueError(
                f"Cooldown threshold must be positive, got {self.cooldown_threshold}"
            )

        for name in ('cooldown_seconds', 'backoff_base', 'backoff_cap', 'tx_delay', 'reschedule_delay'):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")

        if self.backoff_cap < self.backoff_base:
            raise ValueError(
                f"Backoff cap ({self.backoff_cap}s) must not be below backoff base ({self.backoff_base}s)"
            )

    def backoff_for(self, retry_count: int) -> float:
        """Exponential backoff in seconds for a request's retry count."""
        return min(self.backoff_base * (2 ** retry_count), self.backoff_cap)


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, str(default))
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {value!r}") from None


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name, str(default))
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number, got {value!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True, slots=True)
class RelayerConfig:
    """Main configuration for the Reward Relayer.

    Attributes:
        chain: Ledger connection and token configuration
        pool: Relayer account configuration
        processing: Queue processing settings
        local_mode: Whether keys come from the environment instead of ROFL
    """

    chain: ChainConfig
    pool: RelayerPoolConfig = field(default_factory=RelayerPoolConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    local_mode: bool = False

    @classmethod
    def from_env(cls, local_mode: bool = False) -> "RelayerConfig":
        """Load configuration from environment variables.

        Args:
            local_mode: Read relayer keys from the environment (for testing)

        Returns:
            RelayerConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        rpc_url = os.environ.get("RPC_URL", "")
        if not rpc_url:
            raise ValueError(
                "RPC_URL environment variable is required. "
                "This is the RPC endpoint of the chain the rewards are paid on."
            )

        token_address = os.environ.get("TOKEN_CONTRACT_ADDRESS", "")
        if not token_address:
            raise ValueError(
                "TOKEN_CONTRACT_ADDRESS environment variable is required. "
                "This should be the reward token contract address."
            )

        treasury_key = os.environ.get("TREASURY_PRIVATE_KEY") or None
        treasury_address = os.environ.get("TREASURY_ADDRESS", "")
        if not treasury_address and treasury_key:
            _validate_private_key(treasury_key, "treasury private key")
            treasury_address = Account.from_key(treasury_key).address
        if not treasury_address:
            raise ValueError(
                "TREASURY_ADDRESS or TREASURY_PRIVATE_KEY environment variable is required. "
                "This is the account holding the reward tokens."
            )

        chain_config = ChainConfig(
            rpc_url=rpc_url,
            token_contract_address=token_address,
            treasury_address=treasury_address,
            treasury_private_key=treasury_key
        )

        num_relayers = _env_int("NUM_RELAYERS", 20)
        private_keys = tuple(
            key for slot in range(1, num_relayers + 1)
            if (key := os.environ.get(f"RELAYER_PRIVATE_KEY_{slot}"))
        )

        try:
            min_gas_balance = Decimal(os.environ.get("RELAYER_MIN_BALANCE", "0.01"))
        except InvalidOperation:
            raise ValueError("RELAYER_MIN_BALANCE must be a decimal amount of ether") from None

        pool_config = RelayerPoolConfig(
            enabled=_env_bool("ENABLE_RELAYER_SYSTEM", True),
            num_relayers=num_relayers,
            private_keys=private_keys,
            wallets_file=os.environ.get("RELAYER_WALLETS_FILE") or None,
            owner_private_key=os.environ.get("OWNER_PRIVATE_KEY") or os.environ.get("PRIVATE_KEY") or None,
            min_gas_balance=min_gas_balance,
            gas_priority=parse_priority_tier(os.environ.get("GAS_PRIORITY", "medium"))
        )

        processing_config = ProcessingConfig(
            max_retries=_env_int("MAX_RETRIES", 5),
            confirmation_timeout=_env_float("CONFIRMATION_TIMEOUT", 60),
            cooldown_seconds=_env_float("COOLDOWN_SECONDS", 15),
            cooldown_threshold=_env_int("COOLDOWN_THRESHOLD", 3),
            backoff_base=_env_float("BACKOFF_BASE", 2),
            backoff_cap=_env_float("BACKOFF_CAP", 30),
            tx_delay=_env_float("TX_DELAY", 0.1),
            reschedule_delay=_env_float("RESCHEDULE_DELAY", 0.1)
        )

        return cls(
            chain=chain_config,
            pool=pool_config,
            processing=processing_config,
            local_mode=local_mode
        )

    def log_config(self) -> None:
        """Log the configuration, hiding sensitive data."""
        logger.info("=" * 60)
        logger.info("Reward Relayer Configuration")
        logger.info("=" * 60)

        logger.info(f"Mode: {'LOCAL' if self.local_mode else 'ROFL'}")

        logger.info("Chain:")
        logger.info(f"  RPC URL: {self.chain.rpc_url}")
        logger.info(f"  Token: {self.chain.token_contract_address}")
        logger.info(f"  Treasury: {self.chain.treasury_address}")
        logger.info(f"  Treasury Key: {'[SET]' if self.chain.treasury_private_key else '[NOT SET]'}")

        logger.info("Relayer Pool:")
        logger.info(f"  Multi-relayer: {'enabled' if self.pool.enabled else 'disabled'}")
        logger.info(f"  Max Relayers: {self.pool.num_relayers}")
        logger.info(f"  Relayer Keys: {len(self.pool.private_keys)} configured")
        logger.info(f"  Wallets File: {self.pool.wallets_file or '[NOT SET]'}")
        logger.info(f"  Owner Key: {'[SET]' if self.pool.owner_private_key else '[NOT SET]'}")
        logger.info(f"  Gas Priority: {self.pool.gas_priority.value.upper()}")

        logger.info("Processing:")
        logger.info(f"  Max Retries: {self.processing.max_retries}")
        logger.info(f"  Confirmation Timeout: {self.processing.confirmation_timeout}s")
        logger.info(
            f"  Cooldown: {self.processing.cooldown_seconds}s after "
            f"{self.processing.cooldown_threshold} consecutive failures"
        )
        logger.info(
            f"  Backoff: {self.processing.backoff_base}s base, {self.processing.backoff_cap}s cap"
        )

        logger.info("=" * 60)


def _load_wallets_file(path: str, limit: int) -> list[str]:
    """Read relayer keys from a JSON wallets file.

    The file holds {"wallets": [{"address": ..., "privateKey": ...}, ...]}.
    A stored address that does not match its key is reported but the key is
    still used.
    """
    with Path(path).open() as file:
        data = json.load(file)

    keys: list[str] = []
    for i, wallet in enumerate(data.get("wallets", [])[:limit]):
        key = wallet.get("privateKey")
        if not key:
            logger.warning(f"Wallet {i} in {path} has no private key, skipping")
            continue
        stored = wallet.get("address", "")
        try:
            derived = Account.from_key(key).address
        except Exception as e:
            logger.error(f"Wallet {i} in {path} has an invalid private key: {e}")
            continue
        if stored and stored.lower() != derived.lower():
            logger.warning(
                f"Address mismatch for relayer {i}. File: {stored}, Derived: {derived}"
            )
        keys.append(key)
    return keys


def load_relayer_credentials(config: RelayerConfig) -> list[str]:
    """Collect the private keys the relayer pool should use.

    Order of precedence: RELAYER_PRIVATE_KEY_<n> variables, the wallets
    file, then the owner key as the only relayer. With the multi-relayer
    pool disabled only the owner key is used.

    Args:
        config: Relayer configuration

    Returns:
        Private keys in pool order (possibly empty)
    """
    pool = config.pool
    owner = [pool.owner_private_key] if pool.owner_private_key else []

    if not pool.enabled:
        logger.info("Multi-wallet relayer system disabled. Using only owner wallet for transactions.")
        return owner

    if pool.private_keys:
        logger.info(f"Found {len(pool.private_keys)} relayer private keys in environment variables")
        return list(pool.private_keys[:pool.num_relayers])

    if pool.wallets_file:
        logger.info(f"No relayer keys in environment, trying wallets file {pool.wallets_file}")
        try:
            keys = _load_wallets_file(pool.wallets_file, pool.num_relayers)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading relayer wallets from {pool.wallets_file}: {e}")
            keys = []
        if keys:
            logger.info(f"Using {len(keys)} relayer wallets from file")
            return keys

    if owner:
        logger.warning("No relayer keys configured, using owner wallet as the only relayer")
    return owner
