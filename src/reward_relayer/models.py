"""
Shared data models for the Reward Relayer.

This module contains the data classes and enums used across the relay
components: relayer identities and their statistics, queued transfer
requests, fee data and the completion payload.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from eth_account.signers.local import LocalAccount

TOKEN_DECIMALS = 18
MAX_UINT256 = 2**256 - 1


class PriorityTier(str, Enum):
    """Fee priority tiers used by the fee estimator."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class NonceMode(str, Enum):
    """Block tag used when reading an account's transaction count."""
    LATEST = "latest"
    PENDING = "pending"


@dataclass(frozen=True, slots=True)
class RelayerIdentity:
    """A signing account that submits transfers on behalf of the pool.

    Attributes:
        index: Position of the relayer in the pool
        address: Checksummed address of the account
        account: Local signing account derived from the private key
    """
    index: int
    address: str
    account: LocalAccount = field(repr=False, compare=False)


@dataclass(slots=True)
class RelayerStats:
    """Live statistics for one relayer.

    Attributes:
        index: Position of the relayer in the pool
        address: Relayer address
        active: Whether the relayer may receive new requests
        current_nonce: Cached next nonce
        total_sent: Transfers attempted to completion (success or failure)
        total_success: Confirmed transfers
        total_failed: Failed attempts
        last_error: Message of the most recent failure
        last_error_timestamp: Unix time of the most recent failure
        last_success_hash: Hash of the most recent confirmed transfer
        last_success_timestamp: Unix time of the most recent confirmed transfer
        tokens_transferred: Sum of confirmed amounts
        queue_length: Number of requests waiting in the relayer's queue
    """
    index: int
    address: str
    active: bool = True
    current_nonce: int = 0
    total_sent: int = 0
    total_success: int = 0
    total_failed: int = 0
    last_error: str | None = None
    last_error_timestamp: float | None = None
    last_success_hash: str | None = None
    last_success_timestamp: float | None = None
    tokens_transferred: Decimal = Decimal(0)
    queue_length: int = 0

    def record_success(self, tx_hash: str, amount: Decimal) -> None:
        self.total_sent += 1
        self.total_success += 1
        self.last_success_hash = tx_hash
        self.last_success_timestamp = time.time()
        self.tokens_transferred += amount

    def record_failure(self, error: str) -> None:
        self.total_sent += 1
        self.total_failed += 1
        self.last_error = error
        self.last_error_timestamp = time.time()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for status responses."""
        return {
            "index": self.index,
            "address": self.address,
            "active": self.active,
            "current_nonce": self.current_nonce,
            "total_sent": self.total_sent,
            "total_success": self.total_success,
            "total_failed": self.total_failed,
            "last_error": self.last_error,
            "last_error_timestamp": self.last_error_timestamp,
            "last_success_hash": self.last_success_hash,
            "last_success_timestamp": self.last_success_timestamp,
            "tokens_transferred": str(self.tokens_transferred),
            "queue_length": self.queue_length,
        }


def to_base_units(amount: Decimal, decimals: int = TOKEN_DECIMALS) -> int:
    """
    Convert whole tokens to integer base units without rounding.

    Raises:
        ValueError: If the amount is not finite, has more than `decimals`
            fractional digits or does not fit in a uint256
    """
    value = Decimal(amount)
    if not value.is_finite():
        raise ValueError(f"Amount must be finite, got {amount!r}")

    sign, digits, exponent = value.as_tuple()
    coefficient = int("".join(map(str, digits)))
    shift = exponent + decimals

    if coefficient == 0:
        return 0
    if shift > len(str(MAX_UINT256)):
        raise ValueError(f"Amount {amount} exceeds the token's uint256 range")

    if shift >= 0:
        units = coefficient * 10**shift
    else:
        units, remainder = divmod(coefficient, 10**-shift)
        if remainder:
            raise ValueError(f"Amount {amount} has more than {decimals} decimal places")

    if sign:
        units = -units
    if units > MAX_UINT256:
        raise ValueError(f"Amount {amount} exceeds the token's uint256 range")
    return units


@dataclass(frozen=True, slots=True)
class PendingTransfer:
    """Handle for a submitted, not yet confirmed transfer."""
    tx_hash: str
    nonce: int


@dataclass(slots=True)
class TransferRequest:
    """A pending reward transfer bound to one relayer queue.

    Attributes:
        recipient: Checksummed address receiving the tokens
        amount: Number of whole tokens to transfer
        enqueued_at: Unix time the request was admitted
        retry_count: Number of transient failures so far
        last_submission: Most recent broadcast for this request, if any
    """
    recipient: str
    amount: Decimal
    enqueued_at: float = field(default_factory=time.time)
    retry_count: int = 0
    last_submission: PendingTransfer | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for queue status responses."""
        return {
            "recipient": self.recipient,
            "amount": str(self.amount),
            "enqueued_at": self.enqueued_at,
            "retry_count": self.retry_count,
            "last_tx_hash": self.last_submission.tx_hash if self.last_submission else None,
        }


@dataclass(frozen=True, slots=True)
class TransferResult:
    """Terminal outcome of a transfer request, passed to the completion callback.

    Attributes:
        hash: Transaction hash, None when the transfer never confirmed
        recipient: Address that was rewarded
        amount: Requested amount
        success: Whether the transfer confirmed
        relayer_address: Relayer that handled the request
        relayer_index: Pool index of that relayer
        error: Failure reason when success is False
        gas_used: Gas consumed by the confirmed transaction
    """
    hash: str | None
    recipient: str
    amount: Decimal
    success: bool
    relayer_address: str
    relayer_index: int
    error: str | None = None
    gas_used: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "hash": self.hash,
            "recipient": self.recipient,
            "amount": str(self.amount),
            "success": self.success,
            "relayer_address": self.relayer_address,
            "relayer_index": self.relayer_index,
            "error": self.error,
            "gas_used": self.gas_used,
        }


@dataclass(frozen=True, slots=True)
class NetworkFeeData:
    """Fee market data as reported by the node, in wei.

    Either component may be None when the node does not report it.
    """
    max_fee_per_gas: int | None = None
    max_priority_fee_per_gas: int | None = None


@dataclass(frozen=True, slots=True)
class FeeQuote:
    """EIP-1559 fee parameters for a submission, in wei."""
    max_fee_per_gas: int
    max_priority_fee_per_gas: int


@dataclass(frozen=True, slots=True)
class Confirmation:
    """Receipt data of a confirmed transfer."""
    tx_hash: str
    gas_used: int
    block_number: int
