"""
Error types and failure classification for the Reward Relayer.

Per-request failures are split into permanent errors, which cannot succeed
on retry, and transient errors, which are retried with backoff.
"""

import asyncio
from enum import Enum

from web3.exceptions import ContractLogicError, TimeExhausted


class ErrorKind(str, Enum):
    """Retry classification of a failed transfer attempt."""
    PERMANENT = "permanent"
    TRANSIENT = "transient"


class RelayerError(Exception):
    """Base class for relayer errors."""


class InitializationError(RelayerError):
    """The relayer pool could not be set up with any usable relayer."""


class InvalidRequestError(RelayerError):
    """A transfer request was rejected at admission."""


class NoAvailableRelayerError(RelayerError):
    """No active relayer can accept a request."""


class TransferError(RelayerError):
    """A single transfer attempt failed."""

    def __init__(self, message: str, permanent: bool = False) -> None:
        super().__init__(message)
        self.permanent = permanent


class InsufficientBalanceError(TransferError):
    """The treasury does not hold enough tokens for the transfer."""

    def __init__(self, message: str) -> None:
        super().__init__(message, permanent=True)


class TransferRevertedError(TransferError):
    """The transfer was mined but reverted."""

    def __init__(self, message: str) -> None:
        super().__init__(message, permanent=True)


class ConfirmationTimeoutError(TransferError):
    """No receipt arrived within the confirmation timeout."""

    def __init__(self, message: str = "Transaction confirmation timeout") -> None:
        super().__init__(message, permanent=False)


PERMANENT_ERROR_MARKERS: tuple[str, ...] = (
    "insufficient funds",
    "execution reverted",
    "cannot estimate gas",
    "gas required exceeds",
    "invalid address",
    "ownable:",
    "not the owner",
    "exceeds allowance",
    "insufficient allowance",
)

NONCE_ERROR_MARKERS: tuple[str, ...] = (
    "nonce",
    "already been used",
    "already known",
    "replacement transaction underpriced",
)


def classify_error(error: BaseException) -> ErrorKind:
    """
    Decide whether a failed transfer attempt may be retried.

    Args:
        error: Exception raised while submitting or confirming a transfer

    Returns:
        ErrorKind.PERMANENT if a retry cannot succeed, ErrorKind.TRANSIENT otherwise
    """
    match error:
        case TransferError(permanent=True):
            return ErrorKind.PERMANENT
        case TransferError():
            return ErrorKind.TRANSIENT
        case ContractLogicError():
            return ErrorKind.PERMANENT
        case asyncio.TimeoutError() | TimeExhausted():
            return ErrorKind.TRANSIENT

    message = str(error).lower()
    if any(marker in message for marker in PERMANENT_ERROR_MARKERS):
        return ErrorKind.PERMANENT
    return ErrorKind.TRANSIENT


def is_nonce_error(error: BaseException) -> bool:
    """Check whether an error indicates a nonce conflict."""
    message = str(error).lower()
    return any(marker in message for marker in NONCE_ERROR_MARKERS)
