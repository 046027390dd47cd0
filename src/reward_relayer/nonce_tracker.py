"""
Per-relayer nonce cache backed by the ledger's transaction count.
"""

import logging
from typing import TYPE_CHECKING

from .models import NonceMode

if TYPE_CHECKING:
    from .ledger_client import LedgerClient

logger = logging.getLogger(__name__)


class NonceTracker:
    """
    Caches the next nonce of each relayer.

    The pending mode counts transactions still in the mempool and is used
    during normal draining; the latest mode only counts mined transactions
    and is used to recover after errors, when a pending nonce may belong to
    a dropped transaction.
    """

    def __init__(self, ledger: "LedgerClient") -> None:
        self.ledger = ledger
        self._nonces: dict[str, int] = {}

    async def refresh(self, address: str, mode: NonceMode = NonceMode.PENDING) -> int:
        """
        Read the next nonce from the ledger and cache it.

        Raises:
            Exception: Whatever the ledger client raises; the cache is left untouched
        """
        nonce = await self.ledger.get_next_sequence_number(address, mode)
        self._nonces[address] = nonce
        logger.debug(f"Nonce for {address}: {nonce} ({mode.value} state)")
        return nonce

    def get(self, address: str) -> int:
        """Return the cached nonce; KeyError if the relayer was never read."""
        return self._nonces[address]

    def set(self, address: str, nonce: int) -> None:
        self._nonces[address] = nonce

    def advance(self, address: str) -> int:
        """Consume the cached nonce and return it."""
        nonce = self._nonces[address]
        self._nonces[address] = nonce + 1
        return nonce

    def __contains__(self, address: str) -> bool:
        return address in self._nonces
