"""Shared fixtures: an in-memory ledger and deterministic relayer keys."""

import asyncio
from decimal import Decimal

import pytest
from eth_account import Account

from src.reward_relayer.config import ProcessingConfig
from src.reward_relayer.models import (
    Confirmation,
    FeeQuote,
    NetworkFeeData,
    NonceMode,
    PendingTransfer,
    RelayerIdentity,
)

TREASURY = "0x00000000000000000000000000000000000000aa"
RECIPIENT = "0x1111111111111111111111111111111111111111"
OTHER_RECIPIENT = "0x2222222222222222222222222222222222222222"


def make_key(slot: int) -> str:
    return "0x" + f"{slot:064x}"


def make_identity(slot: int, index: int = 0) -> RelayerIdentity:
    account = Account.from_key(make_key(slot))
    return RelayerIdentity(index=index, address=account.address, account=account)


class FakeLedger:
    """Ledger client that mines every submission immediately.

    Errors queued in submit_errors / confirm_errors are raised by the next
    calls, one per call. With mine_on_submit off, submissions stay in the
    mempool: they count towards the pending nonce but not the latest one,
    and have no receipt.
    """

    def __init__(self, balance: Decimal = Decimal(1_000_000)) -> None:
        self.backing_address = TREASURY
        self.balance = balance
        self.gas_balance = Decimal(1)
        self.fee_data = NetworkFeeData()
        self.nonces: dict[str, int] = {}
        self.nonce_calls: list[tuple[str, NonceMode]] = []
        self.nonce_error: Exception | None = None
        self.submissions: list[tuple[str, str, Decimal, int, FeeQuote]] = []
        self.tx_hashes: list[str] = []
        self.submit_errors: list[Exception] = []
        self.confirm_errors: list[Exception] = []
        self.confirm_delay: float = 0
        self.confirm_delays: list[float] = []
        self.mine_on_submit = True
        self.mempool: dict[str, set[int]] = {}
        self.receipts: dict[str, Confirmation] = {}

    async def get_next_sequence_number(self, address: str, mode: NonceMode) -> int:
        self.nonce_calls.append((address, mode))
        if self.nonce_error is not None:
            raise self.nonce_error
        latest = self.nonces.get(address, 0)
        if mode is NonceMode.LATEST:
            return latest
        return max([latest, *(nonce + 1 for nonce in self.mempool.get(address, ()))])

    async def get_balance(self, address: str) -> Decimal:
        return self.balance

    async def get_gas_balance(self, address: str) -> Decimal:
        return self.gas_balance

    async def get_fee_quote(self) -> NetworkFeeData:
        return self.fee_data

    async def submit_transfer(self, identity, recipient, amount, nonce, fee) -> PendingTransfer:
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        self.submissions.append((identity.address, recipient, amount, nonce, fee))
        tx_hash = "0x" + f"{len(self.submissions):064x}"
        self.tx_hashes.append(tx_hash)
        if self.mine_on_submit:
            self.nonces[identity.address] = nonce + 1
            self.receipts[tx_hash] = Confirmation(tx_hash=tx_hash, gas_used=52_000, block_number=1)
        else:
            self.mempool.setdefault(identity.address, set()).add(nonce)
        return PendingTransfer(tx_hash=tx_hash, nonce=nonce)

    async def await_confirmation(self, pending: PendingTransfer) -> Confirmation:
        delay = self.confirm_delays.pop(0) if self.confirm_delays else self.confirm_delay
        if delay:
            await asyncio.sleep(delay)
        if self.confirm_errors:
            raise self.confirm_errors.pop(0)
        return Confirmation(tx_hash=pending.tx_hash, gas_used=52_000, block_number=1)

    async def get_receipt(self, pending: PendingTransfer) -> Confirmation | None:
        return self.receipts.get(pending.tx_hash)


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def fast_settings() -> ProcessingConfig:
    """Processing settings without any waiting."""
    return ProcessingConfig(
        confirmation_timeout=1,
        cooldown_seconds=0,
        backoff_base=0,
        backoff_cap=0,
        tx_delay=0,
        reschedule_delay=0,
    )
