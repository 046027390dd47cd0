#!/usr/bin/env python3
"""Unit tests for the web3 ledger client."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3Exception

from src.reward_relayer.errors import TransferRevertedError
from src.reward_relayer.ledger_client import Web3LedgerClient
from src.reward_relayer.models import FeeQuote, NonceMode, PendingTransfer, RelayerIdentity

from conftest import RECIPIENT, TREASURY

TOKEN = "0x85BfE05492aFC3D04Ff3B2ca6771ACF6f853d90d"
RELAYER = "0x3333333333333333333333333333333333333333"
TX_HASH = b"\x12" * 32
FEE = FeeQuote(max_fee_per_gas=90 * 10**9, max_priority_fee_per_gas=3 * 10**9)


async def awaitable(value):
    return value


async def failing(error):
    raise error


@pytest.fixture
def mock_token():
    """Create a mock token contract."""
    token = MagicMock()
    token.address = TOKEN
    return token


@pytest.fixture
def mock_contract_util(mock_token):
    """Create a mock ContractUtility instance."""
    util = MagicMock()
    util.w3 = MagicMock()
    util.w3.eth.send_raw_transaction = AsyncMock(return_value=TX_HASH)
    util.get_contract.return_value = mock_token
    return util


@pytest.fixture
def client(mock_contract_util):
    return Web3LedgerClient(
        contract_util=mock_contract_util,
        token_address=TOKEN,
        treasury_address=TREASURY
    )


def signer() -> MagicMock:
    account = MagicMock()
    account.sign_transaction.return_value = MagicMock(raw_transaction=b"signed")
    return account


def receipt(status: int = 1) -> dict:
    return {"status": status, "transactionHash": TX_HASH, "gasUsed": 51_234, "blockNumber": 7}


class TestReads:
    """Tests for ledger reads."""

    def test_loads_token_contract(self, client, mock_contract_util):
        mock_contract_util.get_contract.assert_called_once_with("RewardToken", TOKEN)
        assert client.backing_address == Web3.to_checksum_address(TREASURY)

    @pytest.mark.asyncio
    async def test_sequence_number_uses_block_tag(self, client, mock_contract_util):
        mock_contract_util.w3.eth.get_transaction_count = AsyncMock(return_value=5)

        assert await client.get_next_sequence_number(RELAYER, NonceMode.PENDING) == 5
        mock_contract_util.w3.eth.get_transaction_count.assert_awaited_once_with(RELAYER, "pending")

    @pytest.mark.asyncio
    async def test_balance_in_whole_tokens(self, client, mock_token):
        mock_token.functions.balanceOf.return_value.call = AsyncMock(return_value=25 * 10**17)

        assert await client.get_balance(TREASURY) == Decimal("2.5")

    @pytest.mark.asyncio
    async def test_gas_balance_in_ether(self, client, mock_contract_util):
        mock_contract_util.w3.eth.get_balance = AsyncMock(return_value=10**16)

        assert await client.get_gas_balance(RELAYER) == Decimal("0.01")

    def test_unit_conversion(self, client):
        assert client.to_units(Decimal("1.5")) == 15 * 10**17
        assert client.to_units(Decimal("1.000000000000000000000")) == 10**18
        assert client.to_units(Decimal("1E-18")) == 1
        assert client.from_units(10**18) == Decimal(1)

    @pytest.mark.parametrize("amount", [Decimal("1E-19"), Decimal("0.1234567890123456789"), Decimal("1E+60")])
    def test_unit_conversion_never_rounds(self, client, amount):
        with pytest.raises(ValueError):
            client.to_units(amount)


class TestFeeQuote:
    """Tests for get_fee_quote."""

    @pytest.mark.asyncio
    async def test_combines_base_and_priority_fee(self, client, mock_contract_util):
        mock_contract_util.w3.eth.get_block = AsyncMock(return_value={"baseFeePerGas": 10})
        mock_contract_util.w3.eth.max_priority_fee = awaitable(2)

        quote = await client.get_fee_quote()

        assert quote.max_fee_per_gas == 22
        assert quote.max_priority_fee_per_gas == 2

    @pytest.mark.asyncio
    async def test_missing_components_are_none(self, client, mock_contract_util):
        mock_contract_util.w3.eth.get_block = AsyncMock(return_value={})
        mock_contract_util.w3.eth.max_priority_fee = failing(Web3Exception("not supported"))

        quote = await client.get_fee_quote()

        assert quote.max_fee_per_gas is None
        assert quote.max_priority_fee_per_gas is None


class TestSubmission:
    """Tests for submit_transfer and await_confirmation."""

    @pytest.mark.asyncio
    async def test_submit_transfer(self, client, mock_token, mock_contract_util):
        build = AsyncMock(return_value={"to": TOKEN, "data": "0x"})
        mock_token.functions.transferFrom.return_value.build_transaction = build
        account = signer()
        identity = RelayerIdentity(index=0, address=RELAYER, account=account)

        pending = await client.submit_transfer(identity, RECIPIENT, Decimal(3), 11, FEE)

        mock_token.functions.transferFrom.assert_called_once_with(
            Web3.to_checksum_address(TREASURY), RECIPIENT, 3 * 10**18
        )
        build.assert_awaited_once_with({
            "from": RELAYER,
            "nonce": 11,
            "maxFeePerGas": FEE.max_fee_per_gas,
            "maxPriorityFeePerGas": FEE.max_priority_fee_per_gas,
        })
        account.sign_transaction.assert_called_once_with({"to": TOKEN, "data": "0x"})
        mock_contract_util.w3.eth.send_raw_transaction.assert_awaited_once_with(b"signed")
        assert pending == PendingTransfer(tx_hash=Web3.to_hex(TX_HASH), nonce=11)

    @pytest.mark.asyncio
    async def test_confirmation(self, client, mock_contract_util):
        mock_contract_util.w3.eth.wait_for_transaction_receipt = AsyncMock(return_value=receipt())

        confirmation = await client.await_confirmation(PendingTransfer(Web3.to_hex(TX_HASH), 0))

        assert confirmation.tx_hash == Web3.to_hex(TX_HASH)
        assert confirmation.gas_used == 51_234
        assert confirmation.block_number == 7

    @pytest.mark.asyncio
    async def test_reverted_receipt(self, client, mock_contract_util):
        mock_contract_util.w3.eth.wait_for_transaction_receipt = AsyncMock(return_value=receipt(0))

        with pytest.raises(TransferRevertedError):
            await client.await_confirmation(PendingTransfer(Web3.to_hex(TX_HASH), 0))

    @pytest.mark.asyncio
    async def test_receipt_lookup(self, client, mock_contract_util):
        mock_contract_util.w3.eth.get_transaction_receipt = AsyncMock(return_value=receipt())

        confirmation = await client.get_receipt(PendingTransfer(Web3.to_hex(TX_HASH), 0))

        assert confirmation.gas_used == 51_234
        mock_contract_util.w3.eth.get_transaction_receipt.assert_awaited_once_with(Web3.to_hex(TX_HASH))

    @pytest.mark.asyncio
    async def test_receipt_lookup_not_mined(self, client, mock_contract_util):
        mock_contract_util.w3.eth.get_transaction_receipt = AsyncMock(
            side_effect=TransactionNotFound("Transaction not found")
        )

        assert await client.get_receipt(PendingTransfer(Web3.to_hex(TX_HASH), 0)) is None

    @pytest.mark.asyncio
    async def test_receipt_lookup_reverted(self, client, mock_contract_util):
        mock_contract_util.w3.eth.get_transaction_receipt = AsyncMock(return_value=receipt(0))

        with pytest.raises(TransferRevertedError):
            await client.get_receipt(PendingTransfer(Web3.to_hex(TX_HASH), 0))


class TestEnsureAllowance:
    """Tests for treasury allowance provisioning."""

    @pytest.mark.asyncio
    async def test_sufficient_allowance(self, client, mock_token):
        mock_token.functions.allowance.return_value.call = AsyncMock(return_value=200_000 * 10**18)

        assert await client.ensure_allowance(RELAYER, FEE)
        mock_token.functions.approve.assert_not_called()

    @pytest.mark.asyncio
    async def test_low_allowance_without_treasury_key(self, client, mock_token):
        mock_token.functions.allowance.return_value.call = AsyncMock(return_value=0)

        assert not await client.ensure_allowance(RELAYER, FEE)
        mock_token.functions.approve.assert_not_called()

    @pytest.mark.asyncio
    async def test_low_allowance_is_approved(self, mock_contract_util, mock_token):
        treasury = signer()
        client = Web3LedgerClient(
            contract_util=mock_contract_util,
            token_address=TOKEN,
            treasury_address=TREASURY,
            treasury_account=treasury
        )
        mock_token.functions.allowance.return_value.call = AsyncMock(return_value=10)
        mock_token.functions.approve.return_value.build_transaction = AsyncMock(return_value={"data": "0x"})
        mock_contract_util.w3.eth.get_transaction_count = AsyncMock(return_value=3)
        mock_contract_util.w3.eth.wait_for_transaction_receipt = AsyncMock(return_value=receipt())

        assert await client.ensure_allowance(RELAYER, FEE)

        mock_token.functions.approve.assert_called_once_with(RELAYER, 1_000_000 * 10**18)
        treasury.sign_transaction.assert_called_once_with({"data": "0x"})

    @pytest.mark.asyncio
    async def test_reverted_approval(self, mock_contract_util, mock_token):
        client = Web3LedgerClient(
            contract_util=mock_contract_util,
            token_address=TOKEN,
            treasury_address=TREASURY,
            treasury_account=signer()
        )
        mock_token.functions.allowance.return_value.call = AsyncMock(return_value=0)
        mock_token.functions.approve.return_value.build_transaction = AsyncMock(return_value={})
        mock_contract_util.w3.eth.get_transaction_count = AsyncMock(return_value=0)
        mock_contract_util.w3.eth.wait_for_transaction_receipt = AsyncMock(return_value=receipt(0))

        with pytest.raises(TransferRevertedError):
            await client.ensure_allowance(RELAYER, FEE)
