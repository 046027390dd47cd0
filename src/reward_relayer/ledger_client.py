"""
Ledger access for the Reward Relayer.

This module defines the LedgerClient protocol the relay core depends on and
Web3LedgerClient, its implementation for an ERC-20 reward token paid out
of a treasury through transferFrom allowances.
"""

import logging
from decimal import Decimal
from typing import Protocol

from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound, Web3Exception
from web3.types import TxParams, TxReceipt

from .errors import TransferRevertedError
from .models import (
    Confirmation,
    FeeQuote,
    NetworkFeeData,
    NonceMode,
    PendingTransfer,
    TOKEN_DECIMALS,
    RelayerIdentity,
    to_base_units,
)
from .utils.contract_utility import ContractUtility

logger = logging.getLogger(__name__)


class LedgerClient(Protocol):
    """Operations the relay core needs from the ledger."""

    @property
    def backing_address(self) -> str:
        """Account whose token balance backs every transfer."""
        ...

    async def get_next_sequence_number(self, address: str, mode: NonceMode) -> int: ...

    async def get_balance(self, address: str) -> Decimal: ...

    async def get_gas_balance(self, address: str) -> Decimal: ...

    async def get_fee_quote(self) -> NetworkFeeData: ...

    async def submit_transfer(
        self,
        identity: RelayerIdentity,
        recipient: str,
        amount: Decimal,
        nonce: int,
        fee: FeeQuote,
    ) -> PendingTransfer: ...

    async def await_confirmation(self, pending: PendingTransfer) -> Confirmation: ...

    async def get_receipt(self, pending: PendingTransfer) -> Confirmation | None:
        """Receipt of an earlier submission if it has been mined, without waiting."""
        ...


class Web3LedgerClient:
    """
    Ledger client for a treasury-funded ERC-20 reward token.

    Each relayer calls transferFrom(treasury, recipient, amount) with its own
    key and nonce, spending the allowance the treasury granted it.
    """

    TOKEN_CONTRACT_NAME = "RewardToken"
    TOKEN_DECIMALS = TOKEN_DECIMALS
    APPROVAL_RECEIPT_TIMEOUT = 120  # seconds

    def __init__(
        self,
        contract_util: ContractUtility,
        token_address: str,
        treasury_address: str,
        treasury_account: LocalAccount | None = None,
        min_allowance: Decimal = Decimal(100_000),
        approval_amount: Decimal = Decimal(1_000_000),
        receipt_timeout: int = 300,
    ) -> None:
        """
        Initialize the Web3LedgerClient.

        Args:
            contract_util: Utility holding the AsyncWeb3 connection and ABIs
            token_address: Address of the reward token contract
            treasury_address: Address holding the reward tokens
            treasury_account: Treasury signer, required only to grant allowances
            min_allowance: Allowance (tokens) below which a relayer is re-approved
            approval_amount: Allowance (tokens) granted on re-approval
            receipt_timeout: Upper bound for receipt polling in seconds
        """
        self.contract_util = contract_util
        self.w3: AsyncWeb3 = contract_util.w3
        self.treasury_address = Web3.to_checksum_address(treasury_address)
        self.treasury_account = treasury_account
        self.min_allowance = min_allowance
        self.approval_amount = approval_amount
        self.receipt_timeout = receipt_timeout
        self.token = contract_util.get_contract(self.TOKEN_CONTRACT_NAME, token_address)

        logger.info(
            f"Ledger client ready: token {self.token.address}, treasury {self.treasury_address}"
        )

    @property
    def backing_address(self) -> str:
        return self.treasury_address

    def to_units(self, amount: Decimal) -> int:
        """Convert whole tokens to base units; raises ValueError if that would round."""
        return to_base_units(amount, self.TOKEN_DECIMALS)

    def from_units(self, units: int) -> Decimal:
        """Convert base units to whole tokens."""
        return Decimal(units).scaleb(-self.TOKEN_DECIMALS)

    async def get_next_sequence_number(self, address: str, mode: NonceMode) -> int:
        return await self.w3.eth.get_transaction_count(
            Web3.to_checksum_address(address), mode.value
        )

    async def get_balance(self, address: str) -> Decimal:
        """Token balance of an account, in whole tokens."""
        units = await self.token.functions.balanceOf(Web3.to_checksum_address(address)).call()
        return self.from_units(units)

    async def get_gas_balance(self, address: str) -> Decimal:
        """Native balance of an account, in ether."""
        wei = await self.w3.eth.get_balance(Web3.to_checksum_address(address))
        return Decimal(Web3.from_wei(wei, "ether"))

    async def get_allowance(self, owner: str, spender: str) -> Decimal:
        units = await self.token.functions.allowance(
            Web3.to_checksum_address(owner),
            Web3.to_checksum_address(spender)
        ).call()
        return self.from_units(units)

    async def get_fee_quote(self) -> NetworkFeeData:
        """
        Read the current fee market.

        The max fee follows the usual wallet heuristic of twice the base fee
        plus the priority fee. Components the node does not report are None.
        """
        block = await self.w3.eth.get_block("latest")
        base_fee: int | None = block.get("baseFeePerGas")

        priority_fee: int | None
        try:
            priority_fee = await self.w3.eth.max_priority_fee
        except Web3Exception as e:
            logger.warning(f"Node did not report a priority fee: {e}")
            priority_fee = None

        max_fee: int | None = None
        if base_fee is not None:
            max_fee = base_fee * 2 + (priority_fee or 0)

        return NetworkFeeData(max_fee_per_gas=max_fee, max_priority_fee_per_gas=priority_fee)

    async def submit_transfer(
        self,
        identity: RelayerIdentity,
        recipient: str,
        amount: Decimal,
        nonce: int,
        fee: FeeQuote,
    ) -> PendingTransfer:
        """
        Sign and broadcast transferFrom(treasury, recipient, amount).

        Gas is estimated while building the transaction, so a transfer that
        would revert fails here with ContractLogicError.
        """
        tx_params: TxParams = {
            "from": identity.address,
            "nonce": nonce,
            "maxFeePerGas": fee.max_fee_per_gas,
            "maxPriorityFeePerGas": fee.max_priority_fee_per_gas,
        }
        tx = await self.token.functions.transferFrom(
            self.treasury_address,
            Web3.to_checksum_address(recipient),
            self.to_units(amount)
        ).build_transaction(tx_params)

        signed = identity.account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)

        logger.debug(f"Relayer {identity.address} broadcast {Web3.to_hex(tx_hash)} with nonce {nonce}")
        return PendingTransfer(tx_hash=Web3.to_hex(tx_hash), nonce=nonce)

    async def await_confirmation(self, pending: PendingTransfer) -> Confirmation:
        """
        Wait for the receipt of a submitted transfer.

        Raises:
            TransferRevertedError: If the transaction was mined but reverted
            TimeExhausted: If no receipt arrived within receipt_timeout
        """
        receipt: TxReceipt = await self.w3.eth.wait_for_transaction_receipt(
            pending.tx_hash, timeout=self.receipt_timeout
        )
        return self._confirmation(pending, receipt)

    async def get_receipt(self, pending: PendingTransfer) -> Confirmation | None:
        """
        Look up the receipt of an earlier submission without waiting.

        Returns:
            The confirmation, or None if the transaction is not mined yet

        Raises:
            TransferRevertedError: If the transaction was mined but reverted
        """
        try:
            receipt: TxReceipt = await self.w3.eth.get_transaction_receipt(pending.tx_hash)
        except TransactionNotFound:
            return None
        return self._confirmation(pending, receipt)

    @staticmethod
    def _confirmation(pending: PendingTransfer, receipt: TxReceipt) -> Confirmation:
        if (status := receipt.get("status", 0)) != 1:
            raise TransferRevertedError(
                f"Transaction {pending.tx_hash} execution reverted (status={status})"
            )
        return Confirmation(
            tx_hash=Web3.to_hex(receipt["transactionHash"]),
            gas_used=receipt["gasUsed"],
            block_number=receipt["blockNumber"],
        )

    async def ensure_allowance(self, spender: str, fee: FeeQuote) -> bool:
        """
        Make sure the treasury lets a relayer spend its tokens.

        Approves approval_amount when the current allowance is below
        min_allowance.

        Args:
            spender: Relayer address
            fee: Fee parameters for the approval transaction

        Returns:
            True if the allowance is sufficient, False if no treasury signer is configured

        Raises:
            TransferRevertedError: If the approval transaction reverted
        """
        allowance = await self.get_allowance(self.treasury_address, spender)
        logger.info(f"Relayer {spender} allowance: {allowance} tokens")
        if allowance >= self.min_allowance:
            return True

        if self.treasury_account is None:
            logger.warning(
                f"Relayer {spender} allowance below {self.min_allowance} tokens "
                "and no treasury key configured to approve it"
            )
            return False

        logger.info(
            f"Setting approval for relayer {spender} to spend "
            f"{self.approval_amount} tokens from treasury"
        )
        nonce = await self.w3.eth.get_transaction_count(self.treasury_address, "pending")
        tx = await self.token.functions.approve(
            Web3.to_checksum_address(spender),
            self.to_units(self.approval_amount)
        ).build_transaction({
            "from": self.treasury_address,
            "nonce": nonce,
            "maxFeePerGas": fee.max_fee_per_gas,
            "maxPriorityFeePerGas": fee.max_priority_fee_per_gas,
        })
        signed = self.treasury_account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)

        receipt: TxReceipt = await self.w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.APPROVAL_RECEIPT_TIMEOUT
        )
        if receipt.get("status", 0) != 1:
            raise TransferRevertedError(f"Approval for {spender} reverted: {Web3.to_hex(tx_hash)}")

        logger.info(f"Approval transaction completed for relayer {spender}: {Web3.to_hex(tx_hash)}")
        return True
