import json
from pathlib import Path
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3
from web3.contract import AsyncContract


class ContractUtility:
    """
    Utility for async contract interaction and ABI loading.

    Signing is done locally per relayer account, so the Web3 instance
    carries no signing middleware.
    """

    def __init__(self, rpc_url: str) -> None:
        """
        Initialize the ContractUtility.

        Args:
            rpc_url: HTTP(S) RPC URL of the network

        Raises:
            ValueError: If no RPC URL is given
        """
        if not rpc_url:
            raise ValueError("RPC URL is required")

        self.rpc_url = rpc_url
        self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(self.rpc_url))

    @staticmethod
    def load_account(secret: str) -> LocalAccount:
        """Derive a signing account from a private key.

        Raises:
            ValueError: If the private key is missing or malformed
        """
        if not secret:
            raise ValueError("Private key is required for signing transactions")
        return Account.from_key(secret)

    def get_contract(self, contract_name: str, address: str) -> AsyncContract:
        """Create a contract instance for a deployed contract."""
        return self.w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(address),
            abi=self.get_contract_abi(contract_name)
        )

    def get_contract_abi(self, contract_name: str) -> list[dict[str, Any]]:
        """Fetches ABI of the given contract from the contracts folder.

        Args:
            contract_name: Name of the contract (without .json extension)

        Returns:
            List of ABI dictionaries for the contract

        Raises:
            FileNotFoundError: If the contract file doesn't exist
            json.JSONDecodeError: If the contract file is invalid JSON
        """
        contract_path: Path = (
            Path(__file__).parent.parent
            / "contracts"
            / f"{contract_name}.json"
        ).resolve()

        with contract_path.open() as file:
            contract_data: dict[str, Any] = json.load(file)

        return contract_data["abi"]
