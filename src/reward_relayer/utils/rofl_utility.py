import json
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class RoflUtility:
    """Utility for interacting with the ROFL application daemon.

    Used to obtain relayer signing keys from the ROFL key manager when the
    relayer runs inside a ROFL container.
    """

    ROFL_SOCKET_PATH: str = "/run/rofl-appd.sock"
    KEY_ID_PREFIX: str = "reward-relayer"

    def __init__(self, url: str = '') -> None:
        """Initialize ROFL utility.

        Args:
            url: Optional URL for HTTP transport (defaults to socket)
        """
        self.url: str = url

    async def _appd_post(self, path: str, payload: Any) -> Any:
        """Post request to ROFL application daemon.

        Raises:
            httpx.HTTPStatusError: If the request fails
        """
        transport: httpx.AsyncHTTPTransport | None = None

        if self.url and not self.url.startswith('http'):
            transport = httpx.AsyncHTTPTransport(uds=self.url)
            logger.debug(f"Using HTTP socket: {self.url}")
        elif not self.url:
            transport = httpx.AsyncHTTPTransport(uds=self.ROFL_SOCKET_PATH)
            logger.debug(f"Using unix domain socket: {self.ROFL_SOCKET_PATH}")

        async with httpx.AsyncClient(transport=transport) as client:
            base_url: str = self.url if self.url and self.url.startswith('http') else "http://localhost"
            full_url: str = base_url + path
            logger.debug(f"Posting to {full_url}: {json.dumps(payload)}")
            response: httpx.Response = await client.post(full_url, json=payload, timeout=30.0)
            response.raise_for_status()
            return response.json()

    async def fetch_key(self, key_id: str) -> str:
        """Fetch or generate a secp256k1 key from the ROFL key manager.

        Args:
            key_id: Identifier of the key

        Returns:
            Hex-encoded private key
        """
        payload = {
            "key_id": key_id,
            "kind": "secp256k1"
        }

        path = '/rofl/v1/keys/generate'

        response = await self._appd_post(path, payload)
        return response["key"]

    async def fetch_relayer_keys(self, count: int) -> list[str]:
        """Fetch one key per relayer slot.

        Keys are derived deterministically by the key manager, so the same
        slots yield the same accounts across restarts.

        Args:
            count: Number of relayer keys to fetch

        Returns:
            Private keys in slot order
        """
        keys: list[str] = []
        for slot in range(1, count + 1):
            key = await self.fetch_key(f"{self.KEY_ID_PREFIX}-{slot}")
            keys.append(key if key.startswith("0x") else "0x" + key)
        logger.info(f"Fetched {len(keys)} relayer keys from ROFL key manager")
        return keys
