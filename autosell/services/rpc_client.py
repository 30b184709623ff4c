"""JSON-RPC endpoint handles.

An endpoint exposes read-only RPC calls plus ``send_transaction``. The
``SenderRoutedConnection`` decorator redirects only ``send_transaction`` to a
dedicated fast-send endpoint and delegates every read to the wrapped handle.
"""

import base64
import itertools
import logging
from typing import Any, Protocol

import httpx

from autosell.errors import RpcError

logger = logging.getLogger(__name__)

DEFAULT_SENDER_URL = "https://sender.helius-rpc.com/fast"


class RpcConnection(Protocol):
    url: str

    async def get_signature_status(self, reference: str) -> dict | None: ...

    async def send_transaction(self, raw: bytes, skip_preflight: bool = False) -> str: ...

    async def simulate_transaction(self, raw: bytes) -> dict: ...

    async def get_account_info(self, address: str) -> dict | None: ...

    async def get_balance(self, address: str) -> int: ...

    async def get_token_balance(self, owner: str, mint: str) -> float: ...

    async def get_transaction(self, reference: str) -> dict | None: ...

    async def close(self) -> None: ...


class RpcEndpoint:
    """Async JSON-RPC client for a single endpoint URL."""

    def __init__(
        self,
        url: str,
        commitment: str = "confirmed",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.commitment = commitment
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._ids = itertools.count(1)

    def __repr__(self) -> str:
        return f"RpcEndpoint({self.url!r})"

    async def _call(self, method: str, params: list | None = None) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        try:
            resp = await self._client.post(self.url, json=body)
        except httpx.HTTPError as e:
            raise RpcError(f"{method} transport error: {e}", url=self.url) from e

        if resp.status_code != 200:
            raise RpcError(
                f"{method} HTTP error: {resp.status_code} {resp.reason_phrase}",
                url=self.url,
                code=resp.status_code,
            )

        data = resp.json()
        if data.get("error"):
            err = data["error"]
            raise RpcError(
                f"{method} RPC error: {err.get('message', err)}",
                url=self.url,
                code=err.get("code"),
            )
        return data.get("result")

    async def get_signature_status(self, reference: str) -> dict | None:
        result = await self._call(
            "getSignatureStatuses",
            [[reference], {"searchTransactionHistory": True}],
        )
        values = (result or {}).get("value") or [None]
        return values[0]

    async def send_transaction(self, raw: bytes, skip_preflight: bool = False) -> str:
        return await self._call(
            "sendTransaction",
            [
                base64.b64encode(raw).decode(),
                {
                    "encoding": "base64",
                    "skipPreflight": skip_preflight,
                    "preflightCommitment": self.commitment,
                },
            ],
        )

    async def simulate_transaction(self, raw: bytes) -> dict:
        result = await self._call(
            "simulateTransaction",
            [
                base64.b64encode(raw).decode(),
                {"encoding": "base64", "commitment": self.commitment, "sigVerify": False},
            ],
        )
        return (result or {}).get("value") or {}

    async def get_account_info(self, address: str) -> dict | None:
        result = await self._call(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self.commitment}],
        )
        return (result or {}).get("value")

    async def get_balance(self, address: str) -> int:
        result = await self._call("getBalance", [address, {"commitment": self.commitment}])
        return int((result or {}).get("value", 0))

    async def get_token_balance(self, owner: str, mint: str) -> float:
        """Whole-token balance of ``mint`` summed over the owner's token accounts."""
        result = await self._call(
            "getTokenAccountsByOwner",
            [owner, {"mint": mint}, {"encoding": "jsonParsed", "commitment": self.commitment}],
        )
        total = 0.0
        for account in (result or {}).get("value") or []:
            info = account["account"]["data"]["parsed"]["info"]
            total += float(info["tokenAmount"].get("uiAmount") or 0)
        return total

    async def get_transaction(self, reference: str) -> dict | None:
        return await self._call(
            "getTransaction",
            [
                reference,
                {
                    "encoding": "jsonParsed",
                    "commitment": "finalized" if self.commitment == "finalized" else "confirmed",
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )

    async def close(self):
        await self._client.aclose()


class SenderRoutedConnection:
    """Routes ``send_transaction`` through a fast-send URL; reads use ``inner``."""

    def __init__(
        self,
        inner: RpcConnection,
        api_key: str,
        sender_url: str = DEFAULT_SENDER_URL,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.inner = inner
        self.url = inner.url
        self.sender_url = sender_url
        self._api_key = api_key
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    def __repr__(self) -> str:
        return f"SenderRoutedConnection({self.url!r} -> {self.sender_url!r})"

    async def send_transaction(self, raw: bytes, skip_preflight: bool = False) -> str:
        # The sender requires skipPreflight=true and maxRetries=0 regardless of caller
        body = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "sendTransaction",
            "params": [
                base64.b64encode(raw).decode(),
                {"encoding": "base64", "skipPreflight": True, "maxRetries": 0},
            ],
        }
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        try:
            resp = await self._client.post(self.sender_url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise RpcError(f"Sender failed: {e}", url=self.sender_url) from e

        if resp.status_code != 200:
            raise RpcError(
                f"Sender HTTP error: {resp.status_code} {resp.reason_phrase}",
                url=self.sender_url,
                code=resp.status_code,
            )
        data = resp.json()
        if data.get("error"):
            raise RpcError(f"Sender error: {data['error'].get('message')}", url=self.sender_url)
        logger.debug(f"Sent via sender: {data.get('result')}")
        return data["result"]

    async def get_signature_status(self, reference: str) -> dict | None:
        return await self.inner.get_signature_status(reference)

    async def simulate_transaction(self, raw: bytes) -> dict:
        return await self.inner.simulate_transaction(raw)

    async def get_account_info(self, address: str) -> dict | None:
        return await self.inner.get_account_info(address)

    async def get_balance(self, address: str) -> int:
        return await self.inner.get_balance(address)

    async def get_token_balance(self, owner: str, mint: str) -> float:
        return await self.inner.get_token_balance(owner, mint)

    async def get_transaction(self, reference: str) -> dict | None:
        return await self.inner.get_transaction(reference)

    async def close(self):
        await self._client.aclose()
        await self.inner.close()
