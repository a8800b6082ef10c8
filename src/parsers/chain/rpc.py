"""Minimal EVM JSON-RPC client (eth_blockNumber / eth_getLogs)."""

from typing import Any

import httpx

from src.parsers.exceptions import TransientNetworkError

SOURCE = "chain"


class ChainRpcClient:
    def __init__(self, rpc_url: str, timeout: float = 20.0) -> None:
        self._rpc_url = rpc_url
        self._client = httpx.AsyncClient(timeout=timeout)
        self._id = 0

    async def close(self) -> None:
        await self._client.aclose()

    async def call(self, method: str, params: list[Any]) -> Any:
        self._id += 1
        payload = {"jsonrpc": "2.0", "id": self._id, "method": method, "params": params}
        try:
            resp = await self._client.post(self._rpc_url, json=payload)
        except httpx.HTTPError as e:
            raise TransientNetworkError(SOURCE, f"{method}: {type(e).__name__}: {e}") from e

        if resp.status_code != 200:
            raise TransientNetworkError(SOURCE, f"{method}: HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise TransientNetworkError(SOURCE, f"{method}: invalid JSON") from e
        if not isinstance(data, dict):
            raise TransientNetworkError(SOURCE, f"{method}: unexpected response {type(data).__name__}")
        if "error" in data:
            raise TransientNetworkError(SOURCE, f"{method}: RPC error {data['error']}")
        return data.get("result")

    async def block_number(self) -> int:
        result = await self.call("eth_blockNumber", [])
        try:
            return int(result, 16)
        except (TypeError, ValueError) as e:
            raise TransientNetworkError(SOURCE, f"eth_blockNumber: bad result {result!r}") from e

    async def get_logs(
        self,
        from_block: int,
        to_block: int,
        *,
        address: str,
        topics: list[Any],
    ) -> list[dict[str, Any]]:
        log_filter = {
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
            "address": address,
            "topics": topics,
        }
        result = await self.call("eth_getLogs", [log_filter])
        if not isinstance(result, list):
            return []
        return result
