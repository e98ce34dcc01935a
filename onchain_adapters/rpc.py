"""
JSON-RPC Chain-Log Source.

============================================================
RESPONSIBILITY
============================================================
Implements ChainLogSource over a plain EVM JSON-RPC endpoint
using aiohttp.

- eth_getLogs / eth_getBlockByNumber / eth_blockNumber
- eth_getTransactionReceipt for same-transaction scans
- eth_call at a historical block

============================================================
FAILURE MODEL
============================================================
- HTTP >= 500, connection errors, timeouts and RPC errors are retried a
  small number of times with backoff, then raised as RpcError
- HTTP 429 raises RateLimitError immediately
- Reverted eth_call raises ExecutionRevertedError
- No request timeout is imposed beyond aiohttp's default

============================================================
"""

import asyncio
import itertools
import logging
import time
from typing import Any, Optional

import aiohttp

from onchain_adapters.base import ChainLogSource
from onchain_adapters.exceptions import (
    ExecutionRevertedError,
    RateLimitError,
    RpcError,
)
from onchain_adapters.models import BlockHeader, LogFilter, RawLog


logger = logging.getLogger(__name__)


class JsonRpcLogSource(ChainLogSource):
    """aiohttp-backed JSON-RPC client for one chain."""

    MAX_RETRIES = 3
    RETRY_BACKOFF_BASE = 1.5

    def __init__(
        self,
        chain_id: int,
        rpc_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        max_retries: int = MAX_RETRIES,
    ) -> None:
        super().__init__(chain_id)
        self._rpc_url = rpc_url
        self._session = session
        self._owns_session = session is None
        self._max_retries = max_retries
        self._ids = itertools.count(1)

    @property
    def name(self) -> str:
        return f"jsonrpc:{self.chain_id}"

    # ─────────────────────────────────────────────────────────────
    # ChainLogSource
    # ─────────────────────────────────────────────────────────────

    async def get_logs(
        self,
        log_filter: LogFilter,
        from_block: int,
        to_block: int,
    ) -> list[RawLog]:
        result = await self._request("eth_getLogs", [log_filter.to_params(from_block, to_block)])
        return [RawLog.from_rpc(entry) for entry in result or [] if not entry.get("removed")]

    async def get_block(self, block_number: int) -> Optional[BlockHeader]:
        result = await self._request("eth_getBlockByNumber", [hex(block_number), False])
        if not result:
            return None
        return BlockHeader.from_rpc(result)

    async def get_block_number(self) -> int:
        result = await self._request("eth_blockNumber", [])
        return int(result, 16)

    async def get_transaction_logs(self, transaction_hash: str) -> list[RawLog]:
        receipt = await self._request("eth_getTransactionReceipt", [transaction_hash])
        if not receipt:
            raise RpcError(
                f"Receipt not available for {transaction_hash}",
                source_name=self.name,
                method="eth_getTransactionReceipt",
                chain_id=self.chain_id,
            )
        return [RawLog.from_rpc(entry) for entry in receipt.get("logs", [])]

    async def call(self, to_address: str, data: str, block_number: Optional[int] = None) -> str:
        block_tag = hex(block_number) if block_number is not None else "latest"
        try:
            return await self._request(
                "eth_call",
                [{"to": to_address, "data": data}, block_tag],
                retry=False,
            )
        except RpcError as e:
            if e.rpc_code == 3 or "revert" in e.message.lower():
                raise ExecutionRevertedError(to_address, block_number, e.message) from e
            raise

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    # ─────────────────────────────────────────────────────────────
    # HTTP Helpers
    # ─────────────────────────────────────────────────────────────

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                    "User-Agent": "xburn-indexer/1.0",
                },
            )
            self._owns_session = True
        return self._session

    async def _request(self, method: str, params: list[Any], retry: bool = True) -> Any:
        attempts = self._max_retries if retry else 1
        last_error: Optional[RpcError] = None

        for attempt in range(attempts):
            try:
                result = await self._post(method, params)
                return result
            except RateLimitError as e:
                self._on_error(e, method, params)
                raise
            except RpcError as e:
                self._on_error(e, method, params)
                last_error = e
                if e.status_code and 400 <= e.status_code < 500:
                    raise
                if attempt + 1 < attempts:
                    wait_time = self.RETRY_BACKOFF_BASE ** attempt
                    logger.warning(
                        f"[{self.name}] {method} retry {attempt + 1}/{attempts} "
                        f"in {wait_time:.1f}s: {e}"
                    )
                    await asyncio.sleep(wait_time)

        raise last_error

    async def _post(self, method: str, params: list[Any]) -> Any:
        session = await self._get_session()
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}

        start_time = time.monotonic()
        try:
            async with session.post(self._rpc_url, json=payload) as response:
                if response.status == 429:
                    retry_after = response.headers.get("Retry-After")
                    raise RateLimitError(
                        "Rate limit exceeded",
                        retry_after_seconds=int(retry_after) if retry_after and retry_after.isdigit() else None,
                        source_name=self.name,
                        method=method,
                        chain_id=self.chain_id,
                    )

                if response.status >= 400:
                    body = await response.text()
                    raise RpcError(
                        f"HTTP {response.status}",
                        source_name=self.name,
                        method=method,
                        status_code=response.status,
                        response_body=body,
                        chain_id=self.chain_id,
                    )

                body = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise RpcError(
                f"Connection error: {e}",
                source_name=self.name,
                method=method,
                original_error=e,
                chain_id=self.chain_id,
            ) from e
        except asyncio.TimeoutError as e:
            raise RpcError(
                "Timeout",
                source_name=self.name,
                method=method,
                original_error=e,
                chain_id=self.chain_id,
            ) from e
        except ValueError as e:
            raise RpcError(
                f"Invalid JSON response: {e}",
                source_name=self.name,
                method=method,
                original_error=e,
                chain_id=self.chain_id,
            ) from e

        if body.get("error"):
            error = body["error"]
            raise RpcError(
                str(error.get("message", error)),
                source_name=self.name,
                method=method,
                rpc_code=error.get("code"),
                chain_id=self.chain_id,
            )

        self._on_success((time.monotonic() - start_time) * 1000)
        return body.get("result")
