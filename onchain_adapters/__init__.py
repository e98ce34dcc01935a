"""
On-chain Adapters - Chain-log sources and the ABI codec.

This module provides:
- ChainLogSource: the abstract capability the indexer consumes
- JsonRpcLogSource: aiohttp implementation over EVM JSON-RPC
- abi: event/function definitions with eth-abi decoding

Usage:
    from onchain_adapters import JsonRpcLogSource, LogFilter
    from onchain_adapters import abi

    source = JsonRpcLogSource(chain_id=8453, rpc_url="https://base.llamarpc.com")
    logs = await source.get_logs(
        LogFilter(addresses=(minter,), topics=(abi.XEN_BURNED.topic,)),
        from_block=7_300_000,
        to_block=7_301_999,
    )
    values = abi.XEN_BURNED.decode(logs[0])
"""

from onchain_adapters import abi
from onchain_adapters.base import ChainLogSource
from onchain_adapters.exceptions import (
    ExecutionRevertedError,
    RateLimitError,
    RpcError,
)
from onchain_adapters.models import (
    ZERO_ADDRESS,
    AdapterHealth,
    AdapterIncident,
    AdapterStatus,
    BlockHeader,
    LogFilter,
    RawLog,
)
from onchain_adapters.rpc import JsonRpcLogSource


__all__ = [
    "abi",
    "ChainLogSource",
    "JsonRpcLogSource",
    "RpcError",
    "RateLimitError",
    "ExecutionRevertedError",
    "AdapterHealth",
    "AdapterIncident",
    "AdapterStatus",
    "BlockHeader",
    "LogFilter",
    "RawLog",
    "ZERO_ADDRESS",
]
