"""
ledgermirror/chain/views.py

Typed, cached reads of individual contract values.

Each view owns one cache key namespace and converts the raw ChainReader
result into a plain Python type at this boundary.
"""

import logging
from typing import Any, Awaitable, Callable, Optional, Tuple

from ..config import ContractAddresses
from ..protocol.cache import ReadModelCache
from ..protocol.proposals import normalize_identity
from .reader import ChainReader

logger = logging.getLogger("ledgermirror.chain.views")

GENESIS_NODE_CONTRACT = "GenesisNode"

WeightSource = Callable[[str], Awaitable[int]]


def to_int(value: Any) -> int:
    """Coerce a contract integer result (int, decimal string, hex string)."""
    if isinstance(value, bool):
        raise TypeError("boolean is not a contract integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.lower().startswith("0x"):
            return int(text, 16)
        return int(text)
    raise TypeError(f"Unexpected contract integer type: {type(value).__name__}")


class ChainViews:
    """Cached contract reads with typed results."""

    def __init__(
        self,
        reader: ChainReader,
        cache: ReadModelCache,
        contracts: Optional[ContractAddresses] = None,
    ):
        self._reader = reader
        self._cache = cache
        self.contracts = contracts or ContractAddresses()

    @property
    def _genesis_node(self) -> str:
        return self.contracts.genesis_node or GENESIS_NODE_CONTRACT

    @staticmethod
    def node_balance_key(address: str) -> str:
        return f"node_balance:{normalize_identity(address)}"

    async def node_balance(self, address: str) -> int:
        """Number of Genesis Nodes held by an address (its voting weight)."""
        value, _ = await self.node_balance_with_source(address)
        return value

    async def node_balance_with_source(self, address: str) -> Tuple[int, bool]:
        async def fetch() -> int:
            raw = await self._reader.read_value(self._genesis_node, "balanceOf", [address])
            return to_int(raw)

        value, from_cache = await self._cache.get(self.node_balance_key(address), fetch)
        return to_int(value), from_cache

    async def node_supply(self) -> int:
        """Total Genesis Nodes minted."""
        async def fetch() -> int:
            raw = await self._reader.read_value(self._genesis_node, "totalSupply", [])
            return to_int(raw)

        value, _ = await self._cache.get("node_supply:total", fetch)
        return to_int(value)

    def refresh_balance(self, address: str) -> bool:
        """Invalidate a cached balance, e.g. after a transfer is observed."""
        return self._cache.invalidate(self.node_balance_key(address))

    def weight_source(self) -> WeightSource:
        """Async callable mapping an identity to its current voting weight."""
        return self.node_balance
