"""
ledgermirror/chain/reader.py

The remote ledger capability consumed by the read-model cache.

ledgermirror does not ship a ledger client. Deployments provide a ChainReader
implementation (JSON-RPC, indexer API, test double) and the cache calls it.
Timeouts and retries are the implementation's responsibility. Implementations
raise ChainReaderError when the ledger is unreachable or answers with an error;
the cache treats any raised exception as a failed fetch and keeps it as the
FetchFailed reason.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

logger = logging.getLogger("ledgermirror.chain.reader")

# Block tags accepted in place of block numbers
EARLIEST = "earliest"
LATEST = "latest"

BlockRef = Union[int, str]


class ChainReaderError(Exception):
    """Ledger unreachable or returned an error."""
    pass


@dataclass
class LogEntry:
    """A decoded event log."""
    event: str
    block_number: Optional[int]
    transaction_hash: str
    log_index: int = 0
    args: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "event": self.event,
            "block_number": self.block_number,
            "transaction_hash": self.transaction_hash,
            "log_index": self.log_index,
            "args": self.args,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LogEntry":
        return cls(
            event=data["event"],
            block_number=data.get("block_number"),
            transaction_hash=data.get("transaction_hash", ""),
            log_index=data.get("log_index", 0),
            args=dict(data.get("args", {})),
        )


class ChainReader(ABC):
    """Read-only access to a remote ledger."""

    @abstractmethod
    async def read_value(
        self,
        contract_key: str,
        method: str,
        args: Sequence[Any] = (),
    ) -> Any:
        """
        Call a read-only contract method.

        Args:
            contract_key: Contract address or registry name
            method: Method name
            args: Positional call arguments

        Returns:
            Structured value with numeric/string fields
        """
        pass

    @abstractmethod
    async def read_logs(
        self,
        event_signature: str,
        filter: Optional[Dict[str, Any]] = None,
        from_block: BlockRef = EARLIEST,
        to_block: BlockRef = LATEST,
    ) -> List[LogEntry]:
        """
        Read event logs.

        Args:
            event_signature: Event ABI signature
            filter: Indexed argument filter (and "address" for the emitter)
            from_block: First block (number or tag)
            to_block: Last block (number or tag)
        """
        pass

    @abstractmethod
    async def block_timestamp(self, block_number: int) -> int:
        """Get the unix timestamp of a block."""
        pass
