"""
ledgermirror/chain/history.py

Event-log derived read models: per-user reward history and the user index.

Both are expensive to build (full log scans plus one block lookup per
distinct block), so they are cached with long TTLs and fall back to the last
good result when the ledger is unreachable.

Usage:
    history = RewardHistory(reader, cache, contracts)
    items = await history.fetch(address)
    page = paginate(filter_items(items, HistoryFilter.MINING), page=1)

    index = UserIndex(reader, cache, contracts)
    users = await index.fetch()
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd

from ..config import ContractAddresses
from ..protocol.cache import ReadModelCache
from ..protocol.proposals import normalize_identity
from .reader import ChainReader, EARLIEST, LATEST, LogEntry
from .views import to_int

logger = logging.getLogger("ledgermirror.chain.history")

CORE_CONTRACT = "IvyCore"
DEFAULT_PAGE_SIZE = 10
REFERRAL_HISTORY_LIMIT = 100
WEI_PER_ETHER = 10 ** 18


# ============================================================================
# TYPES
# ============================================================================

class RewardType(Enum):
    """Kinds of reward history records."""
    MINING_HARVEST = "mining_harvest"
    MINING_COMPOUND = "mining_compound"
    REFERRAL_HARVEST = "referral_harvest"
    REFERRAL_COMPOUND = "referral_compound"
    REFERRAL = "referral"


class HistoryFilter(Enum):
    """History views."""
    ALL = "all"
    MINING = "mining"
    REFERRAL = "referral"


MINING_TYPES = {RewardType.MINING_HARVEST, RewardType.MINING_COMPOUND}
REFERRAL_TYPES = {RewardType.REFERRAL, RewardType.REFERRAL_HARVEST, RewardType.REFERRAL_COMPOUND}


@dataclass(frozen=True)
class RewardEvent:
    """An event scanned for reward history."""
    reward_type: RewardType
    signature: str
    amount_arg: str
    id_prefix: str


REWARD_EVENTS = [
    RewardEvent(
        RewardType.MINING_HARVEST,
        "event RewardsHarvested(address indexed user, uint256 amount)",
        "amount",
        "harvest",
    ),
    RewardEvent(
        RewardType.MINING_COMPOUND,
        "event VestedCompounded(address indexed user, uint256 indexed tokenId, uint256 pendingIvy, uint256 bonusPower)",
        "pendingIvy",
        "compound",
    ),
    RewardEvent(
        RewardType.REFERRAL_HARVEST,
        "event ReferralRewardsHarvested(address indexed user, uint256 amount)",
        "amount",
        "ref-harvest",
    ),
    RewardEvent(
        RewardType.REFERRAL_COMPOUND,
        "event ReferralRewardsCompounded(address indexed user, uint256 indexed tokenId, uint256 amount, uint256 powerAdded)",
        "amount",
        "ref-compound",
    ),
]

USER_SYNCED_EVENT = "event UserSynced(address indexed user, uint256 bondPower, uint256 rewardDebt)"


@dataclass
class RewardHistoryItem:
    """One reward record."""
    id: str
    reward_type: RewardType
    timestamp: int
    amount: str                          # Decimal string in whole tokens
    level: Optional[int] = None          # Referral level: 1=L1, 2=L2, 3=Team, 4=Peer
    from_user: Optional[str] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reward_type": self.reward_type.value,
            "timestamp": self.timestamp,
            "amount": self.amount,
            "level": self.level,
            "from_user": self.from_user,
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RewardHistoryItem":
        return cls(
            id=data["id"],
            reward_type=RewardType(data["reward_type"]),
            timestamp=int(data["timestamp"]),
            amount=data["amount"],
            level=data.get("level"),
            from_user=data.get("from_user"),
            tx_hash=data.get("tx_hash"),
            block_number=data.get("block_number"),
        )


@dataclass
class HistoryPage:
    """One page of reward history."""
    items: List[RewardHistoryItem] = field(default_factory=list)
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    total_records: int = 0

    @property
    def total_pages(self) -> int:
        return -(-self.total_records // self.page_size)

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.page > 1


# ============================================================================
# HELPERS
# ============================================================================

def format_ether(wei: Union[int, str]) -> str:
    """Format an 18-decimal integer amount as a decimal string."""
    amount = to_int(wei)
    sign = "-" if amount < 0 else ""
    whole, frac = divmod(abs(amount), WEI_PER_ETHER)
    frac_text = f"{frac:018d}".rstrip("0")
    if frac_text:
        return f"{sign}{whole}.{frac_text}"
    return f"{sign}{whole}"


def filter_items(
    items: Sequence[RewardHistoryItem],
    history_filter: HistoryFilter = HistoryFilter.ALL,
) -> List[RewardHistoryItem]:
    if history_filter == HistoryFilter.MINING:
        return [i for i in items if i.reward_type in MINING_TYPES]
    if history_filter == HistoryFilter.REFERRAL:
        return [i for i in items if i.reward_type in REFERRAL_TYPES]
    return list(items)


def paginate(
    items: Sequence[RewardHistoryItem],
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> HistoryPage:
    """
    Slice one page out of a history list.

    Pages are 1-based; out-of-range pages are clamped to the valid range.
    """
    if page_size <= 0:
        raise ValueError("page_size must be positive")
    total = len(items)
    last_page = max(1, -(-total // page_size))
    page = min(max(page, 1), last_page)
    start = (page - 1) * page_size
    return HistoryPage(
        items=list(items[start:start + page_size]),
        page=page,
        page_size=page_size,
        total_records=total,
    )


def history_to_frame(items: Sequence[RewardHistoryItem]) -> pd.DataFrame:
    """Tabular view of history items, in export column order."""
    rows = [
        {
            "Time": pd.Timestamp(item.timestamp, unit="s", tz="UTC").isoformat(),
            "Type": item.reward_type.value,
            "Amount": item.amount,
            "Level": "" if item.level is None else str(item.level),
            "From User": item.from_user or "",
            "TxHash": item.tx_hash or "",
        }
        for item in items
    ]
    return pd.DataFrame(rows, columns=["Time", "Type", "Amount", "Level", "From User", "TxHash"])


def export_csv(items: Sequence[RewardHistoryItem], path: Path) -> Path:
    """Write history items to a CSV file."""
    path = Path(path)
    history_to_frame(items).to_csv(path, index=False)
    logger.info(f"Exported {len(items)} reward records to {path}")
    return path


# ============================================================================
# REWARD HISTORY
# ============================================================================

class RewardHistory:
    """Combined mining and referral reward history for an address."""

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
    def _core(self) -> str:
        return self.contracts.core or CORE_CONTRACT

    async def fetch(self, address: str, force_refresh: bool = False) -> List[RewardHistoryItem]:
        """
        Get every reward record for an address, newest first.

        Args:
            address: User address
            force_refresh: Skip the freshness window and read the ledger
        """
        mining, referral = await asyncio.gather(
            self.mining_history(address, force_refresh),
            self.referral_history(address, force_refresh),
        )
        combined = mining + referral
        combined.sort(key=lambda item: item.timestamp, reverse=True)
        return combined

    async def mining_history(self, address: str, force_refresh: bool = False) -> List[RewardHistoryItem]:
        key = f"reward_history:{normalize_identity(address)}"
        if force_refresh:
            self._cache.invalidate(key)

        value, _ = await self._cache.get(key, lambda: self._scan_reward_events(address))
        return [RewardHistoryItem.from_dict(d) for d in value]

    async def referral_history(self, address: str, force_refresh: bool = False) -> List[RewardHistoryItem]:
        key = f"referral_history:{normalize_identity(address)}"
        if force_refresh:
            self._cache.invalidate(key)

        value, _ = await self._cache.get(key, lambda: self._read_referral_records(address))
        return [RewardHistoryItem.from_dict(d) for d in value]

    async def _scan_reward_events(self, address: str) -> List[dict]:
        log_sets = await asyncio.gather(*[
            self._reader.read_logs(
                event.signature,
                {"address": self._core, "user": address},
                EARLIEST,
                LATEST,
            )
            for event in REWARD_EVENTS
        ])

        all_logs = [log for logs in log_sets for log in logs]
        timestamps = await self._block_timestamps(all_logs)

        items = []
        for event, logs in zip(REWARD_EVENTS, log_sets):
            for index, log in enumerate(logs):
                items.append(RewardHistoryItem(
                    id=f"{event.id_prefix}-{log.transaction_hash}-{index}",
                    reward_type=event.reward_type,
                    timestamp=timestamps.get(log.block_number, 0),
                    amount=format_ether(log.args.get(event.amount_arg, 0)),
                    tx_hash=log.transaction_hash,
                    block_number=log.block_number,
                ).to_dict())

        logger.debug(f"Scanned {len(items)} reward events for {address}")
        return items

    async def _block_timestamps(self, logs: Sequence[LogEntry]) -> Dict[int, int]:
        """Resolve each distinct block number once."""
        blocks = sorted({log.block_number for log in logs if log.block_number is not None})
        stamps = await asyncio.gather(*[self._reader.block_timestamp(b) for b in blocks])
        return {block: to_int(stamp) for block, stamp in zip(blocks, stamps)}

    async def _read_referral_records(self, address: str) -> List[dict]:
        raw = await self._reader.read_value(
            self._core,
            "getReferralRewardHistory",
            [address, 0, REFERRAL_HISTORY_LIMIT],
        )
        records = self._unwrap_records(raw)

        items = []
        for index, record in enumerate(records):
            timestamp = to_int(record["timestamp"])
            items.append(RewardHistoryItem(
                id=f"referral-{timestamp}-{index}",
                reward_type=RewardType.REFERRAL,
                timestamp=timestamp,
                amount=format_ether(record["amount"]),
                level=to_int(record["level"]),
                from_user=record.get("fromUser") or record.get("from_user"),
            ).to_dict())
        return items

    @staticmethod
    def _unwrap_records(raw: Any) -> List[dict]:
        """Accept either (records, total) or a bare record list."""
        if not raw:
            return []
        if isinstance(raw, (list, tuple)) and len(raw) == 2 and isinstance(raw[0], (list, tuple)):
            return list(raw[0])
        return list(raw)


# ============================================================================
# USER INDEX
# ============================================================================

class UserIndex:
    """Distinct users discovered from UserSynced events."""

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
    def _core(self) -> str:
        return self.contracts.core or CORE_CONTRACT

    @property
    def key(self) -> str:
        return f"user_index:{normalize_identity(self._core)}"

    async def fetch(self, force_refresh: bool = False) -> List[str]:
        """Get known users in first-seen order."""
        if force_refresh:
            self._cache.invalidate(self.key)
        value, _ = await self._cache.get(self.key, self._scan)
        return list(value)

    async def count(self) -> int:
        return len(await self.fetch())

    async def _scan(self) -> List[str]:
        logs = await self._reader.read_logs(
            USER_SYNCED_EVENT,
            {"address": self._core},
            EARLIEST,
            LATEST,
        )
        seen = set()
        users = []
        for log in logs:
            user = log.args.get("user")
            if not user:
                continue
            normalized = normalize_identity(user)
            if normalized in seen:
                continue
            seen.add(normalized)
            users.append(user)

        logger.info(f"Indexed {len(users)} users from {len(logs)} UserSynced events")
        return users
