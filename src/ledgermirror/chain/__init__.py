"""
ledgermirror.chain - remote ledger capability and the typed read models built on it.
"""

from .reader import ChainReader, ChainReaderError, LogEntry, EARLIEST, LATEST
from .views import ChainViews
from .history import (
    RewardHistory,
    RewardHistoryItem,
    RewardType,
    HistoryFilter,
    HistoryPage,
    UserIndex,
    filter_items,
    paginate,
    export_csv,
)

__all__ = [
    "ChainReader",
    "ChainReaderError",
    "LogEntry",
    "EARLIEST",
    "LATEST",
    "ChainViews",
    "RewardHistory",
    "RewardHistoryItem",
    "RewardType",
    "HistoryFilter",
    "HistoryPage",
    "UserIndex",
    "filter_items",
    "paginate",
    "export_csv",
]
