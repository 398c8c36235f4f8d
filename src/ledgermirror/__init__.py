"""
ledgermirror - Local read model and off-chain governance over a remote ledger

Built from:
- ReadModelCache for coalesced, TTL-bound, fallback-capable ledger reads
- ProposalStore as an append-only proposal and vote ledger
- GovernanceEngine for weighted voting with a unique-voter quorum

Usage:
    from ledgermirror import (
        ChainViews, FileBackend, GovernanceEngine, ProposalStore, ReadModelCache,
    )

    backend = FileBackend(storage_dir)
    cache = ReadModelCache(backend, owner=address)
    await cache.warm()

    views = ChainViews(reader, cache)
    engine = GovernanceEngine(ProposalStore(backend), views.weight_source())

    proposal = await engine.create_proposal(address, "feature_request", "Title", "Body")
    await engine.cast_vote(proposal.proposal_id, address, "for")
"""

from .config import (
    DisplayMode,
    DeviceProfile,
    GovernanceConfig,
    TTLPolicy,
    ContractAddresses,
    DEFAULT_QUORUM,
    DEFAULT_VOTING_PERIOD_DAYS,
)
from .protocol import (
    LedgerMirrorError,
    GovernanceError,
    NotEligible,
    NotFound,
    VotingClosed,
    DuplicateVote,
    FetchFailed,
    StoreCorrupt,
    StoreWriteFailed,
    StorageBackend,
    MemoryBackend,
    FileBackend,
    ReadModelCache,
    CacheEntry,
    CacheState,
    Proposal,
    ProposalStatus,
    ProposalStore,
    ProposalType,
    Vote,
    VoteOption,
    VoteTally,
    GovernanceEngine,
)
from .chain import (
    ChainReader,
    LogEntry,
    ChainViews,
    RewardHistory,
    UserIndex,
)

__version__ = "0.1.0"

__all__ = [
    "DisplayMode",
    "DeviceProfile",
    "GovernanceConfig",
    "TTLPolicy",
    "ContractAddresses",
    "DEFAULT_QUORUM",
    "DEFAULT_VOTING_PERIOD_DAYS",
    "LedgerMirrorError",
    "GovernanceError",
    "NotEligible",
    "NotFound",
    "VotingClosed",
    "DuplicateVote",
    "FetchFailed",
    "StoreCorrupt",
    "StoreWriteFailed",
    "StorageBackend",
    "MemoryBackend",
    "FileBackend",
    "ReadModelCache",
    "CacheEntry",
    "CacheState",
    "Proposal",
    "ProposalStatus",
    "ProposalStore",
    "ProposalType",
    "Vote",
    "VoteOption",
    "VoteTally",
    "GovernanceEngine",
    "ChainReader",
    "LogEntry",
    "ChainViews",
    "RewardHistory",
    "UserIndex",
]
