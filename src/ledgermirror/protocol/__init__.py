"""
ledgermirror.protocol - read-model cache, proposal ledger and governance engine.
"""

from .errors import (
    LedgerMirrorError,
    GovernanceError,
    NotEligible,
    NotFound,
    VotingClosed,
    DuplicateVote,
    FetchFailed,
    StoreCorrupt,
    StoreWriteFailed,
)
from .storage import StorageBackend, MemoryBackend, FileBackend, NamespacedStore
from .cache import ReadModelCache, CacheEntry, CacheState
from .proposals import (
    Proposal,
    ProposalStatus,
    ProposalStore,
    ProposalType,
    Vote,
    VoteOption,
    VoteTally,
    compute_status,
    tally_votes,
)
from .governance import GovernanceEngine

__all__ = [
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
    "NamespacedStore",
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
    "compute_status",
    "tally_votes",
    "GovernanceEngine",
]
