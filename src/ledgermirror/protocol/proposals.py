"""
ledgermirror/protocol/proposals.py

Proposal and vote records, and the append-only ledger that stores them.

A proposal never changes after creation except for its vote list, which only
grows. Status is never stored: it is a pure function of the votes, the
deadline, the current time and the quorum (see compute_status).

The whole ledger is kept as one JSON document in the storage backend. If that
document cannot be decoded the ledger starts empty and the problem is logged.
"""

import asyncio
import json
import time
import logging
from dataclasses import dataclass, field, asdict, replace
from enum import Enum
from typing import Dict, Iterable, List, Optional, Callable

from ..config import DEFAULT_QUORUM, GovernanceConfig
from .errors import DuplicateVote, NotFound, StoreCorrupt, StoreWriteFailed, VotingClosed
from .storage import MemoryBackend, NamespacedStore, StorageBackend

logger = logging.getLogger("ledgermirror.protocol.proposals")

LEDGER_DOMAIN = "governance"
LEDGER_KEY = "proposals"
PROPOSAL_ID_PREFIX = "IIP-"

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


# ============================================================================
# ENUMS
# ============================================================================

class ProposalType(Enum):
    """Types of governance proposals."""
    PARAMETER_CHANGE = "parameter_change"
    FEATURE_REQUEST = "feature_request"
    PARTNERSHIP = "partnership"
    COMMUNITY_EVENT = "community_event"
    OTHER = "other"


class ProposalStatus(Enum):
    """Derived status of a proposal."""
    ACTIVE = "active"           # Voting open
    PASSED = "passed"           # Quorum met, for > against
    REJECTED = "rejected"       # Quorum met, for <= against
    INVALID = "invalid"         # Quorum not met

    @property
    def is_terminal(self) -> bool:
        return self != ProposalStatus.ACTIVE


class VoteOption(Enum):
    """Vote options."""
    FOR = "for"
    AGAINST = "against"
    ABSTAIN = "abstain"


# ============================================================================
# DATA STRUCTURES
# ============================================================================

def normalize_identity(identity: str) -> str:
    """Identity form used for all voter comparisons."""
    return identity.strip().lower()


def to_base36(number: int) -> str:
    if number < 0:
        raise ValueError("number must be non-negative")
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


@dataclass(frozen=True)
class Vote:
    """A vote on a proposal. Weight is the voter's holdings at cast time."""
    voter: str
    option: VoteOption
    weight: int
    cast_at: int

    @property
    def normalized_voter(self) -> str:
        return normalize_identity(self.voter)

    def to_dict(self) -> dict:
        return {
            **asdict(self),
            "option": self.option.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Vote":
        return cls(
            voter=data["voter"],
            option=VoteOption(data["option"]),
            weight=int(data["weight"]),
            cast_at=int(data["cast_at"]),
        )


@dataclass
class VoteTally:
    """Aggregated votes for a proposal."""
    for_weight: int = 0
    against_weight: int = 0
    abstain_weight: int = 0
    unique_voters: int = 0
    quorum: int = DEFAULT_QUORUM
    status: ProposalStatus = ProposalStatus.ACTIVE

    @property
    def total_weight(self) -> int:
        return self.for_weight + self.against_weight + self.abstain_weight

    @property
    def quorum_reached(self) -> bool:
        return self.unique_voters >= self.quorum

    def to_dict(self) -> dict:
        return {
            "for_weight": self.for_weight,
            "against_weight": self.against_weight,
            "abstain_weight": self.abstain_weight,
            "total_weight": self.total_weight,
            "unique_voters": self.unique_voters,
            "quorum": self.quorum,
            "quorum_reached": self.quorum_reached,
            "status": self.status.value,
        }


def tally_votes(
    votes: Iterable[Vote],
    end_at: int,
    now: float,
    quorum: int = DEFAULT_QUORUM,
) -> VoteTally:
    """
    Sum vote weight per option and classify the outcome.

    Unique voters are counted by normalized identity. The outcome is decided
    only once now >= end_at: fewer unique voters than the quorum makes the
    proposal invalid whatever the margin; otherwise it passes only when the
    for weight strictly exceeds the against weight.
    """
    tally = VoteTally(quorum=quorum)
    voters = set()
    for vote in votes:
        if vote.option == VoteOption.FOR:
            tally.for_weight += vote.weight
        elif vote.option == VoteOption.AGAINST:
            tally.against_weight += vote.weight
        else:
            tally.abstain_weight += vote.weight
        voters.add(vote.normalized_voter)
    tally.unique_voters = len(voters)

    if now < end_at:
        tally.status = ProposalStatus.ACTIVE
    elif not tally.quorum_reached:
        tally.status = ProposalStatus.INVALID
    elif tally.for_weight > tally.against_weight:
        tally.status = ProposalStatus.PASSED
    else:
        tally.status = ProposalStatus.REJECTED
    return tally


def compute_status(
    votes: Iterable[Vote],
    end_at: int,
    now: float,
    quorum: int = DEFAULT_QUORUM,
) -> ProposalStatus:
    """Status of a proposal as observed at `now`."""
    return tally_votes(votes, end_at, now, quorum).status


@dataclass
class Proposal:
    """A governance proposal. Only `votes` may change, and only by appending."""
    proposal_id: str
    proposal_type: ProposalType
    title: str
    description: str
    creator: str
    created_at: int
    end_at: int
    votes: List[Vote] = field(default_factory=list)

    def find_vote(self, voter: str) -> Optional[Vote]:
        normalized = normalize_identity(voter)
        for vote in self.votes:
            if vote.normalized_voter == normalized:
                return vote
        return None

    def has_voted(self, voter: str) -> bool:
        return self.find_vote(voter) is not None

    def is_open(self, now: float) -> bool:
        """Whether a vote cast at `now` is admitted."""
        return now <= self.end_at

    def tally(self, now: float, quorum: int = DEFAULT_QUORUM) -> VoteTally:
        return tally_votes(self.votes, self.end_at, now, quorum)

    def status_at(self, now: float, quorum: int = DEFAULT_QUORUM) -> ProposalStatus:
        return compute_status(self.votes, self.end_at, now, quorum)

    def to_dict(self) -> dict:
        return {
            "proposal_id": self.proposal_id,
            "proposal_type": self.proposal_type.value,
            "title": self.title,
            "description": self.description,
            "creator": self.creator,
            "created_at": self.created_at,
            "end_at": self.end_at,
            "votes": [v.to_dict() for v in self.votes],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Proposal":
        return cls(
            proposal_id=data["proposal_id"],
            proposal_type=ProposalType(data["proposal_type"]),
            title=data["title"],
            description=data["description"],
            creator=data["creator"],
            created_at=int(data["created_at"]),
            end_at=int(data["end_at"]),
            votes=[Vote.from_dict(v) for v in data.get("votes", [])],
        )

    @staticmethod
    def generate_id(timestamp_ms: int) -> str:
        """Generate a proposal ID from creation time in milliseconds."""
        return f"{PROPOSAL_ID_PREFIX}{to_base36(timestamp_ms)}"

    def id_timestamp_ms(self) -> int:
        """Creation millisecond encoded in the ID, or created_at for foreign IDs."""
        if self.proposal_id.startswith(PROPOSAL_ID_PREFIX):
            try:
                return int(self.proposal_id[len(PROPOSAL_ID_PREFIX):], 36)
            except ValueError:
                pass
        return self.created_at * 1000


# ============================================================================
# PROPOSAL STORE
# ============================================================================

class ProposalStore:
    """
    Append-only durable ledger of proposals and votes.

    append() and append_vote() are the only mutators; both run under one
    asyncio.Lock so the check-then-append sequence is atomic with respect to
    other coroutines. Reads of already-loaded state never take the lock.
    """

    def __init__(
        self,
        backend: Optional[StorageBackend] = None,
        ledger: str = "default",
        config: Optional[GovernanceConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize ProposalStore.

        Args:
            backend: Durable storage backend
            ledger: Ledger name, used as the owner context of the stored key
            config: Governance thresholds used when recomputing status
            clock: Time source returning unix seconds
        """
        self._store = NamespacedStore(backend if backend is not None else MemoryBackend(), LEDGER_DOMAIN, ledger)
        self.config = config or GovernanceConfig()
        self._clock = clock
        self._proposals: Optional[Dict[str, Proposal]] = None
        self._lock = asyncio.Lock()

    async def load(self) -> List[Proposal]:
        """Get all proposals in creation order."""
        proposals = await self._ensure_loaded()
        return list(proposals.values())

    async def load_with_status(self, now: Optional[float] = None) -> Dict[str, ProposalStatus]:
        """Get every proposal's status, recomputed at `now`."""
        now = self._clock() if now is None else now
        return {
            p.proposal_id: p.status_at(now, self.config.quorum)
            for p in await self.load()
        }

    async def get(self, proposal_id: str) -> Optional[Proposal]:
        proposals = await self._ensure_loaded()
        return proposals.get(proposal_id)

    async def append(self, proposal: Proposal) -> Proposal:
        """
        Add a new proposal.

        If the ID is already taken the creation millisecond encoded in it is
        bumped by one until the ID is unique.

        Returns:
            The stored proposal (possibly with a different ID)

        Raises:
            StoreWriteFailed: The ledger could not be written; nothing was added
        """
        async with self._lock:
            proposals = await self._ensure_loaded()

            stored = proposal
            if stored.proposal_id in proposals:
                stamp_ms = stored.id_timestamp_ms()
                while Proposal.generate_id(stamp_ms) in proposals:
                    stamp_ms += 1
                stored = replace(proposal, proposal_id=Proposal.generate_id(stamp_ms))
                logger.debug(f"Proposal ID collision, using {stored.proposal_id}")

            stored = replace(stored, votes=list(stored.votes))
            await self._commit(proposals, stored)

        logger.info(f"Stored proposal {stored.proposal_id}: {stored.title}")
        return stored

    async def append_vote(
        self,
        proposal_id: str,
        vote: Vote,
        clock: Optional[Callable[[], float]] = None,
    ) -> Proposal:
        """
        Append a vote to a proposal.

        Args:
            proposal_id: Proposal to vote on
            vote: The vote, with its weight already snapshotted
            clock: Time source read under the lock for the deadline check;
                defaults to the vote's cast_at

        Raises:
            NotFound: Unknown proposal
            VotingClosed: Vote arrived after the deadline
            DuplicateVote: The voter (normalized) already voted
            StoreWriteFailed: The ledger could not be written; the vote was not recorded
        """
        async with self._lock:
            proposals = await self._ensure_loaded()
            proposal = proposals.get(proposal_id)
            if proposal is None:
                raise NotFound(proposal_id)
            now = clock() if clock is not None else vote.cast_at
            if not proposal.is_open(now):
                raise VotingClosed(proposal_id, proposal.end_at)
            if proposal.has_voted(vote.voter):
                raise DuplicateVote(proposal_id, vote.voter)

            updated = replace(proposal, votes=proposal.votes + [vote])
            await self._commit(proposals, updated)

        logger.info(f"Recorded {vote.option.value} vote on {proposal_id} by {vote.voter} (weight {vote.weight})")
        return updated

    async def reload(self) -> int:
        """Drop the in-memory copy and re-read the ledger from storage."""
        async with self._lock:
            self._proposals = None
            proposals = await self._ensure_loaded()
        return len(proposals)

    # ========================================================================
    # INTERNAL METHODS
    # ========================================================================

    async def _ensure_loaded(self) -> Dict[str, Proposal]:
        if self._proposals is None:
            loaded = await self._read()
            # Another coroutine may have loaded while the backend was read
            if self._proposals is None:
                self._proposals = loaded
        return self._proposals

    async def _read(self) -> Dict[str, Proposal]:
        try:
            raw = await self._store.get(LEDGER_KEY)
            if raw is None:
                return {}
            try:
                records = json.loads(raw.decode())
                proposals = [Proposal.from_dict(r) for r in records]
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                raise StoreCorrupt(f"{self._store.prefix}{LEDGER_KEY}", e) from e
        except StoreCorrupt as e:
            logger.error(f"Starting with an empty ledger: {e}")
            return {}

        logger.info(f"Loaded {len(proposals)} proposals")
        return {p.proposal_id: p for p in proposals}

    async def _save(self, proposals: Dict[str, Proposal]) -> bool:
        data = json.dumps([p.to_dict() for p in proposals.values()]).encode()
        ok = await self._store.set(LEDGER_KEY, data)
        if not ok:
            logger.error("Failed to persist proposal ledger")
        return ok

    async def _commit(self, proposals: Dict[str, Proposal], proposal: Proposal) -> None:
        """Write the ledger with `proposal` in place, then apply it in memory."""
        staged = dict(proposals)
        staged[proposal.proposal_id] = proposal
        if not await self._save(staged):
            raise StoreWriteFailed(f"{self._store.prefix}{LEDGER_KEY}")
        self._proposals = staged
