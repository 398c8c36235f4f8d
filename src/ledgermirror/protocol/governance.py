"""
ledgermirror/protocol/governance.py

Off-chain governance over mirrored ledger holdings.

Holders of voting weight (Genesis Nodes) can create proposals and vote on
them. Rules:
- Any identity with non-zero weight may create a proposal or vote
- One vote per identity per proposal (identities compared case-insensitively)
- A vote carries the voter's weight at the moment it is cast; later balance
  changes never alter it
- Voting stays open for the voting period (7 days by default)
- After the deadline a proposal is invalid if fewer unique identities than
  the quorum (127 by default) voted; otherwise it passes only if the for
  weight is strictly greater than the against weight

Status is classified on every read from (votes, deadline, now, quorum).
Nothing happens when a deadline passes, so two reads either side of the
deadline may legitimately disagree.

Usage:
    from ledgermirror.protocol.governance import GovernanceEngine

    engine = GovernanceEngine(ProposalStore(backend), views.weight_source())

    proposal = await engine.create_proposal(
        creator=address,
        proposal_type=ProposalType.FEATURE_REQUEST,
        title="Add node leaderboard",
        description="...",
    )
    await engine.cast_vote(proposal.proposal_id, address, VoteOption.FOR)
    tally = await engine.tally(proposal.proposal_id)
"""

import logging
import time
from typing import Awaitable, Callable, List, Optional, Tuple, Union

from ..config import GovernanceConfig
from .errors import DuplicateVote, FetchFailed, NotEligible, NotFound, VotingClosed
from .proposals import (
    Proposal,
    ProposalStatus,
    ProposalStore,
    ProposalType,
    Vote,
    VoteOption,
    VoteTally,
)

logger = logging.getLogger("ledgermirror.protocol.governance")

WeightSource = Callable[[str], Awaitable[int]]


class GovernanceEngine:
    """
    Proposal lifecycle, vote admission and tallying.

    Voting weight is read through `weight_source`, normally
    ChainViews.node_balance backed by the read-model cache.
    """

    def __init__(
        self,
        store: ProposalStore,
        weight_source: WeightSource,
        config: Optional[GovernanceConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize GovernanceEngine.

        Args:
            store: Proposal ledger
            weight_source: Async callable returning an identity's current weight
            config: Quorum and voting period
            clock: Time source returning unix seconds
        """
        self._store = store
        self._weight_source = weight_source
        self.config = config or store.config
        self._clock = clock

    # ========================================================================
    # PROPOSAL CREATION
    # ========================================================================

    async def create_proposal(
        self,
        creator: str,
        proposal_type: Union[ProposalType, str],
        title: str,
        description: str,
    ) -> Proposal:
        """
        Create a new proposal, open for voting immediately.

        Raises:
            NotEligible: creator holds no voting weight
            FetchFailed: weight unavailable and not cached
            ValueError: unknown proposal type or empty title
        """
        proposal_type = ProposalType(proposal_type)
        title = title.strip()
        if not title:
            raise ValueError("Proposal title must not be empty")

        weight = await self._weight(creator)
        if weight <= 0:
            logger.warning(f"Rejected proposal from {creator}: no voting weight")
            raise NotEligible(creator, "create proposals")

        now = self._clock()
        created_at = int(now)
        proposal = Proposal(
            proposal_id=Proposal.generate_id(int(now * 1000)),
            proposal_type=proposal_type,
            title=title,
            description=description,
            creator=creator,
            created_at=created_at,
            end_at=created_at + self.config.voting_period_seconds,
        )

        stored = await self._store.append(proposal)
        logger.info(f"Created proposal {stored.proposal_id} by {creator}, voting ends at {stored.end_at}")
        return stored

    # ========================================================================
    # VOTING
    # ========================================================================

    async def cast_vote(
        self,
        proposal_id: str,
        voter: str,
        option: Union[VoteOption, str],
    ) -> Vote:
        """
        Record a vote.

        Checks run in order: proposal exists, voting open, voter has weight,
        voter has not voted yet.

        Raises:
            NotFound, VotingClosed, NotEligible, DuplicateVote, StoreWriteFailed
        """
        option = VoteOption(option)

        proposal = await self._store.get(proposal_id)
        if proposal is None:
            raise NotFound(proposal_id)

        if not proposal.is_open(self._clock()):
            logger.warning(f"Rejected vote on {proposal_id}: voting closed")
            raise VotingClosed(proposal_id, proposal.end_at)

        weight = await self._weight(voter)
        if weight <= 0:
            logger.warning(f"Rejected vote on {proposal_id} from {voter}: no voting weight")
            raise NotEligible(voter, "vote")

        if proposal.has_voted(voter):
            logger.warning(f"Rejected duplicate vote on {proposal_id} from {voter}")
            raise DuplicateVote(proposal_id, voter)

        # Timestamp after the weight read; the ledger re-reads the clock under its lock
        vote = Vote(
            voter=voter,
            option=option,
            weight=weight,
            cast_at=int(self._clock()),
        )
        await self._store.append_vote(proposal_id, vote, clock=self._clock)
        return vote

    # ========================================================================
    # QUERIES
    # ========================================================================

    async def tally(self, proposal_id: str, now: Optional[float] = None) -> VoteTally:
        """
        Tally a proposal's votes.

        Raises:
            NotFound: unknown proposal
        """
        proposal = await self._require(proposal_id)
        return proposal.tally(self._now(now), self.config.quorum)

    async def get_status(self, proposal_id: str, now: Optional[float] = None) -> ProposalStatus:
        proposal = await self._require(proposal_id)
        return proposal.status_at(self._now(now), self.config.quorum)

    async def get_proposal(self, proposal_id: str) -> Optional[Proposal]:
        return await self._store.get(proposal_id)

    async def list_proposals(self) -> List[Proposal]:
        """All proposals, newest first."""
        proposals = await self._store.load()
        return sorted(proposals, key=lambda p: p.created_at, reverse=True)

    async def list_with_status(
        self,
        now: Optional[float] = None,
    ) -> List[Tuple[Proposal, ProposalStatus]]:
        now = self._now(now)
        return [(p, p.status_at(now, self.config.quorum)) for p in await self.list_proposals()]

    async def active_proposals(self, now: Optional[float] = None) -> List[Proposal]:
        return [p for p, status in await self.list_with_status(now) if status == ProposalStatus.ACTIVE]

    async def closed_proposals(self, now: Optional[float] = None) -> List[Proposal]:
        return [p for p, status in await self.list_with_status(now) if status.is_terminal]

    async def get_user_vote(self, proposal_id: str, voter: str) -> Optional[Vote]:
        proposal = await self._store.get(proposal_id)
        if proposal is None:
            return None
        return proposal.find_vote(voter)

    async def user_votes(self, voter: str) -> List[Tuple[Proposal, Vote]]:
        """Voting history of an identity, newest proposal first."""
        history = []
        for proposal in await self.list_proposals():
            vote = proposal.find_vote(voter)
            if vote is not None:
                history.append((proposal, vote))
        return history

    async def vote_stats(self, proposal_id: str) -> dict:
        """Weight per option and voter count; zeros for an unknown proposal."""
        proposal = await self._store.get(proposal_id)
        tally = proposal.tally(self._clock(), self.config.quorum) if proposal else VoteTally(quorum=self.config.quorum)
        return {
            "for_votes": tally.for_weight,
            "against_votes": tally.against_weight,
            "abstain_votes": tally.abstain_weight,
            "total_voters": tally.unique_voters,
            "total_votes": tally.total_weight,
        }

    async def can_participate(self, identity: str) -> bool:
        """Whether an identity currently holds voting weight."""
        try:
            return await self._weight(identity) > 0
        except FetchFailed as e:
            logger.warning(f"Cannot determine eligibility of {identity}: {e}")
            return False

    async def get_stats(self, now: Optional[float] = None) -> dict:
        """Get governance statistics."""
        counts = {status.value: 0 for status in ProposalStatus}
        listed = await self.list_with_status(now)
        for _, status in listed:
            counts[status.value] += 1
        return {
            "total_proposals": len(listed),
            "active_proposals": counts["active"],
            "passed_proposals": counts["passed"],
            "rejected_proposals": counts["rejected"],
            "invalid_proposals": counts["invalid"],
            "quorum": self.config.quorum,
            "voting_period_days": self.config.voting_period_days,
        }

    # ========================================================================
    # INTERNAL METHODS
    # ========================================================================

    async def _weight(self, identity: str) -> int:
        return int(await self._weight_source(identity))

    async def _require(self, proposal_id: str) -> Proposal:
        proposal = await self._store.get(proposal_id)
        if proposal is None:
            raise NotFound(proposal_id)
        return proposal

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else now
