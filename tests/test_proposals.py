"""
ledgermirror/tests/test_proposals.py

Tests for proposal records, status classification and the proposal ledger.
"""

import asyncio
import json
import pytest
from unittest.mock import AsyncMock

from ledgermirror.config import GovernanceConfig
from ledgermirror.protocol.cache import ReadModelCache
from ledgermirror.protocol.errors import DuplicateVote, NotFound, StoreWriteFailed, VotingClosed
from ledgermirror.protocol.proposals import (
    Proposal,
    ProposalStatus,
    ProposalStore,
    ProposalType,
    Vote,
    VoteOption,
    compute_status,
    normalize_identity,
    tally_votes,
    to_base36,
)
from ledgermirror.protocol.storage import MemoryBackend

T0 = 1_700_000_000
WEEK = 7 * 86400


def make_votes(for_count=0, against_count=0, abstain_count=0, weight=1):
    votes = []
    for i in range(for_count):
        votes.append(Vote(f"0xfor{i}", VoteOption.FOR, weight, T0 + i))
    for i in range(against_count):
        votes.append(Vote(f"0xagainst{i}", VoteOption.AGAINST, weight, T0 + i))
    for i in range(abstain_count):
        votes.append(Vote(f"0xabstain{i}", VoteOption.ABSTAIN, weight, T0 + i))
    return votes


def make_proposal(proposal_id="IIP-TEST", created_at=T0, votes=None):
    return Proposal(
        proposal_id=proposal_id,
        proposal_type=ProposalType.FEATURE_REQUEST,
        title="Add leaderboard",
        description="Show top node holders",
        creator="0xCreator",
        created_at=created_at,
        end_at=created_at + WEEK,
        votes=list(votes or []),
    )


class TestStatus:
    """Status is a pure function of votes, deadline, now and quorum."""

    def test_active_before_deadline(self):
        """Test proposals are active while now < end_at, whatever the votes."""
        votes = make_votes(for_count=200)
        assert compute_status(votes, T0 + WEEK, T0 + WEEK - 1, 127) == ProposalStatus.ACTIVE

    def test_terminal_at_deadline(self):
        """Test classification happens once now reaches end_at."""
        votes = make_votes(for_count=200)
        assert compute_status(votes, T0 + WEEK, T0 + WEEK, 127) == ProposalStatus.PASSED

    @pytest.mark.parametrize("voters,expected", [
        (126, ProposalStatus.INVALID),
        (127, ProposalStatus.PASSED),
        (128, ProposalStatus.PASSED),
    ])
    def test_quorum_boundary(self, voters, expected):
        """Test fewer unique voters than the quorum is invalid."""
        votes = make_votes(for_count=voters)
        assert compute_status(votes, T0, T0 + 1, 127) == expected

    def test_quorum_failure_overrides_margin(self):
        """Test a lopsided vote below quorum is still invalid."""
        votes = make_votes(for_count=99, against_count=1, weight=1000)
        assert compute_status(votes, T0, T0 + 1, 127) == ProposalStatus.INVALID

    def test_tie_is_rejected(self):
        """Test for == against does not pass."""
        votes = make_votes(for_count=70, against_count=70)
        assert compute_status(votes, T0, T0 + 1, 127) == ProposalStatus.REJECTED

    def test_weight_decides_outcome(self):
        """Test the outcome compares weight, not head count."""
        votes = make_votes(for_count=100, weight=1) + make_votes(against_count=30, weight=5)
        tally = tally_votes(votes, T0, T0 + 1, 127)
        assert tally.for_weight == 100
        assert tally.against_weight == 150
        assert tally.status == ProposalStatus.REJECTED

    def test_abstain_counts_for_quorum_only(self):
        """Test abstentions count as voters but not in the margin."""
        votes = make_votes(for_count=2, against_count=1, abstain_count=124)
        tally = tally_votes(votes, T0, T0 + 1, 127)
        assert tally.unique_voters == 127
        assert tally.abstain_weight == 124
        assert tally.status == ProposalStatus.PASSED

    def test_unique_voters_are_case_normalized(self):
        """Test identities differing only in case count once."""
        votes = [
            Vote("0xAbC", VoteOption.FOR, 1, T0),
            Vote("0xabc", VoteOption.FOR, 1, T0),
        ]
        assert tally_votes(votes, T0, T0 + 1, 1).unique_voters == 1

    def test_zero_quorum(self):
        """Test a zero quorum lets an empty vote be rejected rather than invalid."""
        assert compute_status([], T0, T0 + 1, 0) == ProposalStatus.REJECTED


class TestRecords:
    """Serialization and identifiers."""

    def test_proposal_roundtrip(self):
        """Test a proposal survives to_dict/from_dict with vote order intact."""
        proposal = make_proposal(votes=make_votes(for_count=2, against_count=1))
        restored = Proposal.from_dict(json.loads(json.dumps(proposal.to_dict())))

        assert restored == proposal
        assert [v.voter for v in restored.votes] == ["0xfor0", "0xfor1", "0xagainst0"]

    def test_status_is_not_serialized(self):
        """Test derived status never reaches storage."""
        assert "status" not in make_proposal().to_dict()

    def test_generate_id(self):
        """Test IDs are derived from creation milliseconds."""
        assert Proposal.generate_id(0) == "IIP-0"
        assert Proposal.generate_id(35) == "IIP-Z"
        assert Proposal.generate_id(36) == "IIP-10"

    def test_base36_rejects_negative(self):
        with pytest.raises(ValueError):
            to_base36(-1)

    def test_find_vote_normalizes(self):
        """Test vote lookup ignores case and surrounding whitespace."""
        proposal = make_proposal(votes=[Vote("0xAbC", VoteOption.FOR, 2, T0)])
        assert proposal.find_vote(" 0XABC ").weight == 2
        assert proposal.has_voted("0xdef") is False
        assert normalize_identity(" 0XAbc ") == "0xabc"

    def test_is_open_includes_deadline(self):
        """Test a vote exactly at end_at is admitted, one second later is not."""
        proposal = make_proposal()
        assert proposal.is_open(proposal.end_at)
        assert not proposal.is_open(proposal.end_at + 1)


class TestProposalStore:
    """Append-only proposal ledger."""

    @pytest.fixture
    def backend(self):
        return MemoryBackend()

    @pytest.fixture
    def store(self, backend):
        return ProposalStore(backend)

    @pytest.mark.asyncio
    async def test_empty_store(self, store):
        """Test a fresh store has no proposals."""
        assert await store.load() == []
        assert await store.get("IIP-NONE") is None

    @pytest.mark.asyncio
    async def test_append_and_reload(self, store, backend):
        """Test proposals persist across store instances."""
        await store.append(make_proposal("IIP-A"))
        await store.append_vote("IIP-A", Vote("0xv", VoteOption.FOR, 3, T0 + 10))

        reopened = ProposalStore(backend)
        proposals = await reopened.load()
        assert [p.proposal_id for p in proposals] == ["IIP-A"]
        assert proposals[0].votes[0].weight == 3

    @pytest.mark.asyncio
    async def test_append_resolves_id_collision(self, store):
        """Test a colliding ID is bumped rather than overwriting."""
        first = await store.append(make_proposal(Proposal.generate_id(T0 * 1000)))
        second = await store.append(make_proposal(Proposal.generate_id(T0 * 1000)))

        assert first.proposal_id != second.proposal_id
        assert len(await store.load()) == 2

    @pytest.mark.asyncio
    async def test_collision_bumps_from_creation_millisecond(self, store):
        """Test a colliding ID keeps the millisecond it was created at."""
        stamp_ms = T0 * 1000 + 567
        await store.append(make_proposal(Proposal.generate_id(stamp_ms)))
        second = await store.append(make_proposal(Proposal.generate_id(stamp_ms)))

        assert second.proposal_id == Proposal.generate_id(stamp_ms + 1)
        assert second.id_timestamp_ms() == stamp_ms + 1

    def test_id_timestamp_for_foreign_id(self):
        """Test an ID that is not base36 falls back to created_at."""
        assert make_proposal("IIP-not-b36").id_timestamp_ms() == T0 * 1000
        assert make_proposal("legacy-7").id_timestamp_ms() == T0 * 1000

    @pytest.mark.asyncio
    async def test_failed_append_leaves_ledger_unchanged(self, store, backend):
        """Test a proposal that could not be written is not kept in memory."""
        backend.set = AsyncMock(return_value=False)

        with pytest.raises(StoreWriteFailed):
            await store.append(make_proposal("IIP-A"))
        assert await store.load() == []

    @pytest.mark.asyncio
    async def test_failed_vote_write_leaves_proposal_unchanged(self, store, backend):
        """Test a vote that could not be written is not kept in memory."""
        await store.append(make_proposal("IIP-A"))
        backend.set = AsyncMock(return_value=False)

        with pytest.raises(StoreWriteFailed):
            await store.append_vote("IIP-A", Vote("0xv", VoteOption.FOR, 1, T0 + 1))
        assert (await store.get("IIP-A")).votes == []

    @pytest.mark.asyncio
    async def test_deadline_checked_against_clock(self, store):
        """Test the lock-time clock decides admission, not the vote's stamp."""
        await store.append(make_proposal("IIP-A"))
        with pytest.raises(VotingClosed):
            await store.append_vote(
                "IIP-A",
                Vote("0xv", VoteOption.FOR, 1, T0 + WEEK),
                clock=lambda: T0 + WEEK + 0.5,
            )
        assert (await store.get("IIP-A")).votes == []

    @pytest.mark.asyncio
    async def test_append_vote_unknown_proposal(self, store):
        """Test voting on a missing proposal raises NotFound."""
        with pytest.raises(NotFound):
            await store.append_vote("IIP-NONE", Vote("0xv", VoteOption.FOR, 1, T0))

    @pytest.mark.asyncio
    async def test_append_vote_rejects_duplicate(self, store):
        """Test the ledger enforces one vote per normalized voter."""
        await store.append(make_proposal("IIP-A"))
        await store.append_vote("IIP-A", Vote("0xAbC", VoteOption.FOR, 1, T0 + 1))

        with pytest.raises(DuplicateVote):
            await store.append_vote("IIP-A", Vote("0xabc", VoteOption.AGAINST, 1, T0 + 2))
        assert len((await store.get("IIP-A")).votes) == 1

    @pytest.mark.asyncio
    async def test_append_vote_rejects_late_vote(self, store):
        """Test the ledger rejects a vote stamped after the deadline."""
        await store.append(make_proposal("IIP-A"))
        with pytest.raises(VotingClosed):
            await store.append_vote("IIP-A", Vote("0xv", VoteOption.FOR, 1, T0 + WEEK + 1))

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_votes_admit_one(self, store):
        """Test racing appends by one voter record exactly one vote."""
        await store.append(make_proposal("IIP-A"))
        results = await asyncio.gather(
            *[store.append_vote("IIP-A", Vote("0xsame", VoteOption.FOR, 1, T0 + 1)) for _ in range(5)],
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, DuplicateVote)) == 4
        assert len((await store.get("IIP-A")).votes) == 1

    @pytest.mark.asyncio
    async def test_votes_keep_append_order(self, store):
        """Test votes are observed in the order they were appended."""
        await store.append(make_proposal("IIP-A"))
        for i in range(5):
            await store.append_vote("IIP-A", Vote(f"0x{i}", VoteOption.FOR, 1, T0 + i))

        assert [v.voter for v in (await store.get("IIP-A")).votes] == [f"0x{i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_load_with_status(self, store):
        """Test statuses are recomputed on read."""
        await store.append(make_proposal("IIP-A"))

        assert await store.load_with_status(T0 + 1) == {"IIP-A": ProposalStatus.ACTIVE}
        assert await store.load_with_status(T0 + WEEK) == {"IIP-A": ProposalStatus.INVALID}

    @pytest.mark.asyncio
    async def test_corrupt_ledger_is_empty(self, backend):
        """Test unparsable persisted data is treated as a cold start."""
        await backend.set("governance:default:proposals", b"[{\"proposal_id\": ")
        store = ProposalStore(backend)
        assert await store.load() == []

    @pytest.mark.asyncio
    async def test_wrong_shape_ledger_is_empty(self, backend):
        """Test well-formed JSON of the wrong shape is treated as empty."""
        await backend.set("governance:default:proposals", json.dumps({"a": 1}).encode())
        store = ProposalStore(backend)
        assert await store.load() == []

    @pytest.mark.asyncio
    async def test_ledgers_are_isolated(self, backend):
        """Test two ledger names on one backend do not share proposals."""
        main = ProposalStore(backend, ledger="main")
        test = ProposalStore(backend, ledger="test")
        await main.append(make_proposal("IIP-A"))

        assert await test.load() == []

    @pytest.mark.asyncio
    async def test_reload(self, store, backend):
        """Test reload picks up changes written by another instance."""
        await store.load()
        other = ProposalStore(backend)
        await other.append(make_proposal("IIP-B"))

        assert await store.reload() == 1

    @pytest.mark.asyncio
    async def test_custom_quorum(self, backend):
        """Test the configured quorum drives recomputed status."""
        store = ProposalStore(backend, config=GovernanceConfig(quorum=2))
        await store.append(make_proposal("IIP-A", votes=make_votes(for_count=2)))

        assert await store.load_with_status(T0 + WEEK) == {"IIP-A": ProposalStatus.PASSED}


class TestSharedBackend:
    """Ledger and cache persisted side by side."""

    @pytest.mark.asyncio
    async def test_empty_backend_is_shared(self):
        """Test an empty backend handed to both components receives both keysets."""
        backend = MemoryBackend()
        store = ProposalStore(backend)
        cache = ReadModelCache(backend, owner="0xowner", clock=lambda: float(T0))

        await store.append(make_proposal("IIP-A"))
        await cache.get("node_balance:0xowner", AsyncMock(return_value=3))

        assert await backend.list_keys("governance:") == ["governance:default:proposals"]
        assert await backend.list_keys("cache:") == ["cache:0xowner:node_balance:0xowner"]

        assert [p.proposal_id for p in await ProposalStore(backend).load()] == ["IIP-A"]
        restarted = ReadModelCache(backend, owner="0xowner", clock=lambda: float(T0))
        assert await restarted.warm() == 1
        assert restarted.get_or_none("node_balance:0xowner") == 3
