"""
ledgermirror/protocol/errors.py

Exception taxonomy shared by the cache, the ledger and the governance engine.

Every failure path maps to exactly one of:
- NotEligible    - zero voting weight
- NotFound       - unknown proposal
- VotingClosed   - past the voting deadline
- DuplicateVote  - voter already recorded
- FetchFailed    - upstream unreachable and no cached fallback exists
- StoreCorrupt   - persisted data unreadable (treated as empty, never fatal)
- StoreWriteFailed - durable write refused, mutation not applied
"""

from typing import Optional


class LedgerMirrorError(Exception):
    """Base class for all ledgermirror errors."""
    pass


# ============================================================================
# GOVERNANCE
# ============================================================================

class GovernanceError(LedgerMirrorError):
    """Rejected governance operation, meant for direct user feedback."""
    pass


class NotEligible(GovernanceError):
    """Identity holds no voting weight."""

    def __init__(self, identity: str, action: str = "participate"):
        self.identity = identity
        self.action = action
        super().__init__(f"{identity} holds no voting weight and cannot {action}")


class NotFound(GovernanceError):
    """Proposal does not exist."""

    def __init__(self, proposal_id: str):
        self.proposal_id = proposal_id
        super().__init__(f"Proposal not found: {proposal_id}")


class VotingClosed(GovernanceError):
    """Voting period has ended."""

    def __init__(self, proposal_id: str, end_at: int):
        self.proposal_id = proposal_id
        self.end_at = end_at
        super().__init__(f"Voting on {proposal_id} closed at {end_at}")


class DuplicateVote(GovernanceError):
    """Voter already has a vote on the proposal."""

    def __init__(self, proposal_id: str, voter: str):
        self.proposal_id = proposal_id
        self.voter = voter
        super().__init__(f"{voter} already voted on {proposal_id}")


# ============================================================================
# DATA ACCESS
# ============================================================================

class FetchFailed(LedgerMirrorError):
    """Upstream fetch failed and there is no cached value to fall back on."""

    def __init__(self, key: str, reason: Optional[BaseException] = None):
        self.key = key
        self.reason = reason
        detail = f": {reason}" if reason is not None else ""
        super().__init__(f"Fetch failed for {key}{detail}")


class StoreCorrupt(LedgerMirrorError):
    """Persisted data could not be decoded."""

    def __init__(self, key: str, reason: Optional[BaseException] = None):
        self.key = key
        self.reason = reason
        detail = f": {reason}" if reason is not None else ""
        super().__init__(f"Corrupt data at {key}{detail}")


class StoreWriteFailed(LedgerMirrorError):
    """Durable write was refused; in-memory state was left unchanged."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Failed to persist {key}")
