"""
Shared data models for the vote engine.

This module contains:
- Voter, Candidate, VoteRecord: the records owned by the ledger and tally stores
- Result enums for the ledger claim, the tally append and the cast protocol
- TallyEntry, CommitSnapshot, CastResult: immutable values handed to callers
- Redis key helpers
"""

from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Tuple
from enum import Enum


class ClaimResult(str, Enum):
    """Outcome of a compare-and-set on a voter's has_voted flag."""
    CLAIMED = "claimed"
    ALREADY_CLAIMED = "already_claimed"


class RecordStatus(str, Enum):
    """Outcome of appending a vote to the tally store."""
    RECORDED = "recorded"
    CANDIDATE_NOT_FOUND = "candidate_not_found"
    CANDIDATE_DELETED = "candidate_deleted"
    DUPLICATE_VOTER = "duplicate_voter"


class CastOutcome(str, Enum):
    """Structured outcome of a cast vote, mapped to responses by the caller."""
    SUCCESS = "success"
    ALREADY_VOTED = "already_voted"
    CANDIDATE_NOT_FOUND = "candidate_not_found"
    CANDIDATE_DELETED = "candidate_deleted"
    SERVICE_UNAVAILABLE = "service_unavailable"


class AttemptState(str, Enum):
    """States of a single vote attempt."""
    PENDING = "pending"
    VOTER_LOCKED = "voter_locked"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    REJECTED = "rejected"


@dataclass
class Voter:
    """
    A voter as seen by the ledger.

    Attributes:
        voter_id: Opaque unique identifier supplied by the identity collaborator
        has_voted: True once the voter's claim has been taken
        voted_at: When the claim was taken (None while unclaimed)
    """
    voter_id: str
    has_voted: bool = False
    voted_at: Optional[datetime] = None


@dataclass
class Candidate:
    """
    A candidate as seen by the tally store.

    Attributes:
        candidate_id: Candidate identifier
        name: Display name
        vote_count: Cached count of vote records for this candidate
        deleted: Soft-delete flag, hides the candidate from the public tally
        created_seq: Creation order, used to break ties in the tally
    """
    candidate_id: str
    name: str
    vote_count: int = 0
    deleted: bool = False
    created_seq: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


@dataclass(frozen=True)
class VoteRecord:
    """An accepted vote in the append-only audit log."""
    voter_id: str
    candidate_id: str
    timestamp: datetime
    sequence: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data


@dataclass(frozen=True)
class RecordResult:
    """
    Result of TallyStore.record_vote.

    For RECORDED, vote_count is the candidate's count right after the
    increment. For DUPLICATE_VOTER, candidate_id and vote_count describe the
    vote that was already on file for the voter.
    """
    status: RecordStatus
    candidate_id: Optional[str] = None
    vote_count: Optional[int] = None


@dataclass(frozen=True)
class TallyEntry:
    """
    One row of the public tally.

    percentage is the candidate's share of visible votes on a 0-100 scale,
    rounded to two decimals (42.86, not 0.4286).
    """
    candidate_id: str
    name: str
    vote_count: int
    percentage: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CommitSnapshot:
    """Candidate count at the moment a vote committed. Not a live value."""
    candidate_id: str
    vote_count: int


@dataclass(frozen=True)
class CastResult:
    """
    Terminal result of VoteCoordinator.cast_vote.

    Attributes:
        outcome: Structured outcome for the presentation layer
        voter_id: Voter who cast the vote
        candidate_id: Candidate requested by the caller
        state: Terminal attempt state (COMMITTED or REJECTED)
        transitions: Every state the attempt went through, in order
        attempts: Number of record_vote calls made
        idempotent: True when a previous attempt had already recorded the vote
        compensated: False only when releasing the voter's claim failed
        snapshot: Commit snapshot on success
    """
    outcome: CastOutcome
    voter_id: str
    candidate_id: str
    state: AttemptState
    transitions: Tuple[AttemptState, ...] = ()
    attempts: int = 0
    idempotent: bool = False
    compensated: bool = True
    snapshot: Optional[CommitSnapshot] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == CastOutcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'outcome': self.outcome.value,
            'voter_id': self.voter_id,
            'candidate_id': self.candidate_id,
            'state': self.state.value,
            'transitions': [state.value for state in self.transitions],
            'attempts': self.attempts,
            'idempotent': self.idempotent,
            'compensated': self.compensated,
            'snapshot': asdict(self.snapshot) if self.snapshot else None,
        }


@dataclass
class StateTrace:
    """Mutable accumulator of the states a vote attempt passes through."""
    states: list = field(default_factory=lambda: [AttemptState.PENDING])

    def move(self, state: AttemptState) -> None:
        self.states.append(state)

    @property
    def current(self) -> AttemptState:
        return self.states[-1]

    def freeze(self) -> Tuple[AttemptState, ...]:
        return tuple(self.states)


def utcnow() -> datetime:
    """Current UTC time as an aware datetime."""
    return datetime.now(timezone.utc)


# Redis key names used by the voter ledger
REDIS_KEYS = {
    'voted_voters': '{}:voted_voters',    # SET of voter ids holding a claim
    'voted_at': '{}:voted_at',            # HASH voter id -> ISO claim timestamp
    'registered_voters': '{}:registered_voters',  # SET of registered voter ids
}


def get_redis_key(key_type: str, prefix: str) -> str:
    """
    Get formatted Redis key.

    Args:
        key_type: Type of key from REDIS_KEYS
        prefix: Namespace prefix for this deployment

    Returns:
        str: Formatted Redis key
    """
    return REDIS_KEYS[key_type].format(prefix)
