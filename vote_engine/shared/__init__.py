"""
Shared models and utilities for the vote engine.

This package contains common code used across all components:
- Data models (Voter, Candidate, VoteRecord, result enums)
- Store exceptions
- Per-key locking primitives for the in-memory backends
- Redis key helpers
"""

from .models import (
    ClaimResult,
    RecordStatus,
    CastOutcome,
    AttemptState,
    Voter,
    Candidate,
    VoteRecord,
    RecordResult,
    TallyEntry,
    CommitSnapshot,
    CastResult,
    StateTrace,
    utcnow,
    get_redis_key,
    REDIS_KEYS,
)
from .errors import (
    VoteEngineError,
    StoreUnavailableError,
    NotClaimedError,
    CandidateExistsError,
    UnknownCandidateError,
)
from .locks import KeyedLock, SnapshotGate

__all__ = [
    'ClaimResult',
    'RecordStatus',
    'CastOutcome',
    'AttemptState',
    'Voter',
    'Candidate',
    'VoteRecord',
    'RecordResult',
    'TallyEntry',
    'CommitSnapshot',
    'CastResult',
    'StateTrace',
    'utcnow',
    'get_redis_key',
    'REDIS_KEYS',
    'VoteEngineError',
    'StoreUnavailableError',
    'NotClaimedError',
    'CandidateExistsError',
    'UnknownCandidateError',
    'KeyedLock',
    'SnapshotGate',
]
