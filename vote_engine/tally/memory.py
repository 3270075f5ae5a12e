"""In-process tally store."""

import itertools
import logging
import threading
from collections import Counter
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from vote_engine.shared import (
    Candidate,
    CandidateExistsError,
    KeyedLock,
    RecordResult,
    RecordStatus,
    SnapshotGate,
    UnknownCandidateError,
    VoteRecord,
)
from vote_engine.tally.base import TallyStore

logger = logging.getLogger(__name__)


class InMemoryTallyStore(TallyStore):
    """
    Tally store kept in process memory.

    record_vote holds the gate in shared mode, the voter's stripe and the
    candidate's stripe, in that order. Votes for different candidates only
    meet on the short log append. Snapshots take the gate exclusively and so
    only wait for appends already under way.
    """

    def __init__(self, stripes: int = 64):
        self._candidates: Dict[str, Candidate] = {}
        self._log: List[VoteRecord] = []
        self._records_by_voter: Dict[str, VoteRecord] = {}
        self._gate = SnapshotGate()
        self._voter_locks = KeyedLock(stripes)
        self._candidate_locks = KeyedLock(stripes)
        self._log_lock = threading.Lock()
        self._created_seq = itertools.count(1)

    def record_vote(self, candidate_id: str, voter_id: str, timestamp: datetime) -> RecordResult:
        with self._gate.shared(), self._voter_locks.for_key(voter_id):
            existing = self._records_by_voter.get(voter_id)
            if existing is not None:
                logger.warning(f"Duplicate vote record attempt for voter {voter_id}")
                prior = self._candidates.get(existing.candidate_id)
                return RecordResult(
                    status=RecordStatus.DUPLICATE_VOTER,
                    candidate_id=existing.candidate_id,
                    vote_count=prior.vote_count if prior else None
                )

            candidate = self._candidates.get(candidate_id)
            if candidate is None:
                return RecordResult(status=RecordStatus.CANDIDATE_NOT_FOUND, candidate_id=candidate_id)
            if candidate.deleted:
                return RecordResult(status=RecordStatus.CANDIDATE_DELETED, candidate_id=candidate_id)

            with self._candidate_locks.for_key(candidate_id):
                with self._log_lock:
                    record = VoteRecord(
                        voter_id=voter_id,
                        candidate_id=candidate_id,
                        timestamp=timestamp,
                        sequence=len(self._log) + 1
                    )
                    self._log.append(record)
                self._records_by_voter[voter_id] = record
                candidate.vote_count += 1
                vote_count = candidate.vote_count

        logger.debug(f"Recorded vote #{record.sequence}: voter={voter_id} candidate={candidate_id}")
        return RecordResult(status=RecordStatus.RECORDED, candidate_id=candidate_id, vote_count=vote_count)

    def snapshot_candidates(self) -> List[Candidate]:
        with self._gate.exclusive():
            return [replace(c) for c in self._candidates.values()]

    def add_candidate(self, candidate_id: str, name: str) -> Candidate:
        with self._gate.exclusive():
            if candidate_id in self._candidates:
                raise CandidateExistsError(candidate_id)
            candidate = Candidate(
                candidate_id=candidate_id,
                name=name,
                created_seq=next(self._created_seq)
            )
            self._candidates[candidate_id] = candidate
            logger.info(f"Candidate added: {candidate_id} ({name})")
            return replace(candidate)

    def rename_candidate(self, candidate_id: str, name: str) -> Candidate:
        with self._gate.exclusive():
            candidate = self._require(candidate_id)
            candidate.name = name
            return replace(candidate)

    def soft_delete_candidate(self, candidate_id: str) -> Candidate:
        with self._gate.exclusive():
            candidate = self._require(candidate_id)
            candidate.deleted = True
            logger.info(f"Candidate soft-deleted: {candidate_id} ({candidate.vote_count} votes retained)")
            return replace(candidate)

    def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        with self._gate.exclusive():
            candidate = self._candidates.get(candidate_id)
            return replace(candidate) if candidate else None

    def audit_log(self) -> List[VoteRecord]:
        with self._log_lock:
            return list(self._log)

    def has_vote_record(self, voter_id: str) -> bool:
        with self._voter_locks.for_key(voter_id):
            return voter_id in self._records_by_voter

    def voter_record_counts(self) -> Dict[str, int]:
        return dict(Counter(record.voter_id for record in self.audit_log()))

    def record_candidate_ids(self) -> Dict[str, int]:
        return dict(Counter(record.candidate_id for record in self.audit_log()))

    def counter_snapshot(self) -> Dict[str, Tuple[int, int]]:
        with self._gate.exclusive():
            logged = Counter(record.candidate_id for record in self._log)
            return {
                candidate_id: (candidate.vote_count, logged.get(candidate_id, 0))
                for candidate_id, candidate in self._candidates.items()
            }

    def recount_candidate(self, candidate_id: str) -> Tuple[int, int]:
        with self._gate.exclusive():
            candidate = self._require(candidate_id)
            previous = candidate.vote_count
            recomputed = sum(1 for record in self._log if record.candidate_id == candidate_id)
            candidate.vote_count = recomputed
            if previous != recomputed:
                logger.warning(
                    f"Counter for candidate {candidate_id} rebuilt from log: {previous} -> {recomputed}"
                )
            return previous, recomputed

    def _require(self, candidate_id: str) -> Candidate:
        candidate = self._candidates.get(candidate_id)
        if candidate is None:
            raise UnknownCandidateError(candidate_id)
        return candidate
