"""Tally store contract and the shared tally ordering."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from vote_engine.shared import Candidate, RecordResult, TallyEntry, VoteRecord


def build_tally(candidates: Iterable[Candidate]) -> List[TallyEntry]:
    """
    Turn a consistent candidate snapshot into the public tally.

    Soft-deleted candidates are dropped. Rows are ordered by vote count
    descending, then by creation order. Percentages are computed over the
    non-deleted candidates only and are 0 when nobody has voted.
    """
    visible = [c for c in candidates if not c.deleted]
    visible.sort(key=lambda c: (-c.vote_count, c.created_seq))
    total_votes = sum(c.vote_count for c in visible)

    tally = []
    for candidate in visible:
        percentage = (candidate.vote_count / total_votes * 100) if total_votes > 0 else 0
        tally.append(TallyEntry(
            candidate_id=candidate.candidate_id,
            name=candidate.name,
            vote_count=candidate.vote_count,
            percentage=round(percentage, 2)
        ))
    return tally


class TallyStore(ABC):
    """
    Per-candidate vote counters plus the append-only log of vote records.

    The counter is a cache over the log. record_vote appends the record and
    increments the counter as one atomic step, and nothing else writes the
    counter except recount_candidate, which rebuilds it from the log.
    """

    @abstractmethod
    def record_vote(self, candidate_id: str, voter_id: str, timestamp: datetime) -> RecordResult:
        """
        Append a vote record and increment the candidate's counter atomically.

        Returns DUPLICATE_VOTER without changing anything if the voter
        already has a record, CANDIDATE_NOT_FOUND / CANDIDATE_DELETED when
        the candidate cannot receive votes.

        Raises:
            StoreUnavailableError: On a transient store failure
        """

    @abstractmethod
    def snapshot_candidates(self) -> List[Candidate]:
        """Point-in-time copy of every candidate, deleted ones included."""

    def get_tally(self) -> List[TallyEntry]:
        """Sorted public tally built from one consistent snapshot."""
        return build_tally(self.snapshot_candidates())

    def total_votes(self, include_deleted: bool = True) -> int:
        return sum(
            c.vote_count for c in self.snapshot_candidates()
            if include_deleted or not c.deleted
        )

    # Candidate management collaborator

    @abstractmethod
    def add_candidate(self, candidate_id: str, name: str) -> Candidate:
        """Create a candidate with a zero count."""

    @abstractmethod
    def rename_candidate(self, candidate_id: str, name: str) -> Candidate:
        """Change a candidate's display name."""

    @abstractmethod
    def soft_delete_candidate(self, candidate_id: str) -> Candidate:
        """Hide a candidate from the tally; its records stay attributable."""

    @abstractmethod
    def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        """Return a copy of the candidate or None."""

    def list_candidates(self, include_deleted: bool = False) -> List[Candidate]:
        candidates = sorted(self.snapshot_candidates(), key=lambda c: c.created_seq)
        if include_deleted:
            return candidates
        return [c for c in candidates if not c.deleted]

    # Audit and reconciliation surface

    @abstractmethod
    def audit_log(self) -> List[VoteRecord]:
        """All vote records in append order."""

    @abstractmethod
    def has_vote_record(self, voter_id: str) -> bool:
        """True if a vote record exists for the voter."""

    @abstractmethod
    def voter_record_counts(self) -> Dict[str, int]:
        """voter_id -> number of vote records carrying that voter."""

    @abstractmethod
    def record_candidate_ids(self) -> Dict[str, int]:
        """candidate_id -> number of vote records, for every id found in the log."""

    @abstractmethod
    def counter_snapshot(self) -> Dict[str, Tuple[int, int]]:
        """candidate_id -> (cached vote_count, count of records in the log)."""

    @abstractmethod
    def recount_candidate(self, candidate_id: str) -> Tuple[int, int]:
        """
        Rebuild a candidate's cached counter from the log.

        Runs atomically with respect to record_vote on the same candidate.

        Returns:
            Tuple of (previous cached count, recomputed count)

        Raises:
            UnknownCandidateError: If the candidate does not exist
        """

    def close(self) -> None:
        """Release backend resources."""
