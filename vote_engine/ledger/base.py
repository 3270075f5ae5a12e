"""Voter ledger contract."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional

from vote_engine.shared import ClaimResult, Voter


class VoterLedger(ABC):
    """
    Authoritative record of whether each voter has voted.

    try_claim is the only way a voter's has_voted flag goes from False to
    True, and it does so as one atomic compare-and-set. _release is reserved
    for the vote coordinator's compensation path and must not be called from
    anywhere else.
    """

    @abstractmethod
    def try_claim(self, voter_id: str, timestamp: Optional[datetime] = None) -> ClaimResult:
        """
        Atomically transition the voter's has_voted flag from False to True.

        Args:
            voter_id: Voter identifier, already authenticated upstream
            timestamp: Claim time recorded as voted_at (defaults to now)

        Returns:
            CLAIMED for the single caller that performed the transition,
            ALREADY_CLAIMED for everyone else

        Raises:
            StoreUnavailableError: If the backing store cannot be reached
        """

    @abstractmethod
    def _release(self, voter_id: str) -> None:
        """
        Atomically reverse a claim.

        Raises:
            NotClaimedError: If the voter holds no claim
            StoreUnavailableError: If the backing store cannot be reached
        """

    @abstractmethod
    def register_voter(self, voter_id: str) -> Voter:
        """Register a voter that has not voted yet. Idempotent."""

    @abstractmethod
    def get_voter(self, voter_id: str) -> Voter:
        """Return a copy of the voter's state; unknown voters have not voted."""

    @abstractmethod
    def claimed_voters(self) -> Dict[str, Optional[datetime]]:
        """Return voter_id -> voted_at for every voter holding a claim."""

    def has_voted(self, voter_id: str) -> bool:
        return self.get_voter(voter_id).has_voted

    def claimed_count(self) -> int:
        return len(self.claimed_voters())

    def close(self) -> None:
        """Release backend resources."""
