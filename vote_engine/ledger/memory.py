"""In-process voter ledger."""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, Optional

from vote_engine.shared import ClaimResult, KeyedLock, NotClaimedError, Voter, utcnow
from vote_engine.ledger.base import VoterLedger

logger = logging.getLogger(__name__)


class InMemoryVoterLedger(VoterLedger):
    """Voter ledger guarded by per-voter striped locks."""

    def __init__(self, stripes: int = 64):
        self._voters: Dict[str, Voter] = {}
        self._locks = KeyedLock(stripes)

    def try_claim(self, voter_id: str, timestamp: Optional[datetime] = None) -> ClaimResult:
        with self._locks.for_key(voter_id):
            voter = self._voters.get(voter_id)
            if voter is None:
                voter = Voter(voter_id=voter_id)
                self._voters[voter_id] = voter

            if voter.has_voted:
                logger.debug(f"Voter {voter_id} already claimed")
                return ClaimResult.ALREADY_CLAIMED

            voter.voted_at = timestamp or utcnow()
            voter.has_voted = True
            logger.debug(f"Voter {voter_id} claimed")
            return ClaimResult.CLAIMED

    def _release(self, voter_id: str) -> None:
        with self._locks.for_key(voter_id):
            voter = self._voters.get(voter_id)
            if voter is None or not voter.has_voted:
                raise NotClaimedError(voter_id)
            voter.has_voted = False
            voter.voted_at = None
            logger.info(f"Claim released for voter {voter_id}")

    def register_voter(self, voter_id: str) -> Voter:
        with self._locks.for_key(voter_id):
            voter = self._voters.setdefault(voter_id, Voter(voter_id=voter_id))
            return replace(voter)

    def get_voter(self, voter_id: str) -> Voter:
        with self._locks.for_key(voter_id):
            voter = self._voters.get(voter_id)
            return replace(voter) if voter else Voter(voter_id=voter_id)

    def claimed_voters(self) -> Dict[str, Optional[datetime]]:
        return {
            voter.voter_id: voter.voted_at
            for voter in list(self._voters.values())
            if voter.has_voted
        }
