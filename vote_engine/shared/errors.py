"""Exceptions raised by the vote engine stores."""


class VoteEngineError(Exception):
    """Base exception for the vote engine."""
    pass


class StoreUnavailableError(VoteEngineError):
    """A store could not complete an operation; the call may be retried."""
    pass


class NotClaimedError(VoteEngineError):
    """Release was called for a voter that holds no claim."""

    def __init__(self, voter_id: str):
        super().__init__(f"Voter {voter_id} is not claimed")
        self.voter_id = voter_id


class CandidateExistsError(VoteEngineError):
    """A candidate with the same id is already registered."""

    def __init__(self, candidate_id: str):
        super().__init__(f"Candidate {candidate_id} already exists")
        self.candidate_id = candidate_id


class UnknownCandidateError(VoteEngineError):
    """An administrative operation referenced a candidate that does not exist."""

    def __init__(self, candidate_id: str):
        super().__init__(f"Candidate {candidate_id} not found")
        self.candidate_id = candidate_id
