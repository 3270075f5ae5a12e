"""Test doubles shared by the unit tests.

Store failures are simulated by subclassing the in-memory stores, so the
doubles keep the real locking and bookkeeping.
"""

import threading
from datetime import datetime
from typing import List, Optional

from vote_engine.ledger import InMemoryVoterLedger
from vote_engine.reconciliation import Alert, AlertSink
from vote_engine.shared import ClaimResult, RecordResult, StoreUnavailableError
from vote_engine.tally import InMemoryTallyStore


CANDIDATES = [
    ("C1", "Alice Martin"),
    ("C2", "Bruno Tremblay"),
    ("C3", "Chloe Roy"),
]


class RecordingAlertSink(AlertSink):
    """Keeps every alert it receives."""

    def __init__(self):
        self.alerts: List[Alert] = []
        self._lock = threading.Lock()

    def send(self, alert: Alert) -> None:
        with self._lock:
            self.alerts.append(alert)

    def kinds(self) -> List[str]:
        return [alert.kind for alert in self.alerts]


class FlakyTallyStore(InMemoryTallyStore):
    """In-memory tally whose record_vote raises StoreUnavailableError.

    Args:
        failures: Number of calls that fail before the store recovers
            (None fails every call)
        fail_after_write: Apply the vote before raising, as if the commit
            went through but the reply was lost
    """

    def __init__(self, failures: Optional[int] = None, fail_after_write: bool = False):
        super().__init__()
        self.failures = failures
        self.fail_after_write = fail_after_write
        self.calls = 0

    def record_vote(self, candidate_id: str, voter_id: str, timestamp: datetime) -> RecordResult:
        self.calls += 1
        if self.failures is None or self.calls <= self.failures:
            if self.fail_after_write:
                super().record_vote(candidate_id, voter_id, timestamp)
            raise StoreUnavailableError(f"simulated outage on call {self.calls}")
        return super().record_vote(candidate_id, voter_id, timestamp)


class FlakyVoterLedger(InMemoryVoterLedger):
    """In-memory ledger that can fail claims or releases.

    Args:
        claim_down: Every try_claim raises StoreUnavailableError
        release_failures: Number of _release calls that fail (None fails all)
    """

    def __init__(self, claim_down: bool = False, release_failures: Optional[int] = 0):
        super().__init__()
        self.claim_down = claim_down
        self.release_failures = release_failures
        self.release_calls = 0

    def try_claim(self, voter_id: str, timestamp: Optional[datetime] = None) -> ClaimResult:
        if self.claim_down:
            raise StoreUnavailableError("simulated ledger outage")
        return super().try_claim(voter_id, timestamp)

    def _release(self, voter_id: str) -> None:
        self.release_calls += 1
        if self.release_failures is None or self.release_calls <= self.release_failures:
            raise StoreUnavailableError(f"simulated release failure on call {self.release_calls}")
        super()._release(voter_id)


class GatedVoterLedger(InMemoryVoterLedger):
    """In-memory ledger whose try_claim waits until `gate` is set."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.gate = threading.Event()

    def try_claim(self, voter_id: str, timestamp: Optional[datetime] = None) -> ClaimResult:
        self.entered.set()
        self.gate.wait(timeout=5)
        return super().try_claim(voter_id, timestamp)


class GatedTallyStore(InMemoryTallyStore):
    """In-memory tally whose record_vote waits until `gate` is set."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.gate = threading.Event()

    def record_vote(self, candidate_id: str, voter_id: str, timestamp: datetime) -> RecordResult:
        self.entered.set()
        self.gate.wait(timeout=5)
        return super().record_vote(candidate_id, voter_id, timestamp)


def add_candidates(tally) -> None:
    for candidate_id, name in CANDIDATES:
        tally.add_candidate(candidate_id, name)


def no_sleep(seconds: float) -> None:
    """Backoff stand-in so retry tests run instantly."""


def assert_consistent(ledger, tally) -> None:
    """Sum invariant and the absence of orphan records, checked at a quiescent point."""
    claimed = ledger.claimed_voters()
    records = tally.audit_log()
    recorded_voters = [record.voter_id for record in records]

    assert tally.total_votes(include_deleted=True) == len(claimed)
    assert len(recorded_voters) == len(set(recorded_voters))
    assert set(recorded_voters) == set(claimed)
