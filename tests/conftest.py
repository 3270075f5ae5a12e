"""Pytest fixtures shared by the unit tests.

The fixtures build the engine on the in-memory stores so the protocol,
tally and reconciliation tests run without any backing service. Store
failures are simulated with the doubles in tests.support.
"""

import pytest

from vote_engine.coordinator import VoteCoordinator
from vote_engine.ledger import InMemoryVoterLedger
from vote_engine.reconciliation import ReconciliationJob
from vote_engine.tally import InMemoryTallyStore

from tests.support import RecordingAlertSink, add_candidates, no_sleep


@pytest.fixture
def ledger() -> InMemoryVoterLedger:
    """Empty in-memory voter ledger."""
    return InMemoryVoterLedger()


@pytest.fixture
def tally() -> InMemoryTallyStore:
    """In-memory tally store holding candidates C1, C2 and C3 with no votes."""
    store = InMemoryTallyStore()
    add_candidates(store)
    return store


@pytest.fixture
def alerts() -> RecordingAlertSink:
    return RecordingAlertSink()


@pytest.fixture
def make_coordinator(alerts):
    """Factory building coordinators that never really sleep.

    Every coordinator built is closed after the test.
    """
    built = []

    def _make(ledger, tally, **kwargs) -> VoteCoordinator:
        kwargs.setdefault("sleep", no_sleep)
        kwargs.setdefault("alert_sink", alerts)
        coordinator = VoteCoordinator(ledger, tally, **kwargs)
        built.append(coordinator)
        return coordinator

    yield _make

    for coordinator in built:
        coordinator.close()


@pytest.fixture
def coordinator(make_coordinator, ledger, tally) -> VoteCoordinator:
    """Coordinator over the ledger and tally fixtures."""
    return make_coordinator(ledger, tally)


@pytest.fixture
def reconciliation(ledger, tally, alerts) -> ReconciliationJob:
    """Reconciliation job with repair on and no grace period."""
    return ReconciliationJob(ledger, tally, alert_sink=alerts, repair=True, grace_period=0)
