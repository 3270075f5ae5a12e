"""
Exactly-once vote casting and tally consistency engine.

Components:
- VoterLedger: per-voter compare-and-set claim (in-memory or Redis)
- TallyStore: per-candidate counters over an append-only vote log (in-memory or PostgreSQL)
- VoteCoordinator: claim / record / compensate protocol with bounded retry
- ReconciliationJob: rebuilds counters from the log and surfaces voter mismatches
"""

from .coordinator import VoteCoordinator
from .engine import VotingEngine, build_alert_sink
from .ledger import VoterLedger, InMemoryVoterLedger, RedisVoterLedger
from .reconciliation import ReconciliationJob, ReconciliationReport
from .shared import CastOutcome, CastResult, TallyEntry
from .tally import TallyStore, InMemoryTallyStore, PostgresTallyStore

__all__ = [
    'VoteCoordinator',
    'VotingEngine',
    'build_alert_sink',
    'VoterLedger',
    'InMemoryVoterLedger',
    'RedisVoterLedger',
    'ReconciliationJob',
    'ReconciliationReport',
    'CastOutcome',
    'CastResult',
    'TallyEntry',
    'TallyStore',
    'InMemoryTallyStore',
    'PostgresTallyStore',
]

__version__ = '1.0.0'
