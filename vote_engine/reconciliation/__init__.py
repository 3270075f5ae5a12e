"""Reconciliation of cached counters against the vote log, and alert sinks."""

from .alerts import (
    Alert,
    AlertSink,
    LoggingAlertSink,
    ReviewQueueAlertSink,
    CompositeAlertSink,
)
from .job import (
    CounterDrift,
    VoterMismatch,
    ReconciliationReport,
    ReconciliationJob,
)

__all__ = [
    'Alert',
    'AlertSink',
    'LoggingAlertSink',
    'ReviewQueueAlertSink',
    'CompositeAlertSink',
    'CounterDrift',
    'VoterMismatch',
    'ReconciliationReport',
    'ReconciliationJob',
]
