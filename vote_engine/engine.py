"""
Wiring of the vote engine components.

Builds the voter ledger, tally store, alert sink, coordinator and
reconciliation job from Config, or from explicitly supplied parts.
"""
import logging
from typing import Optional

from vote_engine.config import Config
from vote_engine.coordinator import VoteCoordinator
from vote_engine.ledger import InMemoryVoterLedger, RedisVoterLedger, VoterLedger
from vote_engine.reconciliation import (
    AlertSink,
    CompositeAlertSink,
    LoggingAlertSink,
    ReconciliationJob,
    ReviewQueueAlertSink,
)
from vote_engine.tally import InMemoryTallyStore, PostgresTallyStore, TallyStore

logger = logging.getLogger(__name__)


def build_alert_sink(names: Optional[str] = None) -> AlertSink:
    """
    Build the alert sink named by ALERT_SINK.

    Args:
        names: Comma separated sink names ("log", "rabbitmq")
    """
    sink_names = [name.strip() for name in (names or Config.ALERT_SINK).split(',') if name.strip()]
    sinks = []
    for name in sink_names:
        if name == 'log':
            sinks.append(LoggingAlertSink())
        elif name == 'rabbitmq':
            sinks.append(ReviewQueueAlertSink())
        else:
            raise ValueError(f"Unknown alert sink: {name}")

    if not sinks:
        return LoggingAlertSink()
    if len(sinks) == 1:
        return sinks[0]
    return CompositeAlertSink(sinks)


class VotingEngine:
    """The ledger, tally, coordinator and reconciliation job of one deployment."""

    def __init__(self, ledger: VoterLedger, tally: TallyStore, alert_sink: Optional[AlertSink] = None,
                 coordinator: Optional[VoteCoordinator] = None,
                 reconciliation: Optional[ReconciliationJob] = None):
        self.ledger = ledger
        self.tally = tally
        self.alert_sink = alert_sink or LoggingAlertSink()
        self.coordinator = coordinator or VoteCoordinator(ledger, tally, alert_sink=self.alert_sink)
        self.reconciliation = reconciliation or ReconciliationJob(ledger, tally, alert_sink=self.alert_sink)

    @classmethod
    def from_config(cls, backend: Optional[str] = None) -> 'VotingEngine':
        """
        Build an engine for the configured store backend.

        Args:
            backend: "memory" or "redis_postgres" (defaults to STORE_BACKEND)
        """
        backend = backend or Config.STORE_BACKEND
        logger.info(f"Building voting engine with store backend: {backend}")

        if backend == 'memory':
            ledger, tally = InMemoryVoterLedger(), InMemoryTallyStore()
        elif backend == 'redis_postgres':
            ledger = RedisVoterLedger()
            tally = PostgresTallyStore()
            tally.create_schema()
        else:
            raise ValueError(f"Unknown store backend: {backend}")

        return cls(ledger, tally, alert_sink=build_alert_sink())

    def health(self) -> dict:
        """Connection status of each store."""
        services = {}
        for name, store in (('ledger', self.ledger), ('tally', self.tally)):
            check = getattr(store, 'health_check', None)
            if check is None:
                services[name] = 'in_memory'
            else:
                services[name] = 'connected' if check() else 'disconnected'
        return services

    def close(self):
        """Stop background work and release every resource."""
        logger.info("Closing voting engine...")
        self.reconciliation.stop()
        self.coordinator.close()

        for component in (self.alert_sink, self.ledger, self.tally):
            try:
                component.close()
            except Exception as e:
                logger.error(f"Error closing {type(component).__name__}: {e}")

        logger.info("Voting engine closed")
