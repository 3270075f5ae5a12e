"""Alert sinks for reconciliation findings."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from vote_engine.config import Config
from vote_engine.reconciliation.rabbitmq_client import RabbitMQClient
from vote_engine.shared import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Alert:
    """
    A finding that needs a human to look at it.

    Attributes:
        kind: counter_drift, claimed_without_record, record_without_claim,
            duplicate_records, unknown_candidate or stuck_claim
        severity: warning or critical
        message: One-line description
        details: Structured payload (candidate id, delta, voter id...)
        raised_at: When the alert was created
    """
    kind: str
    severity: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    raised_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'severity': self.severity,
            'message': self.message,
            'details': self.details,
            'raised_at': self.raised_at.isoformat(),
        }


class AlertSink(ABC):
    """Receives alerts. How they are displayed is up to the sink."""

    @abstractmethod
    def send(self, alert: Alert) -> None:
        """Deliver one alert."""

    def close(self) -> None:
        """Release sink resources."""


class LoggingAlertSink(AlertSink):
    """Writes alerts to the application log."""

    def __init__(self, logger_name: str = 'vote_engine.alerts'):
        self._logger = logging.getLogger(logger_name)

    def send(self, alert: Alert) -> None:
        level = logging.CRITICAL if alert.severity == 'critical' else logging.WARNING
        self._logger.log(level, f"[{alert.kind}] {alert.message} {alert.details}")


class ReviewQueueAlertSink(AlertSink):
    """Publishes alerts as JSON to the RabbitMQ review queue for investigation."""

    def __init__(self, rabbitmq_client: Optional[RabbitMQClient] = None, queue: Optional[str] = None):
        self.rabbitmq_client = rabbitmq_client or RabbitMQClient()
        self.queue = queue or Config.REVIEW_QUEUE

    def send(self, alert: Alert) -> None:
        priority = 9 if alert.severity == 'critical' else 5
        self.rabbitmq_client.publish(self.queue, alert.to_dict(), priority=priority)

    def close(self) -> None:
        self.rabbitmq_client.close()


class CompositeAlertSink(AlertSink):
    """Fans an alert out to several sinks; one failing sink does not stop the others."""

    def __init__(self, sinks: Iterable[AlertSink]):
        self.sinks: List[AlertSink] = list(sinks)

    def send(self, alert: Alert) -> None:
        for sink in self.sinks:
            try:
                sink.send(alert)
            except Exception as e:
                logger.error(f"Alert sink {type(sink).__name__} failed for {alert.kind}: {e}")

    def close(self) -> None:
        for sink in self.sinks:
            try:
                sink.close()
            except Exception as e:
                logger.error(f"Error closing alert sink {type(sink).__name__}: {e}")
