"""Tests for engine wiring and the alert sinks."""

import logging

import pytest

from vote_engine.engine import VotingEngine, build_alert_sink
from vote_engine.ledger import InMemoryVoterLedger
from vote_engine.reconciliation import (
    Alert,
    AlertSink,
    CompositeAlertSink,
    LoggingAlertSink,
    ReviewQueueAlertSink,
)
from vote_engine.shared import CastOutcome
from vote_engine.tally import InMemoryTallyStore

from tests.support import RecordingAlertSink


class FakeRabbitMQClient:
    """Stands in for RabbitMQClient; keeps published messages."""

    def __init__(self):
        self.published = []
        self.closed = False

    def publish(self, queue, message, priority=0):
        self.published.append((queue, message, priority))

    def close(self):
        self.closed = True


class TestVotingEngine:
    """Tests for building and closing an engine."""

    def test_from_config_memory(self):
        engine = VotingEngine.from_config("memory")
        try:
            engine.tally.add_candidate("C1", "Alice Martin")

            result = engine.coordinator.cast_vote("V1", "C1")

            assert result.outcome == CastOutcome.SUCCESS
            assert isinstance(engine.ledger, InMemoryVoterLedger)
            assert isinstance(engine.tally, InMemoryTallyStore)
            assert engine.health() == {"ledger": "in_memory", "tally": "in_memory"}
        finally:
            engine.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            VotingEngine.from_config("cassandra")

    def test_close_stops_reconciliation(self):
        engine = VotingEngine(InMemoryVoterLedger(), InMemoryTallyStore())
        engine.reconciliation.start(interval=60)

        engine.close()

        assert not engine.reconciliation.running


class TestAlertSinks:
    """Tests for the alert sinks."""

    def test_build_log_sink(self):
        assert isinstance(build_alert_sink("log"), LoggingAlertSink)

    def test_build_unknown_sink(self):
        with pytest.raises(ValueError):
            build_alert_sink("pager")

    def test_logging_sink_levels(self, caplog):
        sink = LoggingAlertSink()

        with caplog.at_level(logging.WARNING, logger="vote_engine.alerts"):
            sink.send(Alert(kind="counter_drift", severity="warning", message="C1 off by 2"))
            sink.send(Alert(kind="stuck_claim", severity="critical", message="V1 locked"))

        levels = [record.levelno for record in caplog.records]
        assert levels == [logging.WARNING, logging.CRITICAL]
        assert "[stuck_claim] V1 locked" in caplog.records[1].getMessage()

    def test_review_queue_priorities(self):
        client = FakeRabbitMQClient()
        sink = ReviewQueueAlertSink(rabbitmq_client=client, queue="votes.review")

        sink.send(Alert(kind="counter_drift", severity="warning", message="drift"))
        sink.send(Alert(kind="record_without_claim", severity="critical", message="orphan", details={"voter_id": "V1"}))
        sink.close()

        assert [(queue, priority) for queue, _, priority in client.published] == [
            ("votes.review", 5),
            ("votes.review", 9),
        ]
        message = client.published[1][1]
        assert message["kind"] == "record_without_claim"
        assert message["details"] == {"voter_id": "V1"}
        assert "raised_at" in message
        assert client.closed

    def test_composite_sink_isolates_failures(self):
        class BrokenSink(AlertSink):
            def send(self, alert):
                raise ConnectionError("queue down")

        recording = RecordingAlertSink()
        sink = CompositeAlertSink([BrokenSink(), recording])

        sink.send(Alert(kind="counter_drift", severity="warning", message="drift"))

        assert recording.kinds() == ["counter_drift"]
