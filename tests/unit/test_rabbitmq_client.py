"""Tests for the RabbitMQ review-queue publisher, against a fake pika connection."""

import threading
import time

import pytest

from vote_engine.config import Config
from vote_engine.reconciliation import rabbitmq_client
from vote_engine.reconciliation.rabbitmq_client import RabbitMQClient


class FakeChannel:
    """Records declares and publishes; flags overlapping basic_publish calls."""

    def __init__(self):
        self.declared = []
        self.published = []
        self.active = 0
        self.max_active = 0
        self._counter_lock = threading.Lock()

    def queue_declare(self, queue, durable=False, arguments=None):
        self.declared.append(queue)

    def basic_publish(self, exchange, routing_key, body, properties=None):
        with self._counter_lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(0.002)
        self.published.append((routing_key, body))
        with self._counter_lock:
            self.active -= 1


class FakeConnection:
    def __init__(self, parameters):
        self.is_closed = False
        self._channel = FakeChannel()

    def channel(self):
        return self._channel

    def close(self):
        self.is_closed = True


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(rabbitmq_client.pika, "BlockingConnection", FakeConnection)
    client = RabbitMQClient(parameters=object(), max_retries=1, retry_delay=0)
    yield client
    client.close()


class TestRabbitMQClient:
    """Tests for publishing through a shared client."""

    def test_review_queue_declared_on_connect(self, client):
        assert client.channel.declared == [Config.REVIEW_QUEUE]

    def test_publish_declares_other_queue_once(self, client):
        client.publish("custom.review", {"n": 1})
        client.publish("custom.review", {"n": 2})

        assert client.channel.declared.count("custom.review") == 1
        assert [q for q, _ in client.channel.published] == ["custom.review", "custom.review"]

    def test_concurrent_publishes_never_overlap(self, client):
        def send(i):
            for j in range(5):
                client.publish(Config.REVIEW_QUEUE, {"thread": i, "n": j})

        threads = [threading.Thread(target=send, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(client.channel.published) == 40
        assert client.channel.max_active == 1

    def test_reconnect_declares_queues_again(self, client):
        client.publish("custom.review", {"n": 1})
        client.connection.close()

        client.publish("custom.review", {"n": 2})

        assert client.channel.declared == [Config.REVIEW_QUEUE, "custom.review"]
        assert len(client.channel.published) == 1

    def test_close_closes_connection(self, client):
        client.close()
        assert client.connection.is_closed is True
