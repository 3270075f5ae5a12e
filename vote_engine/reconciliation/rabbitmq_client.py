"""RabbitMQ publisher for the review queue."""

import pika
import json
import logging
import threading
import time
from typing import Dict, Any, Optional

from vote_engine.config import Config

logger = logging.getLogger(__name__)


class RabbitMQClient:
    """
    Blocking RabbitMQ client that publishes reconciliation alerts.

    A pika connection must not be used from two threads at once, and alerts
    are sent from the coordinator pool, the reconciliation thread and the
    API threadpool, so every use of the connection holds a lock.
    """

    def __init__(self, parameters: Optional[pika.ConnectionParameters] = None,
                 max_retries: int = 5, retry_delay: float = 5):
        """Initialize RabbitMQ client."""
        self.parameters = parameters or pika.ConnectionParameters(
            host=Config.RABBITMQ_HOST,
            port=Config.RABBITMQ_PORT,
            virtual_host=Config.RABBITMQ_VHOST,
            credentials=pika.PlainCredentials(
                Config.RABBITMQ_USER,
                Config.RABBITMQ_PASS
            ),
            heartbeat=600,
            blocked_connection_timeout=300,
            connection_attempts=3,
            retry_delay=2
        )
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.connection = None
        self.channel = None
        self._declared = set()
        self._lock = threading.Lock()
        with self._lock:
            self._connect()

    def _connect(self):
        """Establish connection to RabbitMQ."""
        for attempt in range(self.max_retries):
            try:
                self.connection = pika.BlockingConnection(self.parameters)
                self.channel = self.connection.channel()
                self._declared = set()
                self._declare_queue(Config.REVIEW_QUEUE)
                logger.info("RabbitMQ connection established successfully")
                return

            except pika.exceptions.AMQPConnectionError as e:
                logger.warning(f"Connection attempt {attempt + 1}/{self.max_retries} failed: {e}")
                if attempt < self.max_retries - 1:
                    time.sleep(self.retry_delay)
                else:
                    logger.error("Failed to connect to RabbitMQ after all retries")
                    raise

    def _declare_queue(self, queue: str):
        """Declare a durable queue (idempotent)."""
        self.channel.queue_declare(
            queue=queue,
            durable=True,
            arguments={
                'x-message-ttl': 86400000,  # 24 hours
                'x-max-length': 1000000,
                'x-max-priority': 10
            }
        )
        self._declared.add(queue)
        logger.debug(f"Queue declared: {queue}")

    def publish(
        self,
        queue: str,
        message: Dict[str, Any],
        priority: int = 0
    ):
        """
        Publish a message to a queue.

        Args:
            queue: Queue name to publish to
            message: Message dictionary to publish
            priority: Message priority (0-9)
        """
        try:
            with self._lock:
                if not self.connection or self.connection.is_closed:
                    logger.warning("Connection lost, reconnecting...")
                    self._connect()
                if queue not in self._declared:
                    self._declare_queue(queue)

                self.channel.basic_publish(
                    exchange='',
                    routing_key=queue,
                    body=json.dumps(message),
                    properties=pika.BasicProperties(
                        delivery_mode=2,  # Persistent
                        priority=priority,
                        content_type='application/json'
                    )
                )

            logger.debug(f"Published message to {queue}: {message}")

        except Exception as e:
            logger.error(f"Error publishing message to {queue}: {e}")
            raise

    def close(self):
        """Close RabbitMQ connection."""
        try:
            with self._lock:
                if self.connection and not self.connection.is_closed:
                    self.connection.close()
                    logger.info("RabbitMQ connection closed")
        except Exception as e:
            logger.error(f"Error closing RabbitMQ connection: {e}")
