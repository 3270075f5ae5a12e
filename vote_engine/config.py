"""Configuration management for the vote engine."""

import os
from dotenv import load_dotenv

load_dotenv()


def _get_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Configuration class for the vote engine."""

    # Store selection: "memory" or "redis_postgres"
    STORE_BACKEND = os.getenv('STORE_BACKEND', 'memory')

    # Redis Configuration (voter ledger)
    REDIS_HOST = os.getenv('REDIS_HOST', 'localhost')
    REDIS_PORT = int(os.getenv('REDIS_PORT', '6379'))
    REDIS_DB = int(os.getenv('REDIS_DB', '0'))
    REDIS_PASSWORD = os.getenv('REDIS_PASSWORD', None)
    REDIS_MAX_CONNECTIONS = int(os.getenv('REDIS_MAX_CONNECTIONS', '50'))
    REDIS_KEY_PREFIX = os.getenv('REDIS_KEY_PREFIX', 'vote_engine')

    # PostgreSQL Configuration (tally store)
    POSTGRES_HOST = os.getenv('POSTGRES_HOST', 'localhost')
    POSTGRES_PORT = int(os.getenv('POSTGRES_PORT', '5432'))
    POSTGRES_DB = os.getenv('POSTGRES_DB', 'election_db')
    POSTGRES_USER = os.getenv('POSTGRES_USER', 'postgres')
    POSTGRES_PASSWORD = os.getenv('POSTGRES_PASSWORD', 'postgres')
    POSTGRES_MIN_POOL_SIZE = int(os.getenv('POSTGRES_MIN_POOL_SIZE', '2'))
    POSTGRES_MAX_POOL_SIZE = int(os.getenv('POSTGRES_MAX_POOL_SIZE', '40'))

    # RabbitMQ Configuration (reconciliation alerts)
    RABBITMQ_HOST = os.getenv('RABBITMQ_HOST', 'localhost')
    RABBITMQ_PORT = int(os.getenv('RABBITMQ_PORT', '5672'))
    RABBITMQ_USER = os.getenv('RABBITMQ_USER', 'guest')
    RABBITMQ_PASS = os.getenv('RABBITMQ_PASS', 'guest')
    RABBITMQ_VHOST = os.getenv('RABBITMQ_VHOST', '/')
    REVIEW_QUEUE = os.getenv('REVIEW_QUEUE', 'votes.review')

    # Retry Configuration (record_vote while a voter is locked)
    RECORD_MAX_ATTEMPTS = int(os.getenv('RECORD_MAX_ATTEMPTS', '3'))
    RETRY_BASE_DELAY = float(os.getenv('RETRY_BASE_DELAY', '0.05'))
    RETRY_MAX_DELAY = float(os.getenv('RETRY_MAX_DELAY', '1.0'))
    RETRY_WINDOW_SECONDS = float(os.getenv('RETRY_WINDOW_SECONDS', '5.0'))
    RELEASE_MAX_ATTEMPTS = int(os.getenv('RELEASE_MAX_ATTEMPTS', '5'))

    # Coordinator Configuration
    COORDINATOR_MAX_WORKERS = int(os.getenv('COORDINATOR_MAX_WORKERS', '32'))

    # Reconciliation Configuration
    RECONCILE_INTERVAL_SECONDS = float(os.getenv('RECONCILE_INTERVAL_SECONDS', '60'))
    RECONCILE_GRACE_SECONDS = float(os.getenv('RECONCILE_GRACE_SECONDS', '30'))
    RECONCILE_REPAIR = _get_bool('RECONCILE_REPAIR', 'true')

    # Alert sink: "log", "rabbitmq" or "log,rabbitmq"
    ALERT_SINK = os.getenv('ALERT_SINK', 'log')

    # Prometheus Metrics
    METRICS_PORT = int(os.getenv('METRICS_PORT', '8001'))

    # Logging Configuration
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    @classmethod
    def get_rabbitmq_url(cls):
        """Get RabbitMQ connection URL."""
        return f"amqp://{cls.RABBITMQ_USER}:{cls.RABBITMQ_PASS}@{cls.RABBITMQ_HOST}:{cls.RABBITMQ_PORT}/{cls.RABBITMQ_VHOST}"

    @classmethod
    def get_postgres_dsn(cls):
        """Get PostgreSQL connection DSN."""
        return f"host={cls.POSTGRES_HOST} port={cls.POSTGRES_PORT} dbname={cls.POSTGRES_DB} user={cls.POSTGRES_USER} password={cls.POSTGRES_PASSWORD}"
