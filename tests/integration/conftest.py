"""Pytest fixtures for integration tests.

This module provides fixtures that run the voter ledger against a real
Redis and the tally store against a real PostgreSQL. Tests are skipped
when either service is not reachable. Connection settings come from the
same environment variables the engine reads (REDIS_HOST, POSTGRES_HOST...).
"""

import uuid
from typing import Generator

import pytest
import redis

from vote_engine.config import Config
from vote_engine.ledger import RedisVoterLedger
from vote_engine.shared import StoreUnavailableError
from vote_engine.tally import PostgresTallyStore

from tests.support import add_candidates


@pytest.fixture(scope="session")
def redis_client() -> Generator[redis.Redis, None, None]:
    """Redis client for direct database operations.

    Yields a connected Redis client for test assertions and setup.
    """
    client = redis.Redis(
        host=Config.REDIS_HOST,
        port=Config.REDIS_PORT,
        db=Config.REDIS_DB,
        password=Config.REDIS_PASSWORD,
        decode_responses=True
    )

    # Test connection
    try:
        client.ping()
    except redis.ConnectionError:
        pytest.skip("Redis not available")

    yield client

    client.close()


@pytest.fixture
def redis_ledger(redis_client: redis.Redis) -> Generator[RedisVoterLedger, None, None]:
    """Redis voter ledger under a throwaway key prefix.

    Keys are deleted after the test.
    """
    prefix = f"vote_engine_test:{uuid.uuid4().hex[:8]}"
    ledger = RedisVoterLedger(client=redis_client, key_prefix=prefix)

    yield ledger

    keys = redis_client.keys(f"{prefix}:*")
    if keys:
        redis_client.delete(*keys)


@pytest.fixture(scope="session")
def postgres_store() -> Generator[PostgresTallyStore, None, None]:
    """PostgreSQL tally store with the schema in place."""
    try:
        store = PostgresTallyStore(min_connections=1, max_connections=40)
    except StoreUnavailableError:
        pytest.skip("PostgreSQL not available")

    store.create_schema()

    yield store

    store.close()


@pytest.fixture
def pg_tally(postgres_store: PostgresTallyStore) -> PostgresTallyStore:
    """PostgreSQL tally store emptied and seeded with C1, C2 and C3.

    TRUNCATE bypasses the append-only row trigger on vote_records.
    """
    with postgres_store.get_connection() as conn:
        with conn.cursor() as cursor:
            cursor.execute("TRUNCATE TABLE vote_records, candidates RESTART IDENTITY CASCADE")

    add_candidates(postgres_store)
    return postgres_store


# Marker for tests that require the backing services
def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line(
        "markers",
        "docker: mark test as requiring Redis and PostgreSQL"
    )
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow running"
    )
