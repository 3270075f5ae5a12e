"""Redis-backed voter ledger."""

import redis
import logging
from datetime import datetime
from typing import Dict, Optional

from vote_engine.config import Config
from vote_engine.shared import (
    ClaimResult,
    NotClaimedError,
    StoreUnavailableError,
    Voter,
    get_redis_key,
    utcnow,
)
from vote_engine.ledger.base import VoterLedger

logger = logging.getLogger(__name__)


class RedisVoterLedger(VoterLedger):
    """
    Voter ledger stored in Redis.

    The claim is SADD on the voted set; its integer reply is the
    compare-and-set outcome. The voted_at timestamp is written with HSETNX
    in the same MULTI/EXEC block, so claim flag and timestamp are applied
    together. Release is SREM + HDEL in one MULTI/EXEC block.
    """

    def __init__(self, client: Optional[redis.Redis] = None, key_prefix: Optional[str] = None):
        """
        Initialize Redis connection pool.

        Args:
            client: Existing Redis client (a pool is created from Config otherwise)
            key_prefix: Namespace for the ledger keys
        """
        self.pool = None
        if client is None:
            self.pool = redis.ConnectionPool(
                host=Config.REDIS_HOST,
                port=Config.REDIS_PORT,
                db=Config.REDIS_DB,
                password=Config.REDIS_PASSWORD,
                max_connections=Config.REDIS_MAX_CONNECTIONS,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_keepalive=True,
                health_check_interval=30
            )
            client = redis.Redis(connection_pool=self.pool)
        self.client = client

        prefix = key_prefix or Config.REDIS_KEY_PREFIX
        self.voted_key = get_redis_key('voted_voters', prefix)
        self.voted_at_key = get_redis_key('voted_at', prefix)
        self.registered_key = get_redis_key('registered_voters', prefix)
        self._test_connection()

    def _test_connection(self):
        """Test Redis connection on initialization."""
        try:
            self.client.ping()
            logger.info("Redis connection established successfully")
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise StoreUnavailableError(f"Redis unavailable: {e}") from e

    def try_claim(self, voter_id: str, timestamp: Optional[datetime] = None) -> ClaimResult:
        claimed_at = (timestamp or utcnow()).isoformat()
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.sadd(self.voted_key, voter_id)
            pipe.hsetnx(self.voted_at_key, voter_id, claimed_at)
            added, _ = pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Redis error claiming voter {voter_id}: {e}")
            raise StoreUnavailableError(f"Redis error claiming voter: {e}") from e

        if added:
            logger.debug(f"Voter {voter_id} claimed")
            return ClaimResult.CLAIMED

        logger.debug(f"Voter {voter_id} already claimed")
        return ClaimResult.ALREADY_CLAIMED

    def _release(self, voter_id: str) -> None:
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.srem(self.voted_key, voter_id)
            pipe.hdel(self.voted_at_key, voter_id)
            removed, _ = pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Redis error releasing voter {voter_id}: {e}")
            raise StoreUnavailableError(f"Redis error releasing voter: {e}") from e

        if not removed:
            raise NotClaimedError(voter_id)
        logger.info(f"Claim released for voter {voter_id}")

    def register_voter(self, voter_id: str) -> Voter:
        try:
            self.client.sadd(self.registered_key, voter_id)
        except redis.RedisError as e:
            logger.error(f"Redis error registering voter {voter_id}: {e}")
            raise StoreUnavailableError(f"Redis error registering voter: {e}") from e
        return self.get_voter(voter_id)

    def get_voter(self, voter_id: str) -> Voter:
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.sismember(self.voted_key, voter_id)
            pipe.hget(self.voted_at_key, voter_id)
            is_member, voted_at = pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Redis error reading voter {voter_id}: {e}")
            raise StoreUnavailableError(f"Redis error reading voter: {e}") from e

        if not is_member:
            return Voter(voter_id=voter_id)
        return Voter(
            voter_id=voter_id,
            has_voted=True,
            voted_at=datetime.fromisoformat(voted_at) if voted_at else None
        )

    def claimed_voters(self) -> Dict[str, Optional[datetime]]:
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.smembers(self.voted_key)
            pipe.hgetall(self.voted_at_key)
            members, stamps = pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Redis error listing claimed voters: {e}")
            raise StoreUnavailableError(f"Redis error listing claimed voters: {e}") from e

        return {
            voter_id: datetime.fromisoformat(stamps[voter_id]) if stamps.get(voter_id) else None
            for voter_id in members
        }

    def claimed_count(self) -> int:
        try:
            return int(self.client.scard(self.voted_key))
        except redis.RedisError as e:
            logger.error(f"Redis error counting claimed voters: {e}")
            raise StoreUnavailableError(f"Redis error counting claimed voters: {e}") from e

    def health_check(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    def close(self):
        """Close Redis connection pool."""
        if self.pool is None:
            return
        try:
            self.pool.disconnect()
            logger.info("Redis connection pool closed")
        except Exception as e:
            logger.error(f"Error closing Redis connection: {e}")
