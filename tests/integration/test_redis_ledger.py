"""Integration tests for the Redis voter ledger.

Requires: Redis reachable at REDIS_HOST:REDIS_PORT
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest

from vote_engine.ledger import RedisVoterLedger
from vote_engine.shared import ClaimResult, NotClaimedError


@pytest.mark.docker
class TestRedisVoterLedger:
    """Claim, release and read operations against Redis."""

    def test_claim_and_reclaim(self, redis_ledger: RedisVoterLedger):
        """Test: First claim wins and stores voted_at, second is rejected.

        Flow:
        1. Claim V1 with a fixed timestamp
        2. Verify CLAIMED and the stored timestamp
        3. Claim V1 again
        4. Verify ALREADY_CLAIMED and the timestamp is unchanged
        """
        stamp = datetime(2025, 11, 3, 14, 30, tzinfo=timezone.utc)

        assert redis_ledger.try_claim("V1", stamp) == ClaimResult.CLAIMED
        assert redis_ledger.try_claim("V1") == ClaimResult.ALREADY_CLAIMED

        voter = redis_ledger.get_voter("V1")
        assert voter.has_voted is True
        assert voter.voted_at == stamp

    def test_concurrent_claims_single_winner(self, redis_ledger: RedisVoterLedger):
        with ThreadPoolExecutor(max_workers=32) as pool:
            results = list(pool.map(lambda _: redis_ledger.try_claim("V1"), range(500)))

        assert results.count(ClaimResult.CLAIMED) == 1
        assert redis_ledger.claimed_count() == 1

    def test_release(self, redis_ledger: RedisVoterLedger):
        redis_ledger.try_claim("V1")

        redis_ledger._release("V1")

        assert redis_ledger.has_voted("V1") is False
        assert redis_ledger.get_voter("V1").voted_at is None
        with pytest.raises(NotClaimedError):
            redis_ledger._release("V1")

    def test_claimed_voters(self, redis_ledger: RedisVoterLedger):
        redis_ledger.register_voter("V0")
        redis_ledger.try_claim("V1")
        redis_ledger.try_claim("V2")

        claims = redis_ledger.claimed_voters()

        assert set(claims) == {"V1", "V2"}
        assert all(voted_at is not None for voted_at in claims.values())

    def test_health_check(self, redis_ledger: RedisVoterLedger):
        assert redis_ledger.health_check() is True
