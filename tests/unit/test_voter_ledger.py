"""Unit tests for the in-memory voter ledger.

Covers the compare-and-set claim, its release, and the read helpers used
by reconciliation.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest

from vote_engine.ledger import InMemoryVoterLedger
from vote_engine.shared import ClaimResult, NotClaimedError


class TestTryClaim:
    """Tests for the atomic has_voted transition."""

    def test_first_claim_wins(self, ledger: InMemoryVoterLedger):
        """Test: An unclaimed voter is claimed once.

        Flow:
        1. Claim V1
        2. Verify CLAIMED, has_voted set and voted_at recorded
        """
        stamp = datetime(2025, 11, 3, 14, 30, tzinfo=timezone.utc)

        assert ledger.try_claim("V1", stamp) == ClaimResult.CLAIMED

        voter = ledger.get_voter("V1")
        assert voter.has_voted is True
        assert voter.voted_at == stamp

    def test_second_claim_rejected(self, ledger: InMemoryVoterLedger):
        """Test: A claimed voter cannot be claimed again, and voted_at is kept."""
        first = datetime(2025, 11, 3, 14, 30, tzinfo=timezone.utc)
        second = datetime(2025, 11, 3, 15, 0, tzinfo=timezone.utc)

        ledger.try_claim("V1", first)
        assert ledger.try_claim("V1", second) == ClaimResult.ALREADY_CLAIMED
        assert ledger.get_voter("V1").voted_at == first

    def test_concurrent_claims_single_winner(self, ledger: InMemoryVoterLedger):
        """Test: 500 concurrent claims for the same voter yield one CLAIMED.

        Flow:
        1. Race 500 try_claim calls for V1 on 32 threads
        2. Verify exactly one CLAIMED and 499 ALREADY_CLAIMED
        """
        with ThreadPoolExecutor(max_workers=32) as pool:
            results = list(pool.map(lambda _: ledger.try_claim("V1"), range(500)))

        assert results.count(ClaimResult.CLAIMED) == 1
        assert results.count(ClaimResult.ALREADY_CLAIMED) == 499

    def test_claims_for_different_voters_independent(self, ledger: InMemoryVoterLedger):
        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(lambda i: ledger.try_claim(f"V{i}"), range(200)))

        assert all(result == ClaimResult.CLAIMED for result in results)
        assert ledger.claimed_count() == 200


class TestRelease:
    """Tests for the compensation-only release."""

    def test_release_restores_unclaimed_state(self, ledger: InMemoryVoterLedger):
        """Test: Release reverses a claim and lets the voter claim again."""
        ledger.try_claim("V1")

        ledger._release("V1")

        voter = ledger.get_voter("V1")
        assert voter.has_voted is False
        assert voter.voted_at is None
        assert ledger.try_claim("V1") == ClaimResult.CLAIMED

    def test_release_unclaimed_voter_raises(self, ledger: InMemoryVoterLedger):
        ledger.register_voter("V1")

        with pytest.raises(NotClaimedError) as exc_info:
            ledger._release("V1")
        assert exc_info.value.voter_id == "V1"

    def test_release_unknown_voter_raises(self, ledger: InMemoryVoterLedger):
        with pytest.raises(NotClaimedError):
            ledger._release("nobody")


class TestVoterReads:
    """Tests for registration and read helpers."""

    def test_unknown_voter_has_not_voted(self, ledger: InMemoryVoterLedger):
        voter = ledger.get_voter("V404")
        assert voter.voter_id == "V404"
        assert voter.has_voted is False
        assert ledger.has_voted("V404") is False

    def test_register_is_idempotent(self, ledger: InMemoryVoterLedger):
        ledger.register_voter("V1")
        ledger.try_claim("V1")

        voter = ledger.register_voter("V1")

        assert voter.has_voted is True

    def test_get_voter_returns_copy(self, ledger: InMemoryVoterLedger):
        ledger.try_claim("V1")

        voter = ledger.get_voter("V1")
        voter.has_voted = False

        assert ledger.has_voted("V1") is True

    def test_claimed_voters_lists_only_claims(self, ledger: InMemoryVoterLedger):
        ledger.register_voter("V1")
        ledger.try_claim("V2")
        ledger.try_claim("V3")
        ledger._release("V3")

        claims = ledger.claimed_voters()

        assert set(claims) == {"V2"}
        assert claims["V2"] is not None
