"""
Vote coordinator.

Composes the voter ledger and the tally store into one all-or-nothing cast:

    PENDING --try_claim-->
        ALREADY_CLAIMED  -> REJECTED (already_voted)
        CLAIMED          -> VOTER_LOCKED
    VOTER_LOCKED --record_vote-->
        RECORDED         -> COMMITTED
        DUPLICATE_VOTER  -> COMMITTED (idempotent, claim kept)
        NOT_FOUND/DELETED-> release -> ROLLED_BACK -> REJECTED
        store failure    -> retry with backoff; on exhaustion
                            release -> ROLLED_BACK -> REJECTED (service_unavailable)

Only the caller that wins the claim ever reaches record_vote, so the tally
never sees two votes for one voter. The release undoes the claim whenever the
record could not be written, so has_voted == True keeps implying exactly one
vote record.
"""

import asyncio
import logging
import random
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Optional, Set

from prometheus_client import Counter, Histogram

from vote_engine.config import Config
from vote_engine.ledger import VoterLedger
from vote_engine.reconciliation.alerts import Alert
from vote_engine.shared import (
    AttemptState,
    CastOutcome,
    CastResult,
    ClaimResult,
    CommitSnapshot,
    NotClaimedError,
    RecordStatus,
    StateTrace,
    StoreUnavailableError,
    utcnow,
)
from vote_engine.tally import TallyStore

logger = logging.getLogger(__name__)

# Prometheus metrics
votes_cast_total = Counter(
    'votes_cast_total',
    'Total number of cast vote attempts by outcome',
    ['outcome']
)

record_vote_retries_total = Counter(
    'record_vote_retries_total',
    'Total number of record_vote retries after a transient store failure'
)

vote_compensations_total = Counter(
    'vote_compensations_total',
    'Total number of voter claim releases',
    ['status']
)

cast_vote_latency = Histogram(
    'cast_vote_latency_seconds',
    'Time spent driving a vote to a terminal state',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
)

_REJECTIONS = {
    RecordStatus.CANDIDATE_NOT_FOUND: CastOutcome.CANDIDATE_NOT_FOUND,
    RecordStatus.CANDIDATE_DELETED: CastOutcome.CANDIDATE_DELETED,
}


class VoteCoordinator:
    """Drives each vote attempt from PENDING to a terminal state."""

    def __init__(
        self,
        ledger: VoterLedger,
        tally: TallyStore,
        alert_sink=None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        retry_window: Optional[float] = None,
        release_attempts: Optional[int] = None,
        max_workers: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the coordinator.

        Args:
            ledger: Voter ledger holding the claims
            tally: Tally store receiving the vote records
            alert_sink: Optional sink told about claims that could not be released
            max_attempts: record_vote attempts before giving up
            base_delay: First backoff delay in seconds, doubled per retry
            max_delay: Cap on a single backoff delay
            retry_window: Upper bound in seconds on time spent retrying while
                the voter is locked
            release_attempts: Attempts to release a claim during compensation
            max_workers: Thread pool size for the async entry point
            sleep: Sleep function (injectable for tests)
            clock: Timestamp source for claims and records
        """
        self.ledger = ledger
        self.tally = tally
        self.alert_sink = alert_sink
        self.max_attempts = max(1, max_attempts or Config.RECORD_MAX_ATTEMPTS)
        self.base_delay = Config.RETRY_BASE_DELAY if base_delay is None else base_delay
        self.max_delay = Config.RETRY_MAX_DELAY if max_delay is None else max_delay
        self.retry_window = Config.RETRY_WINDOW_SECONDS if retry_window is None else retry_window
        self.release_attempts = max(1, release_attempts or Config.RELEASE_MAX_ATTEMPTS)
        self._sleep = sleep
        self._clock = clock

        self.executor = ThreadPoolExecutor(
            max_workers=max_workers or Config.COORDINATOR_MAX_WORKERS,
            thread_name_prefix='vote-coordinator'
        )
        self._in_flight: Set[asyncio.Future] = set()

    # ------------------------------------------------------------------
    # Synchronous protocol
    # ------------------------------------------------------------------

    def cast_vote(self, voter_id: str, candidate_id: str) -> CastResult:
        """
        Cast a vote for an already-authenticated voter.

        Args:
            voter_id: Trusted, unique voter identifier
            candidate_id: Candidate to vote for

        Returns:
            CastResult with the structured outcome; never a partial state
        """
        start_time = time.time()
        trace = StateTrace()
        timestamp = self._clock()

        rejection = self._claim(voter_id, candidate_id, timestamp, trace)
        if rejection is not None:
            result = rejection
        else:
            result = self._complete_locked_vote(voter_id, candidate_id, timestamp, trace)

        cast_vote_latency.observe(time.time() - start_time)
        return result

    def _claim(self, voter_id: str, candidate_id: str, timestamp: datetime,
               trace: StateTrace) -> Optional[CastResult]:
        """Take the voter's claim. Returns a terminal result unless the claim was won."""
        try:
            claim = self.ledger.try_claim(voter_id, timestamp)
        except StoreUnavailableError as e:
            # Not retried: a repeated claim cannot tell our own earlier success
            # from another caller's.
            logger.error(f"Ledger unavailable while claiming voter {voter_id}: {e}")
            trace.move(AttemptState.REJECTED)
            return self._finish(CastOutcome.SERVICE_UNAVAILABLE, voter_id, candidate_id, trace)

        if claim == ClaimResult.ALREADY_CLAIMED:
            logger.info(f"Rejected vote: voter {voter_id} already voted")
            trace.move(AttemptState.REJECTED)
            return self._finish(CastOutcome.ALREADY_VOTED, voter_id, candidate_id, trace)

        trace.move(AttemptState.VOTER_LOCKED)
        return None

    def _complete_locked_vote(self, voter_id: str, candidate_id: str, timestamp: datetime,
                              trace: StateTrace) -> CastResult:
        """Drive a VOTER_LOCKED attempt to COMMITTED or ROLLED_BACK."""
        attempts = 0
        deadline = time.monotonic() + self.retry_window

        while True:
            attempts += 1
            try:
                result = self.tally.record_vote(candidate_id, voter_id, timestamp)
            except StoreUnavailableError as e:
                delay = self._backoff_delay(attempts)
                if attempts >= self.max_attempts or time.monotonic() + delay > deadline:
                    logger.error(
                        f"record_vote failed for voter {voter_id} after {attempts} attempts: {e}"
                    )
                    compensated = self._compensate(voter_id, trace)
                    return self._finish(
                        CastOutcome.SERVICE_UNAVAILABLE, voter_id, candidate_id, trace,
                        attempts=attempts, compensated=compensated
                    )

                logger.warning(
                    f"Transient store failure for voter {voter_id} "
                    f"(attempt {attempts}/{self.max_attempts}), retrying in {delay:.3f}s: {e}"
                )
                record_vote_retries_total.inc()
                self._sleep(delay)
                continue
            except Exception:
                logger.exception(f"Unexpected error recording vote for voter {voter_id}")
                self._compensate(voter_id, trace)
                votes_cast_total.labels(outcome='error').inc()
                raise
            break

        if result.status == RecordStatus.RECORDED:
            trace.move(AttemptState.COMMITTED)
            logger.info(f"Vote committed: voter={voter_id} candidate={candidate_id}")
            return self._finish(
                CastOutcome.SUCCESS, voter_id, candidate_id, trace,
                attempts=attempts,
                snapshot=CommitSnapshot(candidate_id=result.candidate_id, vote_count=result.vote_count)
            )

        if result.status == RecordStatus.DUPLICATE_VOTER:
            # An earlier attempt already appended this voter's record
            trace.move(AttemptState.COMMITTED)
            logger.info(f"Vote for voter {voter_id} already recorded, treating as committed")
            snapshot = None
            if result.candidate_id is not None and result.vote_count is not None:
                snapshot = CommitSnapshot(candidate_id=result.candidate_id, vote_count=result.vote_count)
            return self._finish(
                CastOutcome.SUCCESS, voter_id, candidate_id, trace,
                attempts=attempts, idempotent=True, snapshot=snapshot
            )

        outcome = _REJECTIONS[result.status]
        logger.info(f"Rejected vote for voter {voter_id}: {outcome.value} ({candidate_id})")
        compensated = self._compensate(voter_id, trace)
        return self._finish(
            outcome, voter_id, candidate_id, trace, attempts=attempts, compensated=compensated
        )

    def _backoff_delay(self, attempt: int) -> float:
        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        return delay + random.uniform(0, delay * 0.1)

    def _compensate(self, voter_id: str, trace: StateTrace) -> bool:
        """
        Release the voter's claim so the voter can try again.

        Returns:
            True if the claim was released, False if the voter is left locked
        """
        for attempt in range(1, self.release_attempts + 1):
            try:
                self.ledger._release(voter_id)
                vote_compensations_total.labels(status='released').inc()
                trace.move(AttemptState.ROLLED_BACK)
                trace.move(AttemptState.REJECTED)
                return True
            except NotClaimedError:
                # Nothing left to undo
                logger.error(f"Compensation found no claim for voter {voter_id}")
                vote_compensations_total.labels(status='not_claimed').inc()
                trace.move(AttemptState.ROLLED_BACK)
                trace.move(AttemptState.REJECTED)
                return True
            except StoreUnavailableError as e:
                logger.warning(
                    f"Release of voter {voter_id} failed (attempt {attempt}/{self.release_attempts}): {e}"
                )
                if attempt < self.release_attempts:
                    self._sleep(self._backoff_delay(attempt))

        logger.error(f"Failed to release claim for voter {voter_id}; voter left locked without a vote record")
        vote_compensations_total.labels(status='failed').inc()
        trace.move(AttemptState.REJECTED)
        self._report_stuck_claim(voter_id)
        return False

    def _report_stuck_claim(self, voter_id: str):
        if self.alert_sink is None:
            return
        try:
            self.alert_sink.send(Alert(
                kind='stuck_claim',
                severity='critical',
                message=f"Voter {voter_id} holds a claim without a vote record",
                details={'voter_id': voter_id}
            ))
        except Exception as e:
            logger.error(f"Failed to send stuck-claim alert for voter {voter_id}: {e}")

    def _finish(self, outcome: CastOutcome, voter_id: str, candidate_id: str, trace: StateTrace,
                attempts: int = 0, idempotent: bool = False, compensated: bool = True,
                snapshot: Optional[CommitSnapshot] = None) -> CastResult:
        votes_cast_total.labels(outcome=outcome.value).inc()
        return CastResult(
            outcome=outcome,
            voter_id=voter_id,
            candidate_id=candidate_id,
            state=trace.current,
            transitions=trace.freeze(),
            attempts=attempts,
            idempotent=idempotent,
            compensated=compensated,
            snapshot=snapshot
        )

    # ------------------------------------------------------------------
    # Async entry point
    # ------------------------------------------------------------------

    async def cast_vote_async(self, voter_id: str, candidate_id: str) -> CastResult:
        """
        Cast a vote from async code without blocking the event loop.

        Cancelling the caller before the claim resolves leaves no state
        change: a claim that lands afterwards is released on the pool, and
        drain() and close() wait for that release. Cancelling after the claim
        does not stop the vote; it still reaches COMMITTED or ROLLED_BACK on
        the coordinator's thread pool.
        """
        start_time = time.time()
        trace = StateTrace()
        timestamp = self._clock()

        claim_future = self.executor.submit(self._claim, voter_id, candidate_id, timestamp, trace)
        try:
            rejection = await asyncio.shield(asyncio.wrap_future(claim_future))
        except asyncio.CancelledError:
            # Queued behind the claim, so it runs even if close() follows at once
            undo = self.executor.submit(self._undo_abandoned_claim, claim_future, voter_id, trace)
            self._track(asyncio.wrap_future(undo))
            raise

        if rejection is not None:
            cast_vote_latency.observe(time.time() - start_time)
            return rejection

        completion = asyncio.wrap_future(self.executor.submit(
            self._complete_locked_vote, voter_id, candidate_id, timestamp, trace
        ))
        self._track(completion)

        result = await asyncio.shield(completion)
        cast_vote_latency.observe(time.time() - start_time)
        return result

    def _track(self, future: asyncio.Future):
        self._in_flight.add(future)
        future.add_done_callback(self._in_flight.discard)

    def _undo_abandoned_claim(self, claim_future: Future, voter_id: str, trace: StateTrace):
        """Release a claim won by a caller that was cancelled while claiming. Runs on the pool."""
        try:
            rejection = claim_future.result()
        except Exception as e:
            logger.error(f"Claim for cancelled caller of voter {voter_id} failed: {e}")
            return
        if rejection is not None:
            return
        logger.info(f"Caller for voter {voter_id} cancelled before claim resolved; releasing claim")
        self._compensate(voter_id, trace)

    async def drain(self):
        """Wait for every vote or release still running after its caller went away."""
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    def close(self):
        """Wait for in-flight votes and releases to finish and stop the pool."""
        self.executor.shutdown(wait=True)
        logger.info("Vote coordinator shut down")
