"""
Reconciliation job.

The per-candidate vote_count is a cache over the append-only vote log.
Each pass recomputes the counters from the log, rewrites the ones that
drifted and raises an alert for every correction. It also compares the
ledger's claims with the log's voters and reports mismatches without
touching voter state; granting or revoking a vote silently is never safe.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from prometheus_client import Counter

from vote_engine.config import Config
from vote_engine.ledger import VoterLedger
from vote_engine.reconciliation.alerts import Alert, AlertSink, LoggingAlertSink
from vote_engine.shared import UnknownCandidateError, utcnow
from vote_engine.tally import TallyStore

logger = logging.getLogger(__name__)

# Prometheus metrics
reconciliation_runs_total = Counter(
    'reconciliation_runs_total',
    'Total number of reconciliation passes',
    ['result']
)

reconciliation_drift_total = Counter(
    'reconciliation_drift_total',
    'Total number of candidate counters found out of line with the log'
)

reconciliation_voter_mismatches_total = Counter(
    'reconciliation_voter_mismatches_total',
    'Total number of voter/record mismatches surfaced',
    ['kind']
)


@dataclass(frozen=True)
class CounterDrift:
    """A cached counter that disagreed with the log."""
    candidate_id: str
    cached: int
    actual: int
    corrected: bool = False

    @property
    def delta(self) -> int:
        return self.actual - self.cached

    def to_dict(self) -> Dict:
        return {
            'candidate_id': self.candidate_id,
            'cached': self.cached,
            'actual': self.actual,
            'delta': self.delta,
            'corrected': self.corrected,
        }


@dataclass(frozen=True)
class VoterMismatch:
    """A voter whose claim and vote records disagree."""
    voter_id: str
    kind: str
    detail: str = ''

    def to_dict(self) -> Dict:
        return {'voter_id': self.voter_id, 'kind': self.kind, 'detail': self.detail}


@dataclass
class ReconciliationReport:
    """Findings of one reconciliation pass."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    drifts: List[CounterDrift] = field(default_factory=list)
    voter_mismatches: List[VoterMismatch] = field(default_factory=list)
    unknown_candidates: Dict[str, int] = field(default_factory=dict)
    claimed_voters: int = 0
    recorded_votes: int = 0

    @property
    def clean(self) -> bool:
        return not (self.drifts or self.voter_mismatches or self.unknown_candidates)

    def to_dict(self) -> Dict:
        return {
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'clean': self.clean,
            'claimed_voters': self.claimed_voters,
            'recorded_votes': self.recorded_votes,
            'drifts': [drift.to_dict() for drift in self.drifts],
            'voter_mismatches': [mismatch.to_dict() for mismatch in self.voter_mismatches],
            'unknown_candidates': dict(self.unknown_candidates),
        }


class ReconciliationJob:
    """Rebuilds cached counters from the vote log and surfaces voter mismatches."""

    def __init__(
        self,
        ledger: VoterLedger,
        tally: TallyStore,
        alert_sink: Optional[AlertSink] = None,
        repair: Optional[bool] = None,
        grace_period: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            ledger: Voter ledger to read claims from
            tally: Tally store whose counters are checked and repaired
            alert_sink: Where findings go (logged when omitted)
            repair: Rewrite drifting counters; False only reports them
            grace_period: Seconds a claim may exist without a record before it
                is reported, so votes still in flight are not flagged
            clock: Time source for the grace period
        """
        self.ledger = ledger
        self.tally = tally
        self.alert_sink = alert_sink or LoggingAlertSink()
        self.repair = Config.RECONCILE_REPAIR if repair is None else repair
        self.grace_period = Config.RECONCILE_GRACE_SECONDS if grace_period is None else grace_period
        self._clock = clock

        self._run_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_report: Optional[ReconciliationReport] = None

    def run_once(self) -> ReconciliationReport:
        """Run one full pass. Passes never overlap."""
        with self._run_lock:
            report = ReconciliationReport(started_at=self._clock())
            try:
                self._check_voters(report)
                self._check_counters(report)
            except Exception:
                reconciliation_runs_total.labels(result='error').inc()
                raise

            report.finished_at = self._clock()
            reconciliation_runs_total.labels(result='clean' if report.clean else 'findings').inc()
            logger.info(
                f"Reconciliation finished: {len(report.drifts)} drifting counters, "
                f"{len(report.voter_mismatches)} voter mismatches, "
                f"{report.claimed_voters} claims, {report.recorded_votes} records"
            )
            self.last_report = report
            return report

    def _check_counters(self, report: ReconciliationReport):
        for candidate_id, (cached, logged) in self.tally.counter_snapshot().items():
            if cached == logged:
                continue

            corrected = False
            actual = logged
            if self.repair:
                try:
                    cached, actual = self.tally.recount_candidate(candidate_id)
                except UnknownCandidateError:
                    logger.warning(f"Candidate {candidate_id} disappeared during reconciliation")
                    continue
                if cached == actual:
                    # Fixed by a concurrent pass between the snapshot and the recount
                    continue
                corrected = True

            drift = CounterDrift(candidate_id=candidate_id, cached=cached, actual=actual, corrected=corrected)
            report.drifts.append(drift)
            reconciliation_drift_total.inc()
            self._alert(Alert(
                kind='counter_drift',
                severity='warning',
                message=(
                    f"Candidate {candidate_id} counter was {cached}, log has {actual} "
                    f"(delta {drift.delta:+d}){' - corrected' if corrected else ''}"
                ),
                details=drift.to_dict()
            ))

    def _check_voters(self, report: ReconciliationReport):
        # Records are read before claims: a claim always precedes its record,
        # so every voter seen in the records must already show up as claimed.
        record_counts = self.tally.voter_record_counts()
        candidate_ids = self.tally.record_candidate_ids()
        known = {c.candidate_id for c in self.tally.snapshot_candidates()}
        claims = self.ledger.claimed_voters()

        report.claimed_voters = len(claims)
        report.recorded_votes = sum(record_counts.values())

        for voter_id, count in record_counts.items():
            if count > 1:
                self._mismatch(report, voter_id, 'duplicate_records', f"{count} vote records")
            if voter_id not in claims:
                self._mismatch(report, voter_id, 'record_without_claim', 'vote record exists but voter is unclaimed')

        cutoff = self._clock() - timedelta(seconds=self.grace_period)
        for voter_id, voted_at in claims.items():
            if voter_id in record_counts:
                continue
            if voted_at is not None and voted_at > cutoff:
                continue
            self._mismatch(report, voter_id, 'claimed_without_record', 'voter is claimed but has no vote record')

        for candidate_id, count in candidate_ids.items():
            if candidate_id in known:
                continue
            report.unknown_candidates[candidate_id] = count
            self._alert(Alert(
                kind='unknown_candidate',
                severity='critical',
                message=f"{count} vote records reference missing candidate {candidate_id}",
                details={'candidate_id': candidate_id, 'records': count}
            ))

    def _mismatch(self, report: ReconciliationReport, voter_id: str, kind: str, detail: str):
        mismatch = VoterMismatch(voter_id=voter_id, kind=kind, detail=detail)
        report.voter_mismatches.append(mismatch)
        reconciliation_voter_mismatches_total.labels(kind=kind).inc()
        self._alert(Alert(
            kind=kind,
            severity='critical',
            message=f"Voter {voter_id}: {detail}; manual resolution required",
            details=mismatch.to_dict()
        ))

    def _alert(self, alert: Alert):
        try:
            self.alert_sink.send(alert)
        except Exception as e:
            logger.error(f"Failed to deliver {alert.kind} alert: {e}")

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def start(self, interval: Optional[float] = None):
        """Run passes on a background thread every `interval` seconds until stop()."""
        if self._thread and self._thread.is_alive():
            logger.warning("Reconciliation job already running")
            return

        interval = Config.RECONCILE_INTERVAL_SECONDS if interval is None else interval
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, args=(interval,), name='reconciliation-job', daemon=True
        )
        self._thread.start()
        logger.info(f"Reconciliation job started (interval {interval}s)")

    def _loop(self, interval: float):
        while not self._stop_event.is_set():
            start_time = time.time()
            try:
                self.run_once()
            except Exception as e:
                logger.error(f"Error in reconciliation pass: {e}", exc_info=True)
            elapsed = time.time() - start_time
            self._stop_event.wait(max(0.0, interval - elapsed))

    def stop(self, timeout: Optional[float] = None):
        """Stop the background thread and wait for the current pass to finish."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
            logger.info("Reconciliation job stopped")

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())
