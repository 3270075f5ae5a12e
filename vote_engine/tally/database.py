"""
PostgreSQL tally store.

Candidates and vote records live in two tables. A vote is one transaction:
lock the candidate row, insert the record (voter_id is unique), bump the
counter, commit. GET of the tally is a single SELECT, which reads one
committed snapshot, so it never sees a record without its increment.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import psycopg2
from psycopg2 import pool, errors

from vote_engine.config import Config
from vote_engine.shared import (
    Candidate,
    CandidateExistsError,
    RecordResult,
    RecordStatus,
    StoreUnavailableError,
    UnknownCandidateError,
    VoteRecord,
)
from vote_engine.tally.base import TallyStore

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS candidates (
    id BIGSERIAL PRIMARY KEY,
    candidate_id TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    vote_count BIGINT NOT NULL DEFAULT 0 CHECK (vote_count >= 0),
    deleted BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS vote_records (
    sequence BIGSERIAL PRIMARY KEY,
    voter_id TEXT NOT NULL UNIQUE,
    candidate_id TEXT NOT NULL REFERENCES candidates (candidate_id),
    vote_timestamp TIMESTAMPTZ NOT NULL,
    recorded_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_vote_records_candidate ON vote_records (candidate_id);

CREATE OR REPLACE FUNCTION vote_records_append_only() RETURNS trigger AS $$
BEGIN
    RAISE EXCEPTION 'vote_records is append-only';
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS vote_records_no_mutation ON vote_records;
CREATE TRIGGER vote_records_no_mutation
    BEFORE UPDATE OR DELETE ON vote_records
    FOR EACH ROW EXECUTE FUNCTION vote_records_append_only();
"""

# Errors worth retrying: the statement may succeed on another attempt
TRANSIENT_ERRORS = (
    psycopg2.OperationalError,
    psycopg2.InterfaceError,
    errors.SerializationFailure,
    errors.DeadlockDetected,
    pool.PoolError,
)


class PostgresTallyStore(TallyStore):
    """PostgreSQL tally store backed by a threaded connection pool."""

    def __init__(self, dsn: Optional[str] = None, min_connections: Optional[int] = None,
                 max_connections: Optional[int] = None):
        """Initialize database connection pool."""
        self.connection_pool = None
        try:
            self.connection_pool = psycopg2.pool.ThreadedConnectionPool(
                min_connections or Config.POSTGRES_MIN_POOL_SIZE,
                max_connections or Config.POSTGRES_MAX_POOL_SIZE,
                dsn or Config.get_postgres_dsn(),
                connect_timeout=10
            )
            logger.info("PostgreSQL connection pool created successfully")
        except psycopg2.Error as e:
            logger.error(f"Failed to create connection pool: {e}")
            raise StoreUnavailableError(f"Connection pool creation failed: {e}") from e

    @contextmanager
    def get_connection(self):
        """
        Context manager for a pooled connection running one transaction.

        Commits when the block exits normally, rolls back otherwise, and
        translates transient driver errors into StoreUnavailableError.

        Yields:
            Connection object from the pool.
        """
        connection = None
        try:
            connection = self.connection_pool.getconn()
            yield connection
            connection.commit()
        except TRANSIENT_ERRORS as e:
            self._rollback_quietly(connection)
            logger.error(f"Transient database error: {e}")
            raise StoreUnavailableError(f"Database unavailable: {e}") from e
        except Exception:
            self._rollback_quietly(connection)
            raise
        finally:
            if connection:
                self.connection_pool.putconn(connection)

    @staticmethod
    def _rollback_quietly(connection):
        if connection is None or connection.closed:
            return
        try:
            connection.rollback()
        except psycopg2.Error as e:
            logger.warning(f"Rollback failed: {e}")

    def create_schema(self):
        """Create tables, index and the append-only trigger (idempotent)."""
        with self.get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(SCHEMA_SQL)
        logger.info("Tally schema ensured")

    def record_vote(self, candidate_id: str, voter_id: str, timestamp: datetime) -> RecordResult:
        with self.get_connection() as conn:
            with conn.cursor() as cursor:
                duplicate = self._existing_vote(cursor, voter_id)
                if duplicate:
                    conn.rollback()
                    logger.warning(f"Duplicate vote record attempt for voter {voter_id}")
                    return duplicate

                cursor.execute(
                    "SELECT deleted FROM candidates WHERE candidate_id = %s FOR UPDATE",
                    (candidate_id,)
                )
                row = cursor.fetchone()
                if row is None:
                    conn.rollback()
                    return RecordResult(status=RecordStatus.CANDIDATE_NOT_FOUND, candidate_id=candidate_id)
                if row[0]:
                    conn.rollback()
                    return RecordResult(status=RecordStatus.CANDIDATE_DELETED, candidate_id=candidate_id)

                cursor.execute(
                    """
                    INSERT INTO vote_records (voter_id, candidate_id, vote_timestamp)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (voter_id) DO NOTHING
                    RETURNING sequence
                    """,
                    (voter_id, candidate_id, timestamp)
                )
                inserted = cursor.fetchone()
                if inserted is None:
                    # A concurrent transaction recorded this voter first
                    conn.rollback()
                    return self._existing_vote(cursor, voter_id)

                cursor.execute(
                    """
                    UPDATE candidates
                    SET vote_count = vote_count + 1, updated_at = NOW()
                    WHERE candidate_id = %s
                    RETURNING vote_count
                    """,
                    (candidate_id,)
                )
                vote_count = cursor.fetchone()[0]

        logger.debug(f"Recorded vote #{inserted[0]}: voter={voter_id} candidate={candidate_id}")
        return RecordResult(status=RecordStatus.RECORDED, candidate_id=candidate_id, vote_count=vote_count)

    @staticmethod
    def _existing_vote(cursor, voter_id: str) -> Optional[RecordResult]:
        cursor.execute(
            """
            SELECT r.candidate_id, c.vote_count
            FROM vote_records r
            LEFT JOIN candidates c ON c.candidate_id = r.candidate_id
            WHERE r.voter_id = %s
            """,
            (voter_id,)
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return RecordResult(status=RecordStatus.DUPLICATE_VOTER, candidate_id=row[0], vote_count=row[1])

    def snapshot_candidates(self) -> List[Candidate]:
        query = """
        SELECT candidate_id, name, vote_count, deleted, id
        FROM candidates
        ORDER BY id
        """
        with self.get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(query)
                rows = cursor.fetchall()

        return [
            Candidate(
                candidate_id=candidate_id,
                name=name,
                vote_count=vote_count,
                deleted=deleted,
                created_seq=created_seq
            )
            for candidate_id, name, vote_count, deleted, created_seq in rows
        ]

    def add_candidate(self, candidate_id: str, name: str) -> Candidate:
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cursor:
                    cursor.execute(
                        """
                        INSERT INTO candidates (candidate_id, name)
                        VALUES (%s, %s)
                        RETURNING id
                        """,
                        (candidate_id, name)
                    )
                    created_seq = cursor.fetchone()[0]
        except errors.UniqueViolation as e:
            raise CandidateExistsError(candidate_id) from e

        logger.info(f"Candidate added: {candidate_id} ({name})")
        return Candidate(candidate_id=candidate_id, name=name, created_seq=created_seq)

    def rename_candidate(self, candidate_id: str, name: str) -> Candidate:
        return self._update_candidate(
            candidate_id,
            "UPDATE candidates SET name = %s, updated_at = NOW() WHERE candidate_id = %s",
            (name, candidate_id)
        )

    def soft_delete_candidate(self, candidate_id: str) -> Candidate:
        candidate = self._update_candidate(
            candidate_id,
            "UPDATE candidates SET deleted = TRUE, updated_at = NOW() WHERE candidate_id = %s",
            (candidate_id,)
        )
        logger.info(f"Candidate soft-deleted: {candidate_id} ({candidate.vote_count} votes retained)")
        return candidate

    def _update_candidate(self, candidate_id: str, statement: str, params: tuple) -> Candidate:
        with self.get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(statement, params)
                if cursor.rowcount == 0:
                    raise UnknownCandidateError(candidate_id)
        return self.get_candidate(candidate_id)

    def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        with self.get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(
                    "SELECT candidate_id, name, vote_count, deleted, id FROM candidates WHERE candidate_id = %s",
                    (candidate_id,)
                )
                row = cursor.fetchone()
        if row is None:
            return None
        return Candidate(
            candidate_id=row[0], name=row[1], vote_count=row[2], deleted=row[3], created_seq=row[4]
        )

    def audit_log(self) -> List[VoteRecord]:
        with self.get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(
                    "SELECT voter_id, candidate_id, vote_timestamp, sequence FROM vote_records ORDER BY sequence"
                )
                rows = cursor.fetchall()
        return [
            VoteRecord(voter_id=voter_id, candidate_id=candidate_id, timestamp=timestamp, sequence=sequence)
            for voter_id, candidate_id, timestamp, sequence in rows
        ]

    def has_vote_record(self, voter_id: str) -> bool:
        with self.get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1 FROM vote_records WHERE voter_id = %s", (voter_id,))
                return cursor.fetchone() is not None

    def voter_record_counts(self) -> Dict[str, int]:
        return self._grouped_counts("SELECT voter_id, COUNT(*) FROM vote_records GROUP BY voter_id")

    def record_candidate_ids(self) -> Dict[str, int]:
        return self._grouped_counts("SELECT candidate_id, COUNT(*) FROM vote_records GROUP BY candidate_id")

    def _grouped_counts(self, query: str) -> Dict[str, int]:
        with self.get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(query)
                return {key: count for key, count in cursor.fetchall()}

    def counter_snapshot(self) -> Dict[str, Tuple[int, int]]:
        query = """
        SELECT c.candidate_id, c.vote_count, COUNT(r.sequence)
        FROM candidates c
        LEFT JOIN vote_records r ON r.candidate_id = c.candidate_id
        GROUP BY c.id, c.candidate_id, c.vote_count
        """
        with self.get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(query)
                return {
                    candidate_id: (cached, logged)
                    for candidate_id, cached, logged in cursor.fetchall()
                }

    def recount_candidate(self, candidate_id: str) -> Tuple[int, int]:
        with self.get_connection() as conn:
            with conn.cursor() as cursor:
                # Row lock blocks record_vote for this candidate until commit
                cursor.execute(
                    "SELECT vote_count FROM candidates WHERE candidate_id = %s FOR UPDATE",
                    (candidate_id,)
                )
                row = cursor.fetchone()
                if row is None:
                    raise UnknownCandidateError(candidate_id)
                previous = row[0]

                cursor.execute("SELECT COUNT(*) FROM vote_records WHERE candidate_id = %s", (candidate_id,))
                recomputed = cursor.fetchone()[0]

                if previous != recomputed:
                    cursor.execute(
                        "UPDATE candidates SET vote_count = %s, updated_at = NOW() WHERE candidate_id = %s",
                        (recomputed, candidate_id)
                    )
                    logger.warning(
                        f"Counter for candidate {candidate_id} rebuilt from log: {previous} -> {recomputed}"
                    )
        return previous, recomputed

    def health_check(self) -> bool:
        """
        Check database health.

        Returns:
            True if database is healthy, False otherwise
        """
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cursor:
                    cursor.execute("SELECT 1")
            return True
        except StoreUnavailableError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self):
        """Close all connections in the pool."""
        if self.connection_pool:
            self.connection_pool.closeall()
            logger.info("Database connection pool closed")
