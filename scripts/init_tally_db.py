#!/usr/bin/env python3
"""
Create the tally schema in PostgreSQL and seed candidates.

Usage:
    python init_tally_db.py [--dsn DSN] [--candidate ID=NAME ...]

Environment Variables:
    POSTGRES_HOST, POSTGRES_PORT, POSTGRES_DB, POSTGRES_USER, POSTGRES_PASSWORD
"""

import argparse
import sys

from vote_engine.config import Config
from vote_engine.shared import CandidateExistsError, StoreUnavailableError
from vote_engine.tally import PostgresTallyStore


def parse_candidate(value: str):
    candidate_id, sep, name = value.partition('=')
    if not sep or not candidate_id.strip() or not name.strip():
        raise argparse.ArgumentTypeError(f"Expected ID=NAME, got '{value}'")
    return candidate_id.strip(), name.strip()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Create the tally schema and seed candidates'
    )
    parser.add_argument(
        '--dsn',
        default=Config.get_postgres_dsn(),
        help='PostgreSQL DSN (default: built from POSTGRES_* variables)'
    )
    parser.add_argument(
        '--candidate',
        action='append',
        type=parse_candidate,
        default=[],
        metavar='ID=NAME',
        help='Candidate to create; repeat for several'
    )

    args = parser.parse_args()

    try:
        store = PostgresTallyStore(dsn=args.dsn, min_connections=1, max_connections=2)
    except StoreUnavailableError as e:
        print(f"✗ Failed to connect to PostgreSQL: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        store.create_schema()
        print("✓ Schema ready")

        for candidate_id, name in args.candidate:
            try:
                store.add_candidate(candidate_id, name)
                print(f"  + {candidate_id}: {name}")
            except CandidateExistsError:
                print(f"  = {candidate_id} already exists, skipped")

        candidates = store.list_candidates(include_deleted=True)
        print(f"\n✓ {len(candidates)} candidate(s) registered")
    except StoreUnavailableError as e:
        print(f"\n✗ Fatal error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        store.close()


if __name__ == '__main__':
    main()
