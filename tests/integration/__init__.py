"""Integration tests for the vote engine stores.

This package runs the engine against real backing services:

- Redis voter ledger claims and releases
- PostgreSQL tally store records, tally reads and recounts
- Coordinator and reconciliation over both stores

Tests are skipped when Redis or PostgreSQL is not reachable.
"""
