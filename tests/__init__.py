"""Tests for the exactly-once voting engine."""
