"""Unit tests for the vote engine, run against the in-memory stores."""
