"""HTTP adapter for the vote engine."""
