"""Tally store: per-candidate counters over an append-only vote log."""

from .base import TallyStore, build_tally
from .memory import InMemoryTallyStore
from .database import PostgresTallyStore

__all__ = ['TallyStore', 'build_tally', 'InMemoryTallyStore', 'PostgresTallyStore']
