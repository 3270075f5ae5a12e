"""Voter ledger: the single source of truth for "has this voter voted"."""

from .base import VoterLedger
from .memory import InMemoryVoterLedger
from .redis_client import RedisVoterLedger

__all__ = ['VoterLedger', 'InMemoryVoterLedger', 'RedisVoterLedger']
