"""Vote coordinator: the exactly-once claim/record/compensate protocol."""

from .coordinator import VoteCoordinator

__all__ = ['VoteCoordinator']
