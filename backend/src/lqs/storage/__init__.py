"""Storage backends for LQS records."""

from .base import LqsRepository
from .memory import InMemoryRepository
from .sql import SqlRepository

__all__ = ["InMemoryRepository", "LqsRepository", "SqlRepository"]
