"""
Order core persistence.

Usage:
    from dining.repository import SqlOrdersRepository
    from dining.database import get_session_maker

    repo = SqlOrdersRepository(get_session_maker())
"""

from dining.repository.base import BaseOrdersRepository, BasePaymentsRepository
from dining.repository.memory import InMemoryOrdersRepository, InMemoryPaymentsRepository
from dining.repository.sql import SqlOrdersRepository, SqlPaymentsRepository

__all__ = [
    "BaseOrdersRepository",
    "BasePaymentsRepository",
    "InMemoryOrdersRepository",
    "InMemoryPaymentsRepository",
    "SqlOrdersRepository",
    "SqlPaymentsRepository",
]
