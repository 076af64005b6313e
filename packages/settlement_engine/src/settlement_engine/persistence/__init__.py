"""
Settlement persistence.

The ledger only talks to SettlementRepository; SQL and in-memory
implementations live here.
"""

from settlement_engine.persistence.base import SettlementRepository, SettlementUnitOfWork
from settlement_engine.persistence.memory import InMemorySettlementRepository
from settlement_engine.persistence.repo import SqlSettlementRepository

__all__ = [
    "InMemorySettlementRepository",
    "SettlementRepository",
    "SettlementUnitOfWork",
    "SqlSettlementRepository",
]
