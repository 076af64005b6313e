"""
Settlement Ledger

Applies verified payment events to orders, store balances and the
transaction log.
"""

from settlement_engine.ledger.results import LedgerOutcome, LedgerResult, ReconciliationReport
from settlement_engine.ledger.service import SettlementLedger

__all__ = [
    "LedgerOutcome",
    "LedgerResult",
    "ReconciliationReport",
    "SettlementLedger",
]
