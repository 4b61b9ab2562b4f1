from .credit_ledger import CreditLedger, LedgerSnapshot
from .store import LedgerStore

__all__ = ["CreditLedger", "LedgerSnapshot", "LedgerStore"]
