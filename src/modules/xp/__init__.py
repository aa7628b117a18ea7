"""XP ledger: append-only grants, progress resets and ledger queries."""

from .ledger import GrantResult, XpLedger
from .service import XpLedgerService

__all__ = ["GrantResult", "XpLedger", "XpLedgerService"]
