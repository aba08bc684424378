"""
Debt model - directed pairwise obligations inside an apartment.

Design principles:
- debtor owes creditor amount_cents
- Status: open → closed, exactly once, never reversed
- Immutable once closed: amount and parties never change
- Never physically deleted (kept for audit)
- All amounts in integer cents
"""

from enum import Enum
from typing import Optional
from datetime import datetime

from app.models.base import MongoModel


class DebtStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class DebtSource(str, Enum):
    MANUAL = "manual"
    EXPENSE_SPLIT = "expense_split"
    SETTLEMENT = "settlement"


class Debt(MongoModel):
    """
    Financial obligation: debtor owes creditor amount_cents.

    Invariants:
    - amount_cents > 0
    - debtor_id != creditor_id
    - closed_at/closed_by set iff status == closed
    """

    apartment_id: str
    debtor_id: str
    creditor_id: str
    amount_cents: int

    status: DebtStatus = DebtStatus.OPEN
    source: DebtSource = DebtSource.MANUAL
    description: Optional[str] = None
    created_by: Optional[str] = None

    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None
    settlement_id: Optional[str] = None
    # Set by create_and_close_debt: what was actually paid
    cleared_amount_cents: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.status == DebtStatus.OPEN

    def is_well_formed(self) -> bool:
        """Whether stored data still satisfies the debt invariants."""
        return (
            bool(self.debtor_id)
            and bool(self.creditor_id)
            and self.debtor_id != self.creditor_id
            and self.amount_cents > 0
        )
