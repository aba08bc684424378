from enum import Enum
from typing import List, Optional

from app.models.base import MongoModel


class ExpenseKind(str, Enum):
    EXPENSE = "expense"
    SETTLEMENT = "settlement"


class Expense(MongoModel):
    """
    Shared expense: paid_by fronted amount_cents, split evenly over participants.

    Settlement records reuse this shape (kind=settlement, is_visible=False).
    Their amount is twice the settled debt and they are paid by the creditor,
    so a reader that only understands even-split expenses sees the pair
    {debtor, creditor} move by exactly the debt amount.
    """

    apartment_id: str
    title: str
    amount_cents: int
    paid_by: str
    participants: List[str]
    category: str = "other"
    kind: ExpenseKind = ExpenseKind.EXPENSE
    is_visible: bool = True
    linked_debt_id: Optional[str] = None
    created_by: Optional[str] = None
    description: Optional[str] = None
