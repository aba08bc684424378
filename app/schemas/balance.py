from datetime import datetime
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, Field


class BalanceSourceName(str, Enum):
    OPEN_DEBTS = "open_debts"
    EXPENSE_HISTORY = "expense_history"


class SuggestedTransfer(BaseModel):
    """One payment of a simplification plan: from_user pays to_user."""
    from_user_id: str
    to_user_id: str
    amount_cents: int = Field(gt=0)


class BalanceResponse(BaseModel):
    apartment_id: str
    user_id: str
    net_cents: int
    has_open_debts: bool
    updated_at: datetime


class SimplifyRequest(BaseModel):
    """Signed net balances in cents, keyed by user id."""
    balances: Dict[str, int]


class SimplifyResponse(BaseModel):
    transfers: List[SuggestedTransfer]


class SimplifiedBalancesResponse(BaseModel):
    apartment_id: str
    source: BalanceSourceName
    balances: Dict[str, int]
    transfers: List[SuggestedTransfer]


class RemovalStatusResponse(BaseModel):
    apartment_id: str
    user_id: str
    net_cents: int
    has_open_debts: bool
    can_be_removed: bool
