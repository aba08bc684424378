from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class DebtCreate(BaseModel):
    """Request body to record a debt directly."""
    debtor_id: str = Field(..., min_length=1)
    creditor_id: str = Field(..., min_length=1)
    amount_cents: int
    description: Optional[str] = Field(None, max_length=500)
    debt_id: Optional[str] = Field(None, min_length=1, max_length=64)
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=128)


class DebtResponse(BaseModel):
    id: str
    apartment_id: str
    debtor_id: str
    creditor_id: str
    amount_cents: int
    status: str
    source: str
    description: Optional[str] = None
    created_at: datetime
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None
    settlement_id: Optional[str] = None
    cleared_amount_cents: Optional[int] = None


class ActionResponse(BaseModel):
    id: str
    apartment_id: str
    type: str
    actor_id: str
    amount_cents: Optional[int] = None
    debt_id: Optional[str] = None
    details: Dict[str, Any] = {}
    created_at: datetime


class ExpenseCreate(BaseModel):
    """A shared expense: paid_by fronted the money, split evenly over participants."""
    title: str = Field(..., min_length=1, max_length=200)
    amount_cents: int
    paid_by: str = Field(..., min_length=1)
    participants: List[str] = Field(..., min_length=1)
    category: str = "other"
    description: Optional[str] = Field(None, max_length=500)
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=128)


class ExpenseRecordedResponse(BaseModel):
    expense_id: str
    debt_ids: List[str]
    log_id: str
    replayed: bool = False
