from typing import Optional

from pydantic import BaseModel, Field


class SettleDebtRequest(BaseModel):
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=128)


class SettleDebtResponse(BaseModel):
    debt_id: str
    settlement_id: str
    transfer_id: Optional[str] = None
    log_id: str
    replayed: bool = False


class CreateAndCloseDebtRequest(BaseModel):
    from_user_id: str = Field(..., min_length=1)
    to_user_id: str = Field(..., min_length=1)
    amount_cents: int
    # Must be fresh on every attempt; resubmitting the same id fails with already-exists
    debt_id: Optional[str] = Field(None, min_length=1, max_length=64)
    description: Optional[str] = Field(None, max_length=500)
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=128)


class CreateAndCloseDebtResponse(BaseModel):
    debt_id: str
    settlement_id: str
    transfer_id: Optional[str] = None
    log_id: str
    replayed: bool = False
