from datetime import datetime

from pydantic import BaseModel, Field, ConfigDict

from app.models.base import _utcnow


def balance_id(apartment_id: str, user_id: str) -> str:
    return f"{apartment_id}_{user_id}"


class Balance(BaseModel):
    """
    Materialized per-(apartment, user) net position.

    net_cents > 0 means the apartment owes the user; < 0 means the user owes.
    Derived data: rebuilt by the materializer, never edited by hand.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    apartment_id: str
    user_id: str
    net_cents: int = 0
    has_open_debts: bool = False
    updated_at: datetime = Field(default_factory=_utcnow)
