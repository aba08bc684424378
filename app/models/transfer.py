from typing import Optional

from app.models.base import MongoModel


class Transfer(MongoModel):
    """Money paid directly from one member to another. No split semantics."""

    apartment_id: str
    from_user_id: str
    to_user_id: str
    amount_cents: int
    debt_id: Optional[str] = None
    settlement_id: Optional[str] = None
    created_by: Optional[str] = None
