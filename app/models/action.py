"""
Audit log entries (``actions`` collection).

Append-only. One entry per mutating call; the entry id is the log id and is
always freshly minted, even when a caller retries with the same
idempotency key.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import Field

from app.models.base import MongoModel


class ActionType(str, Enum):
    DEBT_CREATED = "debt_created"
    DEBT_CLOSED = "debt_closed"
    DEBT_CREATED_AND_CLOSED = "debt_created_and_closed"
    EXPENSE_RECORDED = "expense_recorded"
    BALANCES_RECOMPUTED = "balances_recomputed"


class AuditLogEntry(MongoModel):
    apartment_id: str
    type: ActionType
    actor_id: str
    amount_cents: Optional[int] = None
    debt_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
