from fastapi import APIRouter, Depends, status

from app.core.auth import Actor, get_current_actor
from app.db.session import get_database
from app.schemas.ledger import ExpenseCreate, ExpenseRecordedResponse
from app.services.settlement_service import SettlementService

router = APIRouter()


@router.post("", response_model=ExpenseRecordedResponse, status_code=status.HTTP_201_CREATED)
async def record_expense(
    apartment_id: str,
    expense_in: ExpenseCreate,
    actor: Actor = Depends(get_current_actor),
    db=Depends(get_database)
):
    """Record a shared expense and the debts it creates"""
    return await SettlementService(db).record_expense(
        apartment_id=apartment_id,
        title=expense_in.title,
        amount_cents=expense_in.amount_cents,
        paid_by=expense_in.paid_by,
        participants=expense_in.participants,
        actor_id=actor.user_id,
        category=expense_in.category,
        description=expense_in.description,
        idempotency_key=expense_in.idempotency_key
    )
