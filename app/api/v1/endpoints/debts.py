from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from app.core.auth import Actor, get_current_actor
from app.db.session import get_database
from app.models.debt import DebtStatus
from app.schemas.ledger import DebtCreate, DebtResponse
from app.schemas.settlement import (
    CreateAndCloseDebtRequest,
    CreateAndCloseDebtResponse,
    SettleDebtRequest,
    SettleDebtResponse,
)
from app.services.settlement_service import SettlementService

router = APIRouter()


@router.get("/open", response_model=List[DebtResponse])
async def list_open_debts(
    apartment_id: str,
    actor: Actor = Depends(get_current_actor),
    db=Depends(get_database)
):
    """Open debts of the apartment, oldest first"""
    debts = await SettlementService(db).list_open_debts(apartment_id, actor.user_id)
    return [DebtResponse(**debt.model_dump()) for debt in debts]


@router.get("", response_model=List[DebtResponse])
async def list_debts(
    apartment_id: str,
    debt_status: Optional[DebtStatus] = Query(None, alias="status"),
    actor: Actor = Depends(get_current_actor),
    db=Depends(get_database)
):
    """Debt history, optionally filtered by status"""
    debts = await SettlementService(db).list_debts(apartment_id, actor.user_id, status=debt_status)
    return [DebtResponse(**debt.model_dump()) for debt in debts]


@router.post("", response_model=DebtResponse, status_code=status.HTTP_201_CREATED)
async def record_debt(
    apartment_id: str,
    debt_in: DebtCreate,
    actor: Actor = Depends(get_current_actor),
    db=Depends(get_database)
):
    """Record a debt directly"""
    debt = await SettlementService(db).record_debt(
        apartment_id=apartment_id,
        debtor_id=debt_in.debtor_id,
        creditor_id=debt_in.creditor_id,
        amount_cents=debt_in.amount_cents,
        actor_id=actor.user_id,
        description=debt_in.description,
        debt_id=debt_in.debt_id,
        idempotency_key=debt_in.idempotency_key
    )
    return DebtResponse(**debt.model_dump())


@router.post("/create-and-close", response_model=CreateAndCloseDebtResponse, status_code=status.HTTP_201_CREATED)
async def create_and_close_debt(
    apartment_id: str,
    request: CreateAndCloseDebtRequest,
    actor: Actor = Depends(get_current_actor),
    db=Depends(get_database)
):
    """Record a payment with no prior debt: create a debt and close it at once"""
    return await SettlementService(db).create_and_close_debt(
        from_user_id=request.from_user_id,
        to_user_id=request.to_user_id,
        amount_cents=request.amount_cents,
        apartment_id=apartment_id,
        actor_id=actor.user_id,
        debt_id=request.debt_id,
        description=request.description,
        idempotency_key=request.idempotency_key
    )


@router.post("/{debt_id}/settle", response_model=SettleDebtResponse)
async def settle_debt(
    apartment_id: str,
    debt_id: str,
    request: SettleDebtRequest | None = None,
    actor: Actor = Depends(get_current_actor),
    db=Depends(get_database)
):
    """Close an open debt"""
    return await SettlementService(db).settle_debt(
        apartment_id=apartment_id,
        debt_id=debt_id,
        actor_id=actor.user_id,
        idempotency_key=request.idempotency_key if request else None
    )
