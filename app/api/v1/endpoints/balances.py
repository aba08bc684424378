from typing import List

from fastapi import APIRouter, Depends

from app.core.auth import Actor, get_current_actor
from app.db.session import get_database
from app.schemas.balance import (
    BalanceResponse,
    BalanceSourceName,
    RemovalStatusResponse,
    SimplifiedBalancesResponse,
    SimplifyRequest,
    SimplifyResponse,
)
from app.services.balance_service import BalanceService
from app.services.simplify import simplify

router = APIRouter()


@router.get("/apartments/{apartment_id}/balances", response_model=List[BalanceResponse])
async def get_balances(
    apartment_id: str,
    actor: Actor = Depends(get_current_actor),
    db=Depends(get_database)
):
    """Materialized balances of the apartment"""
    balances = await BalanceService(db).get_balances(apartment_id, actor.user_id)
    return [BalanceResponse(**b.model_dump()) for b in balances]


@router.post("/apartments/{apartment_id}/balances/recompute", response_model=List[BalanceResponse])
async def recompute_balances(
    apartment_id: str,
    actor: Actor = Depends(get_current_actor),
    db=Depends(get_database)
):
    """Rebuild balances from the open debts"""
    balances = await BalanceService(db).recompute_balances(apartment_id, actor.user_id)
    return [BalanceResponse(**b.model_dump()) for b in balances]


@router.get("/apartments/{apartment_id}/balances/simplified", response_model=SimplifiedBalancesResponse)
async def get_simplified_balances(
    apartment_id: str,
    source: BalanceSourceName = BalanceSourceName.OPEN_DEBTS,
    actor: Actor = Depends(get_current_actor),
    db=Depends(get_database)
):
    """Suggested transfers that would settle the apartment"""
    return await BalanceService(db).simplified(apartment_id, actor.user_id, source)


@router.get("/apartments/{apartment_id}/members/{user_id}/removal-status", response_model=RemovalStatusResponse)
async def get_removal_status(
    apartment_id: str,
    user_id: str,
    actor: Actor = Depends(get_current_actor),
    db=Depends(get_database)
):
    """Whether a member has a zero balance and no open debts"""
    return await BalanceService(db).member_removal_status(apartment_id, user_id, actor.user_id)


@router.post("/simplify", response_model=SimplifyResponse)
async def simplify_balances(
    request: SimplifyRequest,
    actor: Actor = Depends(get_current_actor)
):
    """Simplify arbitrary signed balances (no storage access)"""
    return SimplifyResponse(transfers=simplify(request.balances))
