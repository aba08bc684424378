from typing import List

from fastapi import APIRouter, Depends, Query

from app.core.auth import Actor, get_current_actor
from app.db.session import get_database
from app.schemas.ledger import ActionResponse
from app.services.settlement_service import SettlementService

router = APIRouter()


@router.get("", response_model=List[ActionResponse])
async def list_actions(
    apartment_id: str,
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(get_current_actor),
    db=Depends(get_database)
):
    """Apartment activity log, newest first"""
    entries = await SettlementService(db).list_actions(apartment_id, actor.user_id, limit=limit)
    return [ActionResponse(**entry.model_dump()) for entry in entries]
