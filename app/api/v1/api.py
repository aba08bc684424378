from fastapi import APIRouter
from app.api.v1.endpoints import actions, balances, debts, expenses

api_router = APIRouter()

api_router.include_router(debts.router, prefix="/apartments/{apartment_id}/debts", tags=["debts"])
api_router.include_router(expenses.router, prefix="/apartments/{apartment_id}/expenses", tags=["expenses"])
api_router.include_router(actions.router, prefix="/apartments/{apartment_id}/actions", tags=["actions"])
api_router.include_router(balances.router, tags=["balances"])
