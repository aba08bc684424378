from typing import List

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.models.expense import Expense
from app.models.transfer import Transfer


class ExpenseRepository:
    """Expense and settlement-record database operations."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["expenses"]

    async def insert(self, expense: Expense, session=None) -> str:
        await self.collection.insert_one(expense.to_document(), session=session)
        return expense.id

    async def list_for_apartment(
        self,
        apartment_id: str,
        include_hidden: bool = False,
        session=None
    ) -> List[Expense]:
        """Expenses of an apartment, oldest first. Hidden records are opt-in."""
        query = {"apartment_id": apartment_id}
        if not include_hidden:
            query["is_visible"] = True

        cursor = self.collection.find(query, session=session).sort("created_at", 1)
        docs = await cursor.to_list(None)
        return [Expense(**doc) for doc in docs]


class TransferRepository:
    """Direct member-to-member payments."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["transfers"]

    async def insert(self, transfer: Transfer, session=None) -> str:
        await self.collection.insert_one(transfer.to_document(), session=session)
        return transfer.id

    async def list_for_apartment(self, apartment_id: str, session=None) -> List[Transfer]:
        cursor = self.collection.find({"apartment_id": apartment_id}, session=session).sort("created_at", 1)
        docs = await cursor.to_list(None)
        return [Transfer(**doc) for doc in docs]
