from datetime import datetime, timezone
from typing import Dict, List

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.models.balance import Balance, balance_id


class BalanceRepository:
    """
    Materialized balance rows.

    Only the balance materializer may call the write methods.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["balances"]

    async def list_for_apartment(self, apartment_id: str, session=None) -> List[Balance]:
        cursor = self.collection.find({"apartment_id": apartment_id}, session=session).sort("user_id", 1)
        docs = await cursor.to_list(None)
        return [Balance(**doc) for doc in docs]

    async def get(self, apartment_id: str, user_id: str, session=None) -> Balance | None:
        doc = await self.collection.find_one({"_id": balance_id(apartment_id, user_id)}, session=session)
        if doc:
            return Balance(**doc)
        return None

    async def upsert(
        self,
        apartment_id: str,
        user_id: str,
        net_cents: int,
        has_open_debts: bool,
        session=None
    ) -> None:
        """Merge-write one row; fields not named here are preserved."""
        await self.collection.update_one(
            {"_id": balance_id(apartment_id, user_id)},
            {
                "$set": {
                    "apartment_id": apartment_id,
                    "user_id": user_id,
                    "net_cents": net_cents,
                    "has_open_debts": has_open_debts,
                    "updated_at": datetime.now(timezone.utc),
                }
            },
            upsert=True,
            session=session
        )

    async def increment(self, apartment_id: str, deltas: Dict[str, int], session=None) -> None:
        """Additive update of net_cents per user (creates missing rows)."""
        now = datetime.now(timezone.utc)
        for user_id, delta in deltas.items():
            await self.collection.update_one(
                {"_id": balance_id(apartment_id, user_id)},
                {
                    "$inc": {"net_cents": delta},
                    "$set": {
                        "apartment_id": apartment_id,
                        "user_id": user_id,
                        "updated_at": now,
                    },
                    "$setOnInsert": {"has_open_debts": False},
                },
                upsert=True,
                session=session
            )
