from motor.motor_asyncio import AsyncIOMotorDatabase

from app.models.member import membership_id


class MemberRepository:
    """Read access to apartment membership (owned by the apartment subsystem)."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["apartment_members"]

    async def is_member(self, apartment_id: str, user_id: str, session=None) -> bool:
        if not apartment_id or not user_id:
            return False
        doc = await self.collection.find_one(
            {"_id": membership_id(apartment_id, user_id)},
            session=session
        )
        return doc is not None
