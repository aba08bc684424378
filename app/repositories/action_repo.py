from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from app.core.exceptions import AlreadyExistsError
from app.models.action import AuditLogEntry


class ActionRepository:
    """Append-only audit log: entries are never updated or deleted."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["actions"]

    async def append(self, entry: AuditLogEntry, session=None) -> str:
        try:
            await self.collection.insert_one(entry.to_document(), session=session)
        except DuplicateKeyError:
            raise AlreadyExistsError(
                "Request with this idempotency key was already processed",
                reason="DUPLICATE_IDEMPOTENCY_KEY",
                details={"idempotency_key": entry.idempotency_key}
            )
        return entry.id

    async def find_by_idempotency_key(
        self,
        apartment_id: str,
        idempotency_key: str,
        session=None
    ) -> Optional[AuditLogEntry]:
        doc = await self.collection.find_one(
            {"apartment_id": apartment_id, "idempotency_key": idempotency_key},
            session=session
        )
        if doc:
            return AuditLogEntry(**doc)
        return None

    async def list_for_apartment(self, apartment_id: str, limit: int = 100) -> List[AuditLogEntry]:
        cursor = self.collection.find({"apartment_id": apartment_id}).sort("created_at", -1)
        docs = await cursor.to_list(limit)
        return [AuditLogEntry(**doc) for doc in docs]
