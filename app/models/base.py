from datetime import datetime, timezone

from bson import ObjectId
from pydantic import BaseModel, Field, ConfigDict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Server-minted document id (hex ObjectId)."""
    return str(ObjectId())


class MongoModel(BaseModel):
    id: str = Field(default_factory=new_id, alias="_id")
    created_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(
        populate_by_name=True,
        from_attributes=True,
        use_enum_values=True
    )

    def to_document(self) -> dict:
        """Dump for insertion, keeping ``_id`` as the key."""
        return self.model_dump(by_alias=True)
