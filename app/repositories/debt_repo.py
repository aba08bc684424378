"""
DebtRepository - durable store for pairwise debts.

The debt invariants are enforced here, at the boundary:
1. amount_cents must be positive
2. debtor and creditor must be distinct, non-empty ids
3. a debt is created open and closed exactly once
4. a closed debt is never written again

Every method takes an optional client session so it can run inside the
same transaction as the membership, expense and audit collections.
"""

import logging
from typing import List, Optional
from datetime import datetime, timezone

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.core.exceptions import (
    AlreadyExistsError,
    FailedPreconditionError,
    InvalidArgumentError,
)
from app.models.debt import Debt, DebtStatus
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError

logger = logging.getLogger(__name__)


def validate_debt_fields(debtor_id: str, creditor_id: str, amount_cents: int) -> None:
    """Reject debts that would break the record invariants."""
    if not debtor_id or not creditor_id:
        raise InvalidArgumentError("Debtor and creditor are required", reason="MISSING_PARTY")
    if debtor_id == creditor_id:
        raise InvalidArgumentError("Debtor and creditor must differ", reason="SAME_PARTY")
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise InvalidArgumentError(
            f"Amount must be a positive number of cents, got {amount_cents!r}",
            reason="NON_POSITIVE_AMOUNT"
        )


class DebtRepository:
    """Repository for debts (financial obligations)."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["debts"]

    async def create(self, debt: Debt, session=None) -> str:
        """
        Insert a new open debt and return its id.

        Raises InvalidArgumentError on malformed data and AlreadyExistsError
        if a debt with the same id was already written.
        """
        validate_debt_fields(debt.debtor_id, debt.creditor_id, debt.amount_cents)
        if debt.status != DebtStatus.OPEN:
            raise InvalidArgumentError("New debts must be open", reason="NOT_OPEN")
        if not debt.apartment_id:
            raise InvalidArgumentError("Apartment id is required", reason="MISSING_APARTMENT")

        try:
            await self.collection.insert_one(debt.to_document(), session=session)
        except DuplicateKeyError:
            raise AlreadyExistsError(f"Debt {debt.id} already exists", details={"debt_id": debt.id})
        return debt.id

    async def get(self, debt_id: str, session=None) -> Optional[Debt]:
        """Get a debt by id, or None."""
        doc = await self.collection.find_one({"_id": debt_id}, session=session)
        if not doc:
            return None
        try:
            return Debt(**doc)
        except ValidationError:
            raise FailedPreconditionError(
                "Stored debt data is malformed",
                reason="DEBT_MALFORMED",
                details={"debt_id": debt_id}
            )

    async def list_open(self, apartment_id: str, session=None) -> List[Debt]:
        """All open debts of an apartment, oldest first."""
        return await self.list_for_apartment(apartment_id, DebtStatus.OPEN, session=session)

    async def list_for_apartment(
        self,
        apartment_id: str,
        status: Optional[DebtStatus] = None,
        session=None
    ) -> List[Debt]:
        query = {"apartment_id": apartment_id}
        if status is not None:
            query["status"] = DebtStatus(status).value

        cursor = self.collection.find(query, session=session).sort("created_at", 1)
        docs = await cursor.to_list(None)

        debts = []
        for doc in docs:
            try:
                debts.append(Debt(**doc))
            except ValidationError:
                # One bad document must not block the rest of the apartment
                logger.warning("Skipping malformed debt %s in apartment %s", doc.get("_id"), apartment_id)
        return debts

    async def close(
        self,
        debt_id: str,
        closed_by: str,
        settlement_id: Optional[str] = None,
        cleared_amount_cents: Optional[int] = None,
        session=None
    ) -> Debt:
        """
        Transition an open debt to closed.

        The update is conditional on status == open, so of two concurrent
        closes exactly one matches. Returns the debt as it was before.
        Raises FailedPreconditionError if the debt is not open (or missing).
        """
        updates = {
            "status": DebtStatus.CLOSED.value,
            "closed_at": datetime.now(timezone.utc),
            "closed_by": closed_by,
        }
        if settlement_id is not None:
            updates["settlement_id"] = settlement_id
        if cleared_amount_cents is not None:
            updates["cleared_amount_cents"] = cleared_amount_cents

        previous = await self.collection.find_one_and_update(
            {"_id": debt_id, "status": DebtStatus.OPEN.value},
            {"$set": updates},
            session=session
        )
        if previous is None:
            raise FailedPreconditionError(
                "This debt was already settled",
                reason="ALREADY_CLOSED",
                details={"debt_id": debt_id}
            )
        return Debt(**previous)
