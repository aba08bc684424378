"""
Settlement transaction processor.

Two settlement protocols, both kept:

A. settle_debt: close an existing open debt.
B. create_and_close_debt: record a payment that had no debt behind it by
   creating a debt and closing it in the same transaction, then applying an
   additive balance delta.

Both write, inside one transaction, a hidden settlement record shaped like
an expense (amount = 2x the debt, paid by the creditor, split between
debtor and creditor), a Transfer, and an audit entry. Any failure aborts
the whole transaction.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar

from app.core.config import settings
from app.core.exceptions import (
    AlreadyExistsError,
    FailedPreconditionError,
    InternalLedgerError,
    InvalidArgumentError,
    LedgerError,
    NotFoundError,
    PermissionDeniedError,
)
from app.db.session import run_in_transaction
from app.models.action import ActionType, AuditLogEntry
from app.models.base import new_id
from app.models.debt import Debt, DebtSource, DebtStatus
from app.models.expense import Expense, ExpenseKind
from app.models.transfer import Transfer
from app.repositories.action_repo import ActionRepository
from app.repositories.debt_repo import DebtRepository, validate_debt_fields
from app.repositories.expense_repo import ExpenseRepository, TransferRepository
from app.repositories.member_repo import MemberRepository
from app.schemas.ledger import ExpenseRecordedResponse
from app.schemas.settlement import CreateAndCloseDebtResponse, SettleDebtResponse
from app.services.balance_service import BalanceService
from app.services.balance_sources import split_evenly

logger = logging.getLogger(__name__)

T = TypeVar("T")

SETTLEMENT_TITLE = "Debt settlement"
SETTLEMENT_CATEGORY = "settlement"


def build_settlement_record(
    apartment_id: str,
    debtor_id: str,
    creditor_id: str,
    amount_cents: int,
    debt_id: str,
    actor_id: str,
    description: Optional[str] = None
) -> Expense:
    """
    Hidden expense that cancels a debt for even-split readers.

    The creditor "pays" twice the debt, split between the two parties:
    the creditor's half cancels against what they fronted and the debtor
    is left owing exactly the debt amount, which mirrors the debt being
    closed. Kept for readers that only understand expenses.
    """
    return Expense(
        apartment_id=apartment_id,
        title=SETTLEMENT_TITLE,
        amount_cents=2 * amount_cents,
        paid_by=creditor_id,
        participants=[debtor_id, creditor_id],
        category=SETTLEMENT_CATEGORY,
        kind=ExpenseKind.SETTLEMENT,
        is_visible=False,
        linked_debt_id=debt_id,
        created_by=actor_id,
        description=description
    )


class SettlementService:
    """Only this service changes a debt's status."""

    def __init__(self, db):
        self.db = db
        self.debt_repo = DebtRepository(db)
        self.expense_repo = ExpenseRepository(db)
        self.transfer_repo = TransferRepository(db)
        self.member_repo = MemberRepository(db)
        self.action_repo = ActionRepository(db)
        self.balance_service = BalanceService(db)

    # =========================================================================
    # Protocol A: direct close
    # =========================================================================

    async def settle_debt(
        self,
        apartment_id: str,
        debt_id: str,
        actor_id: str,
        idempotency_key: Optional[str] = None
    ) -> SettleDebtResponse:
        """
        Close an open debt and write its settlement record.

        Raises:
            PermissionDeniedError: actor is not a member of the apartment
            NotFoundError: no such debt in this apartment
            FailedPreconditionError: debt already closed (ALREADY_CLOSED) or
                its stored data is malformed (DEBT_MALFORMED)
        """
        _require_ids(apartment_id=apartment_id, debt_id=debt_id, actor_id=actor_id)

        async def txn(session) -> SettleDebtResponse:
            await self._require_member(apartment_id, actor_id, session)

            replay = await self._replay(
                apartment_id, idempotency_key, ActionType.DEBT_CLOSED,
                {"debt_id": debt_id}, session
            )
            if replay is not None:
                return SettleDebtResponse(
                    debt_id=replay.debt_id,
                    settlement_id=replay.details.get("settlement_id"),
                    transfer_id=replay.details.get("transfer_id"),
                    log_id=replay.id,
                    replayed=True
                )

            debt =await self.debt_repo.get(debt_id, session=session)
            if debt is None or debt.apartment_id != apartment_id:
                raise NotFoundError("Debt not found", details={"debt_id": debt_id})
            if not debt.is_open:
                raise FailedPreconditionError(
                    "This debt was already settled",
                    reason="ALREADY_CLOSED",
                    details={"debt_id": debt_id}
                )
            if not debt.is_well_formed():
                raise FailedPreconditionError(
                    "Stored debt data is malformed",
                    reason="DEBT_MALFORMED",
                    details={"debt_id": debt_id}
                )

            settlement = build_settlement_record(
                apartment_id, debt.debtor_id, debt.creditor_id,
                debt.amount_cents, debt.id, actor_id, debt.description
            )
            transfer = Transfer(
                apartment_id=apartment_id,
                from_user_id=debt.debtor_id,
                to_user_id=debt.creditor_id,
                amount_cents=debt.amount_cents,
                debt_id=debt.id,
                settlement_id=settlement.id,
                created_by=actor_id
            )

            # Conditional close first: a concurrent settle fails here, before
            # anything else is written.
            await self.debt_repo.close(debt.id, actor_id, settlement.id, session=session)
            await self.expense_repo.insert(settlement, session=session)
            await self.transfer_repo.insert(transfer, session=session)

            entry = AuditLogEntry(
                apartment_id=apartment_id,
                type=ActionType.DEBT_CLOSED,
                actor_id=actor_id,
                amount_cents=debt.amount_cents,
                debt_id=debt.id,
                idempotency_key=idempotency_key,
                details={
                    "settlement_id": settlement.id,
                    "transfer_id": transfer.id,
                    "debtor_id": debt.debtor_id,
                    "creditor_id": debt.creditor_id,
                }
            )
            await self.action_repo.append(entry, session=session)

            return SettleDebtResponse(
                debt_id=debt.id,
                settlement_id=settlement.id,
                transfer_id=transfer.id,
                log_id=entry.id
            )

        result = await self._run("settle_debt", apartment_id, txn)
        if not result.replayed:
            logger.info(
                "Debt %s settled in apartment %s by %s (settlement %s, log %s)",
                result.debt_id, apartment_id, actor_id, result.settlement_id, result.log_id
            )
            await self._after_commit(apartment_id)
        return result

    # =========================================================================
    # Protocol B: create and immediately close
    # =========================================================================

    async def create_and_close_debt(
        self,
        from_user_id: str,
        to_user_id: str,
        amount_cents: int,
        apartment_id: str,
        actor_id: str,
        debt_id: Optional[str] = None,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None
    ) -> CreateAndCloseDebtResponse:
        """
        Record a settled payment from from_user to to_user.

        Balance rows move additively (debtor -amount, creditor +amount)
        instead of being recomputed. Callers must pass a fresh debt_id per
        attempt; a reused id fails with AlreadyExistsError.
        """
        _require_ids(apartment_id=apartment_id, actor_id=actor_id)
        validate_debt_fields(from_user_id, to_user_id, amount_cents)

        async def txn(session) -> CreateAndCloseDebtResponse:
            await self._require_member(apartment_id, actor_id, session)

            request = {"from_user_id": from_user_id, "to_user_id": to_user_id, "amount_cents": amount_cents}
            if debt_id:
                request["debt_id"] = debt_id
            replay = await self._replay(
                apartment_id, idempotency_key, ActionType.DEBT_CREATED_AND_CLOSED, request, session
            )
            if replay is not None:
                return CreateAndCloseDebtResponse(
                    debt_id=replay.debt_id,
                    settlement_id=replay.details.get("settlement_id"),
                    transfer_id=replay.details.get("transfer_id"),
                    log_id=replay.id,
                    replayed=True
                )

            await self._require_parties(apartment_id, [from_user_id, to_user_id], session)

            debt = Debt(
                apartment_id=apartment_id,
                debtor_id=from_user_id,
                creditor_id=to_user_id,
                amount_cents=amount_cents,
                source=DebtSource.SETTLEMENT,
                description=description,
                created_by=actor_id
            )
            if debt_id:
                debt.id = debt_id

            settlement = build_settlement_record(
                apartment_id, from_user_id, to_user_id,
                amount_cents, debt.id, actor_id, description
            )
            transfer = Transfer(
                apartment_id=apartment_id,
                from_user_id=from_user_id,
                to_user_id=to_user_id,
                amount_cents=amount_cents,
                debt_id=debt.id,
                settlement_id=settlement.id,
                created_by=actor_id
            )

            await self.debt_repo.create(debt, session=session)
            await self.debt_repo.close(
                debt.id, actor_id, settlement.id,
                cleared_amount_cents=amount_cents,
                session=session
            )
            await self.expense_repo.insert(settlement, session=session)
            await self.transfer_repo.insert(transfer, session=session)
            await self.balance_service.apply_delta(
                apartment_id,
                {from_user_id: -amount_cents, to_user_id: amount_cents},
                session=session
            )

            entry = AuditLogEntry(
                apartment_id=apartment_id,
                type=ActionType.DEBT_CREATED_AND_CLOSED,
                actor_id=actor_id,
                amount_cents=amount_cents,
                debt_id=debt.id,
                idempotency_key=idempotency_key,
                details={
                    "settlement_id": settlement.id,
                    "transfer_id": transfer.id,
                    "from_user_id": from_user_id,
                    "to_user_id": to_user_id,
                }
            )
            await self.action_repo.append(entry, session=session)

            return CreateAndCloseDebtResponse(
                debt_id=debt.id,
                settlement_id=settlement.id,
                transfer_id=transfer.id,
                log_id=entry.id
            )

        result = await self._run("create_and_close_debt", apartment_id, txn)
        if not result.replayed:
            logger.info(
                "Debt %s created and closed in apartment %s: %s paid %s %d cents (log %s)",
                result.debt_id, apartment_id, from_user_id, to_user_id, amount_cents, result.log_id
            )
        return result

    # =========================================================================
    # Debt creation
    # =========================================================================

    async def record_debt(
        self,
        apartment_id: str,
        debtor_id: str,
        creditor_id: str,
        amount_cents: int,
        actor_id: str,
        description: Optional[str] = None,
        debt_id: Optional[str] = None,
        idempotency_key: Optional[str] = None
    ) -> Debt:
        """Record an open debt directly."""
        _require_ids(apartment_id=apartment_id, actor_id=actor_id)
        validate_debt_fields(debtor_id, creditor_id, amount_cents)

        async def txn(session) -> Debt:
            await self._require_member(apartment_id, actor_id, session)

            request = {"debtor_id": debtor_id, "creditor_id": creditor_id, "amount_cents": amount_cents}
            if debt_id:
                request["debt_id"] = debt_id
            replay = await self._replay(apartment_id, idempotency_key, ActionType.DEBT_CREATED, request, session)
            if replay is not None:
                return await self.debt_repo.get(replay.debt_id, session=session)

            await self._require_parties(apartment_id, [debtor_id, creditor_id], session)

            debt = Debt(
                apartment_id=apartment_id,
                debtor_id=debtor_id,
                creditor_id=creditor_id,
                amount_cents=amount_cents,
                source=DebtSource.MANUAL,
                description=description,
                created_by=actor_id
            )
            if debt_id:
                debt.id = debt_id
            await self.debt_repo.create(debt, session=session)

            await self.action_repo.append(AuditLogEntry(
                apartment_id=apartment_id,
                type=ActionType.DEBT_CREATED,
                actor_id=actor_id,
                amount_cents=amount_cents,
                debt_id=debt.id,
                idempotency_key=idempotency_key,
                details={"debtor_id": debtor_id, "creditor_id": creditor_id}
            ), session=session)
            return debt

        debt = await self._run("record_debt", apartment_id, txn)
        logger.info("Debt %s recorded in apartment %s by %s", debt.id, apartment_id, actor_id)
        await self._after_commit(apartment_id)
        return debt

    async def record_expense(
        self,
        apartment_id: str,
        title: str,
        amount_cents: int,
        paid_by: str,
        participants: List[str],
        actor_id: str,
        category: str = "other",
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None
    ) -> ExpenseRecordedResponse:
        """
        Record a shared expense and one open debt per non-paying participant.

        Shares use the same even split as the expense-history view, so both
        balance sources agree on a fresh expense.
        """
        _require_ids(apartment_id=apartment_id, actor_id=actor_id, paid_by=paid_by)
        if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
            raise InvalidArgumentError(
                f"Amount must be a positive number of cents, got {amount_cents!r}",
                reason="NON_POSITIVE_AMOUNT"
            )
        participant_ids = sorted({p for p in participants if p})
        if not participant_ids:
            raise InvalidArgumentError("At least one participant is required", reason="NO_PARTICIPANTS")

        async def txn(session) -> ExpenseRecordedResponse:
            await self._require_member(apartment_id, actor_id, session)

            request = {
                "title": title,
                "amount_cents": amount_cents,
                "paid_by": paid_by,
                "participants": participant_ids,
            }
            replay = await self._replay(apartment_id, idempotency_key, ActionType.EXPENSE_RECORDED, request, session)
            if replay is not None:
                return ExpenseRecordedResponse(
                    expense_id=replay.details.get("expense_id"),
                    debt_ids=replay.details.get("debt_ids", []),
                    log_id=replay.id,
                    replayed=True
                )

            await self._require_parties(apartment_id, [paid_by, *participant_ids], session)

            expense = Expense(
                apartment_id=apartment_id,
                title=title,
                amount_cents=amount_cents,
                paid_by=paid_by,
                participants=participant_ids,
                category=category,
                created_by=actor_id,
                description=description
            )
            await self.expense_repo.insert(expense, session=session)

            debt_ids = []
            for user_id, share in split_evenly(amount_cents, participant_ids).items():
                if user_id == paid_by or share <= 0:
                    continue
                debt = Debt(
                    apartment_id=apartment_id,
                    debtor_id=user_id,
                    creditor_id=paid_by,
                    amount_cents=share,
                    source=DebtSource.EXPENSE_SPLIT,
                    description=title,
                    created_by=actor_id
                )
                debt_ids.append(await self.debt_repo.create(debt, session=session))

            entry = AuditLogEntry(
                apartment_id=apartment_id,
                type=ActionType.EXPENSE_RECORDED,
                actor_id=actor_id,
                amount_cents=amount_cents,
                idempotency_key=idempotency_key,
                details={
                    "expense_id": expense.id,
                    "debt_ids": debt_ids,
                    "title": title,
                    "paid_by": paid_by,
                    "participants": participant_ids,
                }
            )
            await self.action_repo.append(entry, session=session)

            return ExpenseRecordedResponse(expense_id=expense.id, debt_ids=debt_ids, log_id=entry.id)

        result = await self._run("record_expense", apartment_id, txn)
        if not result.replayed:
            logger.info(
                "Expense %s recorded in apartment %s with %d debts (log %s)",
                result.expense_id, apartment_id, len(result.debt_ids), result.log_id
            )
            await self._after_commit(apartment_id)
        return result

    # =========================================================================
    # Reads
    # =========================================================================

    async def list_open_debts(self, apartment_id: str, actor_id: str) -> List[Debt]:
        await self._require_member(apartment_id, actor_id)
        return await self.debt_repo.list_open(apartment_id)

    async def list_debts(
        self,
        apartment_id: str,
        actor_id: str,
        status: Optional[DebtStatus] = None
    ) -> List[Debt]:
        """Debt history, open and closed unless filtered."""
        await self._require_member(apartment_id, actor_id)
        return await self.debt_repo.list_for_apartment(apartment_id, status=status)

    async def list_actions(self, apartment_id: str, actor_id: str, limit: int = 100) -> List[AuditLogEntry]:
        """Most recent audit entries first."""
        await self._require_member(apartment_id, actor_id)
        return await self.action_repo.list_for_apartment(apartment_id, limit=limit)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _run(self, operation: str, apartment_id: str, txn: Callable[..., Awaitable[T]]) -> T:
        """Run txn in a transaction and normalize failures to ledger errors."""
        try:
            return await run_in_transaction(self.db, txn)
        except LedgerError as exc:
            logger.warning(
                "%s rejected in apartment %s: %s %s (log %s)",
                operation, apartment_id, exc.code, exc.reason or exc.message, exc.log_id
            )
            raise
        except Exception as exc:
            error = InternalLedgerError(f"{operation} failed", details={"apartment_id": apartment_id})
            logger.exception("%s failed in apartment %s (log %s)", operation, apartment_id, error.log_id)
            raise error from exc

    async def _after_commit(self, apartment_id: str) -> None:
        """Synchronous balance refresh. The write is already committed, so errors only get logged."""
        if not settings.RECOMPUTE_AFTER_WRITE:
            return
        try:
            await self.balance_service.recompute(apartment_id)
        except Exception:
            logger.exception("Post-commit balance recompute failed for apartment %s", apartment_id)

    async def _replay(
        self,
        apartment_id: str,
        idempotency_key: Optional[str],
        expected_type: ActionType,
        request: Dict[str, Any],
        session
    ) -> Optional[AuditLogEntry]:
        """
        Audit entry of an earlier call with the same key, if any.

        The key only replays the exact same request: same operation and the
        same values for every field in ``request``.
        """
        if not idempotency_key:
            return None
        entry = await self.action_repo.find_by_idempotency_key(apartment_id, idempotency_key, session=session)
        if entry is None:
            return None
        if entry.type != expected_type:
            raise AlreadyExistsError(
                "Idempotency key was already used for a different operation",
                reason="IDEMPOTENCY_KEY_REUSED",
                details={"idempotency_key": idempotency_key, "action_type": entry.type}
            )

        recorded = {"debt_id": entry.debt_id, "amount_cents": entry.amount_cents, **entry.details}
        mismatched = sorted(field for field, value in request.items() if recorded.get(field) != value)
        if mismatched:
            raise AlreadyExistsError(
                "Idempotency key was already used for a different request",
                reason="IDEMPOTENCY_KEY_REUSED",
                details={"idempotency_key": idempotency_key, "fields": mismatched}
            )
        return entry

    async def _require_member(self, apartment_id: str, actor_id: str, session=None) -> None:
        if not await self.member_repo.is_member(apartment_id, actor_id, session=session):
            raise PermissionDeniedError(
                "Actor is not a member of this apartment",
                details={"apartment_id": apartment_id}
            )

    async def _require_parties(self, apartment_id: str, user_ids: Iterable[str], session) -> None:
        for user_id in sorted(set(user_ids)):
            if not await self.member_repo.is_member(apartment_id, user_id, session=session):
                raise InvalidArgumentError(
                    "User is not a member of this apartment",
                    reason="NOT_A_MEMBER",
                    details={"user_id": user_id}
                )


def _require_ids(**ids: Optional[str]) -> None:
    missing = sorted(name for name, value in ids.items() if not value)
    if missing:
        raise InvalidArgumentError(
            f"Missing required field(s): {', '.join(missing)}",
            reason="MISSING_FIELD",
            details={"fields": missing}
        )
