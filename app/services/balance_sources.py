"""
Two ways of deriving who owes what in an apartment.

OpenDebtBalanceSource is authoritative and backs the materialized balances.
ExpenseHistoryBalanceSource is the legacy view built from the expense list.
Each has exactly one source of truth:

- the open-debt view only sees open, well-formed debts, so a closed debt
  counts as zero;
- the expense-history view only sees visible expenses plus the transfers
  that pay off debts split from those expenses. Hidden 2x settlement records
  are never counted (they would add the settled amount a second time on top
  of the transfer), and neither are transfers for manual or create-and-close
  debts, which have no expense in this view to cancel against.

Callers pick one source per figure and never mix the two.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Set, Tuple

from app.models.debt import Debt, DebtSource, DebtStatus
from app.models.expense import Expense, ExpenseKind
from app.models.transfer import Transfer
from app.repositories.debt_repo import DebtRepository
from app.repositories.expense_repo import ExpenseRepository, TransferRepository

logger = logging.getLogger(__name__)


def net_from_open_debts(debts: Iterable[Debt]) -> Tuple[Dict[str, int], Set[str]]:
    """
    Signed nets from open debts.

    Returns (net per user, users touched). Closed debts are skipped, and so
    are debts whose stored data breaks the debt invariants.
    """
    net: Dict[str, int] = {}
    touched: Set[str] = set()
    for debt in debts:
        if debt.status != DebtStatus.OPEN:
            continue
        if not debt.is_well_formed():
            logger.warning("Skipping malformed debt %s in apartment %s", debt.id, debt.apartment_id)
            continue
        net[debt.debtor_id] = net.get(debt.debtor_id, 0) - debt.amount_cents
        net[debt.creditor_id] = net.get(debt.creditor_id, 0) + debt.amount_cents
        touched.add(debt.debtor_id)
        touched.add(debt.creditor_id)
    return net, touched


def split_evenly(amount_cents: int, participants: List[str]) -> Dict[str, int]:
    """
    Even split in whole cents.

    The remainder goes one cent each to the first participants in id order,
    so shares always add up to the expense amount.
    """
    ordered = sorted(set(participants))
    if not ordered:
        return {}
    per_user = amount_cents // len(ordered)
    remainder = amount_cents % len(ordered)

    shares = {}
    for index, user_id in enumerate(ordered):
        extra = 1 if index < remainder else 0
        shares[user_id] = per_user + extra
    return shares


def net_from_expense_history(
    expenses: Iterable[Expense],
    transfers: Iterable[Transfer],
    expense_debt_ids: Optional[Set[str]] = None
) -> Dict[str, int]:
    """
    Signed nets from visible shared expenses minus direct transfers.

    When expense_debt_ids is given, only transfers paying off one of those
    debts are applied.
    """
    net: Dict[str, int] = {}
    for expense in expenses:
        if not expense.is_visible or expense.kind != ExpenseKind.EXPENSE:
            continue
        if not expense.paid_by or expense.amount_cents <= 0:
            continue
        shares = split_evenly(expense.amount_cents, expense.participants)
        if not shares:
            continue

        net[expense.paid_by] = net.get(expense.paid_by, 0) + expense.amount_cents
        for user_id, share in shares.items():
            net[user_id] = net.get(user_id, 0) - share

    for transfer in transfers:
        if expense_debt_ids is not None and transfer.debt_id not in expense_debt_ids:
            continue
        net[transfer.from_user_id] = net.get(transfer.from_user_id, 0) + transfer.amount_cents
        net[transfer.to_user_id] = net.get(transfer.to_user_id, 0) - transfer.amount_cents

    return net


class BalanceSource(ABC):
    """Produces signed net cents per user for one apartment."""

    @abstractmethod
    async def net_balances(self, apartment_id: str) -> Dict[str, int]:
        ...


class OpenDebtBalanceSource(BalanceSource):

    def __init__(self, debt_repo: DebtRepository):
        self.debt_repo = debt_repo

    async def net_balances(self, apartment_id: str) -> Dict[str, int]:
        debts = await self.debt_repo.list_open(apartment_id)
        net, _ = net_from_open_debts(debts)
        return net


class ExpenseHistoryBalanceSource(BalanceSource):

    def __init__(
        self,
        expense_repo: ExpenseRepository,
        transfer_repo: TransferRepository,
        debt_repo: DebtRepository
    ):
        self.expense_repo = expense_repo
        self.transfer_repo = transfer_repo
        self.debt_repo = debt_repo

    async def net_balances(self, apartment_id: str) -> Dict[str, int]:
        expenses = await self.expense_repo.list_for_apartment(apartment_id)
        transfers = await self.transfer_repo.list_for_apartment(apartment_id)
        debts = await self.debt_repo.list_for_apartment(apartment_id)
        expense_debt_ids = {d.id for d in debts if d.source == DebtSource.EXPENSE_SPLIT}
        return net_from_expense_history(expenses, transfers, expense_debt_ids)
