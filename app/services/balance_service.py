import logging
from typing import Dict, List, Optional

from app.core.exceptions import PermissionDeniedError
from app.models.action import ActionType, AuditLogEntry
from app.models.balance import Balance
from app.repositories.action_repo import ActionRepository
from app.repositories.balance_repo import BalanceRepository
from app.repositories.debt_repo import DebtRepository
from app.repositories.expense_repo import ExpenseRepository, TransferRepository
from app.repositories.member_repo import MemberRepository
from app.schemas.balance import BalanceSourceName, RemovalStatusResponse, SimplifiedBalancesResponse
from app.services.balance_sources import (
    BalanceSource,
    ExpenseHistoryBalanceSource,
    OpenDebtBalanceSource,
    net_from_open_debts,
)
from app.services.simplify import EPSILON_CENTS, simplify

logger = logging.getLogger(__name__)


class BalanceService:
    """
    Balance materializer: the only writer of balance rows.

    recompute() always rebuilds from the full open-debt set. It is a pure
    function of that set, so concurrent or repeated runs converge to the
    same rows, and a run with nothing changed writes nothing.
    """

    def __init__(self, db):
        self.db = db
        self.debt_repo = DebtRepository(db)
        self.balance_repo = BalanceRepository(db)
        self.member_repo = MemberRepository(db)
        self.action_repo = ActionRepository(db)

    async def recompute(self, apartment_id: str, session=None) -> List[Balance]:
        """
        Rebuild every balance row of an apartment from its open debts.

        Users with a row but no open debts left are reset to zero so the
        apartment's rows always sum to zero.
        """
        debts = await self.debt_repo.list_open(apartment_id, session=session)
        net, touched = net_from_open_debts(debts)

        existing = {
            row.user_id: row
            for row in await self.balance_repo.list_for_apartment(apartment_id, session=session)
        }

        written = 0
        for user_id in sorted(touched | set(existing)):
            net_cents = net.get(user_id, 0)
            has_open_debts = user_id in touched
            row = existing.get(user_id)
            if row is not None and row.net_cents == net_cents and row.has_open_debts == has_open_debts:
                continue
            await self.balance_repo.upsert(
                apartment_id, user_id, net_cents, has_open_debts, session=session
            )
            written += 1

        logger.info(
            "Recomputed balances for apartment %s: %d open debts, %d users, %d rows written",
            apartment_id, len(debts), len(touched | set(existing)), written
        )
        return await self.balance_repo.list_for_apartment(apartment_id, session=session)

    async def recompute_balances(self, apartment_id: str, actor_id: str) -> List[Balance]:
        """Member-triggered recompute. Writes an audit entry."""
        await self._require_member(apartment_id, actor_id)

        balances = await self.recompute(apartment_id)

        entry = AuditLogEntry(
            apartment_id=apartment_id,
            type=ActionType.BALANCES_RECOMPUTED,
            actor_id=actor_id,
            details={"rows": len(balances)}
        )
        await self.action_repo.append(entry)
        return balances

    async def apply_delta(self, apartment_id: str, deltas: Dict[str, int], session=None) -> None:
        """
        Additive balance update, for the create-and-close protocol only.

        Mixing this with recompute() in one apartment is only safe if a full
        recompute runs afterwards.
        """
        await self.balance_repo.increment(apartment_id, deltas, session=session)

    async def get_balances(self, apartment_id: str, actor_id: str) -> List[Balance]:
        await self._require_member(apartment_id, actor_id)
        return await self.balance_repo.list_for_apartment(apartment_id)

    async def simplified(
        self,
        apartment_id: str,
        actor_id: str,
        source: BalanceSourceName = BalanceSourceName.OPEN_DEBTS
    ) -> SimplifiedBalancesResponse:
        """Suggested transfers computed from one balance source."""
        await self._require_member(apartment_id, actor_id)

        balance_source = self._source(source)
        net = await balance_source.net_balances(apartment_id)
        return SimplifiedBalancesResponse(
            apartment_id=apartment_id,
            source=source,
            balances=net,
            transfers=simplify(net)
        )

    async def member_removal_status(
        self,
        apartment_id: str,
        user_id: str,
        actor_id: str
    ) -> RemovalStatusResponse:
        """
        Whether a member can leave: recompute first, then require a balance
        within one cent of zero and no open debts.
        """
        await self._require_member(apartment_id, actor_id)
        await self.recompute(apartment_id)

        debts = await self.debt_repo.list_open(apartment_id)
        has_open_debts = any(user_id in (d.debtor_id, d.creditor_id) for d in debts)

        row = await self.balance_repo.get(apartment_id, user_id)
        net_cents = row.net_cents if row else 0

        return RemovalStatusResponse(
            apartment_id=apartment_id,
            user_id=user_id,
            net_cents=net_cents,
            has_open_debts=has_open_debts,
            can_be_removed=abs(net_cents) <= EPSILON_CENTS and not has_open_debts
        )

    def _source(self, name: BalanceSourceName) -> BalanceSource:
        if BalanceSourceName(name) == BalanceSourceName.EXPENSE_HISTORY:
            return ExpenseHistoryBalanceSource(
                ExpenseRepository(self.db), TransferRepository(self.db), self.debt_repo
            )
        return OpenDebtBalanceSource(self.debt_repo)

    async def _require_member(self, apartment_id: str, actor_id: Optional[str]) -> None:
        if not await self.member_repo.is_member(apartment_id, actor_id):
            logger.warning("Actor %s is not a member of apartment %s", actor_id, apartment_id)
            raise PermissionDeniedError(
                "Actor is not a member of this apartment",
                details={"apartment_id": apartment_id}
            )
