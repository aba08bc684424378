"""
Debt graph simplification.

Pure functions, no I/O. Balances are signed integer cents keyed by user id
(positive = the user is owed money). The greedy pass repeatedly matches the
largest remaining creditor with the largest remaining debtor and moves
min(credit, debt) between them. It is not guaranteed to find the minimum
number of transfers, but it always:

- terminates after at most (creditors + debtors - 1) transfers,
- moves money from a debtor to a creditor, never the other way,
- never transfers more than either party still has outstanding,
- gives the same output for the same input (ties broken by user id).
"""

import heapq
from typing import Dict, Iterable, List, Mapping, Tuple

from app.core.config import settings
from app.core.exceptions import InvalidArgumentError
from app.schemas.balance import SuggestedTransfer

EPSILON_CENTS = settings.BALANCE_EPSILON_CENTS


def is_effectively_zero(amount_cents: int) -> bool:
    return abs(amount_cents) < EPSILON_CENTS


def pairwise_to_net(edges: Iterable[Tuple[str, str, int]]) -> Dict[str, int]:
    """Fold "debtor owes creditor amount" edges into signed nets."""
    net: Dict[str, int] = {}
    for debtor_id, creditor_id, amount_cents in edges:
        net[debtor_id] = net.get(debtor_id, 0) - amount_cents
        net[creditor_id] = net.get(creditor_id, 0) + amount_cents
    return net


def simplify(balances: Mapping[str, int]) -> List[SuggestedTransfer]:
    """
    Reduce signed net balances to a short list of transfers.

    Raises InvalidArgumentError if the balances do not sum to zero, since
    no set of transfers could settle them.
    """
    total = sum(balances.values())
    if not is_effectively_zero(total):
        raise InvalidArgumentError(
            f"Balances must sum to zero, got {total} cents",
            reason="UNBALANCED",
            details={"sum_cents": total}
        )

    # Max-heaps keyed by (-remaining, user_id) for deterministic ties
    creditors: List[Tuple[int, str]] = []
    debtors: List[Tuple[int, str]] = []
    for user_id, net in balances.items():
        if is_effectively_zero(net):
            continue
        if net > 0:
            creditors.append((-net, user_id))
        else:
            debtors.append((net, user_id))
    heapq.heapify(creditors)
    heapq.heapify(debtors)

    transfers: List[SuggestedTransfer] = []
    while creditors and debtors:
        neg_credit, creditor_id = heapq.heappop(creditors)
        neg_debt, debtor_id = heapq.heappop(debtors)
        credit = -neg_credit
        debt = -neg_debt

        amount = min(credit, debt)
        transfers.append(SuggestedTransfer(
            from_user_id=debtor_id,
            to_user_id=creditor_id,
            amount_cents=amount
        ))

        credit -= amount
        debt -= amount
        if not is_effectively_zero(credit):
            heapq.heappush(creditors, (-credit, creditor_id))
        if not is_effectively_zero(debt):
            heapq.heappush(debtors, (-debt, debtor_id))

    return transfers


def apply_transfers(balances: Mapping[str, int], transfers: Iterable[SuggestedTransfer]) -> Dict[str, int]:
    """Balances after every transfer is paid. Used to check a plan settles to zero."""
    result = dict(balances)
    for transfer in transfers:
        result[transfer.from_user_id] = result.get(transfer.from_user_id, 0) + transfer.amount_cents
        result[transfer.to_user_id] = result.get(transfer.to_user_id, 0) - transfer.amount_cents
    return result
