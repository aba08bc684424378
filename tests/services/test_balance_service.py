import pytest

from app.core.exceptions import InvalidArgumentError, PermissionDeniedError
from app.schemas.balance import BalanceSourceName
from tests.conftest import APARTMENT_ID, OUTSIDER


def _seed_debt(db, debt_id, debtor, creditor, amount, status="open", apartment_id=APARTMENT_ID):
    db["debts"].docs[debt_id] = {
        "_id": debt_id,
        "apartment_id": apartment_id,
        "debtor_id": debtor,
        "creditor_id": creditor,
        "amount_cents": amount,
        "status": status,
        "source": "manual",
    }


def _rows(db):
    return {d["user_id"]: (d["net_cents"], d["has_open_debts"]) for d in db["balances"].docs.values()}


@pytest.mark.asyncio
class TestRecompute:

    async def test_conservation(self, balance_service, test_db):
        _seed_debt(test_db, "d1", "bob", "alice", 5_000)
        _seed_debt(test_db, "d2", "carol", "alice", 2_500)
        _seed_debt(test_db, "d3", "alice", "bob", 1_000)

        balances = await balance_service.recompute(APARTMENT_ID)

        assert {b.user_id: b.net_cents for b in balances} == {"alice": 6_500, "bob": -4_000, "carol": -2_500}
        assert sum(b.net_cents for b in balances) == 0
        assert all(b.has_open_debts for b in balances)

    async def test_ignores_closed_debts_and_other_apartments(self, balance_service, test_db):
        _seed_debt(test_db, "d1", "bob", "alice", 5_000, status="closed")
        _seed_debt(test_db, "d2", "carol", "alice", 2_500)
        _seed_debt(test_db, "d3", "bob", "carol", 9_999, apartment_id="apt-2")

        await balance_service.recompute(APARTMENT_ID)

        assert _rows(test_db) == {"alice": (2_500, True), "carol": (-2_500, True)}

    async def test_second_run_leaves_rows_bit_identical(self, balance_service, test_db):
        _seed_debt(test_db, "d1", "bob", "alice", 5_000)
        await balance_service.recompute(APARTMENT_ID)
        before = {k: dict(v) for k, v in test_db["balances"].docs.items()}

        await balance_service.recompute(APARTMENT_ID)

        assert test_db["balances"].docs == before

    async def test_resets_users_without_open_debts(self, balance_service, test_db):
        _seed_debt(test_db, "d1", "bob", "alice", 5_000)
        _seed_debt(test_db, "d2", "carol", "alice", 1_000)
        await balance_service.recompute(APARTMENT_ID)

        test_db["debts"].docs["d1"]["status"] = "closed"
        await balance_service.recompute(APARTMENT_ID)

        assert _rows(test_db) == {
            "alice": (1_000, True),
            "bob": (0, False),
            "carol": (-1_000, True),
        }

    async def test_no_debts_writes_nothing(self, balance_service, test_db):
        assert await balance_service.recompute(APARTMENT_ID) == []
        assert test_db["balances"].docs == {}

    async def test_recompute_balances_requires_member(self, balance_service, test_db):
        with pytest.raises(PermissionDeniedError):
            await balance_service.recompute_balances(APARTMENT_ID, OUTSIDER)
        assert test_db["actions"].docs == {}

    async def test_recompute_balances_writes_audit_entry(self, balance_service, test_db):
        _seed_debt(test_db, "d1", "bob", "alice", 5_000)

        balances = await balance_service.recompute_balances(APARTMENT_ID, "carol")

        assert len(balances) == 2
        entries = list(test_db["actions"].docs.values())
        assert len(entries) == 1
        assert entries[0]["type"] == "balances_recomputed"
        assert entries[0]["actor_id"] == "carol"


@pytest.mark.asyncio
class TestReads:

    async def test_get_balances(self, balance_service, test_db):
        _seed_debt(test_db, "d1", "bob", "alice", 5_000)
        await balance_service.recompute(APARTMENT_ID)

        balances = await balance_service.get_balances(APARTMENT_ID, "bob")

        assert [b.user_id for b in balances] == ["alice", "bob"]
        with pytest.raises(PermissionDeniedError):
            await balance_service.get_balances(APARTMENT_ID, OUTSIDER)

    async def test_simplified_from_open_debts(self, balance_service, test_db):
        _seed_debt(test_db, "d1", "bob", "alice", 6_000)
        _seed_debt(test_db, "d2", "carol", "alice", 4_000)
        _seed_debt(test_db, "d3", "carol", "bob", 1_000)

        result = await balance_service.simplified(APARTMENT_ID, "alice")

        assert result.source == BalanceSourceName.OPEN_DEBTS
        assert result.balances == {"alice": 10_000, "bob": -5_000, "carol": -5_000}
        assert sorted((t.from_user_id, t.to_user_id, t.amount_cents) for t in result.transfers) == [
            ("bob", "alice", 5_000),
            ("carol", "alice", 5_000),
        ]

    async def test_simplified_from_expense_history(self, settlement_service, balance_service, test_db):
        await settlement_service.record_expense(
            APARTMENT_ID, "Groceries", 9_000, "alice", ["alice", "bob", "carol"], actor_id="alice"
        )
        debt_id = next(d["_id"] for d in test_db["debts"].docs.values() if d["debtor_id"] == "bob")
        await settlement_service.settle_debt(APARTMENT_ID, debt_id, actor_id="bob")

        history = await balance_service.simplified(APARTMENT_ID, "alice", BalanceSourceName.EXPENSE_HISTORY)
        debts = await balance_service.simplified(APARTMENT_ID, "alice", BalanceSourceName.OPEN_DEBTS)

        # Both views agree once the settlement record is excluded
        assert history.balances == {"alice": 3_000, "bob": 0, "carol": -3_000}
        assert [(t.from_user_id, t.to_user_id, t.amount_cents) for t in history.transfers] == [
            ("carol", "alice", 3_000)
        ]
        assert debts.transfers == history.transfers

    async def test_simplified_rejects_unbalanced_rows(self, balance_service, monkeypatch):
        async def lopsided(apartment_id):
            return {"alice": 100}

        source = balance_service._source(BalanceSourceName.OPEN_DEBTS)
        monkeypatch.setattr(source, "net_balances", lopsided)
        monkeypatch.setattr(balance_service, "_source", lambda name: source)

        with pytest.raises(InvalidArgumentError):
            await balance_service.simplified(APARTMENT_ID, "alice")


@pytest.mark.asyncio
class TestMemberRemoval:

    async def test_member_with_open_debt_cannot_leave(self, balance_service, test_db):
        _seed_debt(test_db, "d1", "bob", "alice", 5_000)

        status = await balance_service.member_removal_status(APARTMENT_ID, "bob", "alice")

        assert status.net_cents == -5_000
        assert status.has_open_debts is True
        assert status.can_be_removed is False

    async def test_settled_member_can_leave(self, balance_service, test_db):
        _seed_debt(test_db, "d1", "bob", "alice", 5_000)

        status = await balance_service.member_removal_status(APARTMENT_ID, "carol", "alice")

        assert status.net_cents == 0
        assert status.has_open_debts is False
        assert status.can_be_removed is True

    async def test_removal_status_uses_fresh_balances(self, balance_service, test_db):
        """Stale incremental rows do not block a member whose debts are closed."""
        _seed_debt(test_db, "d1", "bob", "alice", 5_000, status="closed")
        await balance_service.apply_delta(APARTMENT_ID, {"bob": -5_000, "alice": 5_000})

        status = await balance_service.member_removal_status(APARTMENT_ID, "bob", "bob")

        assert status.can_be_removed is True

    async def test_removal_status_requires_member(self, balance_service):
        with pytest.raises(PermissionDeniedError):
            await balance_service.member_removal_status(APARTMENT_ID, "bob", OUTSIDER)


@pytest.mark.asyncio
class TestExpenseHistoryTransfers:
    """Transfers only count in the expense view when they pay off an expense split."""

    async def test_settled_manual_debt_leaves_no_transfers(self, settlement_service, balance_service):
        debt = await settlement_service.record_debt(APARTMENT_ID, "bob", "alice", 5_000, "alice")
        await settlement_service.settle_debt(APARTMENT_ID, debt.id, "bob")

        result = await balance_service.simplified(APARTMENT_ID, "alice", BalanceSourceName.EXPENSE_HISTORY)

        assert all(net == 0 for net in result.balances.values())
        assert result.transfers == []

    async def test_create_and_close_payment_is_not_counted(self, settlement_service, balance_service):
        await settlement_service.record_expense(
            APARTMENT_ID, "Groceries", 9_000, "alice", ["alice", "bob", "carol"], actor_id="alice"
        )
        await settlement_service.create_and_close_debt("bob", "alice", 3_000, APARTMENT_ID, "bob")

        result = await balance_service.simplified(APARTMENT_ID, "alice", BalanceSourceName.EXPENSE_HISTORY)

        assert result.balances == {"alice": 6_000, "bob": -3_000, "carol": -3_000}


@pytest.mark.asyncio
class TestMalformedDebts:

    async def _seed(self, test_db):
        _seed_debt(test_db, "d1", "bob", "alice", 5_000)
        test_db["debts"].docs["no-parties"] = {
            "_id": "no-parties", "apartment_id": APARTMENT_ID, "amount_cents": 100, "status": "open",
        }
        _seed_debt(test_db, "negative", "carol", "alice", -100)

    async def test_recompute_skips_malformed_debts(self, balance_service, test_db):
        await self._seed(test_db)

        await balance_service.recompute_balances(APARTMENT_ID, "alice")

        assert _rows(test_db) == {"alice": (5_000, True), "bob": (-5_000, True)}

    async def test_open_debt_listing_survives_malformed_documents(self, settlement_service, test_db):
        await self._seed(test_db)

        debts = await settlement_service.list_open_debts(APARTMENT_ID, "alice")

        assert sorted(d.id for d in debts) == ["d1", "negative"]

    async def test_post_commit_recompute_keeps_working(self, settlement_service, test_db):
        await self._seed(test_db)

        await settlement_service.record_debt(APARTMENT_ID, "carol", "bob", 1_000, "bob")

        assert _rows(test_db) == {
            "alice": (5_000, True),
            "bob": (-4_000, True),
            "carol": (-1_000, True),
        }


@pytest.mark.asyncio
class TestRemovalTolerance:

    @pytest.mark.parametrize("net_cents,expected", [(1, True), (-1, True), (2, False)])
    async def test_one_cent_residue_does_not_block_removal(self, balance_service, monkeypatch, net_cents, expected):
        async def no_recompute(apartment_id, session=None):
            return []

        monkeypatch.setattr(balance_service, "recompute", no_recompute)
        await balance_service.balance_repo.upsert(APARTMENT_ID, "carol", net_cents, False)

        status = await balance_service.member_removal_status(APARTMENT_ID, "carol", "alice")

        assert status.can_be_removed is expected
