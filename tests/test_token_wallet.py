"""
Token wallet tests - credits, debits, non-negative balances, ledger
"""
import asyncio
import pytest

from core.exceptions import InsufficientTokensError, ValidationError
from database import TOKEN_TRANSACTIONS, TOKEN_WALLETS


class TestTokenWallet:
    """Wallet balance and transaction log"""

    async def test_get_or_create_is_idempotent(self, db, wallets):
        first = await wallets.get_or_create("driver-1")
        second = await wallets.get_or_create("driver-1")
        assert first["_id"] == second["_id"]
        assert second["balance"] == 0
        assert await db[TOKEN_WALLETS].count_documents({"driver": "driver-1"}) == 1

    async def test_credit_then_debit(self, wallets):
        assert await wallets.credit("driver-1", 100, "Top up") == 100
        assert await wallets.debit("driver-1", 30, "Connect request") == 70
        assert await wallets.get_balance("driver-1") == 70

    async def test_debit_exact_balance(self, wallets):
        await wallets.credit("driver-1", 50, "Top up")
        assert await wallets.debit("driver-1", 50, "Connect request") == 0

    async def test_insufficient_debit_leaves_wallet_untouched(self, db, wallets):
        await wallets.credit("driver-1", 20, "Top up")
        with pytest.raises(InsufficientTokensError) as exc_info:
            await wallets.debit("driver-1", 50, "Connect request")
        assert exc_info.value.required == 50
        assert exc_info.value.balance == 20
        assert exc_info.value.status_code == 400
        assert await wallets.get_balance("driver-1") == 20
        assert await db[TOKEN_TRANSACTIONS].count_documents({"kind": "debit"}) == 0

    @pytest.mark.parametrize("amount", [0, -5, 1.5, True])
    async def test_invalid_amounts(self, wallets, amount):
        with pytest.raises(ValidationError):
            await wallets.credit("driver-1", amount, "Bad")
        with pytest.raises(ValidationError):
            await wallets.debit("driver-1", amount, "Bad")

    async def test_concurrent_debits_never_go_negative(self, wallets):
        await wallets.credit("driver-1", 100, "Top up")
        results = await asyncio.gather(
            *[wallets.debit("driver-1", 30, f"Debit {i}") for i in range(5)],
            return_exceptions=True
        )
        succeeded = [r for r in results if not isinstance(r, Exception)]
        refused = [r for r in results if isinstance(r, InsufficientTokensError)]
        assert len(succeeded) == 3
        assert len(refused) == 2
        assert await wallets.get_balance("driver-1") == 10

    async def test_transactions_newest_first(self, wallets):
        await wallets.credit("driver-1", 100, "Top up", actor_id="admin-1")
        await wallets.debit("driver-1", 40, "Connect request", actor_id="driver-1")
        await wallets.credit("driver-2", 5, "Other driver")

        items, total = await wallets.list_transactions("driver-1", page=1, limit=10)
        assert total == 2
        assert [t["kind"] for t in items] == ["debit", "credit"]
        assert items[0]["balanceAfter"] == 60
        assert items[1]["causedBy"] == "admin-1"
        assert "id" in items[0] and "_id" not in items[0]

    async def test_transactions_paging(self, wallets):
        for i in range(3):
            await wallets.credit("driver-1", 1, f"Credit {i}")
        items, total = await wallets.list_transactions("driver-1", page=2, limit=2)
        assert total == 3
        assert len(items) == 1

    async def test_has_sufficient_balance_does_not_mutate(self, wallets):
        await wallets.credit("driver-1", 10, "Top up")
        assert await wallets.has_sufficient_balance("driver-1", 10)
        assert not await wallets.has_sufficient_balance("driver-1", 11)
        assert await wallets.get_balance("driver-1") == 10
