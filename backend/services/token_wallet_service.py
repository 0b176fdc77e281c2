"""
Token Wallet Service

One wallet per driver plus an append-only transaction log. The balance
check and the decrement of a debit are a single conditional update on the
wallet document, so concurrent debits can never drive a balance negative.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from core.exceptions import InsufficientTokensError, ValidationError
from database import TOKEN_WALLETS, TOKEN_TRANSACTIONS, serialize
from models import TransactionKind

logger = logging.getLogger(__name__)


def _validate_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Amount must be a positive integer")
    return amount


class TokenWalletService:
    """Ledger of driver tokens."""

    def __init__(self, db):
        self.wallets = db[TOKEN_WALLETS]
        self.transactions = db[TOKEN_TRANSACTIONS]

    async def get_or_create(self, driver_id: str) -> Dict[str, Any]:
        """Return the driver's wallet, creating an empty one on first access."""
        now = datetime.now(timezone.utc)
        try:
            wallet = await self.wallets.find_one_and_update(
                {"driver": driver_id},
                {"$setOnInsert": {"balance": 0, "isActive": True, "createdAt": now, "updatedAt": now}},
                upsert=True,
                return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            # Lost an insert race against another first access
            wallet = await self.wallets.find_one({"driver": driver_id})
        return wallet

    async def get_balance(self, driver_id: str) -> int:
        wallet = await self.get_or_create(driver_id)
        return wallet.get("balance", 0)

    async def has_sufficient_balance(self, driver_id: str, amount: int) -> bool:
        """Non-mutating pre-check used before actions that debit later."""
        return await self.get_balance(driver_id) >= amount

    async def _record(
        self,
        driver_id: str,
        kind: TransactionKind,
        amount: int,
        reason: str,
        caused_by: Optional[str],
        balance_after: int,
        plan_id: Optional[str] = None
    ) -> Dict[str, Any]:
        txn = {
            "driver": driver_id,
            "kind": kind.value,
            "amount": amount,
            "reason": reason,
            "causedBy": caused_by,
            "plan": plan_id,
            "balanceAfter": balance_after,
            "createdAt": datetime.now(timezone.utc)
        }
        await self.transactions.insert_one(txn)
        return txn

    async def credit(
        self,
        driver_id: str,
        amount: int,
        reason: str,
        actor_id: Optional[str] = None,
        plan_id: Optional[str] = None
    ) -> int:
        """Add tokens to a wallet. Returns the new balance."""
        amount = _validate_amount(amount)
        await self.get_or_create(driver_id)

        wallet = await self.wallets.find_one_and_update(
            {"driver": driver_id},
            {"$inc": {"balance": amount}, "$set": {"updatedAt": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER
        )
        balance = wallet["balance"]
        await self._record(driver_id, TransactionKind.CREDIT, amount, reason, actor_id, balance, plan_id)

        logger.info(f"Credited {amount} tokens to driver {driver_id}: {reason} (balance {balance})")
        return balance

    async def debit(
        self,
        driver_id: str,
        amount: int,
        reason: str,
        actor_id: Optional[str] = None
    ) -> int:
        """
        Remove tokens from a wallet. Returns the new balance.

        Raises InsufficientTokensError without touching the wallet when the
        balance cannot cover `amount`.
        """
        amount = _validate_amount(amount)
        await self.get_or_create(driver_id)

        wallet = await self.wallets.find_one_and_update(
            {"driver": driver_id, "balance": {"$gte": amount}},
            {"$inc": {"balance": -amount}, "$set": {"updatedAt": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER
        )
        if wallet is None:
            current = await self.get_balance(driver_id)
            logger.info(f"Debit of {amount} refused for driver {driver_id}: balance {current}")
            raise InsufficientTokensError(required=amount, balance=current)

        balance = wallet["balance"]
        await self._record(driver_id, TransactionKind.DEBIT, amount, reason, actor_id, balance)

        logger.info(f"Debited {amount} tokens from driver {driver_id}: {reason} (balance {balance})")
        return balance

    async def list_transactions(
        self,
        driver_id: str,
        page: int = 1,
        limit: int = 10
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Newest-first page of a driver's transactions and the total count."""
        query = {"driver": driver_id}
        skip = (page - 1) * limit
        total = await self.transactions.count_documents(query)
        cursor = self.transactions.find(query).sort([("createdAt", -1), ("_id", -1)])
        txns = await cursor.skip(skip).limit(limit).to_list(limit)
        return [serialize(t) for t in txns], total
