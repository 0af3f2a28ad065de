"""
backend/app/services/credit_meter.py

Purpose:
    Credit metering for betslip generation. Authorizes a request with a single
    atomic conditional decrement and reverses a charge at most once.

    Every non-exempt charge is mirrored by a document in ``credit_charges``
    (``_id`` = request id). Its ``status`` moves charged -> kept on success or
    charged -> refunded on failure; both transitions are conditional updates,
    so a refund can only ever be applied once even if several failure paths
    (or processes) attempt it.

Dependencies:
    - app.database
    - pymongo (ReturnDocument)
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument

import app.database as _db
from app.config import settings
from app.models.account import Account
from app.utils import utcnow

logger = logging.getLogger("betai.credit_meter")

EXEMPT_BALANCE_MARKER = -1


class ChargeStatus:
    CHARGED = "charged"
    KEPT = "kept"
    REFUNDED = "refunded"


# ---------- Collaborator interfaces ----------

class AccountStore(Protocol):
    async def get_account(self, account_id: str) -> Optional[Account]: ...

    async def conditionally_decrement(self, account_id: str, amount: int) -> Optional[int]:
        """Decrement by ``amount`` only if balance >= amount.

        Returns the new balance, or None when the guard did not match.
        """

    async def increment(self, account_id: str, amount: int) -> Optional[int]: ...


class ChargeLedger(Protocol):
    async def record_charge(
        self, request_id: str, account_id: str, amount: int, balance_after: int,
    ) -> None: ...

    async def mark_refunded(self, request_id: str) -> bool: ...

    async def mark_kept(self, request_id: str) -> bool: ...

    async def reopen(self, request_id: str) -> bool:
        """Move a refunded charge back to charged when the credit could not be applied."""


# ---------- MongoDB implementations ----------

def _user_filter(account_id: str) -> dict:
    try:
        return {"_id": ObjectId(account_id)}
    except (InvalidId, TypeError):
        return {"_id": account_id}


class MongoAccountStore:
    """Credit balance access on the ``users`` collection."""

    async def get_account(self, account_id: str) -> Optional[Account]:
        doc = await _db.db.users.find_one(
            {**_user_filter(account_id), "is_deleted": {"$ne": True}},
            {"credits": 1, "is_admin": 1},
        )
        return Account.from_document(doc) if doc else None

    async def conditionally_decrement(self, account_id: str, amount: int) -> Optional[int]:
        doc = await _db.db.users.find_one_and_update(
            {**_user_filter(account_id), "credits": {"$gte": amount}},
            {"$inc": {"credits": -amount}, "$set": {"updated_at": utcnow()}},
            projection={"credits": 1},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            return None
        return int(doc["credits"])

    async def increment(self, account_id: str, amount: int) -> Optional[int]:
        doc = await _db.db.users.find_one_and_update(
            _user_filter(account_id),
            {"$inc": {"credits": amount}, "$set": {"updated_at": utcnow()}},
            projection={"credits": 1},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            logger.error("Account not found for credit increment: %s", account_id)
            return None
        return int(doc["credits"])


class MongoChargeLedger:
    """Immutable-ish audit trail of generation charges."""

    async def record_charge(
        self, request_id: str, account_id: str, amount: int, balance_after: int,
    ) -> None:
        now = utcnow()
        await _db.db.credit_charges.insert_one({
            "_id": request_id,
            "user_id": account_id,
            "amount": amount,
            "balance_after": balance_after,
            "status": ChargeStatus.CHARGED,
            "created_at": now,
            "updated_at": now,
        })

    async def _transition(
        self, request_id: str, new_status: str, from_status: str = ChargeStatus.CHARGED,
    ) -> bool:
        result = await _db.db.credit_charges.update_one(
            {"_id": request_id, "status": from_status},
            {"$set": {"status": new_status, "updated_at": utcnow()}},
        )
        return result.modified_count == 1

    async def mark_refunded(self, request_id: str) -> bool:
        return await self._transition(request_id, ChargeStatus.REFUNDED)

    async def mark_kept(self, request_id: str) -> bool:
        return await self._transition(request_id, ChargeStatus.KEPT)

    async def reopen(self, request_id: str) -> bool:
        return await self._transition(request_id, ChargeStatus.CHARGED, ChargeStatus.REFUNDED)


# ---------- Meter ----------

@dataclass
class Authorization:
    """Outcome of :meth:`CreditMeter.authorize` for one request."""
    request_id: str
    account_id: str
    granted: bool
    balance_after: int
    reason: str
    cost: int
    exempt: bool = False
    charged: bool = False
    reversed: bool = False
    settled: bool = False

    @property
    def balance_before(self) -> int:
        if self.exempt:
            return EXEMPT_BALANCE_MARKER
        return self.balance_after + self.cost if self.charged else self.balance_after


class CreditMeter:
    def __init__(
        self,
        accounts: AccountStore,
        ledger: ChargeLedger,
        admin_exempt: Optional[bool] = None,
    ):
        self._accounts = accounts
        self._ledger = ledger
        self._admin_exempt = settings.ADMIN_EXEMPT if admin_exempt is None else admin_exempt

    def is_exempt(self, account: Account) -> bool:
        return bool(account.is_admin and self._admin_exempt)

    async def authorize(self, account: Account, cost: int, request_id: str) -> Authorization:
        """Reserve ``cost`` credits for one generation request.

        Exempt accounts are granted without touching the balance. For all
        others the balance check and the deduction are one conditional update.
        """
        if cost <= 0:
            raise ValueError("Generation cost must be positive.")

        if self.is_exempt(account):
            logger.info("Admin account %s exempt from credit check", account.id)
            return Authorization(
                request_id=request_id,
                account_id=account.id,
                granted=True,
                balance_after=EXEMPT_BALANCE_MARKER,
                reason="Admin access granted",
                cost=cost,
                exempt=True,
            )

        balance_after = await self._accounts.conditionally_decrement(account.id, cost)
        if balance_after is None:
            current = await self._accounts.get_account(account.id)
            balance = current.credits if current else 0
            logger.info(
                "Credits refused: account=%s balance=%d cost=%d", account.id, balance, cost,
            )
            return Authorization(
                request_id=request_id,
                account_id=account.id,
                granted=False,
                balance_after=balance,
                reason=f"Insufficient credits. Need {cost}, have {balance}",
                cost=cost,
            )

        try:
            await self._ledger.record_charge(request_id, account.id, cost, balance_after)
        except Exception:
            # No ledger entry means no refund path later: give the credits back now.
            logger.exception(
                "Charge record failed, undoing deduction: account=%s request=%s",
                account.id, request_id,
            )
            restored = await self._accounts.increment(account.id, cost)
            if restored is None:
                logger.error(
                    "Deduction could not be undone: account=%s cost=%d request=%s",
                    account.id, cost, request_id,
                )
            raise
        logger.info(
            "Credits deducted: account=%s cost=%d remaining=%d request=%s",
            account.id, cost, balance_after, request_id,
        )
        return Authorization(
            request_id=request_id,
            account_id=account.id,
            granted=True,
            balance_after=balance_after,
            reason=f"Credits deducted: {cost}. Remaining: {balance_after}",
            cost=cost,
            charged=True,
        )

    async def reverse(self, authorization: Authorization) -> bool:
        """Credit a charge back. Returns True only for the call that refunded.

        No-op for exempt, denied, already reversed or already kept requests.
        If the ledger or the balance update fails, the charge is left open
        (ledger ``charged``, flag cleared) and the error propagates, so the
        caller can try again.
        """
        if not authorization.charged or authorization.reversed or authorization.settled:
            return False
        # Flag first so a concurrent caller in this process cannot enter.
        authorization.reversed = True

        try:
            claimed = await self._ledger.mark_refunded(authorization.request_id)
        except Exception:
            authorization.reversed = False
            raise
        if not claimed:
            logger.warning(
                "Refund skipped, charge %s is no longer open", authorization.request_id,
            )
            return False

        try:
            new_balance = await self._accounts.increment(authorization.account_id, authorization.cost)
            if new_balance is None:
                raise LookupError(f"account {authorization.account_id} not found")
        except Exception:
            await self._reopen(authorization)
            raise
        logger.info(
            "Credits refunded: account=%s amount=%d balance=%s request=%s",
            authorization.account_id, authorization.cost, new_balance,
            authorization.request_id,
        )
        return True

    async def _reopen(self, authorization: Authorization) -> None:
        """Put a claimed refund back to ``charged`` after the credit failed."""
        try:
            reopened = await self._ledger.reopen(authorization.request_id)
        except Exception:
            logger.exception("Could not reopen charge %s", authorization.request_id)
            reopened = False
        if reopened:
            authorization.reversed = False
        else:
            # Ledger says refunded but the balance was not restored.
            logger.error(
                "Charge %s needs manual repair: account=%s amount=%d",
                authorization.request_id, authorization.account_id, authorization.cost,
            )

    async def settle(self, authorization: Authorization) -> None:
        """Mark a successful request's charge as kept.

        The flag is set only once the ledger write went through, so a failure
        here still leaves the charge reversible.
        """
        if not authorization.charged or authorization.reversed or authorization.settled:
            return
        if not await self._ledger.mark_kept(authorization.request_id):
            logger.warning("Charge %s was not open when settling", authorization.request_id)
        authorization.settled = True
