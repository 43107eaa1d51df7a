"""
Peer transfers, balance and history reads, and ledger reconciliation.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ledger_service import accounts, ledger
from ledger_service.coordinator import TransactionCoordinator
from ledger_service.errors import InvalidAmount, InvalidPagination, SelfTransfer
from ledger_service.models import TRANSFER, LedgerEntry

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200
DEFAULT_PAGE_SIZE = 50


@dataclass
class TransferResult:
    from_user_id: str
    to_user_id: str
    amount: int
    from_balance: int
    to_balance: int
    entry_id: int


def require_positive_amount(amount, field: str = "amount") -> int:
    # bool is an int subclass; True must not move one coin
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(amount, field=field)
    return amount


def require_page(limit, offset) -> Tuple[int, int]:
    if not isinstance(limit, int) or not isinstance(offset, int):
        raise InvalidPagination(limit, offset, MAX_PAGE_SIZE)
    if limit < 1 or limit > MAX_PAGE_SIZE or offset < 0:
        raise InvalidPagination(limit, offset, MAX_PAGE_SIZE)
    return limit, offset


class EconomyService:
    def __init__(self, coordinator: TransactionCoordinator):
        self.coordinator = coordinator

    def get_balance(self, user_id: str) -> int:
        return self.coordinator.read(lambda session: accounts.get_balance(session, user_id))

    def list_transactions(self, user_id: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0) -> Tuple[List[LedgerEntry], int]:
        limit, offset = require_page(limit, offset)
        return self.coordinator.read(lambda session: ledger.list_entries_for_user(session, user_id, limit, offset))

    def transfer(
        self,
        from_user_id: str,
        to_user_id: str,
        amount: int,
        guild_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> TransferResult:
        """Move amount from one account to another, all or nothing."""

        def transfer_funds(session: Session) -> TransferResult:
            if from_user_id == to_user_id:
                raise SelfTransfer(from_user_id)
            require_positive_amount(amount)

            accounts.ensure_account(session, from_user_id)
            accounts.ensure_account(session, to_user_id)

            from_balance = accounts.adjust(session, from_user_id, -amount)
            to_balance = accounts.adjust(session, to_user_id, amount)
            entry = ledger.append_entry(
                session,
                TRANSFER,
                amount,
                from_user_id=from_user_id,
                to_user_id=to_user_id,
                guild_id=guild_id,
                reason=reason,
            )
            return TransferResult(from_user_id, to_user_id, amount, from_balance, to_balance, entry.id)

        result = self.coordinator.run_with_retry(transfer_funds)
        logger.info(f"💸 Transfer committed: {from_user_id} -> {to_user_id} amount={amount} entry={result.entry_id}")
        return result

    def ledger_balance(self, user_id: str) -> int:
        return self.coordinator.read(lambda session: ledger.ledger_balance(session, user_id))

    def reconcile(self) -> List[ledger.Discrepancy]:
        discrepancies = self.coordinator.read(ledger.reconcile)
        if discrepancies:
            logger.error(f"❌ Ledger reconciliation found {len(discrepancies)} mismatched accounts")
        else:
            logger.info("✅ Ledger reconciliation clean")
        return discrepancies
