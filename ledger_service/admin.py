"""
Privileged currency adjustments by allow-listed operators.

The HTTP layer already rejects non-owners; the allow-list is checked again
here so no other caller can mint or burn currency through this service.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ledger_service import accounts, ledger
from ledger_service.coordinator import TransactionCoordinator
from ledger_service.economy import require_positive_amount
from ledger_service.errors import NotAuthorized
from ledger_service.models import ADMIN_ADD, ADMIN_REMOVE

logger = logging.getLogger(__name__)


@dataclass
class AdjustmentResult:
    user_id: str
    amount: int
    balance: int
    entry_id: int


class AdminAdjustments:
    def __init__(self, coordinator: TransactionCoordinator, owner_user_ids: Iterable[str]):
        self.coordinator = coordinator
        self.owner_user_ids = frozenset(owner_user_ids)

    def is_operator(self, user_id: str) -> bool:
        return user_id in self.owner_user_ids

    def require_operator(self, operator_id: str) -> None:
        if not self.is_operator(operator_id):
            logger.warning(f"Rejected admin adjustment by non-operator {operator_id}")
            raise NotAuthorized(operator_id, allowlist_configured=bool(self.owner_user_ids))

    def admin_add(
        self,
        operator_id: str,
        user_id: str,
        amount: int,
        guild_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> AdjustmentResult:
        self.require_operator(operator_id)
        require_positive_amount(amount)

        def credit(session: Session) -> AdjustmentResult:
            balance = accounts.adjust(session, user_id, amount)
            entry = ledger.append_entry(
                session, ADMIN_ADD, amount, to_user_id=user_id, guild_id=guild_id, reason=reason,
                meta={"operatorId": operator_id},
            )
            return AdjustmentResult(user_id, amount, balance, entry.id)

        result = self.coordinator.run_with_retry(credit)
        logger.info(f"🏦 Admin credit by {operator_id}: {user_id} +{amount} balance={result.balance}")
        return result

    def admin_remove(
        self,
        operator_id: str,
        user_id: str,
        amount: int,
        guild_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> AdjustmentResult:
        self.require_operator(operator_id)
        require_positive_amount(amount)

        def debit(session: Session) -> AdjustmentResult:
            balance = accounts.adjust(session, user_id, -amount)
            entry = ledger.append_entry(
                session, ADMIN_REMOVE, amount, from_user_id=user_id, guild_id=guild_id, reason=reason,
                meta={"operatorId": operator_id},
            )
            return AdjustmentResult(user_id, amount, balance, entry.id)

        result = self.coordinator.run_with_retry(debit)
        logger.info(f"🏦 Admin debit by {operator_id}: {user_id} -{amount} balance={result.balance}")
        return result
