"""
Ledger: append-only log of balance-affecting events

Entries are only ever inserted, inside the same transaction as the balance
change they describe. Nothing in the service updates or deletes them, which
makes the ledger an independent source for rebuilding every balance.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ledger_service.models import (
    ADMIN_ADD, ADMIN_REMOVE, COINFLIP_BET, COINFLIP_PAYOUT, TRANSFER,
    Account, LedgerEntry,
)

# Which parties each entry type carries: (from_user_id, to_user_id)
PARTIES = {
    TRANSFER: (True, True),
    ADMIN_ADD: (False, True),
    COINFLIP_PAYOUT: (False, True),
    ADMIN_REMOVE: (True, False),
    COINFLIP_BET: (True, False),
}


@dataclass
class Discrepancy:
    user_id: str
    account_balance: int
    ledger_balance: int


def append_entry(
    session: Session,
    entry_type: str,
    amount: int,
    from_user_id: Optional[str] = None,
    to_user_id: Optional[str] = None,
    guild_id: Optional[str] = None,
    reason: Optional[str] = None,
    game_id: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> LedgerEntry:
    if entry_type not in PARTIES:
        raise ValueError(f"unknown ledger entry type: {entry_type}")
    if amount <= 0:
        raise ValueError("ledger amounts are always positive")

    needs_from, needs_to = PARTIES[entry_type]
    if needs_from != (from_user_id is not None) or needs_to != (to_user_id is not None):
        raise ValueError(f"{entry_type} entries need from={needs_from} to={needs_to}")

    entry = LedgerEntry(
        type=entry_type,
        amount=amount,
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        guild_id=guild_id,
        reason=reason,
        game_id=game_id,
        meta=meta or {},
    )
    session.add(entry)
    session.flush()
    return entry


def list_entries_for_user(session: Session, user_id: str, limit: int, offset: int) -> Tuple[List[LedgerEntry], int]:
    involves_user = or_(LedgerEntry.from_user_id == user_id, LedgerEntry.to_user_id == user_id)

    rows = session.scalars(
        select(LedgerEntry)
        .where(involves_user)
        .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
        .limit(limit)
        .offset(offset)
    ).all()
    total = session.scalar(select(func.count()).select_from(LedgerEntry).where(involves_user))
    return list(rows), total


def ledger_balance(session: Session, user_id: str) -> int:
    """Balance rebuilt from the ledger alone: credits minus debits."""
    credits = session.scalar(
        select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(LedgerEntry.to_user_id == user_id)
    )
    debits = session.scalar(
        select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(LedgerEntry.from_user_id == user_id)
    )
    return int(credits) - int(debits)


def ledger_balances(session: Session) -> Dict[str, int]:
    balances: Dict[str, int] = {}
    credit_rows = session.execute(
        select(LedgerEntry.to_user_id, func.sum(LedgerEntry.amount))
        .where(LedgerEntry.to_user_id.is_not(None))
        .group_by(LedgerEntry.to_user_id)
    ).all()
    for user_id, total in credit_rows:
        balances[user_id] = balances.get(user_id, 0) + int(total)

    debit_rows = session.execute(
        select(LedgerEntry.from_user_id, func.sum(LedgerEntry.amount))
        .where(LedgerEntry.from_user_id.is_not(None))
        .group_by(LedgerEntry.from_user_id)
    ).all()
    for user_id, total in debit_rows:
        balances[user_id] = balances.get(user_id, 0) - int(total)
    return balances


def reconcile(session: Session) -> List[Discrepancy]:
    """Accounts whose stored balance disagrees with the ledger, plus ledger-only users."""
    from_ledger = ledger_balances(session)
    discrepancies = []

    for user_id, balance in session.execute(select(Account.user_id, Account.balance).order_by(Account.user_id)).all():
        expected = from_ledger.pop(user_id, 0)
        if balance != expected:
            discrepancies.append(Discrepancy(user_id, balance, expected))

    for user_id in sorted(from_ledger):
        if from_ledger[user_id] != 0:
            discrepancies.append(Discrepancy(user_id, 0, from_ledger[user_id]))
    return discrepancies
