"""
Account Store

The only code that writes Account.balance. Mutations must run inside a
TransactionCoordinator transaction so the funds check and the write commit
together.
"""
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_service.errors import BalanceOverflow, InsufficientFunds
from ledger_service.models import Account

# accounts.balance is a signed 64-bit column
MAX_BALANCE = 2 ** 63 - 1


def get_balance(session: Session, user_id: str) -> int:
    """Current balance, 0 for users never seen; does not create an account."""
    balance = session.scalar(select(Account.balance).where(Account.user_id == user_id))
    return balance if balance is not None else 0


def ensure_account(session: Session, user_id: str) -> Account:
    account = session.get(Account, user_id, with_for_update=True)
    if account is not None:
        return account

    account = Account(user_id=user_id, balance=0)
    try:
        with session.begin_nested():
            session.add(account)
    except IntegrityError:
        # A concurrent transaction created it first
        account = session.get(Account, user_id, with_for_update=True, populate_existing=True)
    return account


def adjust(session: Session, user_id: str, delta: int) -> int:
    """Apply delta to the user's balance and return the new balance.

    Raises InsufficientFunds or BalanceOverflow before anything is written.
    """
    account = ensure_account(session, user_id)
    new_balance = account.balance + delta
    if new_balance < 0:
        raise InsufficientFunds(user_id, account.balance, -delta)
    if new_balance > MAX_BALANCE:
        raise BalanceOverflow(user_id, account.balance, delta)

    account.balance = new_balance
    session.flush()
    return new_balance
