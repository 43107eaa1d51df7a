"""
Compare every stored balance with the balance rebuilt from the ledger.

Usage: python -m ledger_service.reconcile [DATABASE_URL]

Exits 0 when the account store and the ledger agree, 1 otherwise.
"""
import logging
import sys
from typing import List, Optional

from common.settings import settings
from ledger_service.coordinator import TransactionCoordinator
from ledger_service.db import make_engine, make_session_factory
from ledger_service.economy import EconomyService

logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    url = argv[0] if argv else None

    engine = make_engine(url)
    try:
        economy = EconomyService(TransactionCoordinator(make_session_factory(engine)))
        discrepancies = economy.reconcile()
    finally:
        engine.dispose()

    for d in discrepancies:
        print(f"❌ {d.user_id}: account={d.account_balance} ledger={d.ledger_balance}")
    if discrepancies:
        print(f"{len(discrepancies)} account(s) disagree with the ledger")
        return 1

    print("✅ Account balances match the ledger")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level.upper())
    sys.exit(main())
