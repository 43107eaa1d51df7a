"""
Shared fixture for ledger tests: a fresh file-backed SQLite database per test.
"""
import os
import tempfile
import unittest

from sqlalchemy import event, select
from sqlalchemy.exc import OperationalError

from common.retry import RetryConfig
from ledger_service.admin import AdminAdjustments
from ledger_service.coinflip import CoinflipEngine
from ledger_service.coordinator import TransactionCoordinator
from ledger_service.db import make_engine, make_session_factory
from ledger_service.economy import EconomyService
from ledger_service.models import Base, LedgerEntry

OPERATOR = "operator-1"


class SerializationFailure(Exception):
    """Stands in for a driver error carrying SQLSTATE 40001"""
    sqlstate = "40001"


class LedgerTestCase(unittest.TestCase):
    max_attempts = 5

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.database_url = f"sqlite:///{os.path.join(self.tmpdir.name, 'ledger.db')}"
        self.engine = make_engine(self.database_url)
        Base.metadata.create_all(self.engine)

        self.session_factory = make_session_factory(self.engine)
        self.coordinator = TransactionCoordinator(
            self.session_factory,
            RetryConfig(max_attempts=self.max_attempts, base_delay=0, jitter=False),
        )
        self.economy = EconomyService(self.coordinator)
        self.admin = AdminAdjustments(self.coordinator, [OPERATOR])
        self.coinflip = CoinflipEngine(self.coordinator)

    def tearDown(self):
        self.engine.dispose()
        self.tmpdir.cleanup()

    def fund(self, user_id: str, amount: int) -> int:
        return self.admin.admin_add(OPERATOR, user_id, amount).balance

    def balance(self, user_id: str) -> int:
        return self.economy.get_balance(user_id)

    def entries(self, **filters):
        with self.session_factory() as session:
            query = select(LedgerEntry).filter_by(**filters).order_by(LedgerEntry.id)
            return list(session.scalars(query).all())

    def inject_commit_failures(self, count: int, error: Exception = None):
        """Make the next `count` commits fail as if the database aborted them."""
        remaining = [count]

        def fail_commit(session):
            if remaining[0] > 0:
                remaining[0] -= 1
                orig = error or SerializationFailure("could not serialize access due to concurrent update")
                raise OperationalError("COMMIT", {}, orig)

        event.listen(self.session_factory, "before_commit", fail_commit)
        self.addCleanup(event.remove, self.session_factory, "before_commit", fail_commit)
        return remaining
