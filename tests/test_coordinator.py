"""
Unit tests for the transaction coordinator and its retry policy
"""
import unittest

from sqlalchemy.exc import OperationalError

from common.retry import RetryConfig, RetryExhausted, calculate_delay, retry_call
from ledger_service.coordinator import SerializationConflict, TransactionCoordinator, is_serialization_failure
from ledger_service.errors import InsufficientFunds, LedgerUnavailable, TransactionConflictError
from ledger_service.models import Account

from ledger_testcase import LedgerTestCase, SerializationFailure


class MySQLDeadlock(Exception):
    pass


class TestRetryPolicy(unittest.TestCase):
    """Backoff and retry decisions independent of any database"""

    def test_delay_grows_and_is_capped(self):
        config = RetryConfig(base_delay=0.1, max_delay=0.3, jitter=False)
        self.assertAlmostEqual(calculate_delay(1, config), 0.1)
        self.assertAlmostEqual(calculate_delay(2, config), 0.2)
        self.assertAlmostEqual(calculate_delay(5, config), 0.3)

    def test_jitter_stays_within_half_to_full_delay(self):
        config = RetryConfig(base_delay=0.2, max_delay=1.0, jitter=True)
        for _ in range(50):
            delay = calculate_delay(1, config)
            self.assertGreaterEqual(delay, 0.1)
            self.assertLessEqual(delay, 0.2)

    def test_non_retryable_error_propagates_after_one_call(self):
        calls = []

        def boom():
            calls.append(1)
            raise KeyError("nope")

        with self.assertRaises(KeyError):
            retry_call(boom, RetryConfig(retryable_exceptions=[ValueError]), sleep=lambda _: None)
        self.assertEqual(len(calls), 1)

    def test_retryable_error_exhausts_attempts(self):
        calls = []
        sleeps = []

        def flaky():
            calls.append(1)
            raise ValueError("busy")

        config = RetryConfig(max_attempts=3, base_delay=0.01, jitter=False, retryable_exceptions=[ValueError])
        with self.assertRaises(RetryExhausted) as ctx:
            retry_call(flaky, config, sleep=sleeps.append)

        self.assertEqual(len(calls), 3)
        self.assertEqual(ctx.exception.attempts, 3)
        self.assertIsInstance(ctx.exception.last_error, ValueError)
        self.assertEqual(len(sleeps), 2)

    def test_recovers_when_a_later_attempt_succeeds(self):
        outcomes = [ValueError("busy"), ValueError("busy"), "done"]

        def eventually():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        config = RetryConfig(max_attempts=5, base_delay=0, retryable_exceptions=[ValueError])
        self.assertEqual(retry_call(eventually, config, sleep=lambda _: None), "done")

    def test_rejects_zero_attempts(self):
        with self.assertRaises(ValueError):
            RetryConfig(max_attempts=0)


class TestConflictDetection(unittest.TestCase):
    """Which driver errors count as serialization conflicts"""

    def test_sqlstate_40001_is_a_conflict(self):
        self.assertTrue(is_serialization_failure(OperationalError("UPDATE", {}, SerializationFailure("x"))))

    def test_mysql_deadlock_code_is_a_conflict(self):
        error = OperationalError("UPDATE", {}, MySQLDeadlock(1213, "Deadlock found when trying to get lock"))
        self.assertTrue(is_serialization_failure(error))

    def test_sqlite_lock_is_a_conflict(self):
        self.assertTrue(is_serialization_failure(OperationalError("BEGIN", {}, Exception("database is locked"))))

    def test_other_errors_are_not_conflicts(self):
        self.assertFalse(is_serialization_failure(OperationalError("SELECT", {}, Exception("disk I/O error"))))


class TestTransactionCoordinator(LedgerTestCase):
    """Commit, rollback and retry behaviour against a real SQLite store"""

    max_attempts = 3

    def test_shared_retry_config_is_left_untouched(self):
        """Coordinators copy their policy instead of extending the caller's"""
        shared = RetryConfig(max_attempts=2, base_delay=0, jitter=False)

        first = TransactionCoordinator(self.session_factory, shared)
        second = TransactionCoordinator(self.session_factory, shared)

        self.assertEqual(shared.retryable_exceptions, ())
        for coordinator in (first, second):
            self.assertIsNot(coordinator.retry_config, shared)
            self.assertEqual(coordinator.retry_config.retryable_exceptions, (SerializationConflict,))
            self.assertEqual(coordinator.retry_config.max_attempts, 2)

    def test_commits_work_on_success(self):
        def open_account(session):
            session.add(Account(user_id="alice", balance=42))

        self.coordinator.run_with_retry(open_account)
        self.assertEqual(self.balance("alice"), 42)

    def test_conflict_is_retried_from_scratch(self):
        calls = []

        def open_account(session):
            calls.append(1)
            session.add(Account(user_id="alice", balance=42))

        self.inject_commit_failures(1)
        self.coordinator.run_with_retry(open_account)

        self.assertEqual(len(calls), 2)
        self.assertEqual(self.balance("alice"), 42)

    def test_exhausted_conflicts_surface_as_transaction_conflict(self):
        calls = []

        def open_account(session):
            calls.append(1)
            session.add(Account(user_id="alice", balance=42))

        self.inject_commit_failures(10)
        with self.assertRaises(TransactionConflictError) as ctx:
            self.coordinator.run_with_retry(open_account)

        self.assertEqual(len(calls), 3)
        self.assertEqual(ctx.exception.attempts, 3)
        self.assertEqual(ctx.exception.code, "SERVICE_UNAVAILABLE")
        self.assertEqual(self.balance("alice"), 0)

    def test_max_attempts_override(self):
        calls = []

        def open_account(session):
            calls.append(1)
            session.add(Account(user_id="alice", balance=1))

        self.inject_commit_failures(10)
        with self.assertRaises(TransactionConflictError):
            self.coordinator.run_with_retry(open_account, max_attempts=1)
        self.assertEqual(len(calls), 1)

    def test_domain_error_is_attempted_once_and_rolled_back(self):
        calls = []

        def overdraw(session):
            calls.append(1)
            session.add(Account(user_id="alice", balance=5))
            session.flush()
            raise InsufficientFunds("alice", 5, 10)

        with self.assertRaises(InsufficientFunds):
            self.coordinator.run_with_retry(overdraw)

        self.assertEqual(len(calls), 1)
        self.assertEqual(self.balance("alice"), 0)

    def test_infrastructure_error_is_not_retried(self):
        calls = []

        def open_account(session):
            calls.append(1)
            session.add(Account(user_id="alice", balance=42))

        self.inject_commit_failures(1, error=Exception("disk I/O error"))
        with self.assertRaises(LedgerUnavailable) as ctx:
            self.coordinator.run_with_retry(open_account)

        self.assertEqual(len(calls), 1)
        self.assertEqual(ctx.exception.code, "DATABASE_ERROR")
        self.assertEqual(self.balance("alice"), 0)


if __name__ == "__main__":
    unittest.main()
