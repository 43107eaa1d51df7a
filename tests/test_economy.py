"""
Tests for peer transfers, balance and history reads, and reconciliation
"""
import threading
import unittest

from ledger_service import reconcile
from ledger_service.errors import InsufficientFunds, InvalidAmount, InvalidPagination, SelfTransfer
from ledger_service.models import TRANSFER, Account

from ledger_testcase import LedgerTestCase


class TestTransfer(LedgerTestCase):
    """Atomic transfers between two accounts"""

    def test_transfer_moves_funds_and_records_entry(self):
        """A=100, transfer 30 to B -> A=70, B=30, one transfer entry"""
        self.fund("A", 100)

        result = self.economy.transfer("A", "B", 30, guild_id="guild-1", reason="lunch")

        self.assertEqual((result.from_balance, result.to_balance), (70, 30))
        self.assertEqual(self.balance("A"), 70)
        self.assertEqual(self.balance("B"), 30)

        transfers = self.entries(type=TRANSFER)
        self.assertEqual(len(transfers), 1)
        entry = transfers[0]
        self.assertEqual(entry.id, result.entry_id)
        self.assertEqual((entry.from_user_id, entry.to_user_id, entry.amount), ("A", "B", 30))
        self.assertEqual((entry.guild_id, entry.reason), ("guild-1", "lunch"))

    def test_insufficient_funds_changes_nothing(self):
        """A=10, transfer 30 -> InsufficientFunds, no effect"""
        self.fund("A", 10)

        with self.assertRaises(InsufficientFunds) as ctx:
            self.economy.transfer("A", "B", 30)

        self.assertEqual(ctx.exception.balance, 10)
        self.assertEqual(ctx.exception.required, 30)
        self.assertEqual(self.balance("A"), 10)
        self.assertEqual(self.balance("B"), 0)
        self.assertEqual(self.entries(type=TRANSFER), [])

    def test_exact_balance_can_be_spent(self):
        self.fund("A", 30)
        self.economy.transfer("A", "B", 30)
        self.assertEqual(self.balance("A"), 0)
        self.assertEqual(self.balance("B"), 30)

    def test_self_transfer_is_rejected_regardless_of_balance(self):
        self.fund("A", 100)
        for amount in (1, 100, 10_000, 0, -5):
            with self.assertRaises(SelfTransfer):
                self.economy.transfer("A", "A", amount)
        self.assertEqual(self.balance("A"), 100)
        self.assertEqual(self.entries(type=TRANSFER), [])

    def test_non_positive_and_non_integer_amounts_are_rejected(self):
        self.fund("A", 100)
        for amount in (0, -1, 1.5, "10", True, None):
            with self.assertRaises(InvalidAmount):
                self.economy.transfer("A", "B", amount)
        self.assertEqual(self.balance("A"), 100)

    def test_failed_transfer_does_not_create_recipient_account(self):
        self.fund("A", 5)
        with self.assertRaises(InsufficientFunds):
            self.economy.transfer("A", "ghost", 50)

        with self.session_factory() as session:
            self.assertIsNone(session.get(Account, "ghost"))

    def test_conflicted_transfer_retries_to_same_result(self):
        """A retried attempt lands on the same balances as an uncontended run"""
        self.fund("A", 100)
        self.inject_commit_failures(2)

        result = self.economy.transfer("A", "B", 30)

        self.assertEqual((result.from_balance, result.to_balance), (70, 30))
        self.assertEqual(self.balance("A"), 70)
        self.assertEqual(self.balance("B"), 30)
        self.assertEqual(len(self.entries(type=TRANSFER)), 1)
        self.assertEqual(self.economy.reconcile(), [])

    def test_concurrent_transfers_never_overdraw(self):
        """Two threads race to spend 60 out of 100; exactly one wins"""
        self.fund("A", 100)
        outcomes = []
        barrier = threading.Barrier(2)

        def spend(to_user):
            barrier.wait()
            try:
                self.economy.transfer("A", to_user, 60)
                outcomes.append("ok")
            except InsufficientFunds:
                outcomes.append("insufficient")

        threads = [threading.Thread(target=spend, args=(user,)) for user in ("B", "C")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(sorted(outcomes), ["insufficient", "ok"])
        self.assertEqual(self.balance("A"), 40)
        self.assertEqual(self.balance("B") + self.balance("C"), 60)
        self.assertEqual(self.economy.reconcile(), [])

    def test_many_concurrent_transfers_conserve_supply(self):
        users = ["u1", "u2", "u3", "u4"]
        for user in users:
            self.fund(user, 50)

        def shuffle(offset):
            for i in range(10):
                sender = users[(i + offset) % len(users)]
                receiver = users[(i + offset + 1) % len(users)]
                try:
                    self.economy.transfer(sender, receiver, 7)
                except InsufficientFunds:
                    pass

        threads = [threading.Thread(target=shuffle, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        balances = [self.balance(user) for user in users]
        self.assertEqual(sum(balances), 200)
        self.assertTrue(all(b >= 0 for b in balances))
        self.assertEqual(self.economy.reconcile(), [])


class TestTransactionHistory(LedgerTestCase):
    """Balance reads and paginated history"""

    def test_unknown_user_has_zero_balance(self):
        self.assertEqual(self.balance("nobody"), 0)

    def test_history_lists_both_directions_newest_first(self):
        self.fund("A", 100)
        self.economy.transfer("A", "B", 10)
        self.economy.transfer("B", "A", 3)
        self.economy.transfer("A", "C", 5)

        entries, total = self.economy.list_transactions("A", limit=10)

        self.assertEqual(total, 4)
        self.assertEqual([e.amount for e in entries], [5, 3, 10, 100])

    def test_history_pagination(self):
        self.fund("A", 100)
        for _ in range(5):
            self.economy.transfer("A", "B", 1)

        first, total = self.economy.list_transactions("B", limit=2, offset=0)
        rest, _ = self.economy.list_transactions("B", limit=200, offset=2)

        self.assertEqual(total, 5)
        self.assertEqual(len(first), 2)
        self.assertEqual(len(rest), 3)
        self.assertFalse({e.id for e in first} & {e.id for e in rest})

    def test_invalid_pagination_is_rejected(self):
        for limit, offset in ((0, 0), (201, 0), (10, -1)):
            with self.assertRaises(InvalidPagination):
                self.economy.list_transactions("A", limit=limit, offset=offset)


class TestReconciliation(LedgerTestCase):
    """Account store against ledger-derived balances"""

    def test_ledger_balance_matches_account(self):
        self.fund("A", 100)
        self.economy.transfer("A", "B", 40)
        self.admin.admin_remove("operator-1", "B", 15)

        self.assertEqual(self.economy.ledger_balance("A"), 60)
        self.assertEqual(self.economy.ledger_balance("B"), 25)
        self.assertEqual(self.economy.reconcile(), [])

    def test_out_of_band_balance_edit_is_reported(self):
        self.fund("A", 100)
        with self.session_factory() as session:
            with session.begin():
                session.get(Account, "A").balance = 90

        discrepancies = self.economy.reconcile()

        self.assertEqual(len(discrepancies), 1)
        self.assertEqual(discrepancies[0].user_id, "A")
        self.assertEqual(discrepancies[0].account_balance, 90)
        self.assertEqual(discrepancies[0].ledger_balance, 100)

    def test_reconcile_command_exit_codes(self):
        self.fund("A", 100)
        self.economy.transfer("A", "B", 10)
        self.assertEqual(reconcile.main([self.database_url]), 0)

        with self.session_factory() as session:
            with session.begin():
                session.get(Account, "B").balance = 11
        self.assertEqual(reconcile.main([self.database_url]), 1)


if __name__ == "__main__":
    unittest.main()
