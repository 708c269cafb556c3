import json
import os
import shutil
import tempfile
import unittest
from datetime import timedelta
from unittest import mock
from decimal import Decimal

from minicasino.models import GameHistoryRecord, User, utcnow
from minicasino.sql_store import SqlStore
from minicasino.store import JsonFileStore, MemoryStore
from tests.support import make_user


class RepositoryContract:
    """Behaviour every repository must share; mixed into one TestCase per backend."""

    def make_store(self):
        raise NotImplementedError

    def setUp(self) -> None:
        self.repo = self.make_store()
        self.user = make_user(self.repo)

    def test_user_ids_are_assigned_in_order(self):
        other = make_user(self.repo, "bob")
        self.assertEqual(other.id, self.user.id + 1)
        self.assertEqual(self.repo.get_user(other.id).username, "bob")
        self.assertEqual(self.repo.get_user_by_username("alice").id, self.user.id)
        self.assertIsNone(self.repo.get_user_by_username("carol"))
        self.assertIsNone(self.repo.get_user(999))

    def test_balance_is_created_lazily_at_zero(self):
        first = self.repo.get_balance(self.user.id)
        self.assertEqual(first.balance, Decimal("0.00"))
        self.assertEqual(self.repo.get_balance(self.user.id).id, first.id)

    def test_set_balance_overwrites(self):
        self.repo.set_balance(self.user.id, Decimal("150"))
        self.repo.set_balance(self.user.id, Decimal("42.5"))
        self.assertEqual(self.repo.get_balance(self.user.id).balance, Decimal("42.50"))
        self.assertEqual(self.repo.get_balance(self.user.id).to_dict()["balance"], "42.50")

    def test_history_is_listed_newest_first(self):
        start = utcnow() - timedelta(minutes=10)
        for i, game in enumerate(["slots", "dice", "wheel"]):
            self.repo.add_history(GameHistoryRecord(
                id=None, user_id=self.user.id, game_type=game, bet_amount=Decimal("10"),
                win_amount=Decimal(i), result={"n": i}, created_at=start + timedelta(minutes=i),
            ))
        other = make_user(self.repo, "bob")
        self.repo.add_history(GameHistoryRecord(id=None, user_id=other.id, game_type="slots",
                                                bet_amount=Decimal("1")))

        records = self.repo.list_history(self.user.id, 50)
        self.assertEqual([r.game_type for r in records], ["wheel", "dice", "slots"])
        self.assertEqual(records[0].result, {"n": 2})
        self.assertEqual(records[0].to_dict()["winAmount"], "2")
        self.assertEqual([r.game_type for r in self.repo.list_history(self.user.id, 2)], ["wheel", "dice"])

    def test_sessions_resolve_until_expiry(self):
        live = self.repo.create_session(utcnow() + timedelta(hours=1), user_id=self.user.id)
        stale = self.repo.create_session(utcnow() - timedelta(seconds=1), user_id=self.user.id)
        self.assertEqual(len(live.token), 64)
        self.assertEqual(self.repo.get_session(live.token).user_id, self.user.id)
        self.assertIsNone(self.repo.get_session(stale.token))
        self.assertIsNone(self.repo.get_session("nope"))

        self.repo.delete_session(live.token)
        self.assertIsNone(self.repo.get_session(live.token))

    def test_external_identity_upsert(self):
        created = self.repo.upsert_external_user("oid-1", "Ext", None)
        again = self.repo.upsert_external_user("oid-1", None, "ext@example.com")
        self.assertEqual(created.id, again.id)
        self.assertEqual(again.name, "Ext")
        self.assertEqual(again.email, "ext@example.com")
        self.assertEqual(again.login_method, "oauth")
        self.assertIsNone(again.password_hash)
        self.assertEqual(self.repo.get_user_by_open_id("oid-1").id, created.id)

        session = self.repo.create_session(utcnow() + timedelta(hours=1), open_id="oid-1")
        self.assertEqual(self.repo.get_session(session.token).open_id, "oid-1")

    def test_withdrawal_addresses(self):
        self.assertEqual(self.repo.get_withdrawal_addresses(self.user.id), {})
        self.repo.set_withdrawal_address(self.user.id, "BTC", "bc1-old")
        self.repo.set_withdrawal_address(self.user.id, "BTC", "bc1-new")
        self.repo.set_withdrawal_address(self.user.id, "ETH", "0xabc")
        self.assertEqual(self.repo.get_withdrawal_addresses(self.user.id), {"BTC": "bc1-new", "ETH": "0xabc"})


class MemoryStoreTests(RepositoryContract, unittest.TestCase):
    def make_store(self):
        return MemoryStore()

    def test_reads_do_not_leak_references(self):
        self.repo._read()["users"].clear()
        self.assertIsNotNone(self.repo.get_user(self.user.id))


class JsonFileStoreTests(RepositoryContract, unittest.TestCase):
    def make_store(self):
        self.tmp = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tmp)
        self.path = os.path.join(self.tmp, "data", "store.json")
        return JsonFileStore(self.path)

    def test_document_layout(self):
        self.repo.get_balance(self.user.id)
        with open(self.path, encoding="utf-8") as fh:
            doc = json.load(fh)
        self.assertEqual(
            set(doc),
            {"users", "userBalances", "gameHistory", "sessions", "withdrawalAddresses", "nextIds"},
        )
        self.assertEqual(doc["nextIds"], {"users": 2, "userBalances": 2, "gameHistory": 1})
        self.assertEqual(doc["userBalances"][0]["balance"], "0.00")

    def test_failed_write_keeps_previous_file(self):
        with open(self.path, encoding="utf-8") as fh:
            before = fh.read()
        with mock.patch("minicasino.store.json.dump", side_effect=OSError("disk full")):
            with self.assertRaises(OSError):
                self.repo.set_balance(self.user.id, Decimal("5"))
        with open(self.path, encoding="utf-8") as fh:
            self.assertEqual(fh.read(), before)
        self.assertEqual(os.listdir(os.path.dirname(self.path)), ["store.json"])
        self.assertEqual(self.repo.get_user(self.user.id).username, "alice")

    def test_corrupt_file_reads_as_empty_store(self):
        with open(self.path, "w", encoding="utf-8") as fh:
            fh.write("{not json")
        self.assertIsNone(self.repo.get_user(self.user.id))
        user = self.repo.insert_user(User(id=0, username="fresh"))
        self.assertEqual(user.id, 1)


class SqlStoreTests(RepositoryContract, unittest.TestCase):
    def make_store(self):
        return SqlStore("sqlite://")


if __name__ == "__main__":
    unittest.main()
