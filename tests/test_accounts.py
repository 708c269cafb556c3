import unittest
from datetime import timedelta

from minicasino.accounts import AccountDirectory
from minicasino.errors import InvalidCredentials, UsernameTaken, ValidationError
from minicasino.models import utcnow
from minicasino.store import MemoryStore


class BrokenSessionStore(MemoryStore):
    def get_session(self, token):
        raise OSError("disk gone")


class AccountDirectoryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.repo = MemoryStore()
        self.accounts = AccountDirectory(self.repo, session_ttl=timedelta(hours=24),
                                         remember_me_ttl=timedelta(days=30))

    def test_register_hashes_password_and_defaults_name(self):
        user = self.accounts.register("  alice ", "secret1", email="Alice@Example.com")
        self.assertEqual(user.username, "alice")
        self.assertEqual(user.name, "alice")
        self.assertEqual(user.email, "alice@example.com")
        self.assertEqual(user.login_method, "local")
        self.assertEqual(user.role, "user")
        self.assertNotEqual(user.password_hash, "secret1")
        self.assertEqual(self.repo.get_user_by_username("alice").id, user.id)

    def test_register_rejects_taken_username(self):
        self.accounts.register("alice", "secret1")
        with self.assertRaises(UsernameTaken):
            self.accounts.register("alice", "another1")

    def test_register_validates_input(self):
        with self.assertRaises(ValidationError):
            self.accounts.register("al", "secret1")
        with self.assertRaises(ValidationError):
            self.accounts.register("a" * 51, "secret1")
        with self.assertRaises(ValidationError):
            self.accounts.register("alice", "12345")
        with self.assertRaises(ValidationError):
            self.accounts.register("alice", "secret1", email="not-an-email")
        # empty email means "none given"
        self.assertIsNone(self.accounts.register("alice", "secret1", email="").email)

    def test_authenticate(self):
        created = self.accounts.register("alice", "secret1")
        self.assertEqual(self.accounts.authenticate("alice", "secret1").id, created.id)

    def test_unknown_user_and_wrong_password_look_the_same(self):
        self.accounts.register("alice", "secret1")
        with self.assertRaises(InvalidCredentials) as wrong:
            self.accounts.authenticate("alice", "nope123")
        with self.assertRaises(InvalidCredentials) as unknown:
            self.accounts.authenticate("bob", "secret1")
        self.assertEqual(str(wrong.exception), str(unknown.exception))

    def test_external_identity_cannot_use_password_login(self):
        user, _ = self.accounts.sign_in_external("oid-9", name="Ext")
        self.repo.document["users"][0]["username"] = "ext"
        with self.assertRaises(InvalidCredentials):
            self.accounts.authenticate("ext", "")
        self.assertEqual(user.login_method, "oauth")

    def test_sessions(self):
        user = self.accounts.register("alice", "secret1")
        token, ttl = self.accounts.open_session(user)
        self.assertEqual(ttl, timedelta(hours=24))
        self.assertEqual(self.accounts.resolve_session(token).id, user.id)

        _, long_ttl = self.accounts.open_session(user, remember_me=True)
        self.assertEqual(long_ttl, timedelta(days=30))

        self.accounts.close_session(token)
        self.assertIsNone(self.accounts.resolve_session(token))
        self.assertIsNone(self.accounts.resolve_session(None))

    def test_expired_session_is_anonymous(self):
        user = self.accounts.register("alice", "secret1")
        session = self.repo.create_session(utcnow() - timedelta(minutes=1), user_id=user.id)
        self.assertIsNone(self.accounts.resolve_session(session.token))

    def test_external_session_resolves_through_open_id(self):
        user, token = self.accounts.sign_in_external("oid-1", name="Ext", email="ext@example.com")
        self.assertEqual(self.accounts.resolve_session(token).id, user.id)
        with self.assertRaises(ValidationError):
            self.accounts.sign_in_external("  ")

    def test_session_lookup_failure_degrades_to_anonymous(self):
        accounts = AccountDirectory(BrokenSessionStore())
        with self.assertLogs("minicasino.accounts", level="ERROR"):
            self.assertIsNone(accounts.resolve_session("abc"))

    def test_withdrawal_addresses(self):
        user = self.accounts.register("alice", "secret1")
        self.assertEqual(self.accounts.withdrawal_addresses(user),
                         {"USDT": "", "BTC": "", "ETH": "", "LTC": ""})
        book = self.accounts.set_withdrawal_address(user, "BTC", " abc ")
        self.assertEqual(book["BTC"], "abc")
        self.assertEqual(self.accounts.withdrawal_addresses(user)["BTC"], "abc")
        with self.assertRaises(ValidationError):
            self.accounts.set_withdrawal_address(user, "DOGE", "xyz")


if __name__ == "__main__":
    unittest.main()
