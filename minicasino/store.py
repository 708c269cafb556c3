from __future__ import annotations

import copy
import json
import logging
import os
import secrets
import tempfile
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Protocol

from .models import (
    Balance,
    GameHistoryRecord,
    Session,
    User,
    isoformat,
    money_str,
    parse_time,
    utcnow,
)

logger = logging.getLogger(__name__)


class Repository(Protocol):
    """
    Persistence contract used by the account directory, the ledger and the
    game orchestrator.

    Implementations map their storage rows to the dataclasses in `models`
    and hide any file or SQL details from the layers above. Every call is an
    independent read-modify-write; nothing couples two calls together.
    """

    # Users
    def insert_user(self, user: User) -> User:
        """Persist a new user, assigning its id. Returns the stored user."""

        ...

    def get_user(self, user_id: int) -> Optional[User]:
        ...

    def get_user_by_username(self, username: str) -> Optional[User]:
        ...

    def get_user_by_open_id(self, open_id: str) -> Optional[User]:
        ...

    def upsert_external_user(self, open_id: str, name: Optional[str], email: Optional[str]) -> User:
        """Create or refresh the user bound to an external identity key."""

        ...

    def touch_last_signed_in(self, user_id: int) -> None:
        ...

    # Balances
    def get_balance(self, user_id: int) -> Balance:
        """Return the user's balance row, creating a zero balance on first access."""

        ...

    def set_balance(self, user_id: int, amount: Decimal) -> Balance:
        """Overwrite the balance (not a delta)."""

        ...

    # History
    def add_history(self, record: GameHistoryRecord) -> GameHistoryRecord:
        ...

    def list_history(self, user_id: int, limit: int) -> List[GameHistoryRecord]:
        """Return at most `limit` records for the user, newest first."""

        ...

    # Sessions
    def create_session(
        self, expires_at: datetime, user_id: Optional[int] = None, open_id: Optional[str] = None
    ) -> Session:
        ...

    def get_session(self, token: str) -> Optional[Session]:
        """Return the session for `token` unless it is unknown or expired."""

        ...

    def delete_session(self, token: str) -> None:
        ...

    # Withdrawal address book
    def get_withdrawal_addresses(self, user_id: int) -> Dict[str, str]:
        ...

    def set_withdrawal_address(self, user_id: int, currency: str, address: str) -> None:
        ...


def new_token() -> str:
    return secrets.token_hex(32)


def default_document() -> dict:
    return {
        "users": [],
        "userBalances": [],
        "gameHistory": [],
        "sessions": [],
        "withdrawalAddresses": {},
        "nextIds": {"users": 1, "userBalances": 1, "gameHistory": 1},
    }


# ---------------------- ROW MAPPING -----------------------
def _user_row(u: User) -> dict:
    return {
        "id": u.id,
        "username": u.username,
        "passwordHash": u.password_hash,
        "openId": u.open_id,
        "name": u.name,
        "email": u.email,
        "loginMethod": u.login_method,
        "role": u.role,
        "createdAt": isoformat(u.created_at),
        "updatedAt": isoformat(u.updated_at),
        "lastSignedIn": isoformat(u.last_signed_in),
    }


def _to_user(row: dict) -> User:
    return User(
        id=row["id"],
        username=row.get("username"),
        password_hash=row.get("passwordHash"),
        open_id=row.get("openId"),
        name=row.get("name"),
        email=row.get("email"),
        login_method=row.get("loginMethod") or "local",
        role=row.get("role") or "user",
        created_at=parse_time(row.get("createdAt")) or utcnow(),
        updated_at=parse_time(row.get("updatedAt")) or utcnow(),
        last_signed_in=parse_time(row.get("lastSignedIn")) or utcnow(),
    )


def _to_balance(row: dict) -> Balance:
    return Balance(
        id=row["id"],
        user_id=row["userId"],
        balance=Decimal(row["balance"]),
        created_at=parse_time(row.get("createdAt")),
        updated_at=parse_time(row.get("updatedAt")),
    )


def _history_row(rec: GameHistoryRecord) -> dict:
    d = rec.to_dict()
    # stored the way the JSON document has always held it: result as JSON text
    d["result"] = json.dumps(rec.result) if rec.result is not None else None
    return d


def _to_history(row: dict) -> GameHistoryRecord:
    result = row.get("result")
    if isinstance(result, str):
        try:
            result = json.loads(result)
        except ValueError:
            result = {"raw": result}
    return GameHistoryRecord(
        id=row["id"],
        user_id=row["userId"],
        game_type=row["gameType"],
        bet_amount=Decimal(str(row["betAmount"])),
        win_amount=Decimal(str(row.get("winAmount") or "0")),
        result=result,
        created_at=parse_time(row.get("createdAt")),
    )


def _to_session(row: dict) -> Session:
    return Session(
        token=row["token"],
        expires_at=parse_time(row["expiresAt"]),
        user_id=row.get("userId"),
        open_id=row.get("openId"),
    )


# ---------------------- DOCUMENT STORES -------------------
class DocumentStore:
    """
    Repository over a single JSON-shaped document.

    Subclasses only decide where the document lives (`_read` / `_write`);
    each operation reads the whole document, changes it and writes it back.
    """

    def _read(self) -> dict:
        raise NotImplementedError

    def _write(self, doc: dict) -> None:
        raise NotImplementedError

    def _next_id(self, doc: dict, kind: str) -> int:
        ids = doc.setdefault("nextIds", {})
        value = ids.get(kind, 1)
        ids[kind] = value + 1
        return value

    # ---------- users ----------
    def insert_user(self, user: User) -> User:
        doc = self._read()
        user.id = self._next_id(doc, "users")
        doc["users"].append(_user_row(user))
        self._write(doc)
        return user

    def get_user(self, user_id):
        row = next((u for u in self._read()["users"] if u["id"] == user_id), None)
        return _to_user(row) if row else None

    def get_user_by_username(self, username):
        row = next((u for u in self._read()["users"] if u.get("username") == username), None)
        return _to_user(row) if row else None

    def get_user_by_open_id(self, open_id):
        row = next((u for u in self._read()["users"] if u.get("openId") == open_id), None)
        return _to_user(row) if row else None

    def upsert_external_user(self, open_id, name, email):
        doc = self._read()
        now = isoformat(utcnow())
        row = next((u for u in doc["users"] if u.get("openId") == open_id), None)
        if row is None:
            row = _user_row(User(id=self._next_id(doc, "users"), open_id=open_id, name=name,
                                 email=email, login_method="oauth"))
            doc["users"].append(row)
        else:
            if name is not None:
                row["name"] = name
            if email is not None:
                row["email"] = email
            row["updatedAt"] = now
            row["lastSignedIn"] = now
        self._write(doc)
        return _to_user(row)

    def touch_last_signed_in(self, user_id):
        doc = self._read()
        for row in doc["users"]:
            if row["id"] == user_id:
                row["lastSignedIn"] = isoformat(utcnow())
                self._write(doc)
                return

    # ---------- balances ----------
    def get_balance(self, user_id):
        doc = self._read()
        row = next((b for b in doc["userBalances"] if b["userId"] == user_id), None)
        if row is None:
            now = isoformat(utcnow())
            row = {
                "id": self._next_id(doc, "userBalances"),
                "userId": user_id,
                "balance": "0.00",
                "createdAt": now,
                "updatedAt": now,
            }
            doc["userBalances"].append(row)
            self._write(doc)
        return _to_balance(row)

    def set_balance(self, user_id, amount):
        self.get_balance(user_id)
        doc = self._read()
        row = next(b for b in doc["userBalances"] if b["userId"] == user_id)
        row["balance"] = money_str(amount)
        row["updatedAt"] = isoformat(utcnow())
        self._write(doc)
        return _to_balance(row)

    # ---------- history ----------
    def add_history(self, record):
        doc = self._read()
        row = _history_row(record)
        row["id"] = self._next_id(doc, "gameHistory")
        doc["gameHistory"].append(row)
        self._write(doc)
        return _to_history(row)

    def list_history(self, user_id, limit):
        rows = [h for h in self._read()["gameHistory"] if h["userId"] == user_id]
        records = [_to_history(h) for h in rows]
        # stable sort: same-instant records keep insertion order reversed via id
        records.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return records[:limit]

    # ---------- sessions ----------
    def create_session(self, expires_at, user_id=None, open_id=None):
        doc = self._read()
        session = Session(token=new_token(), expires_at=expires_at, user_id=user_id, open_id=open_id)
        row = {"token": session.token, "expiresAt": isoformat(expires_at)}
        if user_id is not None:
            row["userId"] = user_id
        else:
            row["openId"] = open_id
        doc.setdefault("sessions", []).append(row)
        self._write(doc)
        return session

    def get_session(self, token):
        row = next((s for s in self._read().get("sessions", []) if s["token"] == token), None)
        if row is None:
            return None
        session = _to_session(row)
        return None if session.expired() else session

    def delete_session(self, token):
        doc = self._read()
        sessions = doc.get("sessions", [])
        kept = [s for s in sessions if s["token"] != token]
        if len(kept) != len(sessions):
            doc["sessions"] = kept
            self._write(doc)

    # ---------- withdrawal addresses ----------
    def get_withdrawal_addresses(self, user_id):
        return dict(self._read().get("withdrawalAddresses", {}).get(str(user_id), {}))

    def set_withdrawal_address(self, user_id, currency, address):
        doc = self._read()
        book = doc.setdefault("withdrawalAddresses", {})
        book.setdefault(str(user_id), {})[currency] = address
        self._write(doc)


class MemoryStore(DocumentStore):
    """In-process document; the fake used by tests and throwaway runs."""

    def __init__(self, document: Optional[dict] = None):
        self.document = document or default_document()

    def _read(self):
        # callers mutate what they read; hand out a copy like a file read would
        return copy.deepcopy(self.document)

    def _write(self, doc):
        self.document = copy.deepcopy(doc)


class JsonFileStore(DocumentStore):
    """The whole state in one pretty-printed JSON file."""

    def __init__(self, path: str):
        self.path = path

    def _ensure_dir(self):
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)

    def _read(self):
        self._ensure_dir()
        if not os.path.exists(self.path):
            return default_document()
        with open(self.path, "r", encoding="utf-8") as fh:
            raw = fh.read()
        try:
            parsed = json.loads(raw)
        except ValueError:
            logger.warning("Store file %s is not valid JSON; starting from an empty store", self.path)
            return default_document()
        doc = default_document()
        doc.update(parsed)
        return doc

    def _write(self, doc):
        self._ensure_dir()
        # write beside the target, then swap it in; readers never see half a file
        fd, tmp = tempfile.mkstemp(dir=os.path.dirname(os.path.abspath(self.path)),
                                   prefix=".store-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(doc, fh, indent=2, ensure_ascii=False)
            os.replace(tmp, self.path)
        except Exception:
            os.remove(tmp)
            raise
