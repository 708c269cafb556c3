"""Account directory: users, credentials, sessions and the withdrawal address book."""
import logging
import re
from datetime import timedelta
from typing import Dict, Optional, Tuple

from werkzeug.security import check_password_hash, generate_password_hash

from .errors import InvalidCredentials, UsernameTaken, ValidationError
from .models import CURRENCIES, User, utcnow

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _clean_username(username) -> str:
    username = (username or "").strip()
    if not 3 <= len(username) <= 50:
        raise ValidationError("Username must be between 3 and 50 characters", code="invalid_username")
    return username


def _clean_email(email) -> Optional[str]:
    email = (email or "").strip().lower()
    if not email:
        return None
    if not EMAIL_RE.match(email):
        raise ValidationError("Invalid email address", code="invalid_email")
    return email


def currency(value) -> str:
    tag = str(value or "").upper()
    if tag not in CURRENCIES:
        raise ValidationError(f"crypto must be one of {', '.join(CURRENCIES)}", code="invalid_crypto")
    return tag


class AccountDirectory:
    def __init__(self, repo, session_ttl=timedelta(hours=24), remember_me_ttl=timedelta(days=30)):
        self.repo = repo
        self.session_ttl = session_ttl
        self.remember_me_ttl = remember_me_ttl

    # ---------- credentials ----------
    def register(self, username, password, name=None, email=None) -> User:
        username = _clean_username(username)
        password = password or ""
        if len(password) < 6:
            raise ValidationError("Password must be at least 6 characters", code="weak_password")
        email = _clean_email(email)
        if self.repo.get_user_by_username(username):
            raise UsernameTaken("Username already exists")

        user = User(
            id=0,
            username=username,
            password_hash=generate_password_hash(password),
            name=(name or "").strip() or username,
            email=email,
            login_method="local",
        )
        user = self.repo.insert_user(user)
        logger.info("Registered user %s (id=%s)", username, user.id)
        return user

    def authenticate(self, username, password) -> User:
        user = self.repo.get_user_by_username((username or "").strip())
        # unknown user, external-identity user and wrong password look the same to the caller
        if not user or not user.password_hash or not check_password_hash(user.password_hash, password or ""):
            logger.info("Failed login for %r", username)
            raise InvalidCredentials("Invalid username or password")
        self.repo.touch_last_signed_in(user.id)
        logger.info("User %s signed in", user.id)
        return user

    # ---------- sessions ----------
    def session_lifetime(self, remember_me=False) -> timedelta:
        return self.remember_me_ttl if remember_me else self.session_ttl

    def open_session(self, user: User, remember_me=False) -> Tuple[str, timedelta]:
        ttl = self.session_lifetime(remember_me)
        session = self.repo.create_session(utcnow() + ttl, user_id=user.id)
        return session.token, ttl

    def sign_in_external(self, open_id, name=None, email=None) -> Tuple[User, str]:
        """Bind an external identity to a user record and open a session keyed by it."""
        open_id = (open_id or "").strip()
        if not open_id:
            raise ValidationError("Missing field: openId")
        user = self.repo.upsert_external_user(open_id, name, _clean_email(email))
        session = self.repo.create_session(utcnow() + self.session_ttl, open_id=open_id)
        logger.info("External identity %s signed in as user %s", open_id, user.id)
        return user, session.token

    def close_session(self, token) -> None:
        if token:
            self.repo.delete_session(token)

    def resolve_session(self, token) -> Optional[User]:
        """User behind a session token; None for unknown, expired or unreadable sessions."""
        if not token:
            return None
        try:
            session = self.repo.get_session(token)
            if session is None:
                return None
            if session.user_id is not None:
                return self.repo.get_user(session.user_id)
            if session.open_id:
                return self.repo.get_user_by_open_id(session.open_id)
        except Exception:
            logger.exception("Session lookup failed; treating request as anonymous")
        return None

    # ---------- withdrawal address book ----------
    def withdrawal_addresses(self, user: User) -> Dict[str, str]:
        stored = self.repo.get_withdrawal_addresses(user.id)
        return {c: stored.get(c) or "" for c in CURRENCIES}

    def set_withdrawal_address(self, user: User, crypto, address) -> Dict[str, str]:
        if not isinstance(address, str):
            raise ValidationError("Invalid value for address")
        self.repo.set_withdrawal_address(user.id, currency(crypto), address.strip())
        return self.withdrawal_addresses(user)
