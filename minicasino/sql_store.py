import json
from decimal import Decimal

from sqlalchemy import TIMESTAMP, BigInteger, Column, Integer, Numeric, String, Text, create_engine, desc
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Balance, GameHistoryRecord, Session, User, as_money, parse_time, utcnow
from .store import new_token

Base = declarative_base()


def _now():
    # SQLite stores naive timestamps; everything is kept in UTC
    return utcnow().replace(tzinfo=None)


# ---------------------- MODELS ----------------------------
class UserRow(Base):
    __tablename__ = "users"
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    username = Column(String(50), unique=True)
    password_hash = Column(String(255))
    open_id = Column(String(64), unique=True)
    name = Column(Text)
    email = Column(String(320))
    login_method = Column(String(64), default="local")
    role = Column(String(16), nullable=False, default="user")
    created_at = Column(TIMESTAMP, default=_now, nullable=False)
    updated_at = Column(TIMESTAMP, default=_now, nullable=False)
    last_signed_in = Column(TIMESTAMP, default=_now, nullable=False)


class BalanceRow(Base):
    __tablename__ = "user_balances"
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    user_id = Column(BigInteger, unique=True, nullable=False, index=True)
    balance = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(TIMESTAMP, default=_now, nullable=False)
    updated_at = Column(TIMESTAMP, default=_now, nullable=False)


class HistoryRow(Base):
    __tablename__ = "game_history"
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    user_id = Column(BigInteger, nullable=False, index=True)
    game_type = Column(String(50), nullable=False)  # slots, dice, roulette, blackjack, coinflip, wheel
    bet_amount = Column(Numeric(12, 2), nullable=False)
    win_amount = Column(Numeric(12, 2), nullable=False, default=0)
    result = Column(Text)  # json details (reels, cards, number)
    created_at = Column(TIMESTAMP, default=_now, nullable=False)


class SessionRow(Base):
    __tablename__ = "sessions"
    token = Column(String(64), primary_key=True)
    user_id = Column(BigInteger)
    open_id = Column(String(64))
    expires_at = Column(TIMESTAMP, nullable=False)


class AddressRow(Base):
    __tablename__ = "withdrawal_addresses"
    user_id = Column(BigInteger, primary_key=True)
    currency = Column(String(8), primary_key=True)
    address = Column(Text, nullable=False, default="")


# ---------------------- MAPPING ---------------------------
def _to_user(r: UserRow) -> User:
    return User(
        id=r.id, username=r.username, password_hash=r.password_hash, open_id=r.open_id,
        name=r.name, email=r.email, login_method=r.login_method or "local", role=r.role,
        created_at=parse_time(r.created_at), updated_at=parse_time(r.updated_at),
        last_signed_in=parse_time(r.last_signed_in),
    )


def _to_balance(r: BalanceRow) -> Balance:
    return Balance(id=r.id, user_id=r.user_id, balance=as_money(r.balance),
                   created_at=parse_time(r.created_at), updated_at=parse_time(r.updated_at))


def _to_history(r: HistoryRow) -> GameHistoryRecord:
    return GameHistoryRecord(
        id=r.id, user_id=r.user_id, game_type=r.game_type,
        bet_amount=Decimal(r.bet_amount), win_amount=Decimal(r.win_amount),
        result=json.loads(r.result) if r.result else None,
        created_at=parse_time(r.created_at),
    )


# ---------------------- REPOSITORY ------------------------
class SqlStore:
    """Repository over SQLAlchemy; selected when DATABASE_URL is set."""

    def __init__(self, database_url: str):
        kwargs = {"pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            kwargs = {"connect_args": {"check_same_thread": False}}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, **kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(bind=self.engine)

    # ---------- users ----------
    def insert_user(self, user):
        s = self.SessionLocal()
        try:
            row = UserRow(
                username=user.username, password_hash=user.password_hash, open_id=user.open_id,
                name=user.name, email=user.email, login_method=user.login_method, role=user.role,
            )
            s.add(row)
            s.commit()
            return _to_user(row)
        finally:
            s.close()

    def get_user(self, user_id):
        s = self.SessionLocal()
        try:
            row = s.get(UserRow, user_id)
            return _to_user(row) if row else None
        finally:
            s.close()

    def get_user_by_username(self, username):
        s = self.SessionLocal()
        try:
            row = s.query(UserRow).filter_by(username=username).first()
            return _to_user(row) if row else None
        finally:
            s.close()

    def get_user_by_open_id(self, open_id):
        s = self.SessionLocal()
        try:
            row = s.query(UserRow).filter_by(open_id=open_id).first()
            return _to_user(row) if row else None
        finally:
            s.close()

    def upsert_external_user(self, open_id, name, email):
        s = self.SessionLocal()
        try:
            row = s.query(UserRow).filter_by(open_id=open_id).first()
            if row is None:
                row = UserRow(open_id=open_id, name=name, email=email, login_method="oauth")
                s.add(row)
            else:
                if name is not None:
                    row.name = name
                if email is not None:
                    row.email = email
                row.updated_at = row.last_signed_in = _now()
            s.commit()
            return _to_user(row)
        finally:
            s.close()

    def touch_last_signed_in(self, user_id):
        s = self.SessionLocal()
        try:
            row = s.get(UserRow, user_id)
            if row:
                row.last_signed_in = _now()
                s.commit()
        finally:
            s.close()

    # ---------- balances ----------
    def _balance_row(self, s, user_id):
        row = s.query(BalanceRow).filter_by(user_id=user_id).first()
        if row is None:
            row = BalanceRow(user_id=user_id, balance=Decimal("0.00"))
            s.add(row)
            s.flush()
        return row

    def get_balance(self, user_id):
        s = self.SessionLocal()
        try:
            row = self._balance_row(s, user_id)
            s.commit()
            return _to_balance(row)
        finally:
            s.close()

    def set_balance(self, user_id, amount):
        s = self.SessionLocal()
        try:
            row = self._balance_row(s, user_id)
            row.balance = as_money(amount)
            row.updated_at = _now()
            s.commit()
            return _to_balance(row)
        finally:
            s.close()

    # ---------- history ----------
    def add_history(self, record):
        s = self.SessionLocal()
        try:
            row = HistoryRow(
                user_id=record.user_id, game_type=record.game_type,
                bet_amount=as_money(record.bet_amount), win_amount=as_money(record.win_amount),
                result=json.dumps(record.result) if record.result is not None else None,
                created_at=record.created_at.replace(tzinfo=None) if record.created_at else _now(),
            )
            s.add(row)
            s.commit()
            return _to_history(row)
        finally:
            s.close()

    def list_history(self, user_id, limit):
        s = self.SessionLocal()
        try:
            q = (
                s.query(HistoryRow)
                .filter(HistoryRow.user_id == user_id)
                .order_by(desc(HistoryRow.created_at), desc(HistoryRow.id))
                .limit(limit)
            )
            return [_to_history(r) for r in q.all()]
        finally:
            s.close()

    # ---------- sessions ----------
    def create_session(self, expires_at, user_id=None, open_id=None):
        s = self.SessionLocal()
        try:
            row = SessionRow(token=new_token(), user_id=user_id, open_id=open_id,
                             expires_at=expires_at.replace(tzinfo=None))
            s.add(row)
            s.commit()
            return Session(token=row.token, expires_at=expires_at, user_id=user_id, open_id=open_id)
        finally:
            s.close()

    def get_session(self, token):
        s = self.SessionLocal()
        try:
            row = s.get(SessionRow, token)
            if row is None:
                return None
            session = Session(token=row.token, expires_at=parse_time(row.expires_at),
                              user_id=row.user_id, open_id=row.open_id)
            return None if session.expired(utcnow()) else session
        finally:
            s.close()

    def delete_session(self, token):
        s = self.SessionLocal()
        try:
            s.query(SessionRow).filter_by(token=token).delete()
            s.commit()
        finally:
            s.close()

    # ---------- withdrawal addresses ----------
    def get_withdrawal_addresses(self, user_id):
        s = self.SessionLocal()
        try:
            rows = s.query(AddressRow).filter_by(user_id=user_id).all()
            return {r.currency: r.address for r in rows}
        finally:
            s.close()

    def set_withdrawal_address(self, user_id, currency, address):
        s = self.SessionLocal()
        try:
            row = s.get(AddressRow, (user_id, currency))
            if row is None:
                s.add(AddressRow(user_id=user_id, currency=currency, address=address))
            else:
                row.address = address
            s.commit()
        finally:
            s.close()
