import datetime as dt
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_FLOOR, ROUND_HALF_UP
from typing import Optional

from flask_login import UserMixin

from .errors import ValidationError

CURRENCIES = ("USDT", "BTC", "ETH", "LTC")
CENT = Decimal("0.01")


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def isoformat(value: Optional[dt.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def parse_time(value) -> Optional[dt.datetime]:
    if not value:
        return None
    if isinstance(value, dt.datetime):
        stamp = value
    else:
        stamp = dt.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    # naive values (SQLite columns) are stored as UTC
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=dt.timezone.utc)
    return stamp


# ---------------------- MONEY -----------------------------
def parse_amount(value, name="amount") -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"Invalid value for {name}")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid value for {name}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid value for {name}")
    return amount


def as_money(x) -> Decimal:
    # Normalize to two decimals (cents)
    return Decimal(str(x)).quantize(CENT, rounding=ROUND_HALF_UP)


def truncate_cents(x) -> Decimal:
    return Decimal(str(x)).quantize(CENT, rounding=ROUND_FLOOR)


def money_str(x) -> str:
    """Balance rendering: always two decimals."""
    return f"{as_money(x):.2f}"


def amount_str(x) -> str:
    """Shortest exact rendering: 50 -> "50", 1.50 -> "1.5", 98.99 -> "98.99"."""
    return format(as_money(x).normalize(), "f")


# ---------------------- ENTITIES --------------------------
@dataclass(eq=False)
class User(UserMixin):
    id: int
    username: Optional[str] = None
    password_hash: Optional[str] = None
    open_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    login_method: str = "local"
    role: str = "user"
    created_at: dt.datetime = field(default_factory=utcnow)
    updated_at: dt.datetime = field(default_factory=utcnow)
    last_signed_in: dt.datetime = field(default_factory=utcnow)

    def public(self) -> dict:
        return {"id": self.id, "username": self.username, "name": self.name, "email": self.email}

    def profile(self) -> dict:
        d = self.public()
        d.update({
            "role": self.role,
            "loginMethod": self.login_method,
            "createdAt": isoformat(self.created_at),
            "lastSignedIn": isoformat(self.last_signed_in),
        })
        return d


@dataclass
class Balance:
    id: int
    user_id: int
    balance: Decimal = Decimal("0.00")
    created_at: dt.datetime = field(default_factory=utcnow)
    updated_at: dt.datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "balance": money_str(self.balance),
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }


@dataclass(frozen=True)
class GameHistoryRecord:
    """One settled play. Never updated or deleted once stored."""

    id: Optional[int]
    user_id: int
    game_type: str
    bet_amount: Decimal
    win_amount: Decimal = Decimal("0")
    result: Optional[dict] = None
    created_at: dt.datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "gameType": self.game_type,
            "betAmount": amount_str(self.bet_amount),
            "winAmount": amount_str(self.win_amount),
            "result": self.result,
            "createdAt": isoformat(self.created_at),
        }


@dataclass
class Session:
    token: str
    expires_at: dt.datetime
    user_id: Optional[int] = None
    open_id: Optional[str] = None

    def expired(self, now=None) -> bool:
        return self.expires_at <= (now or utcnow())
