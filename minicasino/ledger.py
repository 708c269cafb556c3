import logging
from decimal import Decimal
from typing import List

from .errors import ValidationError
from .models import Balance, GameHistoryRecord, as_money, parse_amount

logger = logging.getLogger(__name__)


class Ledger:
    """Per-user play-money balance and the append-only play history."""

    def __init__(self, repo, promo_code="SUPA", promo_bonus=Decimal("2500.00"),
                 history_limit=50, history_max=100):
        self.repo = repo
        self.promo_code = (promo_code or "").upper()
        self.promo_bonus = as_money(promo_bonus)
        self.history_limit = history_limit
        self.history_max = history_max

    def get_balance(self, user_id: int) -> Balance:
        return self.repo.get_balance(user_id)

    def amount(self, user_id: int) -> Decimal:
        return self.repo.get_balance(user_id).balance

    def set_balance(self, user_id: int, value) -> Balance:
        amount = as_money(parse_amount(value, "newBalance"))
        if amount < 0:
            raise ValidationError("Balance cannot be negative", code="negative_balance")
        return self.repo.set_balance(user_id, amount)

    def reset_balance(self, user_id: int) -> Balance:
        return self.repo.set_balance(user_id, Decimal("0.00"))

    def append_history(self, record: GameHistoryRecord) -> GameHistoryRecord:
        return self.repo.add_history(record)

    def list_history(self, user_id: int, limit=None) -> List[GameHistoryRecord]:
        limit = int(limit) if limit else 0
        # a missing, zero or negative limit means the default page
        if limit <= 0:
            limit = self.history_limit
        limit = min(limit, self.history_max)
        return self.repo.list_history(user_id, limit)

    def apply_promo(self, user_id: int, code) -> bool:
        """Credit the signup bonus when `code` matches. Called once, at registration."""
        if not code or not self.promo_code or str(code).strip().upper() != self.promo_code:
            return False
        # full overwrite of the fresh balance
        self.repo.set_balance(user_id, self.promo_bonus)
        logger.info("Promo %s applied to user %s", self.promo_code, user_id)
        return True
