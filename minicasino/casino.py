"""
Game orchestrator.

Every play runs the same sequence: check funds, debit the bet, draw the
outcome, credit the payout, overwrite the stored balance, append a history
record, report. Balance write and history append are two separate
repository calls with nothing tying them together; a failure between them
leaves the balance updated without its record.

Blackjack spans several requests. Deal and hit only check funds and report
the tentatively debited balance; the hand travels with the client and is
settled (and persisted) on stand, or on a busting hit.
"""
import logging
import random
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from . import games
from .errors import InsufficientBalance, ValidationError
from .models import GameHistoryRecord, User, amount_str, as_money, money_str, parse_amount

logger = logging.getLogger(__name__)


@dataclass
class Play:
    game_type: str
    bet: Decimal
    payout: Decimal
    balance: Decimal
    message: str
    result: dict
    record: Optional[GameHistoryRecord] = None
    settled: bool = True

    def to_dict(self) -> dict:
        return {
            "gameType": self.game_type,
            "outcome": self.result,
            "betAmount": amount_str(self.bet),
            "winAmount": amount_str(self.payout),
            "balance": money_str(self.balance),
            "message": self.message,
            "settled": self.settled,
            "record": self.record.to_dict() if self.record else None,
        }


def bet_amount(value) -> Decimal:
    bet = as_money(parse_amount(value, "betAmount"))
    if bet <= 0:
        raise ValidationError("Bet must be positive", code="bet_must_be_positive")
    return bet


class Casino:
    def __init__(self, ledger, rng=None):
        self.ledger = ledger
        self.rng = rng or random

    # ---------- sequencing ----------
    def _check_funds(self, user: User, bet) -> tuple:
        bet = bet_amount(bet)
        balance = self.ledger.amount(user.id)
        if balance < bet:
            raise InsufficientBalance("Insufficient balance")
        return bet, balance

    def _settle(self, user: User, bet: Decimal, balance: Decimal, outcome: games.Outcome) -> Play:
        debited = balance - bet
        payout = outcome.payout(bet)
        final = debited + payout
        self.ledger.repo.set_balance(user.id, final)
        record = self.ledger.append_history(GameHistoryRecord(
            id=None,
            user_id=user.id,
            game_type=outcome.game_type,
            bet_amount=bet,
            win_amount=payout,
            result=outcome.to_result(),
        ))
        logger.info("user=%s game=%s bet=%s payout=%s balance=%s",
                    user.id, outcome.game_type, bet, payout, money_str(final))
        return Play(
            game_type=outcome.game_type,
            bet=bet,
            payout=payout,
            balance=final,
            message=outcome.message(payout),
            result=outcome.to_result(),
            record=record,
        )

    # ---------- single-step games ----------
    def slots(self, user, bet) -> Play:
        bet, balance = self._check_funds(user, bet)
        return self._settle(user, bet, balance, games.spin_slots(self.rng))

    def dice(self, user, bet, target, over=True) -> Play:
        target = games.dice_target(target)
        bet, balance = self._check_funds(user, bet)
        return self._settle(user, bet, balance, games.roll_dice(target, over, self.rng))

    def roulette(self, user, bet) -> Play:
        bet, balance = self._check_funds(user, bet)
        return self._settle(user, bet, balance, games.spin_roulette(self.rng))

    def coinflip(self, user, bet, choice) -> Play:
        choice = games.coin_side(choice)
        bet, balance = self._check_funds(user, bet)
        return self._settle(user, bet, balance, games.flip_coin(choice, self.rng))

    def wheel(self, user, bet) -> Play:
        bet, balance = self._check_funds(user, bet)
        return self._settle(user, bet, balance, games.spin_wheel(self.rng))

    # ---------- blackjack ----------
    def _open_hand(self, bet, balance, player: List[str], dealer: List[str], message) -> Play:
        return Play(
            game_type="blackjack",
            bet=bet,
            payout=Decimal("0"),
            balance=balance - bet,
            message=message,
            result={
                "dealerCards": dealer,
                "playerCards": player,
                "dealerTotal": games.hand_value(dealer),
                "playerTotal": games.hand_value(player),
            },
            settled=False,
        )

    def blackjack_deal(self, user, bet) -> Play:
        bet, balance = self._check_funds(user, bet)
        player, dealer = games.deal_hands(self.rng)
        return self._open_hand(bet, balance, player, dealer, "Hit or stand?")

    def blackjack_hit(self, user, bet, player, dealer) -> Play:
        player = games.validate_hand(player, "playerCards")
        dealer = games.validate_hand(dealer, "dealerCards")
        if games.hand_value(player) > 21:
            raise ValidationError("Hand is already bust", code="hand_settled")
        bet, balance = self._check_funds(user, bet)
        player = player + [games.draw_card(self.rng)]
        if games.hand_value(player) > 21:
            return self._finish_blackjack(user, bet, balance, player, dealer)
        return self._open_hand(bet, balance, player, dealer, "Hit or stand?")

    def blackjack_stand(self, user, bet, player, dealer) -> Play:
        player = games.validate_hand(player, "playerCards")
        dealer = games.validate_hand(dealer, "dealerCards")
        bet, balance = self._check_funds(user, bet)
        return self._finish_blackjack(user, bet, balance, player, dealer)

    def _finish_blackjack(self, user, bet, balance, player, dealer) -> Play:
        dealer = games.play_dealer(dealer, self.rng)
        outcome = games.BlackjackOutcome(player=tuple(player), dealer=tuple(dealer))
        return self._settle(user, bet, balance, outcome)

    # ---------- client-reported plays ----------
    def record(self, user, game_type, bet, win, result=None) -> GameHistoryRecord:
        """
        Store a play whose outcome was computed by the caller.

        The reported win amount is taken as given; only its shape is checked.
        Balance is not touched here, callers report it through the ledger.
        """
        tag = games.game_type(game_type)
        bet = bet_amount(bet)
        win = as_money(parse_amount(win, "winAmount"))
        if win < 0:
            raise ValidationError("Win amount cannot be negative", code="invalid_win_amount")
        record = self.ledger.append_history(GameHistoryRecord(
            id=None,
            user_id=user.id,
            game_type=tag,
            bet_amount=bet,
            win_amount=win,
            result=games.parse_result(tag, result),
        ))
        logger.info("user=%s reported game=%s bet=%s win=%s", user.id, tag, bet, win)
        return record
