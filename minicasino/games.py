"""Outcome generator: random draws and payout multipliers for each game.

Everything in this module is free of I/O. Random draws come from `rng`, any
object with the `random.Random` interface (`choice`, `randint`, `randrange`),
defaulting to the module-level generator.
"""
import json
import random
from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar, List, Optional, Sequence

from .errors import GameNotFound, ValidationError
from .models import amount_str, truncate_cents

ZERO = Decimal("0")


class Outcome:
    """Base of the per-game outcome variants, keyed by `game_type`."""

    game_type: ClassVar[str]

    @property
    def multiplier(self) -> Decimal:
        raise NotImplementedError

    def payout(self, bet) -> Decimal:
        # winnings are truncated to whole cents
        return truncate_cents(Decimal(bet) * self.multiplier)

    def to_result(self) -> dict:
        raise NotImplementedError

    def message(self, payout: Decimal) -> str:
        if payout > 0:
            return f"You won ${amount_str(payout)}!"
        return "Try again!"

    @classmethod
    def from_result(cls, payload: dict) -> "Outcome":
        raise NotImplementedError


def _field(payload, key, cast):
    if key not in payload:
        raise ValidationError(f"Missing field: {key}")
    try:
        return cast(payload[key])
    except (TypeError, ValueError, ArithmeticError):
        raise ValidationError(f"Invalid value for {key}")


# ---------- Slots ----------
SLOT_SYMBOLS = ["🍒", "🍋", "🍊", "🎰", "💎", "⭐"]


def slots_multiplier(reels: Sequence[str]) -> Decimal:
    if reels[0] == reels[1] == reels[2]:
        return Decimal(10)
    # adjacent pairs only; reels 1 and 3 matching alone pays nothing
    if reels[0] == reels[1] or reels[1] == reels[2]:
        return Decimal(2)
    return ZERO


@dataclass(frozen=True)
class SlotsOutcome(Outcome):
    game_type: ClassVar[str] = "slots"
    reels: tuple

    @property
    def multiplier(self):
        return slots_multiplier(self.reels)

    def to_result(self):
        return {"reels": list(self.reels)}

    def message(self, payout):
        if self.multiplier == 10:
            return f"JACKPOT! You won ${amount_str(payout)}!"
        return super().message(payout)

    @classmethod
    def from_result(cls, payload):
        reels = _field(payload, "reels", list)
        if len(reels) != 3 or not all(isinstance(r, str) for r in reels):
            raise ValidationError("reels must be three symbols")
        return cls(reels=tuple(reels))


def spin_slots(rng=random) -> SlotsOutcome:
    return SlotsOutcome(reels=tuple(rng.choice(SLOT_SYMBOLS) for _ in range(3)))


# ---------- Dice ----------
DICE_EDGE = Decimal("0.99")
DICE_MAX_MULTIPLIER = Decimal(99)


def dice_target(target) -> Decimal:
    try:
        value = Decimal(str(target))
    except ArithmeticError:
        raise ValidationError("Invalid value for target")
    if not value.is_finite() or not 0 < value < 100:
        raise ValidationError("target must be between 0 and 100")
    return value


def dice_win_chance(target, over: bool) -> Decimal:
    target = dice_target(target)
    return (100 - target) / 100 if over else target / 100


def dice_multiplier(target, over: bool) -> Decimal:
    return min(DICE_EDGE / dice_win_chance(target, over), DICE_MAX_MULTIPLIER)


def dice_payout(bet, target, over: bool) -> Decimal:
    bet = Decimal(bet)
    # multiply before dividing so payouts that land on a whole cent stay exact
    uncapped = bet * DICE_EDGE / dice_win_chance(target, over)
    return truncate_cents(min(uncapped, bet * DICE_MAX_MULTIPLIER))


@dataclass(frozen=True)
class DiceOutcome(Outcome):
    game_type: ClassVar[str] = "dice"
    roll: Decimal
    target: Decimal
    over: bool

    @property
    def won(self) -> bool:
        return self.roll > self.target if self.over else self.roll < self.target

    @property
    def multiplier(self):
        return dice_multiplier(self.target, self.over) if self.won else ZERO

    def payout(self, bet):
        if not self.won:
            return truncate_cents(ZERO)
        return dice_payout(bet, self.target, self.over)

    def to_result(self):
        return {
            "roll": float(self.roll),
            "target": float(self.target),
            "over": self.over,
            "multiplier": float(dice_multiplier(self.target, self.over).quantize(Decimal("0.0001"))),
        }

    def message(self, payout):
        direction = "over" if self.over else "under"
        if self.won:
            return f"Rolled {self.roll:.2f} ({direction} {self.target}). You won ${amount_str(payout)}!"
        return f"Rolled {self.roll:.2f}, needed {direction} {self.target}. Try again!"

    @classmethod
    def from_result(cls, payload):
        roll = _field(payload, "roll", lambda v: Decimal(str(v)))
        if not roll.is_finite() or not 0 <= roll < 100:
            raise ValidationError("roll must be in [0, 100)")
        return cls(
            roll=roll,
            target=dice_target(_field(payload, "target", str)),
            over=_field(payload, "over", _strict_bool),
        )


def _strict_bool(value):
    if not isinstance(value, bool):
        raise ValueError(value)
    return value


def roll_dice(target, over: bool, rng=random) -> DiceOutcome:
    target = dice_target(target)
    # 0.00 .. 99.99 in steps of 0.01
    roll = Decimal(rng.randrange(10000)).scaleb(-2)
    return DiceOutcome(roll=roll, target=target, over=bool(over))


# ---------- Roulette ----------
RED_NUMS = {1, 3, 5, 7, 9, 12, 14, 16, 18, 19, 21, 23, 25, 27, 30, 32, 34, 36}
BLACK_NUMS = set(range(1, 37)) - RED_NUMS


def pocket_color(number: int) -> str:
    if number == 0:
        return "green"
    return "red" if number in RED_NUMS else "black"


def roulette_multiplier(number: int) -> Decimal:
    if number == 0:
        return Decimal(35)
    if number in RED_NUMS:
        return Decimal(2)
    return ZERO


@dataclass(frozen=True)
class RouletteOutcome(Outcome):
    game_type: ClassVar[str] = "roulette"
    number: int

    @property
    def color(self):
        return pocket_color(self.number)

    @property
    def multiplier(self):
        return roulette_multiplier(self.number)

    def to_result(self):
        return {"number": self.number, "color": self.color}

    def message(self, payout):
        if self.number == 0:
            return f"GREEN ZERO! You won ${amount_str(payout)}!"
        if self.color == "red":
            return f"Red {self.number}! You won ${amount_str(payout)}!"
        return f"Black {self.number}. Try again!"

    @classmethod
    def from_result(cls, payload):
        number = _field(payload, "number", _strict_int)
        if not 0 <= number <= 36:
            raise ValidationError("number must be between 0 and 36")
        return cls(number=number)


def _strict_int(value):
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(value)
    return value


def spin_roulette(rng=random) -> RouletteOutcome:
    # single-zero European style, 0 to 36
    return RouletteOutcome(number=rng.randint(0, 36))


# ---------- Blackjack ----------
RANKS = ["2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K", "A"]
DEALER_STANDS_ON = 17


def card_value(rank: str) -> int:
    if rank in ("J", "Q", "K"):
        return 10
    if rank == "A":
        return 11
    return int(rank)


def hand_value(cards: Sequence[str]) -> int:
    # count Aces as 11 then drop to 1 as needed
    total = sum(card_value(c) for c in cards)
    aces = sum(1 for c in cards if c == "A")
    while total > 21 and aces:
        total -= 10
        aces -= 1
    return total


def validate_hand(cards, name="hand") -> List[str]:
    if not isinstance(cards, (list, tuple)) or not cards:
        raise ValidationError(f"{name} must be a non-empty list of cards")
    cards = [str(c).upper() for c in cards]
    for c in cards:
        if c not in RANKS:
            raise ValidationError(f"Unknown card in {name}: {c}")
    return cards


def draw_card(rng=random) -> str:
    # infinite deck: every draw is independent
    return rng.choice(RANKS)


def deal_hands(rng=random):
    dealer = [draw_card(rng)]
    player = [draw_card(rng), draw_card(rng)]
    return player, dealer


def play_dealer(dealer: List[str], rng=random) -> List[str]:
    dealer = list(dealer)
    while hand_value(dealer) < DEALER_STANDS_ON:
        dealer.append(draw_card(rng))
    return dealer


def settle_blackjack(player_total: int, dealer_total: int):
    """(multiplier, verdict) for final totals; the stake is part of the multiplier."""
    if player_total > 21:
        return ZERO, "bust"
    if dealer_total > 21:
        return Decimal(2), "dealer_bust"
    if player_total > dealer_total:
        return Decimal(2), "win"
    if player_total == dealer_total:
        return Decimal(1), "push"
    return ZERO, "lose"


@dataclass(frozen=True)
class BlackjackOutcome(Outcome):
    game_type: ClassVar[str] = "blackjack"
    player: tuple
    dealer: tuple

    @property
    def player_total(self):
        return hand_value(self.player)

    @property
    def dealer_total(self):
        return hand_value(self.dealer)

    @property
    def verdict(self):
        return settle_blackjack(self.player_total, self.dealer_total)[1]

    @property
    def multiplier(self):
        return settle_blackjack(self.player_total, self.dealer_total)[0]

    def to_result(self):
        return {
            "dealerCards": list(self.dealer),
            "playerCards": list(self.player),
            "dealerTotal": self.dealer_total,
            "playerTotal": self.player_total,
        }

    def message(self, payout):
        pv, dv = self.player_total, self.dealer_total
        return {
            "bust": f"You bust. Dealer: {dv}, You: {pv}",
            "dealer_bust": f"Dealer busts! You won ${amount_str(payout)}!",
            "win": f"You win! You won ${amount_str(payout)}!",
            "push": "Push! Your bet is returned.",
            "lose": f"You lose. Dealer: {dv}, You: {pv}",
        }[self.verdict]

    @classmethod
    def from_result(cls, payload):
        player = validate_hand(_field(payload, "playerCards", list), "playerCards")
        dealer = validate_hand(_field(payload, "dealerCards", list), "dealerCards")
        return cls(player=tuple(player), dealer=tuple(dealer))


# ---------- Coin Flip ----------
COIN_SIDES = ("heads", "tails")


def coin_side(value, name="choice") -> str:
    side = str(value or "").lower()
    if side not in COIN_SIDES:
        raise ValidationError(f"{name} must be 'heads' or 'tails'")
    return side


@dataclass(frozen=True)
class CoinFlipOutcome(Outcome):
    game_type: ClassVar[str] = "coinflip"
    choice: str
    result: str

    @property
    def multiplier(self):
        return Decimal(2) if self.choice == self.result else ZERO

    def to_result(self):
        return {"choice": self.choice, "result": self.result}

    def message(self, payout):
        if payout > 0:
            return f"{self.result.upper()}! You won ${amount_str(payout)}!"
        return f"It was {self.result}. Try again!"

    @classmethod
    def from_result(cls, payload):
        return cls(
            choice=coin_side(payload.get("choice"), "choice"),
            result=coin_side(payload.get("result"), "result"),
        )


def flip_coin(choice, rng=random) -> CoinFlipOutcome:
    # the choice is committed before the draw
    choice = coin_side(choice)
    return CoinFlipOutcome(choice=choice, result=rng.choice(COIN_SIDES))


# ---------- Wheel ----------
WHEEL_SEGMENTS = [Decimal(v) for v in ("1", "2", "2", "3", "1.5", "5", "1", "2", "10", "1", "1.5", "3")]


@dataclass(frozen=True)
class WheelOutcome(Outcome):
    game_type: ClassVar[str] = "wheel"
    segment: int

    @property
    def multiplier(self):
        return WHEEL_SEGMENTS[self.segment]

    def to_result(self):
        return {"segment": self.segment, "multiplier": float(self.multiplier)}

    def message(self, payout):
        m = amount_str(self.multiplier)
        if self.multiplier >= 5:
            return f"{m}x! You won ${amount_str(payout)}!"
        return f"You got {m}x, ${amount_str(payout)} won!"

    @classmethod
    def from_result(cls, payload):
        if "segment" in payload:
            segment = _field(payload, "segment", _strict_int)
            if not 0 <= segment < len(WHEEL_SEGMENTS):
                raise ValidationError("segment out of range")
            return cls(segment=segment)
        # older payloads only carry the multiplier
        multiplier = _field(payload, "multiplier", lambda v: Decimal(str(v)))
        if multiplier not in WHEEL_SEGMENTS:
            raise ValidationError("multiplier is not on the wheel")
        return cls(segment=WHEEL_SEGMENTS.index(multiplier))


def spin_wheel(rng=random) -> WheelOutcome:
    return WheelOutcome(segment=rng.randrange(len(WHEEL_SEGMENTS)))


# ---------- Registry ----------
OUTCOMES = {
    cls.game_type: cls
    for cls in (SlotsOutcome, DiceOutcome, RouletteOutcome, BlackjackOutcome, CoinFlipOutcome, WheelOutcome)
}
GAME_TYPES = tuple(OUTCOMES)


def game_type(value) -> str:
    tag = str(value or "").strip().lower()
    if tag not in OUTCOMES:
        raise GameNotFound(f"Unknown game type: {value}")
    return tag


def parse_result(tag: str, raw) -> Optional[dict]:
    """Turn a client-reported result (JSON text or object) into the game's payload."""
    cls = OUTCOMES[game_type(tag)]
    if raw is None or raw == "":
        return None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise ValidationError("result must be JSON")
    if not isinstance(raw, dict):
        raise ValidationError("result must be a JSON object")
    return cls.from_result(raw).to_result()
