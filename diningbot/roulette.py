import logging
import random
from dataclasses import dataclass
from datetime import timezone
from enum import Enum
from typing import List, NamedTuple, Optional

from . import db
from .economy import format_currency
from .errors import InsufficientFunds, InvalidInput
from .models import normalize_id
from .timeutil import Clock

log = logging.getLogger(__name__)

MIN_BET = 10
MAX_BET = 10_000

RED_NUMBERS = frozenset({1, 3, 5, 7, 9, 12, 14, 16, 18, 19, 21, 23, 25, 27, 30, 32, 34, 36})
BLACK_NUMBERS = frozenset(set(range(1, 37)) - RED_NUMBERS)


class BetType(str, Enum):
    NUMBER = "number"
    RED = "red"
    BLACK = "black"
    ODD = "odd"
    EVEN = "even"
    LOW = "low"
    HIGH = "high"
    DOZEN1 = "dozen1"
    DOZEN2 = "dozen2"
    DOZEN3 = "dozen3"
    COLUMN1 = "column1"
    COLUMN2 = "column2"
    COLUMN3 = "column3"


# x:1
PAYOUTS = {
    BetType.NUMBER: 35,
    BetType.RED: 1, BetType.BLACK: 1,
    BetType.ODD: 1, BetType.EVEN: 1,
    BetType.LOW: 1, BetType.HIGH: 1,
    BetType.DOZEN1: 2, BetType.DOZEN2: 2, BetType.DOZEN3: 2,
    BetType.COLUMN1: 2, BetType.COLUMN2: 2, BetType.COLUMN3: 2,
}

DISPLAY_NAMES = {
    BetType.NUMBER: "Single Number",
    BetType.RED: "Red", BetType.BLACK: "Black",
    BetType.ODD: "Odd", BetType.EVEN: "Even",
    BetType.LOW: "Low (1-18)", BetType.HIGH: "High (19-36)",
    BetType.DOZEN1: "1st Dozen (1-12)", BetType.DOZEN2: "2nd Dozen (13-24)", BetType.DOZEN3: "3rd Dozen (25-36)",
    BetType.COLUMN1: "1st Column", BetType.COLUMN2: "2nd Column", BetType.COLUMN3: "3rd Column",
}

COLOR_EMOJI = {"red": "🔴", "black": "⚫", "green": "🟢"}


class Pity(NamedTuple):
    chance: int
    bonus: int
    max_bet_for_bonus: int


# losing streak -> pity; checked from the highest threshold down
PITY_THRESHOLDS = {
    20: Pity(100, 0, 1000),
    15: Pity(40, 200, 500),
    10: Pity(25, 100, 200),
    5: Pity(15, 50, 100),
}
NO_PITY = Pity(0, 0, 0)


def color_of(number: int) -> str:
    if number == 0:
        return "green"
    return "red" if number in RED_NUMBERS else "black"


def bet_display(bet_type: BetType, value: Optional[int] = None) -> str:
    if bet_type == BetType.NUMBER and value is not None:
        return f"Number {value}"
    return DISPLAY_NAMES[bet_type]


def winning_numbers(bet_type: BetType, value: Optional[int] = None) -> List[int]:
    if bet_type == BetType.NUMBER:
        return [value]
    if bet_type == BetType.RED:
        return sorted(RED_NUMBERS)
    if bet_type == BetType.BLACK:
        return sorted(BLACK_NUMBERS)
    if bet_type == BetType.ODD:
        return [n for n in range(1, 37) if n % 2 == 1]
    if bet_type == BetType.EVEN:
        return [n for n in range(1, 37) if n % 2 == 0]
    if bet_type == BetType.LOW:
        return list(range(1, 19))
    if bet_type == BetType.HIGH:
        return list(range(19, 37))
    if bet_type in (BetType.DOZEN1, BetType.DOZEN2, BetType.DOZEN3):
        start = 1 + 12 * (int(bet_type.value[-1]) - 1)
        return list(range(start, start + 12))
    column = int(bet_type.value[-1])
    return [n for n in range(1, 37) if (n - column) % 3 == 0]


def wins(bet_type: BetType, value: Optional[int], number: int) -> bool:
    # Zero only pays a straight bet on zero
    if number == 0:
        return bet_type == BetType.NUMBER and value == 0
    return number in winning_numbers(bet_type, value)


def pity_for(losing_streak: int, bet_amount: int) -> Pity:
    for threshold in sorted(PITY_THRESHOLDS, reverse=True):
        if losing_streak >= threshold:
            pity = PITY_THRESHOLDS[threshold]
            if bet_amount > pity.max_bet_for_bonus:
                return Pity(pity.chance, 0, pity.max_bet_for_bonus)
            return pity
    return NO_PITY


@dataclass
class SpinResult:
    number: int
    color: str
    won: bool
    payout: int
    win_amount: int
    pity_applied: bool
    pity_chance: int
    losing_streak: int


class RouletteWheel:
    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def spin(self) -> int:
        return self.rng.randint(0, 36)

    def play(self, bet_type: BetType, value: Optional[int], amount: int, losing_streak: int = 0) -> SpinResult:
        number = self.spin()
        pity = pity_for(losing_streak, amount)
        forced = False
        if pity.chance and self.rng.random() * 100 < pity.chance:
            number = self.rng.choice(winning_numbers(bet_type, value))
            forced = True

        won = wins(bet_type, value, number)
        payout = PAYOUTS[bet_type]
        win_amount = 0
        if won:
            win_amount = amount * (payout + 1)
            if forced and pity.bonus and amount <= pity.max_bet_for_bonus:
                win_amount += pity.bonus
        return SpinResult(number, color_of(number), won, payout, win_amount, forced, pity.chance, losing_streak)


class RouletteTable:
    """Bets against the t$t balance, with history for the pity streak."""

    def __init__(self, path: str, wheel: Optional[RouletteWheel] = None, clock: Optional[Clock] = None):
        self.path = path
        self.wheel = wheel or RouletteWheel()
        self.clock = clock or Clock()

    def losing_streak(self, user_id) -> int:
        with db.cursor(self.path) as cur:
            cur.execute(
                "SELECT won FROM roulette_games WHERE user_id=? ORDER BY id DESC LIMIT 50",
                (normalize_id(user_id),),
            )
            streak = 0
            for (won,) in cur.fetchall():
                if won:
                    break
                streak += 1
        return streak

    def play(self, user_id, bet_type, amount: int, number: Optional[int] = None):
        try:
            bet_type = BetType(bet_type)
        except ValueError:
            raise InvalidInput(f"Unknown bet type {bet_type!r}.")
        if not MIN_BET <= amount <= MAX_BET:
            raise InvalidInput(f"Bets must be between {format_currency(MIN_BET)} and {format_currency(MAX_BET)}.")
        if bet_type == BetType.NUMBER:
            if number is None or not 0 <= number <= 36:
                raise InvalidInput("Pick a number between 0 and 36 for a straight bet.")
        else:
            number = None

        user = normalize_id(user_id)
        streak = self.losing_streak(user)
        with db.cursor(self.path) as cur:
            cur.execute("SELECT balance FROM users WHERE user_id=?", (user,))
            row = cur.fetchone()
            before = row[0] if row else 0
            if before == 0:
                raise InsufficientFunds("You don't have any t$t to bet! Use `/work` to earn some money first.")
            if before < amount:
                raise InsufficientFunds(
                    f"You don't have enough t$t to place this bet! Balance: {format_currency(before)}"
                )

            result = self.wheel.play(bet_type, number, amount, streak)
            after = before - amount + result.win_amount
            cur.execute("UPDATE users SET balance=? WHERE user_id=?", (after, user))
            cur.execute(
                """
                INSERT INTO roulette_games (user_id, bet_type, bet_value, bet_amount, result_number, result_color,
                                            won, win_amount, balance_before, balance_after, played_at,
                                            pity_applied, losing_streak)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user, bet_type.value, None if number is None else str(number), amount,
                    result.number, result.color, int(result.won), result.win_amount, before, after,
                    self.clock.now().astimezone(timezone.utc).isoformat(), int(result.pity_applied), streak,
                ),
            )
        log.info("Roulette user=%s bet=%s amount=%d result=%d won=%s pity=%s",
                 user, bet_type.value, amount, result.number, result.won, result.pity_applied)
        return result, after
