import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from . import db
from .errors import Cooldown, InsufficientFunds, InvalidInput
from .models import normalize_id
from .timeutil import Clock

log = logging.getLogger(__name__)

WORK_COOLDOWN = timedelta(minutes=30)
WORK_REWARD_MIN = 50
WORK_REWARD_MAX = 150

MIN_TRANSFER = 10
MAX_TRANSFER = 50_000
TRANSFER_COOLDOWN = timedelta(seconds=30)
MAX_DAILY_TRANSFERS = 10
MAX_DAILY_AMOUNT = 200_000

WORK_ACTIVITIES = [
    "🍔 You flipped burgers at the Pod",
    "📚 You tutored someone in CS",
    "🧹 You cleaned the dorm bathrooms",
    "🚗 You delivered food around campus",
    "💻 You fixed someone's computer",
    "📝 You helped someone with their homework",
    "🏃 You ran errands for a professor",
    "☕ You worked a shift at the campus coffee shop",
    "📦 You helped unload deliveries at the bookstore",
]


def format_currency(amount: int) -> str:
    return f"t$t {amount:,}"


def format_remaining(seconds: float) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60}m {seconds % 60}s"


def _ts(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds")


@dataclass
class Account:
    user_id: str
    username: Optional[str]
    balance: int
    last_work: Optional[datetime]
    bailout_used: bool


@dataclass
class WorkResult:
    reward: int
    balance: int
    activity: str
    bailout: bool


class Economy:
    """t$t balances, work rewards and transfers."""

    def __init__(self, path: str, clock: Optional[Clock] = None, rng: Optional[random.Random] = None):
        self.path = path
        self.clock = clock or Clock()
        self.rng = rng or random.Random()

    def _ensure(self, cur, user_id: str, username: Optional[str] = None) -> Account:
        cur.execute(
            "SELECT user_id, username, balance, last_work, bailout_used FROM users WHERE user_id=?",
            (user_id,),
        )
        row = cur.fetchone()
        if row is None:
            cur.execute(
                "INSERT INTO users (user_id, username, balance, created_at) VALUES (?, ?, 0, ?)",
                (user_id, username, _ts(self.clock.now())),
            )
            return Account(user_id, username, 0, None, False)
        if username and username != row[1]:
            cur.execute("UPDATE users SET username=? WHERE user_id=?", (username, user_id))
        return Account(
            user_id=row[0],
            username=username or row[1],
            balance=row[2],
            last_work=datetime.fromisoformat(row[3]) if row[3] else None,
            bailout_used=bool(row[4]),
        )

    def account(self, user_id, username: Optional[str] = None) -> Account:
        with db.cursor(self.path) as cur:
            return self._ensure(cur, normalize_id(user_id), username)

    def work(self, user_id, username: Optional[str] = None) -> WorkResult:
        """Pay a random reward, at most once per cooldown.

        A broke user gets one bailout shift that ignores the cooldown.
        """
        user = normalize_id(user_id)
        now = self.clock.now()
        with db.cursor(self.path) as cur:
            acct = self._ensure(cur, user, username)
            bailout = acct.balance == 0 and not acct.bailout_used
            if not bailout and acct.last_work is not None:
                elapsed = now - acct.last_work
                if elapsed < WORK_COOLDOWN:
                    remaining = (WORK_COOLDOWN - elapsed).total_seconds()
                    raise Cooldown(
                        f"You need to wait **{format_remaining(remaining)}** before you can work again.",
                        remaining,
                    )

            reward = self.rng.randint(WORK_REWARD_MIN, WORK_REWARD_MAX)
            after = acct.balance + reward
            cur.execute(
                "UPDATE users SET balance=?, last_work=?, bailout_used=? WHERE user_id=?",
                (after, _ts(now), int(acct.bailout_used or bailout), user),
            )
            cur.execute(
                """
                INSERT INTO work_sessions (user_id, reward, balance_before, balance_after, worked_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user, reward, acct.balance, after, _ts(now)),
            )
        log.info("Work user=%s reward=%d bailout=%s", user, reward, bailout)
        return WorkResult(reward, after, self.rng.choice(WORK_ACTIVITIES), bailout)

    def pay(self, sender_id, receiver_id, amount: int, message: Optional[str] = None,
            receiver_is_bot: bool = False) -> Tuple[int, int]:
        sender, receiver = normalize_id(sender_id), normalize_id(receiver_id)
        if sender == receiver:
            raise InvalidInput("You cannot send money to yourself!")
        if receiver_is_bot:
            raise InvalidInput("You cannot send money to bots!")
        if amount < MIN_TRANSFER:
            raise InvalidInput(f"Minimum transfer amount is {format_currency(MIN_TRANSFER)}.")
        if amount > MAX_TRANSFER:
            raise InvalidInput(f"Maximum transfer amount is {format_currency(MAX_TRANSFER)} per transaction.")

        now = self.clock.now()
        day_start = self.clock.at(now.date(), 0, 0)
        with db.cursor(self.path) as cur:
            cur.execute(
                "SELECT MAX(created_at) FROM transactions WHERE sender_id=?",
                (sender,),
            )
            last = cur.fetchone()[0]
            if last:
                elapsed = now - datetime.fromisoformat(last)
                if elapsed < TRANSFER_COOLDOWN:
                    remaining = (TRANSFER_COOLDOWN - elapsed).total_seconds()
                    raise Cooldown(
                        f"Please wait {int(remaining) + 1} seconds before making another transfer.",
                        remaining,
                    )

            cur.execute(
                "SELECT COUNT(*), COALESCE(SUM(amount), 0) FROM transactions WHERE sender_id=? AND created_at>=?",
                (sender, _ts(day_start)),
            )
            count, total = cur.fetchone()
            if count >= MAX_DAILY_TRANSFERS:
                raise InvalidInput(f"You've reached the daily limit of {MAX_DAILY_TRANSFERS} transfers.")
            if total + amount > MAX_DAILY_AMOUNT:
                raise InvalidInput(
                    f"That would exceed the daily transfer limit of {format_currency(MAX_DAILY_AMOUNT)}."
                )

            src = self._ensure(cur, sender)
            dst = self._ensure(cur, receiver)
            if src.balance < amount:
                raise InsufficientFunds(
                    f"You only have {format_currency(src.balance)}, which isn't enough to send {format_currency(amount)}."
                )
            cur.execute("UPDATE users SET balance=balance-? WHERE user_id=?", (amount, sender))
            cur.execute("UPDATE users SET balance=balance+? WHERE user_id=?", (amount, receiver))
            cur.execute(
                """
                INSERT INTO transactions (sender_id, receiver_id, amount, message, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (sender, receiver, amount, message, _ts(now)),
            )
        log.info("Transfer %s -> %s amount=%d", sender, receiver, amount)
        return src.balance - amount, dst.balance + amount

    def leaderboard(self, limit: int = 10) -> List[Tuple[str, int]]:
        with db.cursor(self.path) as cur:
            cur.execute(
                "SELECT user_id, balance FROM users WHERE balance>0 ORDER BY balance DESC, user_id ASC LIMIT ?",
                (limit,),
            )
            return [(r[0], r[1]) for r in cur.fetchall()]

    def rank(self, user_id) -> Optional[int]:
        user = normalize_id(user_id)
        with db.cursor(self.path) as cur:
            cur.execute("SELECT balance FROM users WHERE user_id=?", (user,))
            row = cur.fetchone()
            if not row or row[0] <= 0:
                return None
            cur.execute(
                "SELECT COUNT(*) FROM users WHERE balance>? OR (balance=? AND user_id<?)",
                (row[0], row[0], user),
            )
            return cur.fetchone()[0] + 1
