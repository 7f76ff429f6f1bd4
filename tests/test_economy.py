import random

import pytest

from diningbot import db
from diningbot.economy import (
    MAX_DAILY_TRANSFERS, WORK_REWARD_MAX, WORK_REWARD_MIN, Economy, format_currency, format_remaining,
)
from diningbot.errors import Cooldown, InsufficientFunds, InvalidInput
from tests.conftest import CREATOR, FRIEND, OTHER


@pytest.fixture
def economy(db_path, clock):
    return Economy(db_path, clock, rng=random.Random(7))


def _fund(db_path, economy, user_id, amount):
    economy.account(user_id)
    with db.cursor(db_path) as cur:
        cur.execute("UPDATE users SET balance=? WHERE user_id=?", (amount, user_id))


class TestWork:

    def test_first_shift_is_the_bailout(self, economy):
        """A brand new account is broke, so its first shift is the one-time bailout."""
        result = economy.work(CREATOR, "alice")
        assert result.bailout
        assert WORK_REWARD_MIN <= result.reward <= WORK_REWARD_MAX
        assert economy.account(CREATOR).balance == result.reward

    def test_cooldown(self, economy, frozen):
        economy.work(CREATOR)
        with pytest.raises(Cooldown) as exc:
            economy.work(CREATOR)
        assert exc.value.remaining_seconds == pytest.approx(1800)
        assert "30m 0s" in str(exc.value)

        frozen.advance(minutes=31)
        result = economy.work(CREATOR)
        assert not result.bailout

    def test_bailout_only_once(self, economy, db_path, frozen):
        economy.work(CREATOR)
        _fund(db_path, economy, CREATOR, 0)
        frozen.advance(minutes=5)
        with pytest.raises(Cooldown):
            economy.work(CREATOR)

    def test_username_is_remembered(self, economy):
        economy.work(CREATOR, "alice")
        assert economy.account(CREATOR).username == "alice"


class TestPay:

    def test_transfer(self, economy, db_path):
        _fund(db_path, economy, CREATOR, 500)
        sender, receiver = economy.pay(CREATOR, FRIEND, 200, "pizza")
        assert (sender, receiver) == (300, 200)
        assert economy.account(FRIEND).balance == 200

    @pytest.mark.parametrize("receiver,amount,is_bot,match", [
        (CREATOR, 100, False, "yourself"),
        (FRIEND, 100, True, "bots"),
        (FRIEND, 9, False, "Minimum"),
        (FRIEND, 50_001, False, "Maximum"),
    ])
    def test_rejected_transfers(self, economy, db_path, receiver, amount, is_bot, match):
        _fund(db_path, economy, CREATOR, 100_000)
        with pytest.raises(InvalidInput, match=match):
            economy.pay(CREATOR, receiver, amount, receiver_is_bot=is_bot)

    def test_insufficient_funds_leaves_balances(self, economy, db_path):
        _fund(db_path, economy, CREATOR, 50)
        with pytest.raises(InsufficientFunds):
            economy.pay(CREATOR, FRIEND, 100)
        assert economy.account(CREATOR).balance == 50
        assert economy.account(FRIEND).balance == 0

    def test_transfer_cooldown(self, economy, db_path, frozen):
        _fund(db_path, economy, CREATOR, 1000)
        economy.pay(CREATOR, FRIEND, 10)
        with pytest.raises(Cooldown):
            economy.pay(CREATOR, OTHER, 10)
        frozen.advance(seconds=31)
        economy.pay(CREATOR, OTHER, 10)

    def test_daily_transfer_count(self, economy, db_path, frozen):
        _fund(db_path, economy, CREATOR, 1000)
        for _ in range(MAX_DAILY_TRANSFERS):
            economy.pay(CREATOR, FRIEND, 10)
            frozen.advance(seconds=31)
        with pytest.raises(InvalidInput, match="daily limit"):
            economy.pay(CREATOR, FRIEND, 10)

        frozen.advance(days=1)
        economy.pay(CREATOR, FRIEND, 10)

    def test_daily_amount(self, economy, db_path, frozen):
        _fund(db_path, economy, CREATOR, 500_000)
        for _ in range(4):
            economy.pay(CREATOR, FRIEND, 50_000)
            frozen.advance(seconds=31)
        with pytest.raises(InvalidInput, match="daily transfer limit"):
            economy.pay(CREATOR, FRIEND, 10)


class TestLeaderboard:

    def test_order_and_rank(self, economy, db_path):
        _fund(db_path, economy, CREATOR, 300)
        _fund(db_path, economy, FRIEND, 900)
        _fund(db_path, economy, OTHER, 0)
        assert economy.leaderboard() == [(FRIEND, 900), (CREATOR, 300)]
        assert economy.rank(FRIEND) == 1
        assert economy.rank(CREATOR) == 2
        assert economy.rank(OTHER) is None


def test_formatting():
    assert format_currency(1234567) == "t$t 1,234,567"
    assert format_remaining(125.7) == "2m 5s"
