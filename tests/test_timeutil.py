from datetime import date

import pytest

from diningbot.errors import InvalidInput
from diningbot.timeutil import is_within_window, window_message
from tests.conftest import PHOENIX, START


class TestParseTime:

    @pytest.mark.parametrize("text,hour,minute", [
        ("12:30pm", 12, 30),
        ("12am", 0, 0),
        ("4:30 PM", 16, 30),
        ("430pm", 16, 30),
        ("1:00", 1, 0),
        ("13:15", 13, 15),
        ("  7am ", 7, 0),
    ])
    def test_accepted_formats(self, clock, text, hour, minute):
        dt = clock.parse_time(text, START.date())
        assert (dt.hour, dt.minute) == (hour, minute)
        assert dt.tzinfo.zone == "America/Phoenix"

    @pytest.mark.parametrize("text", ["", "noon", "13pm", "25:00", "12:60", "7.30"])
    def test_rejected(self, clock, text):
        with pytest.raises(InvalidInput, match="Invalid time format"):
            clock.parse_time(text, START.date())


class TestParseDate:

    def test_blank_is_today(self, clock):
        assert clock.parse_date(None) == date(2026, 10, 19)
        assert clock.parse_date("  ") == date(2026, 10, 19)

    def test_slash_format(self, clock):
        assert clock.parse_date("11/02/2026") == date(2026, 11, 2)

    def test_impossible_date(self, clock):
        with pytest.raises(InvalidInput, match="Invalid date. Please provide a valid date."):
            clock.parse_date("02/30/2026")

    def test_natural_language(self, clock):
        assert clock.parse_date("tomorrow") == date(2026, 10, 20)

    def test_garbage(self, clock):
        with pytest.raises(InvalidInput, match="MM/DD/YYYY"):
            clock.parse_date("xyzzy")


class TestWindows:

    @pytest.mark.parametrize("kind,day,hour,minute,expected", [
        ("breakfast", 19, 7, 0, True),
        ("breakfast", 19, 11, 0, False),
        ("breakfast", 24, 8, 0, False),
        ("brunch", 24, 10, 0, True),
        ("brunch", 19, 11, 0, False),
        ("lunch", 23, 13, 59, True),
        ("light_lunch", 25, 16, 29, True),
        ("light_lunch", 25, 16, 30, False),
        ("dinner", 22, 21, 0, True),
        ("dinner", 23, 19, 0, True),
        ("dinner", 23, 19, 1, False),
        ("dinner", 25, 20, 0, True),
        ("dinner", 25, 16, 29, False),
        ("podrun", 25, 3, 0, True),
    ])
    def test_window_table(self, kind, day, hour, minute, expected):
        instant = PHOENIX.localize(START.replace(tzinfo=None, day=day, hour=hour, minute=minute))
        assert is_within_window(kind, instant, PHOENIX) is expected

    def test_window_message_names_the_time(self):
        msg = window_message("lunch", "3:00 pm")
        assert msg.startswith('Invalid time "3:00 pm".')
        assert "Monday-Friday" in msg


def test_formatting(clock):
    dt = clock.at(START.date(), 16, 30)
    assert clock.fmt_time(dt) == "4:30 pm"
    assert clock.fmt_date(dt) == "Oct 19, 2026"
