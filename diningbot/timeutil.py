import re
from datetime import date, datetime, timezone
from typing import Callable, Optional

import dateparser
import pytz

from .config import TZ_NAME
from .errors import InvalidInput

DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
TWELVE_HOUR_RE = re.compile(r"^(\d{1,2})(?::?(\d{2}))?\s*(am|pm)$")
TWENTY_FOUR_HOUR_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

WEEKDAYS = (0, 1, 2, 3, 4)
WEEKEND = (5, 6)
EVERY_DAY = (0, 1, 2, 3, 4, 5, 6)

# kind -> [(weekdays, start minute, end minute, end inclusive)]
MEAL_WINDOWS = {
    "breakfast": [(WEEKDAYS, 7 * 60, 11 * 60, False)],
    "brunch": [(WEEKEND, 10 * 60, 14 * 60, False)],
    "lunch": [(WEEKDAYS, 11 * 60, 14 * 60, False)],
    "light_lunch": [(EVERY_DAY, 14 * 60, 16 * 60 + 30, False)],
    "dinner": [
        ((0, 1, 2, 3), 16 * 60 + 30, 21 * 60, True),
        ((4, 5), 16 * 60 + 30, 19 * 60, True),
        ((6,), 16 * 60 + 30, 20 * 60, True),
    ],
}

WINDOW_MESSAGES = {
    "breakfast": "Breakfast is only available Monday-Friday from 7:00 AM to 11:00 AM.",
    "brunch": "Brunch is only available Saturday-Sunday from 10:00 AM to 2:00 PM.",
    "lunch": "Lunch is only available Monday-Friday from 11:00 AM to 2:00 PM.",
    "light_lunch": "Light lunch is available Monday-Sunday from 2:00 PM to 4:30 PM.",
    "dinner": (
        "Dinner is available Monday-Thursday 4:30 PM-9:00 PM, "
        "Friday-Saturday 4:30 PM-7:00 PM, Sunday 4:30 PM-8:00 PM."
    ),
}


class Clock:
    """Civil time for the organization, independent of the server's timezone.

    ``now`` may be injected (a callable returning an aware datetime) so tests
    can pin the current instant.
    """

    def __init__(self, tz_name: str = TZ_NAME, now: Optional[Callable[[], datetime]] = None):
        self.tz = pytz.timezone(tz_name)
        self._now = now

    def now(self) -> datetime:
        current = self._now() if self._now else datetime.now(timezone.utc)
        return current.astimezone(self.tz)

    def local(self, dt: datetime) -> datetime:
        return dt.astimezone(self.tz)

    def at(self, day: date, hour: int, minute: int) -> datetime:
        return self.tz.localize(datetime(day.year, day.month, day.day, hour, minute))

    def parse_date(self, text: Optional[str]) -> date:
        if not text or not text.strip():
            return self.now().date()
        text = text.strip()
        m = DATE_RE.match(text)
        if m:
            month, day, year = (int(g) for g in m.groups())
            try:
                return date(year, month, day)
            except ValueError:
                raise InvalidInput("Invalid date. Please provide a valid date.")

        settings = {
            "PREFER_DATES_FROM": "future",
            "DATE_ORDER": "MDY",
            "RELATIVE_BASE": self.now().replace(tzinfo=None),
        }
        parsed = dateparser.parse(text, settings=settings)
        if not parsed:
            raise InvalidInput("Invalid date format. Please use MM/DD/YYYY format.")
        return parsed.date()

    def parse_time(self, text: str, day: date) -> datetime:
        raw = (text or "").strip().lower()
        m = TWELVE_HOUR_RE.match(raw)
        if m:
            hour, minute = int(m.group(1)), int(m.group(2) or 0)
            if 1 <= hour <= 12 and 0 <= minute <= 59:
                if m.group(3) == "pm" and hour != 12:
                    hour += 12
                elif m.group(3) == "am" and hour == 12:
                    hour = 0
                return self.at(day, hour, minute)

        m = TWENTY_FOUR_HOUR_RE.match(raw)
        if m:
            hour, minute = int(m.group(1)), int(m.group(2))
            if 0 <= hour <= 23 and 0 <= minute <= 59:
                return self.at(day, hour, minute)

        raise InvalidInput('Invalid time format. Please use formats like "12:30pm", "1:00", or "13:15".')

    def parse_civil_datetime(self, date_text: Optional[str], time_text: str) -> datetime:
        return self.parse_time(time_text, self.parse_date(date_text))

    def fmt_time(self, dt: datetime) -> str:
        return self.local(dt).strftime("%I:%M %p").lstrip("0").lower()

    def fmt_date(self, dt: datetime) -> str:
        local = self.local(dt)
        return f"{local.strftime('%b')} {local.day}, {local.year}"


def is_within_window(kind: str, instant: datetime, tz: Optional[pytz.BaseTzInfo] = None) -> bool:
    """True when ``instant`` falls in a serving window for ``kind``.

    Kinds without an entry (podruns) are allowed at any time.
    """
    windows = MEAL_WINDOWS.get(kind)
    if windows is None:
        return True
    local = instant.astimezone(tz or pytz.timezone(TZ_NAME))
    minutes = local.hour * 60 + local.minute
    for days, start, end, inclusive in windows:
        if local.weekday() not in days:
            continue
        if start <= minutes < end or (inclusive and minutes == end):
            return True
    return False


def window_message(kind: str, raw_time: str) -> str:
    return f'Invalid time "{raw_time}". {WINDOW_MESSAGES.get(kind, "")}'.strip()
