import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import aiohttp
import pytz

from . import db
from .config import DINING_HALLS, MEAL_PERIODS, MENU_API_URL, MENU_CACHE_TTL_HOURS, TZ_NAME
from .errors import InvalidInput, MenuUnavailable

log = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "DiningBot/0.3 (+discord)",
    "Accept": "application/json",
}
PRELOAD_PERIODS = ("breakfast", "lunch", "light_lunch", "dinner")


# ---------- Parsed shapes ----------
@dataclass
class MenuPeriod:
    period_id: str
    name: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass
class Menu:
    hall_key: str
    hall_name: str
    day: date
    period_id: Optional[str]
    period_name: Optional[str]
    periods: List[MenuPeriod] = field(default_factory=list)
    stations: List[Tuple[str, List[str]]] = field(default_factory=list)
    time_range: Optional[str] = None

    @property
    def date_label(self) -> str:
        return self.day.strftime("%m/%d/%Y")


def _utc_time(raw: Optional[str]) -> Optional[datetime]:
    # The API sends e.g. "2025-04-22 13:00:00Z"
    if not raw:
        return None
    try:
        return datetime.strptime(raw.strip().rstrip("Z"), "%Y-%m-%d %H:%M:%S").replace(tzinfo=timezone.utc)
    except ValueError:
        log.debug("Unparseable period time %r", raw)
        return None


def parse_periods(data: dict) -> List[MenuPeriod]:
    periods = []
    for p in ((data or {}).get("Menu") or {}).get("MenuPeriods") or []:
        periods.append(
            MenuPeriod(
                period_id=str(p.get("PeriodId", "")),
                name=p.get("Name") or "Unknown",
                start=_utc_time(p.get("UtcMealPeriodStartTime")),
                end=_utc_time(p.get("UtcMealPeriodEndTime")),
            )
        )
    return periods


def station_names(data: dict) -> Dict[str, str]:
    stations = ((data or {}).get("Menu") or {}).get("MenuStations") or []
    return {str(s.get("StationId")): s.get("Name") or "Station" for s in stations}


def items_by_station(data: dict) -> List[Tuple[str, List[str]]]:
    """Product names grouped by station, in station order; empty stations dropped."""
    names = station_names(data)
    grouped: Dict[str, List[str]] = {sid: [] for sid in names}
    for wrapper in ((data or {}).get("Menu") or {}).get("MenuProducts") or []:
        sid = str(wrapper.get("StationId"))
        product = wrapper.get("Product") or {}
        if sid in grouped and product.get("MarketingName"):
            grouped[sid].append(product["MarketingName"])
    return [(names[sid], items) for sid, items in grouped.items() if items]


def format_time_range(period: Optional[MenuPeriod], tz) -> Optional[str]:
    if not period or not period.start or not period.end:
        return None

    def fmt(dt):
        return dt.astimezone(tz).strftime("%I:%M %p").lstrip("0")

    return f"{fmt(period.start)} to {fmt(period.end)}"


# ---------- Cache ----------
class MenuCache:
    """API responses in the ``menu_cache`` table with a TTL."""

    def __init__(self, path: str, ttl_hours: int = MENU_CACHE_TTL_HOURS):
        self.path = path
        self.ttl = timedelta(hours=ttl_hours)

    @staticmethod
    def key(location_id: str, day: str, period_id: str = "") -> str:
        return f"{location_id}:{day}:{period_id or 'all'}"

    def get(self, key: str) -> Optional[dict]:
        with db.cursor(self.path) as cur:
            cur.execute(
                "SELECT payload FROM menu_cache WHERE cache_key=? AND expires_at>?",
                (key, datetime.now(timezone.utc).isoformat()),
            )
            row = cur.fetchone()
        return json.loads(row[0]) if row else None

    def set(self, key: str, payload: dict) -> None:
        expires = datetime.now(timezone.utc) + self.ttl
        with db.cursor(self.path) as cur:
            cur.execute(
                """
                INSERT INTO menu_cache (cache_key, payload, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(cache_key) DO UPDATE SET payload=excluded.payload, expires_at=excluded.expires_at
                """,
                (key, json.dumps(payload), expires.isoformat()),
            )

    def purge_expired(self) -> int:
        with db.cursor(self.path) as cur:
            cur.execute(
                "DELETE FROM menu_cache WHERE expires_at<=?",
                (datetime.now(timezone.utc).isoformat(),),
            )
            return cur.rowcount

    def stats(self) -> Tuple[int, int]:
        with db.cursor(self.path) as cur:
            cur.execute(
                "SELECT COUNT(*), SUM(CASE WHEN expires_at<=? THEN 1 ELSE 0 END) FROM menu_cache",
                (datetime.now(timezone.utc).isoformat(),),
            )
            total, expired = cur.fetchone()
        return total, expired or 0


class CircuitBreaker:
    def __init__(self, threshold: int = 5, recovery_seconds: float = 300, monotonic=time.monotonic):
        self.threshold = threshold
        self.recovery_seconds = recovery_seconds
        self.failures = 0
        self.opened_at = 0.0
        self._monotonic = monotonic

    def allow(self) -> bool:
        if self.failures < self.threshold:
            return True
        if self._monotonic() - self.opened_at >= self.recovery_seconds:
            self.reset()
            return True
        return False

    def record_failure(self):
        self.failures += 1
        self.opened_at = self._monotonic()

    def reset(self):
        self.failures = 0
        self.opened_at = 0.0


# ---------- Client ----------
class MenuClient:
    def __init__(
        self,
        cache: MenuCache,
        url: str = MENU_API_URL,
        session: Optional[aiohttp.ClientSession] = None,
        attempts: int = 3,
        backoff: float = 3.0,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.cache = cache
        self.url = url
        self.attempts = attempts
        self.backoff = backoff
        self.breaker = breaker or CircuitBreaker()
        self._session = session

    async def fetch(self, location_id: str, day: str, period_id: str = "") -> dict:
        key = MenuCache.key(location_id, day, period_id)
        cached = self.cache.get(key)
        if cached is not None:
            log.debug("Menu cache hit %s", key)
            return cached

        if not self.breaker.allow():
            log.warning("Menu circuit open (%d failures), skipping %s", self.breaker.failures, key)
            raise MenuUnavailable("The menu service is temporarily unavailable. Please try again later.")

        params = {"mode": "Daily", "locationId": location_id, "date": day, "periodId": period_id}
        params = {k: v for k, v in params.items() if v != ""}

        last_error = None
        for attempt in range(self.attempts):
            try:
                data = await self._get(params)
                break
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                last_error = e
                if attempt < self.attempts - 1:
                    delay = self.backoff * (3 ** attempt)
                    log.info("Menu fetch failed (%d/%d) for %s: %s; retrying in %.0fs",
                             attempt + 1, self.attempts, key, e, delay)
                    await asyncio.sleep(delay)
        else:
            self.breaker.record_failure()
            log.error("Menu fetch gave up for %s: %s", key, last_error)
            raise MenuUnavailable()

        self.breaker.reset()
        if isinstance(data, dict) and data.get("Menu"):
            self.cache.set(key, data)
        else:
            log.warning("Menu response for %s had no Menu section; not caching", key)
        return data

    async def _get(self, params: dict):
        if self._session is not None:
            return await self._request(self._session, params)
        timeout = aiohttp.ClientTimeout(total=30, connect=10)
        async with aiohttp.ClientSession(timeout=timeout, headers=DEFAULT_HEADERS) as s:
            return await self._request(s, params)

    async def _request(self, session, params: dict):
        async with session.get(self.url, params=params) as r:
            r.raise_for_status()
            return await r.json(content_type=None)


class MenuService:
    """Hall/period lookups on top of ``MenuClient``."""

    def __init__(self, client: MenuClient, tz_name: str = TZ_NAME):
        self.client = client
        self.tz = pytz.timezone(tz_name)

    @staticmethod
    def api_date(day: date) -> str:
        return day.strftime("%m/%d/%Y")

    async def get_menu(self, hall_key: str, day: date, period_id: Optional[str] = None) -> Menu:
        hall = DINING_HALLS.get(hall_key)
        if not hall:
            raise InvalidInput(f"Unknown dining hall {hall_key!r}.")

        data = await self.client.fetch(hall["location_id"], self.api_date(day), period_id or "")
        periods = parse_periods(data)
        selected = None
        if period_id:
            selected = next((p for p in periods if p.period_id == str(period_id)), None)
        elif periods:
            # The API answers a period-less request with its current period
            selected_name = (data or {}).get("SelectedPeriodName")
            selected = next((p for p in periods if p.name == selected_name), periods[0])

        return Menu(
            hall_key=hall_key,
            hall_name=hall["name"],
            day=day,
            period_id=selected.period_id if selected else period_id,
            period_name=selected.name if selected else (data or {}).get("SelectedPeriodName"),
            periods=periods,
            stations=items_by_station(data),
            time_range=format_time_range(selected, self.tz),
        )

    async def preload(self, day: date) -> Tuple[int, int]:
        """Warm the cache for every hall and the common periods of ``day``."""
        ok, failed = 0, 0
        started = time.monotonic()
        for hall_key, hall in DINING_HALLS.items():
            for period_key in ("",) + PRELOAD_PERIODS:
                if not self.client.breaker.allow():
                    log.warning("Menu circuit opened during preload; stopping early")
                    return ok, failed
                period_id = MEAL_PERIODS[period_key]["period_id"] if period_key else ""
                try:
                    await self.client.fetch(hall["location_id"], self.api_date(day), period_id)
                    ok += 1
                except MenuUnavailable:
                    failed += 1
                    log.warning("Preload failed for %s period=%s", hall_key, period_key or "all")
        log.info("Menu preload finished in %.1fs: %d ok, %d failed", time.monotonic() - started, ok, failed)
        return ok, failed
