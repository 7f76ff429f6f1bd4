"""Pytest fixtures: a fresh sqlite file per test and a clock pinned in Phoenix."""
from datetime import datetime, timedelta

import pytest
import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from diningbot import db
from diningbot.lifecycle import EventController
from diningbot.store import EventStore
from diningbot.timeutil import Clock

PHOENIX = pytz.timezone("America/Phoenix")

# Monday
START = PHOENIX.localize(datetime(2026, 10, 19, 10, 0))

GUILD = "111"
CHANNEL = "222"
CREATOR = "1001"
FRIEND = "1002"
OTHER = "1003"


class FrozenTime:
    """Mutable "now" for Clock; tests advance it by hand."""

    def __init__(self, start: datetime = START):
        self.value = start

    def __call__(self) -> datetime:
        return self.value

    def advance(self, **kwargs):
        self.value += timedelta(**kwargs)


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "test.db")
    db.init_db(path)
    return path


@pytest.fixture
def frozen():
    return FrozenTime()


@pytest.fixture
def clock(frozen):
    return Clock("America/Phoenix", now=frozen)


@pytest.fixture
def store(db_path):
    return EventStore(db_path)


@pytest.fixture
def scheduler():
    # Never started: jobs stay pending and can be inspected by id
    return AsyncIOScheduler()


class Announcements:
    def __init__(self):
        self.sent = []

    async def __call__(self, resolution):
        self.sent.append(resolution)


@pytest.fixture
def announcements():
    return Announcements()


@pytest.fixture
def controller(store, scheduler, clock, announcements):
    return EventController(store, scheduler, clock, announcer=announcements, purge_delay=5)
