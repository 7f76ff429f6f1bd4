"""Event lifecycle: creation rules, RSVPs, cancel, deadline resolution and resume."""
import asyncio
from datetime import timedelta

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from diningbot.errors import DuplicateActiveEvent, Forbidden, InvalidInput, NotFound, StoreFailure
from diningbot.lifecycle import EventController, compose_summary
from diningbot.models import CANCELLED, COMPLETED, Event, event_key
from tests.conftest import CHANNEL, CREATOR, FRIEND, GUILD, OTHER, START


def _create(controller, clock, kind="dinner", hour=16, minute=30, day=None, channel=CHANNEL, venue=None):
    when = clock.at(day or START.date(), hour, minute)
    key = event_key(GUILD, channel, kind, when, clock.tz)
    event = controller.create(key, CREATOR, kind, when, guild_id=GUILD, channel_id=channel, venue=venue)
    return key, event


class TestCreate:

    def test_create_dinner(self, controller, clock, scheduler):
        """A dinner at 4:30pm on a Monday is active with the creator attending."""
        key, event = _create(controller, clock)
        assert key == f"{GUILD}-{CHANNEL}-dinner-2026-10-19"
        assert event.is_active
        assert event.attendees == [CREATOR]
        assert event.declined == []
        assert controller.has_deadline(key)
        assert scheduler.get_job(f"deadline:{key}") is not None

    def test_created_event_is_stored(self, controller, clock, store):
        key, _ = _create(controller, clock, venue="barrett")
        stored = store.get(key)
        assert stored.venue == "barrett"
        assert stored.creator_id == CREATOR
        assert stored.scheduled_at == clock.at(START.date(), 16, 30)

    def test_dinner_end_is_inclusive(self, controller, clock):
        _create(controller, clock, hour=21, minute=0)

    def test_dinner_after_window_rejected(self, controller, clock):
        with pytest.raises(InvalidInput, match="Dinner is available"):
            _create(controller, clock, hour=21, minute=30)

    def test_breakfast_on_weekend_rejected(self, controller, clock):
        saturday = START.date().replace(day=24)
        with pytest.raises(InvalidInput, match="Monday-Friday"):
            _create(controller, clock, kind="breakfast", hour=9, minute=0, day=saturday)

    def test_podrun_any_time(self, controller, clock):
        key, event = _create(controller, clock, kind="podrun", hour=23, minute=45)
        assert event.kind == "podrun"
        assert controller.has_deadline(key)

    def test_past_time_rejected(self, controller, clock):
        """Breakfast at 9:30 is inside the window but the clock already reads 10:00."""
        with pytest.raises(InvalidInput, match="already passed"):
            _create(controller, clock, kind="breakfast", hour=9, minute=30)

    def test_unknown_venue_rejected(self, controller, clock):
        with pytest.raises(InvalidInput):
            _create(controller, clock, venue="nowhere")

    def test_duplicate_in_same_channel_and_day(self, controller, clock):
        _create(controller, clock)
        with pytest.raises(DuplicateActiveEvent, match="already an active dinner event"):
            _create(controller, clock, hour=18, minute=0)

    def test_unique_index_stops_racing_create(self, store, clock, monkeypatch):
        """Two creates that both pass the pre-check: the insert loses and nothing is scheduled."""
        winner = EventController(store, AsyncIOScheduler(), clock)
        key, _ = _create(winner, clock)

        loser_scheduler = AsyncIOScheduler()
        loser = EventController(store, loser_scheduler, clock)
        monkeypatch.setattr(store, "exists", lambda key: False)
        with pytest.raises(DuplicateActiveEvent, match="already an active dinner event"):
            _create(loser, clock, hour=18, minute=0)
        assert not loser.has_deadline(key)
        assert loser_scheduler.get_job(f"deadline:{key}") is None
        assert winner.has_deadline(key)

    def test_same_kind_other_channel_allowed(self, controller, clock):
        _create(controller, clock)
        key, _ = _create(controller, clock, channel="333")
        assert controller.has_deadline(key)

    def test_key_can_be_reused_after_resolution(self, controller, clock):
        key, _ = _create(controller, clock)
        controller.cancel(key, CREATOR)
        _, event = _create(controller, clock, hour=18, minute=0)
        assert event.key == key
        assert event.is_active


class TestAttendance:

    def test_join_and_switch(self, controller, clock):
        key, _ = _create(controller, clock)
        event = controller.set_attendance(key, FRIEND, True)
        assert event.attendees == [CREATOR, FRIEND]

        event = controller.set_attendance(key, FRIEND, False)
        assert event.attendees == [CREATOR]
        assert event.declined == [FRIEND]

    def test_repeated_click_is_idempotent(self, controller, clock):
        key, _ = _create(controller, clock)
        controller.set_attendance(key, FRIEND, True)
        event = controller.set_attendance(key, FRIEND, True)
        assert event.attendees.count(FRIEND) == 1

    def test_integer_and_string_ids_are_one_user(self, controller, clock):
        key, _ = _create(controller, clock)
        event = controller.set_attendance(key, int(CREATOR), False)
        assert event.attendees == []
        assert event.declined == [CREATOR]

    def test_rsvp_on_cancelled_event(self, controller, clock):
        key, _ = _create(controller, clock)
        controller.cancel(key, CREATOR)
        with pytest.raises(NotFound):
            controller.set_attendance(key, FRIEND, True)


class TestVenue:

    def test_creator_sets_venue(self, controller, clock, store):
        key, _ = _create(controller, clock)
        event = controller.set_venue(key, CREATOR, "manzi")
        assert event.venue == "manzi"
        assert store.get(key).venue == "manzi"

    def test_non_creator_forbidden(self, controller, clock):
        key, _ = _create(controller, clock)
        with pytest.raises(Forbidden, match="Only the event creator"):
            controller.set_venue(key, OTHER, "manzi")

    def test_authorize_venue(self, controller, clock):
        key, _ = _create(controller, clock)
        assert controller.authorize_venue(key, int(CREATOR)).key == key
        with pytest.raises(Forbidden, match="Only the event creator"):
            controller.authorize_venue(key, FRIEND)


class TestCancel:

    def test_non_creator_cannot_cancel(self, controller, clock, store):
        key, _ = _create(controller, clock)
        with pytest.raises(Forbidden, match="cancel this dinner event"):
            controller.cancel(key, OTHER)
        assert store.get(key).is_active

    def test_cancel_stops_deadline(self, controller, clock, scheduler, announcements):
        key, _ = _create(controller, clock)
        event = controller.cancel(key, CREATOR)
        assert event.status == CANCELLED
        assert not controller.store.exists(key)
        assert not controller.has_deadline(key)
        assert scheduler.get_job(f"deadline:{key}") is None
        assert scheduler.get_job(f"purge:{key}") is not None

        # A deadline that fires anyway finds nothing to do
        assert asyncio.run(controller.on_deadline(key)) is None
        assert announcements.sent == []

    def test_cancel_twice(self, controller, clock):
        key, _ = _create(controller, clock)
        controller.cancel(key, CREATOR)
        with pytest.raises(NotFound):
            controller.cancel(key, CREATOR)


class TestDeadline:

    def test_lonely_creator_is_womp_womp(self, controller, clock, store, announcements):
        key, _ = _create(controller, clock, venue="barrett")
        resolution = asyncio.run(controller.on_deadline(key))
        assert resolution.text == (
            f"Womp womp, nobody wanted to get dinner with <@{CREATOR}> at Barrett. Event cancelled!"
        )
        assert not resolution.went_ahead
        assert resolution.event.status == COMPLETED
        assert announcements.sent == [resolution]
        with pytest.raises(NotFound):
            store.get(key)

    def test_two_attendees_are_pinged(self, controller, clock, announcements):
        key, _ = _create(controller, clock, venue="hassay")
        controller.set_attendance(key, FRIEND, True)
        controller.set_attendance(key, OTHER, False)
        resolution = asyncio.run(controller.on_deadline(key))
        assert resolution.text == f"Dinner time at Hassay! <@{CREATOR}> <@{FRIEND}>"
        assert resolution.went_ahead
        assert f"<@{OTHER}>" not in resolution.text

    def test_deadline_runs_once(self, controller, clock, announcements):
        key, _ = _create(controller, clock)
        asyncio.run(controller.on_deadline(key))
        assert asyncio.run(controller.on_deadline(key)) is None
        assert len(announcements.sent) == 1

    def test_cancel_after_completion(self, controller, clock):
        key, _ = _create(controller, clock)
        asyncio.run(controller.on_deadline(key))
        with pytest.raises(NotFound):
            controller.cancel(key, CREATOR)

    def test_announcer_failure_does_not_undo_completion(self, store, scheduler, clock):
        async def broken(resolution):
            raise RuntimeError("channel gone")

        controller = EventController(store, scheduler, clock, announcer=broken)
        key, _ = _create(controller, clock)
        resolution = asyncio.run(controller.on_deadline(key))
        assert resolution is not None
        assert not store.exists(key)

    def test_purge_removes_resolved_rows(self, controller, clock, store):
        key, _ = _create(controller, clock)
        asyncio.run(controller.on_deadline(key))
        controller._purge(key)
        assert store.delete_by_key(key) == 0

    def test_store_failure_keeps_a_deadline(self, controller, clock, store, scheduler, frozen,
                                            announcements, monkeypatch):
        """A failed read at the deadline leaves the event active with a retry job."""
        key, _ = _create(controller, clock)
        real_get = store.get
        calls = []

        def flaky_get(k):
            calls.append(k)
            if len(calls) == 1:
                raise StoreFailure()
            return real_get(k)

        monkeypatch.setattr(store, "get", flaky_get)
        frozen.advance(hours=6, minutes=30)
        assert asyncio.run(controller.on_deadline(key)) is None
        assert store.exists(key)
        assert controller.has_deadline(key)
        job = scheduler.get_job(f"deadline:{key}")
        assert job.trigger.run_date == clock.now() + timedelta(seconds=5)
        assert announcements.sent == []

        resolution = asyncio.run(controller.on_deadline(key))
        assert resolution.event.status == COMPLETED
        assert announcements.sent == [resolution]
        assert not controller.has_deadline(key)


class TestResume:

    def test_resume_reschedules_and_completes_overdue(self, store, scheduler, clock, frozen, announcements):
        # The first process dies with its own scheduler
        first = EventController(store, AsyncIOScheduler(), clock)
        lunch_key, _ = _create(first, clock, kind="lunch", hour=11, minute=30)
        dinner_key, _ = _create(first, clock)

        # Restart at noon: lunch deadline was missed, dinner is still ahead
        frozen.advance(hours=2)
        second = EventController(store, scheduler, clock, announcer=announcements)
        assert asyncio.run(second.resume()) == 1
        assert second.has_deadline(dinner_key)
        assert not second.has_deadline(lunch_key)
        assert [r.event.key for r in announcements.sent] == [lunch_key]
        assert not store.exists(lunch_key)
        assert store.exists(dinner_key)


class TestSummary:

    def _event(self, kind="podrun", attendees=(), venue=None):
        return Event(
            key="k", kind=kind, creator_id=CREATOR, guild_id=GUILD, channel_id=CHANNEL,
            scheduled_at=START, created_at=START, venue=venue, attendees=list(attendees),
        )

    def test_podrun_nobody(self):
        assert compose_summary(self._event()).text == "Womp womp, nobody wanted to podrun. Podrun has been cancelled"

    def test_podrun_alone(self):
        text = compose_summary(self._event(attendees=[CREATOR])).text
        assert text == f"Womp womp, nobody wanted to podrun with <@{CREATOR}>. Podrun has been cancelled"

    def test_podrun_group(self):
        resolution = compose_summary(self._event(attendees=[CREATOR, FRIEND]))
        assert resolution.text == f"It's podrun time! <@{CREATOR}> <@{FRIEND}>"
        assert resolution.went_ahead

    def test_meal_without_venue(self):
        text = compose_summary(self._event(kind="lunch", attendees=[CREATOR, FRIEND])).text
        assert text == f"Lunch time! <@{CREATOR}> <@{FRIEND}>"

    def test_meal_nobody_without_venue(self):
        text = compose_summary(self._event(kind="brunch")).text
        assert text == "Womp womp, nobody wanted to get brunch at a dining hall. Event cancelled!"
