"""Lifecycle of meal meetups and podruns.

An event is created ``active`` and ends either ``cancelled`` (by its
creator) or ``completed`` (its deadline job fired). The store is the only
copy of event state; this controller owns the status transitions and the
deadline jobs, keyed by event key. Every status write is conditional on the
row still being active, so when a deadline and a cancel race the loser
simply sees nothing to update.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.date import DateTrigger

from .config import DINING_HALLS, EVENT_PURGE_DELAY_SECONDS, EVENT_STYLES
from .errors import DuplicateActiveEvent, Forbidden, InvalidInput, NotFound, StoreFailure
from .models import ATTENDEE, CANCELLED, COMPLETED, DECLINED, PODRUN, Event, normalize_id
from .store import EventStore
from .timeutil import Clock, is_within_window, window_message

log = logging.getLogger(__name__)


@dataclass
class Resolution:
    event: Event
    text: str
    went_ahead: bool


Announcer = Callable[[Resolution], Awaitable[None]]


def hall_name(venue: Optional[str]) -> str:
    hall = DINING_HALLS.get(venue or "")
    return hall["name"] if hall else "a dining hall"


def compose_summary(event: Event) -> Resolution:
    """Final announcement for an event whose deadline was reached.

    With one attendee or fewer the event is treated as a bust: nobody joined
    the creator. Declined users never change the outcome.
    """
    pings = " ".join(f"<@{u}>" for u in event.attendees)
    count = len(event.attendees)

    if event.kind == PODRUN:
        if count == 0:
            text = "Womp womp, nobody wanted to podrun. Podrun has been cancelled"
        elif count == 1:
            text = f"Womp womp, nobody wanted to podrun with <@{event.attendees[0]}>. Podrun has been cancelled"
        else:
            text = f"It's podrun time! {pings}"
        return Resolution(event, text, count > 1)

    meal = EVENT_STYLES[event.kind]["name"]
    where = hall_name(event.venue)
    if count == 0:
        text = f"Womp womp, nobody wanted to get {meal.lower()} at {where}. Event cancelled!"
    elif count == 1:
        text = (
            f"Womp womp, nobody wanted to get {meal.lower()} with <@{event.attendees[0]}> "
            f"at {where}. Event cancelled!"
        )
    elif event.venue:
        text = f"{meal} time at {where}! {pings}"
    else:
        text = f"{meal} time! {pings}"
    return Resolution(event, text, count > 1)


class EventController:
    def __init__(
        self,
        store: EventStore,
        scheduler,
        clock: Optional[Clock] = None,
        announcer: Optional[Announcer] = None,
        purge_delay: int = EVENT_PURGE_DELAY_SECONDS,
    ):
        self.store = store
        self.scheduler = scheduler
        self.clock = clock or Clock()
        self.announcer = announcer
        self.purge_delay = purge_delay
        self._deadlines: Dict[str, object] = {}

    # ---------- Commands ----------
    def create(
        self,
        key: str,
        creator_id,
        kind: str,
        scheduled_at: datetime,
        *,
        guild_id,
        channel_id,
        venue: Optional[str] = None,
        creator_name: Optional[str] = None,
    ) -> Event:
        if kind not in EVENT_STYLES:
            raise InvalidInput(f"Unknown event type {kind!r}.")
        name = EVENT_STYLES[kind]["name"].lower()

        if not is_within_window(kind, scheduled_at, self.clock.tz):
            raise InvalidInput(window_message(kind, self.clock.fmt_time(scheduled_at)))
        if scheduled_at <= self.clock.now():
            raise InvalidInput("The specified time has already passed. Please choose a future time.")
        if venue is not None and venue not in DINING_HALLS:
            raise InvalidInput(f"Unknown dining hall {venue!r}.")

        # Best-effort pre-check; the store's unique index is the real guard
        if self.store.exists(key):
            raise DuplicateActiveEvent(f"There's already an active {name} event in this channel for that day!")

        creator = normalize_id(creator_id)
        event = Event(
            key=key,
            kind=kind,
            creator_id=creator,
            guild_id=normalize_id(guild_id),
            channel_id=normalize_id(channel_id),
            scheduled_at=scheduled_at,
            created_at=self.clock.now(),
            venue=venue,
            attendees=[creator],
        )
        try:
            event.id = self.store.insert(event, {creator: creator_name})
        except DuplicateActiveEvent:
            raise DuplicateActiveEvent(f"There's already an active {name} event in this channel for that day!")

        self._schedule_deadline(key, scheduled_at)
        log.info("Created %s event key=%s creator=%s at=%s", kind, key, creator, scheduled_at.isoformat())
        return event

    def set_attendance(self, key: str, user_id, attending: bool, username: Optional[str] = None) -> Event:
        event = self.store.get(key)
        user = normalize_id(user_id)
        self.store.upsert_participant(event.id, user, username, ATTENDEE if attending else DECLINED)
        log.debug("RSVP key=%s user=%s attending=%s", key, user, attending)
        return self.store.get(key)

    def authorize_venue(self, key: str, requester_id) -> Event:
        """The active event, provided the requester may pick its hall."""
        event = self.store.get(key)
        if normalize_id(requester_id) != event.creator_id:
            raise Forbidden("Only the event creator can select the dining hall.")
        return event

    def set_venue(self, key: str, requester_id, venue: str) -> Event:
        event = self.authorize_venue(key, requester_id)
        if venue not in DINING_HALLS:
            raise InvalidInput(f"Unknown dining hall {venue!r}.")
        if not self.store.set_venue(key, venue):
            raise NotFound("This event is no longer active.")
        event.venue = venue
        log.info("Venue set key=%s venue=%s", key, venue)
        return event

    def cancel(self, key: str, requester_id) -> Event:
        event = self.store.get(key)
        if normalize_id(requester_id) != event.creator_id:
            name = EVENT_STYLES[event.kind]["name"].lower()
            raise Forbidden(f"Only the event creator can cancel this {name} event.")
        if not self.store.update_status(key, CANCELLED):
            raise NotFound("This event has already wrapped up.")
        self._clear_deadline(key)
        self._schedule_purge(key)
        event.status = CANCELLED
        log.info("Cancelled event key=%s", key)
        return event

    def attach_message(self, key: str, message_id) -> None:
        self.store.set_message_id(key, message_id)

    # ---------- Resolution ----------
    async def on_deadline(self, key: str) -> Optional[Resolution]:
        return await self._resolve(key)

    async def force_complete(self, key: str) -> Optional[Resolution]:
        return await self._resolve(key)

    async def _resolve(self, key: str) -> Optional[Resolution]:
        try:
            event = self.store.get(key)
        except NotFound:
            log.debug("Deadline for key=%s found no active event", key)
            self._clear_deadline(key)
            return None
        except StoreFailure:
            log.exception("Could not load event key=%s at deadline", key)
            self._retry_deadline(key)
            return None

        resolution = compose_summary(event)
        try:
            changed = self.store.update_status(key, COMPLETED)
        except StoreFailure:
            log.exception("Could not complete event key=%s", key)
            self._retry_deadline(key)
            return None
        if not changed:
            log.debug("Event key=%s resolved elsewhere first", key)
            return None

        self._clear_deadline(key)
        self._schedule_purge(key)
        event.status = COMPLETED
        log.info("Completed event key=%s attendees=%d went_ahead=%s",
                 key, len(event.attendees), resolution.went_ahead)

        if self.announcer:
            try:
                await self.announcer(resolution)
            except Exception:
                log.exception("Announcer failed for key=%s", key)
        return resolution

    async def resume(self) -> int:
        """Reschedule deadlines for active events after a restart.

        Events whose deadline passed while we were down resolve immediately.
        """
        rescheduled = 0
        for event in self.store.list_active():
            if event.scheduled_at <= self.clock.now():
                await self.force_complete(event.key)
            else:
                self._schedule_deadline(event.key, event.scheduled_at)
                rescheduled += 1
        log.info("Resumed %d active event(s)", rescheduled)
        return rescheduled

    # ---------- Jobs ----------
    def has_deadline(self, key: str) -> bool:
        return key in self._deadlines

    def _schedule_deadline(self, key: str, run_date: datetime) -> None:
        job = self.scheduler.add_job(
            self.on_deadline,
            trigger=DateTrigger(run_date=run_date),
            args=[key],
            id=f"deadline:{key}",
            replace_existing=True,
            misfire_grace_time=None,
        )
        self._deadlines[key] = job

    def _retry_deadline(self, key: str) -> None:
        # The event is still active; it must keep a deadline
        retry_at = self.clock.now() + timedelta(seconds=self.purge_delay)
        log.warning("Retrying deadline for key=%s at %s", key, retry_at.isoformat())
        self._clear_deadline(key)
        self._schedule_deadline(key, retry_at)

    def _clear_deadline(self, key: str) -> None:
        job = self._deadlines.pop(key, None)
        if job is None:
            return
        try:
            job.remove()
        except JobLookupError:
            pass

    def _schedule_purge(self, key: str) -> None:
        self.scheduler.add_job(
            self._purge,
            trigger=DateTrigger(run_date=self.clock.now() + timedelta(seconds=self.purge_delay)),
            args=[key],
            id=f"purge:{key}",
            replace_existing=True,
            misfire_grace_time=None,
        )

    def _purge(self, key: str) -> None:
        try:
            removed = self.store.delete_by_key(key)
        except StoreFailure:
            log.exception("Could not purge resolved event key=%s", key)
            return
        log.debug("Purged %d resolved row(s) for key=%s", removed, key)
