import logging
import sqlite3
from datetime import datetime, timezone
from typing import List, Optional

from . import db
from .errors import DuplicateActiveEvent, NotFound
from .models import ACTIVE, ATTENDEE, DECLINED, STATUSES, Event

log = logging.getLogger(__name__)

EVENT_COLUMNS = (
    "id, event_key, kind, creator_id, guild_id, channel_id, message_id, "
    "venue, scheduled_at, created_at, status"
)


def _utc_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat()


def _row_to_event(row) -> Event:
    (ev_id, key, kind, creator_id, guild_id, channel_id, message_id,
     venue, scheduled_at, created_at, status) = row
    return Event(
        id=ev_id,
        key=key,
        kind=kind,
        creator_id=creator_id,
        guild_id=guild_id,
        channel_id=channel_id,
        message_id=message_id,
        venue=venue,
        scheduled_at=datetime.fromisoformat(scheduled_at),
        created_at=datetime.fromisoformat(created_at),
        status=status,
    )


class EventStore:
    """Events and their RSVPs in sqlite.

    Reads only ever return active events; resolved rows are kept until
    ``delete_by_key`` purges them.
    """

    def __init__(self, path: str):
        self.path = path

    def exists(self, key: str) -> bool:
        with db.cursor(self.path) as cur:
            cur.execute(
                "SELECT 1 FROM events WHERE event_key=? AND status=? LIMIT 1",
                (key, ACTIVE),
            )
            return cur.fetchone() is not None

    def insert(self, event: Event, usernames: Optional[dict] = None) -> int:
        usernames = usernames or {}
        now = datetime.now(timezone.utc).isoformat()
        try:
            with db.cursor(self.path) as cur:
                # Resolved leftovers with the same key would only confuse lookups
                cur.execute(
                    "DELETE FROM events WHERE event_key=? AND status!=?",
                    (event.key, ACTIVE),
                )
                cur.execute(
                    """
                    INSERT INTO events (event_key, kind, creator_id, guild_id, channel_id,
                                        message_id, venue, scheduled_at, created_at, status)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        event.key,
                        event.kind,
                        event.creator_id,
                        event.guild_id,
                        event.channel_id,
                        event.message_id,
                        event.venue,
                        _utc_iso(event.scheduled_at),
                        _utc_iso(event.created_at),
                        ACTIVE,
                    ),
                )
                ev_id = cur.lastrowid
                rows = [(ev_id, u, usernames.get(u), ATTENDEE, now) for u in event.attendees]
                rows += [(ev_id, u, usernames.get(u), DECLINED, now) for u in event.declined]
                cur.executemany(
                    """
                    INSERT INTO event_participants (event_id, user_id, username, participant_type, joined_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    rows,
                )
        except sqlite3.IntegrityError as exc:
            log.info("Duplicate active event rejected by store key=%s", event.key)
            raise DuplicateActiveEvent("There's already an active event for that key.") from exc
        return ev_id

    def get(self, key: str) -> Event:
        with db.cursor(self.path) as cur:
            cur.execute(
                f"SELECT {EVENT_COLUMNS} FROM events WHERE event_key=? AND status=?",
                (key, ACTIVE),
            )
            row = cur.fetchone()
            if not row:
                raise NotFound("This event is no longer active.")
            event = _row_to_event(row)
            cur.execute(
                """
                SELECT user_id, participant_type
                FROM event_participants
                WHERE event_id=?
                ORDER BY rowid
                """,
                (event.id,),
            )
            for user_id, participant_type in cur.fetchall():
                if participant_type == ATTENDEE:
                    event.attendees.append(user_id)
                else:
                    event.declined.append(user_id)
        return event

    def list_active(self) -> List[Event]:
        with db.cursor(self.path) as cur:
            cur.execute(
                "SELECT event_key FROM events WHERE status=? ORDER BY scheduled_at ASC",
                (ACTIVE,),
            )
            keys = [r[0] for r in cur.fetchall()]
        events = []
        for key in keys:
            try:
                events.append(self.get(key))
            except NotFound:
                continue
        return events

    def update_status(self, key: str, status: str) -> bool:
        """Move an active event to ``status``; False if it was not active."""
        if status not in STATUSES:
            raise ValueError(f"unknown status {status!r}")
        with db.cursor(self.path) as cur:
            cur.execute(
                "UPDATE events SET status=? WHERE event_key=? AND status=?",
                (status, key, ACTIVE),
            )
            return cur.rowcount > 0

    def upsert_participant(self, event_id: int, user_id: str, username: Optional[str], kind: str) -> None:
        if kind not in (ATTENDEE, DECLINED):
            raise ValueError(f"unknown participant type {kind!r}")
        with db.cursor(self.path) as cur:
            cur.execute(
                "DELETE FROM event_participants WHERE event_id=? AND user_id=?",
                (event_id, user_id),
            )
            cur.execute(
                """
                INSERT INTO event_participants (event_id, user_id, username, participant_type, joined_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (event_id, user_id, username, kind, datetime.now(timezone.utc).isoformat()),
            )

    def set_venue(self, key: str, venue: Optional[str]) -> bool:
        with db.cursor(self.path) as cur:
            cur.execute(
                "UPDATE events SET venue=? WHERE event_key=? AND status=?",
                (venue, key, ACTIVE),
            )
            return cur.rowcount > 0

    def set_message_id(self, key: str, message_id) -> bool:
        with db.cursor(self.path) as cur:
            cur.execute(
                "UPDATE events SET message_id=? WHERE event_key=? AND status=?",
                (str(message_id) if message_id is not None else None, key, ACTIVE),
            )
            return cur.rowcount > 0

    def delete_by_key(self, key: str) -> int:
        """Purge resolved rows for ``key``. Active rows are never touched."""
        with db.cursor(self.path) as cur:
            cur.execute(
                "DELETE FROM events WHERE event_key=? AND status!=?",
                (key, ACTIVE),
            )
            return cur.rowcount
