import logging
import sqlite3
from contextlib import contextmanager

from .errors import StoreFailure

log = logging.getLogger(__name__)


# ---------- DB Helpers ----------
def connect(path: str):
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def cursor(path: str):
    """One transaction on a fresh connection.

    Integrity errors propagate unchanged so callers can map constraint
    violations; every other sqlite error becomes ``StoreFailure``.
    """
    conn = connect(path)
    try:
        with conn:
            yield conn.cursor()
    except sqlite3.IntegrityError:
        raise
    except sqlite3.Error as exc:
        log.exception("sqlite error on %s", path)
        raise StoreFailure() from exc
    finally:
        conn.close()


def init_db(path: str):
    conn = connect(path)
    cur = conn.cursor()

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            event_key TEXT NOT NULL,
            kind TEXT NOT NULL,
            creator_id TEXT NOT NULL,
            guild_id TEXT NOT NULL,
            channel_id TEXT NOT NULL,
            message_id TEXT,
            venue TEXT,
            scheduled_at TEXT NOT NULL,
            created_at TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'active' -- "active" | "completed" | "cancelled"
        );
        """
    )
    # At most one active event per key; resolved rows may linger until purged
    cur.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_events_active_key
        ON events(event_key) WHERE status = 'active';
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_events_status ON events(status);")

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS event_participants (
            event_id INTEGER NOT NULL,
            user_id  TEXT NOT NULL,
            username TEXT,
            participant_type TEXT NOT NULL, -- "attendee" | "declined"
            joined_at TEXT NOT NULL,
            PRIMARY KEY (event_id, user_id),
            FOREIGN KEY (event_id) REFERENCES events(id) ON DELETE CASCADE
        );
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
            user_id TEXT PRIMARY KEY,
            username TEXT,
            balance INTEGER NOT NULL DEFAULT 0,
            last_work TEXT,
            bailout_used INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        );
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS work_sessions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            reward INTEGER NOT NULL,
            balance_before INTEGER NOT NULL,
            balance_after INTEGER NOT NULL,
            worked_at TEXT NOT NULL
        );
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS transactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            sender_id TEXT NOT NULL,
            receiver_id TEXT NOT NULL,
            amount INTEGER NOT NULL,
            message TEXT,
            created_at TEXT NOT NULL
        );
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS roulette_games (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            bet_type TEXT NOT NULL,
            bet_value TEXT,
            bet_amount INTEGER NOT NULL,
            result_number INTEGER NOT NULL,
            result_color TEXT NOT NULL,
            won INTEGER NOT NULL,
            win_amount INTEGER NOT NULL DEFAULT 0,
            balance_before INTEGER NOT NULL,
            balance_after INTEGER NOT NULL,
            pity_applied INTEGER NOT NULL DEFAULT 0,
            losing_streak INTEGER NOT NULL DEFAULT 0,
            played_at TEXT NOT NULL
        );
        """
    )

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS menu_cache (
            cache_key TEXT PRIMARY KEY,
            payload TEXT NOT NULL,
            expires_at TEXT NOT NULL
        );
        """
    )

    conn.commit()
    conn.close()
