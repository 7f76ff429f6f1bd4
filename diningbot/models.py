from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import pytz

ACTIVE = "active"
COMPLETED = "completed"
CANCELLED = "cancelled"
STATUSES = (ACTIVE, COMPLETED, CANCELLED)

ATTENDEE = "attendee"
DECLINED = "declined"

MEAL_KINDS = ("breakfast", "brunch", "lunch", "light_lunch", "dinner")
PODRUN = "podrun"


def normalize_id(value) -> str:
    """Canonical form for Discord snowflakes: a decimal string."""
    if value is None:
        raise ValueError("missing identifier")
    text = str(value).strip()
    if text.isdigit():
        return str(int(text))
    return text


def event_key(guild_id, channel_id, kind: str, scheduled_at: datetime, tz: pytz.BaseTzInfo) -> str:
    day = scheduled_at.astimezone(tz).date().isoformat()
    return f"{normalize_id(guild_id)}-{normalize_id(channel_id)}-{kind}-{day}"


@dataclass
class Event:
    key: str
    kind: str
    creator_id: str
    guild_id: str
    channel_id: str
    scheduled_at: datetime
    created_at: datetime
    venue: Optional[str] = None
    status: str = ACTIVE
    id: Optional[int] = None
    message_id: Optional[str] = None
    attendees: List[str] = field(default_factory=list)
    declined: List[str] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE

    @property
    def is_meal(self) -> bool:
        return self.kind in MEAL_KINDS
