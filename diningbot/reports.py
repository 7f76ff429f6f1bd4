"""Sunday weekly-report reminder: a role ping with the survey link, sent twice."""
import logging
from typing import Awaitable, Callable, Optional

from apscheduler.triggers.cron import CronTrigger

log = logging.getLogger(__name__)

# (hour, minute, label) in the organization's timezone
REPORT_TIMES = ((12, 0, "1/2"), (23, 30, "2/2"))


def weekly_report_message(role_id, survey_url: str, part: str) -> str:
    return f"<@&{role_id}> Weekly Report Reminder! ({part})\nWeekly Report Link: {survey_url}"


def schedule_weekly_report(
    scheduler,
    send: Callable[[str], Awaitable[None]],
    tz_name: str,
    *,
    guild_id: Optional[str],
    role_id: Optional[str],
    channel_id: Optional[str],
    survey_url: Optional[str],
) -> int:
    """Add one Sunday cron job per reminder; nothing is scheduled unless fully configured."""
    if not (guild_id and role_id and channel_id and survey_url):
        log.info("Weekly report not configured; skipping")
        return 0
    for number, (hour, minute, label) in enumerate(REPORT_TIMES, 1):
        scheduler.add_job(
            send,
            CronTrigger(day_of_week="sun", hour=hour, minute=minute, timezone=tz_name),
            args=[label],
            id=f"weekly_report:{number}",
            replace_existing=True,
        )
    return len(REPORT_TIMES)
