import os
import logging
from pathlib import Path

from dotenv import load_dotenv

# ---------- Env ----------
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

TOKEN = os.getenv("DISCORD_BOT_TOKEN", "").strip()
DB_PATH = os.getenv("DB_PATH", "diningbot.db")
TZ_NAME = os.getenv("BOT_TIMEZONE", "America/Phoenix")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

MENU_API_URL = os.getenv("MENU_API_URL", "https://asu.campusdish.com/api/menu/GetMenus")
MENU_CACHE_TTL_HOURS = int(os.getenv("MENU_CACHE_TTL_HOURS", "4"))
MENU_PRELOAD_HOURS = int(os.getenv("MENU_PRELOAD_HOURS", "6"))

# Resolved events linger this long so a late click still finds a row
EVENT_PURGE_DELAY_SECONDS = int(os.getenv("EVENT_PURGE_DELAY_SECONDS", "5"))

# Sunday weekly-report reminder; unset values disable it
WEEKLY_REPORT_GUILD_ID = os.getenv("WEEKLY_REPORT_GUILD_ID", "").strip()
WEEKLY_REPORT_CHANNEL_ID = os.getenv("WEEKLY_REPORT_CHANNEL_ID", "").strip()
WEEKLY_REPORT_ROLE_ID = os.getenv("WEEKLY_REPORT_ROLE_ID", "").strip()
WEEKLY_REPORT_SURVEY_URL = os.getenv("WEEKLY_REPORT_SURVEY_URL", "").strip()


def token_looks_valid(t: str) -> bool:
    return bool(t) and t.count(".") == 2 and not t.startswith("mfa.")


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
        datefmt="[%Y-%m-%d %H:%M:%S]",
    )


# ---------- Static tables ----------
DINING_HALLS = {
    "barrett": {"name": "Barrett", "location_id": "4295", "description": "Barrett Dining Hall"},
    "manzi": {"name": "Manzi", "location_id": "4294", "description": "Manzi Dining Hall"},
    "hassay": {"name": "Hassay", "location_id": "3360", "description": "Hassay Dining Hall"},
    "tooker": {"name": "Tooker", "location_id": "10585", "description": "Tooker House Dining"},
    "mu": {"name": "MU (Pitchforks)", "location_id": "4293", "description": "Memorial Union (Pitchforks)"},
    "hida": {"name": "HIDA", "location_id": "88279", "description": "HIDA Dining Hall"},
}

MEAL_PERIODS = {
    "breakfast": {"name": "Breakfast", "period_id": "980"},
    "lunch": {"name": "Lunch", "period_id": "981"},
    "light_lunch": {"name": "Light Lunch", "period_id": "3080"},
    "dinner": {"name": "Dinner", "period_id": "982"},
    "brunch": {"name": "Brunch", "period_id": "983"},
}

# Presentation per event kind; colours are discord.Colour values
EVENT_STYLES = {
    "breakfast": {
        "name": "Breakfast", "emoji": "🍳", "color": 0xE67E22,
        "description": "Join us for breakfast! Let us know if you're coming.",
        "yes_label": "Attending", "no_label": "Erm, Naur",
        "yes_heading": "Attending", "no_heading": "Can't Make It",
    },
    "brunch": {
        "name": "Brunch", "emoji": "🥞", "color": 0xF1C40F,
        "description": "Join us for brunch! Let us know if you're coming.",
        "yes_label": "Attending", "no_label": "Erm, Naur",
        "yes_heading": "Attending", "no_heading": "Can't Make It",
    },
    "lunch": {
        "name": "Lunch", "emoji": "🥪", "color": 0x3498DB,
        "description": "Join us for lunch! Let us know if you're coming.",
        "yes_label": "Attending", "no_label": "Erm, Naur",
        "yes_heading": "Attending", "no_heading": "Can't Make It",
    },
    "light_lunch": {
        "name": "Light Lunch", "emoji": "🥗", "color": 0x1ABC9C,
        "description": "Join us for a light lunch! Let us know if you're coming.",
        "yes_label": "Attending", "no_label": "Erm, Naur",
        "yes_heading": "Attending", "no_heading": "Can't Make It",
    },
    "dinner": {
        "name": "Dinner", "emoji": "🍽️", "color": 0x9B59B6,
        "description": "Join us for dinner! Let us know if you're coming.",
        "yes_label": "Attending", "no_label": "Erm, Naur",
        "yes_heading": "Attending", "no_heading": "Can't Make It",
    },
    "podrun": {
        "name": "Podrun", "emoji": "👍", "color": 0x2ECC71,
        "description": "Hit the thumbs up if you would like to podrun.",
        "yes_label": "Attending", "no_label": "Erm, Naur",
        "yes_heading": "Podrunners", "no_heading": "Haters",
    },
}
