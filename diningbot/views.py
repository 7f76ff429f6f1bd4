import logging
from typing import Iterable, List, Optional

import discord
from discord import ButtonStyle, Interaction
from discord.ui import Button, Select, View

from .config import DINING_HALLS, EVENT_STYLES
from .errors import BotError
from .lifecycle import EventController, hall_name
from .models import Event
from .timeutil import Clock

log = logging.getLogger(__name__)

EMPTY = "\u200b"
FIELD_LIMIT = 1024
MAX_FIELDS = 25


# ---------- Helpers ----------
def mention_list(user_ids: Iterable[str]) -> str:
    lines = [f"<@{u}>" for u in user_ids]
    return "\n".join(lines) if lines else EMPTY


async def send_error(interaction: Interaction, message: str):
    if interaction.response.is_done():
        await interaction.followup.send(f"❌ {message}", ephemeral=True)
    else:
        await interaction.response.send_message(f"❌ {message}", ephemeral=True)


def event_embed(event: Event, clock: Clock) -> discord.Embed:
    style = EVENT_STYLES[event.kind]
    when = clock.fmt_time(event.scheduled_at)
    if event.venue in DINING_HALLS:
        title = f"**{style['name']} @ {hall_name(event.venue)} at {when}**"
    else:
        title = f"**{style['name']} at {when}**"

    embed = discord.Embed(
        description=f"{title}\n({clock.fmt_date(event.scheduled_at)})\n\n{style['description']}",
        color=style["color"],
    )
    embed.add_field(name=f"{style['emoji']} {style['yes_heading']}", value=mention_list(event.attendees), inline=True)
    embed.add_field(name=f"❌ {style['no_heading']}", value=mention_list(event.declined), inline=True)
    return embed


# ---------- Event RSVP UI ----------
class EventView(View):
    """RSVP buttons for one event message.

    Custom ids are per kind, so views are re-bound to their message with
    ``bot.add_view(view, message_id=...)`` after a restart.
    """

    def __init__(self, controller: EventController, event: Event, timeout: Optional[float] = None):
        super().__init__(timeout=timeout)
        self.controller = controller
        self.key = event.key
        self.kind = event.kind
        style = EVENT_STYLES[event.kind]

        yes = Button(label=style["yes_label"], emoji=style["emoji"], style=ButtonStyle.primary,
                     custom_id=f"{event.kind}_yes")
        yes.callback = self.attending
        self.add_item(yes)

        no = Button(label=style["no_label"], emoji="❌" if event.is_meal else "👎",
                    style=ButtonStyle.secondary, custom_id=f"{event.kind}_no")
        no.callback = self.declining
        self.add_item(no)

        if event.is_meal and not event.venue:
            hall = Button(label="Choose Dining Hall", emoji="🍽️", style=ButtonStyle.success,
                          custom_id=f"{event.kind}_select_hall")
            hall.callback = self.choose_hall
            self.add_item(hall)

        name = "Podrun" if not event.is_meal else "Event"
        cancel = Button(label=f"Cancel {name}", style=ButtonStyle.danger, custom_id=f"{event.kind}_cancel")
        cancel.callback = self.cancel
        self.add_item(cancel)

    async def _set_attendance(self, interaction: Interaction, attending: bool):
        try:
            event = self.controller.set_attendance(
                self.key, interaction.user.id, attending, username=interaction.user.name
            )
        except BotError as e:
            await send_error(interaction, str(e))
            return
        await interaction.response.edit_message(
            embed=event_embed(event, self.controller.clock),
            view=EventView(self.controller, event),
        )

    async def attending(self, interaction: Interaction):
        await self._set_attendance(interaction, True)

    async def declining(self, interaction: Interaction):
        await self._set_attendance(interaction, False)

    async def choose_hall(self, interaction: Interaction):
        try:
            self.controller.authorize_venue(self.key, interaction.user.id)
        except BotError as e:
            await send_error(interaction, str(e))
            return
        await interaction.response.send_message(
            "Pick a dining hall:",
            view=HallSelectView(self.controller, self.key, interaction.message),
            ephemeral=True,
        )

    async def cancel(self, interaction: Interaction):
        try:
            event = self.controller.cancel(self.key, interaction.user.id)
        except BotError as e:
            await send_error(interaction, str(e))
            return
        name = EVENT_STYLES[event.kind]["name"]
        await interaction.response.edit_message(
            content=f"{name} event has been cancelled.", embed=None, view=None
        )
        try:
            await interaction.message.delete(delay=3)
        except discord.HTTPException:
            log.warning("Could not delete cancelled event message key=%s", self.key)


class HallSelectView(View):
    def __init__(self, controller: EventController, key: str, message: Optional[discord.Message]):
        super().__init__(timeout=60)
        self.controller = controller
        self.key = key
        self.message = message
        select = Select(
            placeholder="Choose a dining hall...",
            options=[
                discord.SelectOption(label=hall["name"], value=hall_key, description=hall["description"])
                for hall_key, hall in DINING_HALLS.items()
            ],
        )
        select.callback = self.selected
        self.select = select
        self.add_item(select)

    async def selected(self, interaction: Interaction):
        venue = self.select.values[0]
        try:
            event = self.controller.set_venue(self.key, interaction.user.id, venue)
        except BotError as e:
            await send_error(interaction, str(e))
            return
        await interaction.response.edit_message(content=f"Dining hall set to **{hall_name(venue)}**.", view=None)
        if self.message is not None:
            try:
                await self.message.edit(
                    embed=event_embed(event, self.controller.clock),
                    view=EventView(self.controller, event),
                )
            except discord.HTTPException:
                log.warning("Could not refresh event message key=%s", self.key)


# ---------- Menu UI ----------
def chunk_items(items: List[str], limit: int = FIELD_LIMIT) -> str:
    out, size = [], 0
    for item in items:
        line = f"• {item}"
        if size + len(line) + 1 > limit - 4:
            out.append("…")
            break
        out.append(line)
        size += len(line) + 1
    return "\n".join(out) if out else EMPTY


def menu_embed(menu) -> discord.Embed:
    title = f"{menu.hall_name} — {menu.period_name or 'Menu'}"
    description = menu.date_label
    if menu.time_range:
        description += f"\n{menu.time_range}"
    embed = discord.Embed(title=title, description=description, color=0x8C1D40)
    if not menu.stations:
        embed.add_field(name="No items", value=f"No menu items available for {menu.hall_name} on {menu.date_label}.")
        return embed
    for station, items in menu.stations[:MAX_FIELDS]:
        embed.add_field(name=station[:256], value=chunk_items(items), inline=False)
    return embed


class MenuPeriodView(View):
    """Select another meal period of the menu being shown."""

    def __init__(self, service, menu, timeout: float = 600):
        super().__init__(timeout=timeout)
        self.service = service
        self.menu = menu
        options = [
            discord.SelectOption(label=p.name, value=p.period_id, default=p.period_id == menu.period_id)
            for p in menu.periods[:25]
        ]
        if options:
            select = Select(placeholder="Switch meal period...", options=options)
            select.callback = self.selected
            self.select = select
            self.add_item(select)

    async def selected(self, interaction: Interaction):
        period_id = self.select.values[0]
        await interaction.response.defer()
        try:
            menu = await self.service.get_menu(self.menu.hall_key, self.menu.day, period_id=period_id)
        except BotError as e:
            await interaction.followup.send(f"❌ {e}", ephemeral=True)
            return
        await interaction.edit_original_response(embed=menu_embed(menu), view=MenuPeriodView(self.service, menu))
