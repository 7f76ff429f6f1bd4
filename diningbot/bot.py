import sys
import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from . import db
from .config import (
    DB_PATH, DINING_HALLS, EVENT_STYLES, MEAL_PERIODS, MENU_PRELOAD_HOURS, TOKEN, TZ_NAME,
    WEEKLY_REPORT_CHANNEL_ID, WEEKLY_REPORT_GUILD_ID, WEEKLY_REPORT_ROLE_ID, WEEKLY_REPORT_SURVEY_URL,
    configure_logging, env_path, token_looks_valid,
)
from .economy import Economy, format_currency
from .errors import BotError
from .lifecycle import EventController, Resolution
from .menu import MenuCache, MenuClient, MenuService
from .models import MEAL_KINDS, PODRUN, event_key
from .reports import schedule_weekly_report, weekly_report_message
from .roulette import (
    COLOR_EMOJI, MAX_BET, MIN_BET, PAYOUTS, PITY_THRESHOLDS, BetType, RouletteTable, bet_display,
)
from .store import EventStore
from .timeutil import Clock
from .views import EventView, MenuPeriodView, event_embed, menu_embed, send_error

log = logging.getLogger(__name__)

# ---------- Intents / Bot ----------
INTENTS = discord.Intents.default()
INTENTS.guilds = True
INTENTS.members = True
INTENTS.message_content = False

bot = commands.Bot(command_prefix="!", intents=INTENTS)
tree = bot.tree
scheduler = AsyncIOScheduler(timezone=TZ_NAME)

clock = Clock(TZ_NAME)
store = EventStore(DB_PATH)
economy = Economy(DB_PATH, clock)
roulette = RouletteTable(DB_PATH, clock=clock)
menu_cache = MenuCache(DB_PATH)
menus = MenuService(MenuClient(menu_cache), TZ_NAME)

HALL_CHOICES = [app_commands.Choice(name=h["name"], value=k) for k, h in DINING_HALLS.items()]
PERIOD_CHOICES = [app_commands.Choice(name=p["name"], value=k) for k, p in MEAL_PERIODS.items()]
BET_CHOICES = [app_commands.Choice(name=bet_display(b), value=b.value) for b in BetType]


# ---------- Message Senders ----------
async def announce_resolution(resolution: Resolution):
    event = resolution.event
    channel = bot.get_channel(int(event.channel_id))
    if channel is None:
        try:
            channel = await bot.fetch_channel(int(event.channel_id))
        except discord.HTTPException:
            log.warning("Channel %s for key=%s is gone; summary dropped", event.channel_id, event.key)
            return

    if event.message_id:
        try:
            message = await channel.fetch_message(int(event.message_id))
            await message.delete()
        except discord.HTTPException:
            log.info("Event message %s already gone for key=%s", event.message_id, event.key)

    await channel.send(resolution.text)


async def send_weekly_report(part: str):
    guild = bot.get_guild(int(WEEKLY_REPORT_GUILD_ID))
    if not guild:
        log.warning("Weekly report guild %s not found", WEEKLY_REPORT_GUILD_ID)
        return
    channel = guild.get_channel(int(WEEKLY_REPORT_CHANNEL_ID))
    if not channel or not isinstance(channel, discord.TextChannel):
        log.warning("Weekly report channel %s not found", WEEKLY_REPORT_CHANNEL_ID)
        return
    await channel.send(weekly_report_message(WEEKLY_REPORT_ROLE_ID, WEEKLY_REPORT_SURVEY_URL, part))
    log.info("Weekly report (%s) sent", part)


controller = EventController(store, scheduler, clock, announcer=announce_resolution)


# ---------- Event creation ----------
async def start_event(interaction: discord.Interaction, kind: str, time: str,
                      date: Optional[str] = None, venue: Optional[str] = None):
    if interaction.guild_id is None:
        await send_error(interaction, "Events can only be created in a server channel.")
        return
    try:
        when = clock.parse_civil_datetime(date, time)
        key = event_key(interaction.guild_id, interaction.channel_id, kind, when, clock.tz)
        event = controller.create(
            key, interaction.user.id, kind, when,
            guild_id=interaction.guild_id,
            channel_id=interaction.channel_id,
            venue=venue,
            creator_name=interaction.user.name,
        )
    except BotError as e:
        await send_error(interaction, str(e))
        return

    await interaction.response.send_message(embed=event_embed(event, clock), view=EventView(controller, event))
    msg = await interaction.original_response()
    controller.attach_message(key, msg.id)


def register_meal_command(kind: str):
    style = EVENT_STYLES[kind]

    @tree.command(name=kind, description=f"Schedule a {style['name'].lower()} meetup")
    @app_commands.describe(
        time='Time of the meal (e.g. "12:30pm", "1:00", "13:15")',
        dining_hall="Dining hall (can be picked later)",
        date="Date as MM/DD/YYYY or e.g. 'tomorrow' (defaults to today)",
    )
    @app_commands.choices(dining_hall=HALL_CHOICES)
    async def meal(interaction: discord.Interaction, time: str,
                   dining_hall: Optional[app_commands.Choice[str]] = None, date: Optional[str] = None):
        await start_event(interaction, kind, time, date, dining_hall.value if dining_hall else None)

    return meal


for _kind in MEAL_KINDS:
    register_meal_command(_kind)


@tree.command(name="podrun", description="Schedule a podrun")
@app_commands.describe(time='Time of the podrun (e.g. "12:30pm", "13:15")',
                       date="Date as MM/DD/YYYY (defaults to today)")
async def podrun(interaction: discord.Interaction, time: str, date: Optional[str] = None):
    await start_event(interaction, PODRUN, time, date)


# ---------- Menu ----------
@tree.command(name="menu", description="Show a dining hall menu")
@app_commands.describe(dining_hall="Dining hall", meal="Meal period (defaults to the current one)",
                       date="Date as MM/DD/YYYY (defaults to today)")
@app_commands.choices(dining_hall=HALL_CHOICES, meal=PERIOD_CHOICES)
async def menu(interaction: discord.Interaction, dining_hall: app_commands.Choice[str],
               meal: Optional[app_commands.Choice[str]] = None, date: Optional[str] = None):
    try:
        day = clock.parse_date(date)
    except BotError as e:
        await send_error(interaction, str(e))
        return
    await interaction.response.defer()
    period_id = MEAL_PERIODS[meal.value]["period_id"] if meal else None
    try:
        result = await menus.get_menu(dining_hall.value, day, period_id=period_id)
    except BotError as e:
        await send_error(interaction, str(e))
        return
    await interaction.followup.send(embed=menu_embed(result), view=MenuPeriodView(menus, result))


async def preload_menus():
    await menus.preload(clock.now().date())


def purge_menu_cache():
    removed = menu_cache.purge_expired()
    total, _ = menu_cache.stats()
    log.info("Purged %d expired menu cache entries, %d left", removed, total)


# ---------- Economy ----------
@tree.command(name="balance", description="Check your t$t balance")
@app_commands.describe(user="Whose balance to show (defaults to you)")
async def balance(interaction: discord.Interaction, user: Optional[discord.User] = None):
    target = user or interaction.user
    try:
        acct = economy.account(target.id, target.name)
        rank = economy.rank(target.id)
    except BotError as e:
        await send_error(interaction, str(e))
        return
    embed = discord.Embed(title=f"💰 {target.display_name}'s Balance", color=0x2ECC71)
    embed.add_field(name="Balance", value=format_currency(acct.balance), inline=True)
    embed.add_field(name="Rank", value=f"#{rank}" if rank else "Unranked", inline=True)
    await interaction.response.send_message(embed=embed)


@tree.command(name="work", description="Work a shift to earn t$t")
async def work(interaction: discord.Interaction):
    try:
        result = economy.work(interaction.user.id, interaction.user.name)
    except BotError as e:
        await send_error(interaction, str(e))
        return
    lines = [f"{result.activity} and earned **{format_currency(result.reward)}**!",
             f"New balance: **{format_currency(result.balance)}**"]
    if result.bailout:
        lines.insert(0, "🆘 Emergency shift! This one skipped the cooldown.")
    await interaction.response.send_message("\n".join(lines))


@tree.command(name="pay", description="Send t$t to another user")
@app_commands.describe(user="Who to pay", amount="How much t$t to send", message="Optional note")
async def pay(interaction: discord.Interaction, user: discord.User, amount: int, message: Optional[str] = None):
    try:
        sender_balance, _ = economy.pay(interaction.user.id, user.id, amount, message, receiver_is_bot=user.bot)
    except BotError as e:
        await send_error(interaction, str(e))
        return
    text = f"💸 {interaction.user.mention} sent **{format_currency(amount)}** to {user.mention}!"
    if message:
        text += f"\n> {message}"
    await interaction.response.send_message(text)
    await interaction.followup.send(f"Your new balance: **{format_currency(sender_balance)}**", ephemeral=True)


@tree.command(name="leaderboard", description="Richest users by t$t")
async def leaderboard(interaction: discord.Interaction):
    try:
        rows = economy.leaderboard()
        own_rank = economy.rank(interaction.user.id)
    except BotError as e:
        await send_error(interaction, str(e))
        return
    if not rows:
        await interaction.response.send_message("Nobody has any t$t yet. Try `/work`!")
        return
    medals = {1: "🥇", 2: "🥈", 3: "🥉"}
    lines = [f"{medals.get(i, f'**{i}.**')} <@{uid}>: {format_currency(bal)}" for i, (uid, bal) in enumerate(rows, 1)]
    embed = discord.Embed(title="🏆 t$t Leaderboard", description="\n".join(lines), color=0xF1C40F)
    embed.set_footer(text=f"Your rank: #{own_rank}" if own_rank else "You're not on the board yet.")
    await interaction.response.send_message(embed=embed, allowed_mentions=discord.AllowedMentions.none())


# ---------- Roulette ----------
@tree.command(name="roulette", description="Bet t$t on a roulette spin")
@app_commands.describe(bet_type="What to bet on", amount=f"Bet between {MIN_BET} and {MAX_BET}",
                       number="Number 0-36 (straight bets only)")
@app_commands.choices(bet_type=BET_CHOICES)
async def roulette_cmd(interaction: discord.Interaction, bet_type: app_commands.Choice[str], amount: int,
                       number: Optional[int] = None):
    try:
        result, after = roulette.play(interaction.user.id, bet_type.value, amount, number)
    except BotError as e:
        await send_error(interaction, str(e))
        return

    bet = bet_display(BetType(bet_type.value), number)
    landed = f"{COLOR_EMOJI[result.color]} **{result.number}** ({result.color})"
    if result.won:
        title, color = "🎉 You won!", 0x2ECC71
        outcome = f"Winnings: **{format_currency(result.win_amount)}** ({result.payout}:1)"
    else:
        title, color = "💀 You lost", 0xE74C3C
        outcome = f"Lost: **{format_currency(amount)}**"
    embed = discord.Embed(title=title, description=f"The ball landed on {landed}", color=color)
    embed.add_field(name="Bet", value=f"{bet} for {format_currency(amount)}", inline=True)
    embed.add_field(name="Result", value=outcome, inline=True)
    embed.add_field(name="Balance", value=format_currency(after), inline=False)
    if result.pity_applied:
        embed.set_footer(text="🍀 Lady luck took pity on you this time.")
    await interaction.response.send_message(embed=embed)


@tree.command(name="roulette_odds", description="Show roulette payouts and your current streak")
async def roulette_odds(interaction: discord.Interaction):
    try:
        streak = roulette.losing_streak(interaction.user.id)
    except BotError as e:
        await send_error(interaction, str(e))
        return
    payouts = "\n".join(
        f"{bet_display(b)}: {p}:1" for b, p in PAYOUTS.items()
    )
    pity = "\n".join(
        f"{t}+ losses: {p.chance}% lucky spin" + (f", +{format_currency(p.bonus)} on bets ≤ {p.max_bet_for_bonus}"
                                                  if p.bonus else "")
        for t, p in sorted(PITY_THRESHOLDS.items())
    )
    embed = discord.Embed(title="🎰 Roulette Odds", color=0x8E44AD)
    embed.add_field(name="Payouts", value=payouts, inline=False)
    embed.add_field(name="Losing streak bonuses", value=pity, inline=False)
    embed.add_field(name="Your losing streak", value=str(streak), inline=False)
    await interaction.response.send_message(embed=embed, ephemeral=True)


# ---------- Lifecycle ----------
@tree.error
async def on_app_command_error(interaction: discord.Interaction, error: app_commands.AppCommandError):
    log.error("Command %s failed", interaction.command.name if interaction.command else "?", exc_info=error)
    await send_error(interaction, "Something went wrong. Please try again.")


@bot.event
async def on_ready():
    db.init_db(DB_PATH)
    await tree.sync()
    if not scheduler.running:
        scheduler.start()
        scheduler.add_job(preload_menus, CronTrigger(hour=f"*/{MENU_PRELOAD_HOURS}"), id="menu:preload",
                          replace_existing=True)
        scheduler.add_job(purge_menu_cache, CronTrigger(hour=3), id="menu:purge", replace_existing=True)
        schedule_weekly_report(
            scheduler, send_weekly_report, TZ_NAME,
            guild_id=WEEKLY_REPORT_GUILD_ID,
            role_id=WEEKLY_REPORT_ROLE_ID,
            channel_id=WEEKLY_REPORT_CHANNEL_ID,
            survey_url=WEEKLY_REPORT_SURVEY_URL,
        )
        await controller.resume()
        for event in store.list_active():
            if event.message_id:
                bot.add_view(EventView(controller, event), message_id=int(event.message_id))
    log.info(f"Logged in as {bot.user} (ID: {bot.user.id})")
    log.info("Bot is ready.")


def main():
    configure_logging()
    if not token_looks_valid(TOKEN):
        sys.exit(
            "DISCORD_BOT_TOKEN missing or malformed.\n"
            "• Put it in .env as: DISCORD_BOT_TOKEN=AAA.BBB.CCC (no quotes)\n"
            f"• Loaded .env from: {env_path}"
        )
    bot.run(TOKEN, log_handler=None)


if __name__ == "__main__":
    main()
