# cogs/playtime.py
import logging
from typing import List

import discord
from discord import app_commands
from discord.ext import commands

from config import ADMIN_USER_IDS, DATA_FILE, MAX_SESSION_SECONDS, SUMMARY_LIMIT
from errors import PlaytimeError, StorageError
from models import SummaryEntry
from presence import signal_from_member
from reconciler import SessionReconciler
from state_store import PlaytimeStore
from time_utils import format_duration

log = logging.getLogger(__name__)


def build_summary_embed(user: discord.abc.User, entries: List[SummaryEntry]) -> discord.Embed:
    embed = discord.Embed(
        title=f"{user.name}'s playtime summary",
        color=discord.Color.teal(),
    )
    if not entries:
        embed.description = "No playtime recorded yet."
    for name, seconds in entries:
        embed.add_field(name=name, value=format_duration(seconds), inline=True)
    return embed


class PlaytimeCog(commands.Cog):
    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.store = PlaytimeStore(DATA_FILE)
        self.reconciler = SessionReconciler(self.store, max_session_seconds=MAX_SESSION_SECONDS)

    async def cog_load(self) -> None:
        await self.store.connect()

    async def cog_unload(self) -> None:
        await self.store.close()

    @commands.Cog.listener()
    async def on_presence_update(self, before: discord.Member, after: discord.Member):
        signal = signal_from_member(after)
        if signal is None:
            return
        try:
            await self.reconciler.handle(signal)
        except PlaytimeError:
            log.exception("[PRESENCE] could not apply presence of %s", after.id)

    @app_commands.command(name="summarize", description="Shows the most played games of a user")
    @app_commands.describe(user="The target")
    async def summarize(self, interaction: discord.Interaction, user: discord.User):
        try:
            entries = await self.reconciler.get_summary(user.id, SUMMARY_LIMIT)
        except StorageError:
            log.exception("[PRESENCE] summary for %s failed", user.id)
            await interaction.response.send_message("Could not load the playtime summary.", ephemeral=True)
            return
        await interaction.response.send_message(embed=build_summary_embed(user, entries))

    # ----- admin -----

    async def _deny_non_admin(self, interaction: discord.Interaction) -> bool:
        if interaction.user and interaction.user.id in ADMIN_USER_IDS:
            return False
        await interaction.response.send_message("You are not allowed to do that.", ephemeral=True)
        return True

    async def _report(self, interaction: discord.Interaction, ok: bool, what: str):
        text = f"{what} done." if ok else f"{what} failed, check the logs."
        await interaction.response.send_message(text, ephemeral=True)

    @app_commands.command(name="reset_user", description="Clears a user's playtime and live session")
    @app_commands.describe(user="The target")
    async def reset_user(self, interaction: discord.Interaction, user: discord.User):
        if await self._deny_non_admin(interaction):
            return
        ok = await self.reconciler.reset_user(user.id)
        await self._report(interaction, ok, f"Reset of {user.name}")

    @app_commands.command(name="reset_all", description="Clears every user's playtime and live session")
    async def reset_all(self, interaction: discord.Interaction):
        if await self._deny_non_admin(interaction):
            return
        ok = await self.reconciler.reset_all()
        await self._report(interaction, ok, "Reset of all users")

    @app_commands.command(name="hard_reset", description="Drops and recreates the whole database")
    async def hard_reset(self, interaction: discord.Interaction):
        if await self._deny_non_admin(interaction):
            return
        ok = await self.reconciler.hard_reset()
        await self._report(interaction, ok, "Hard reset")


async def setup(bot: commands.Bot):
    await bot.add_cog(PlaytimeCog(bot))
