# bot.py
import logging

import discord
from discord.ext import commands

from config import GUILD_ID

log = logging.getLogger(__name__)

intents = discord.Intents.default()
intents.guilds = True
intents.members = True
intents.presences = True

bot = commands.Bot(command_prefix="!", intents=intents)


@bot.event
async def on_ready():
    log.info("Logged in as %s (id=%s)", bot.user, bot.user.id)

    try:
        if GUILD_ID:
            # guild commands show up immediately, global ones can take a while
            guild = discord.Object(id=GUILD_ID)
            bot.tree.copy_global_to(guild=guild)
            synced = await bot.tree.sync(guild=guild)
        else:
            synced = await bot.tree.sync()
        log.info("slash commands synced: %s", [c.name for c in synced])
    except discord.HTTPException:
        log.exception("slash sync error")
