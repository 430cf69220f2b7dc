# main.py
import asyncio

import discord

from config import DISCORD_TOKEN, LOG_LEVEL
from bot import bot


async def main():
    discord.utils.setup_logging(level=LOG_LEVEL)
    async with bot:
        await bot.load_extension("cogs.playtime")
        await bot.start(DISCORD_TOKEN)

if __name__ == "__main__":
    asyncio.run(main())
