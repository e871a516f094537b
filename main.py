import discord
from discord.ext import commands
import os
import sys
import asyncio
import logging
from dotenv import load_dotenv

from rolecounter.audit import audit_log
from rolecounter.config import DEFAULT_CONFIG_PATH, ConfigError, ConfigFile

# Load environment variables from .env file
load_dotenv()


# Define ANSI escape sequences for colours
class CustomFormatter(logging.Formatter):
    LEVEL_COLOURS = {
        logging.DEBUG: "\033[0;36m",  # Cyan
        logging.INFO: "\033[0;32m",  # Green
        logging.WARNING: "\033[0;33m",  # Yellow
        logging.ERROR: "\033[0;31m",  # Red
        logging.CRITICAL: "\033[1;41m",  # Red background w/ bold text
    }
    RESET_COLOUR = "\033[0m"

    def format(self, record):
        level_name = (
            self.LEVEL_COLOURS.get(record.levelno, self.RESET_COLOUR)
            + record.levelname
            + self.RESET_COLOUR
        )
        record.levelname = level_name
        return super().format(record)


def configure_logging():
    formatter = CustomFormatter(
        "%(asctime)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    logging.basicConfig(level=logging.INFO, handlers=[handler])


def build_bot() -> commands.Bot:
    intents = discord.Intents.default()
    intents.guilds = True
    intents.members = True
    intents.voice_states = True

    bot = commands.Bot(command_prefix=">", intents=intents)

    @bot.event
    async def on_ready():
        logging.info(f"Successfully logged in as \033[96m{bot.user}\033[0m")
        audit_log(f"Bot logged in as {bot.user} (ID: {bot.user.id}).")
        # Sync slash commands
        try:
            synced_commands = await bot.tree.sync()
            logging.info(f"Successfully synced {len(synced_commands)} commands.")
            audit_log(f"Successfully synced {len(synced_commands)} slash commands.")
        except Exception as e:
            logging.error(f"Error syncing application commands: {e}")
            audit_log(f"Error syncing slash commands: {e}")

    return bot


# Load all cogs
async def load_cogs(bot: commands.Bot):
    """Loads all .py files in the 'cogs' folder as extensions."""
    for filename in os.listdir("./cogs"):
        if filename.endswith(".py"):
            await bot.load_extension(f"cogs.{filename[:-3]}")
            audit_log(f"Loaded cog: {filename[:-3]}")


async def main(token: str):
    bot = build_bot()
    async with bot:
        await load_cogs(bot)
        await bot.start(token)


if __name__ == "__main__":
    configure_logging()

    config = ConfigFile(DEFAULT_CONFIG_PATH)
    try:
        config.load()
    except ConfigError as e:
        logging.error(str(e))
        sys.exit(1)

    if config.created:
        logging.error(
            f"Created a default {DEFAULT_CONFIG_PATH}. Fill in clientId and put TOKEN in .env, then restart."
        )
        sys.exit(1)

    # Retrieve the bot token from the .env file, falling back to the config
    BOT_TOKEN = config.token
    if not BOT_TOKEN:
        logging.error("Bot token not found. Please set TOKEN in .env!")
        sys.exit(1)

    asyncio.run(main(BOT_TOKEN))
