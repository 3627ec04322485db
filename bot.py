"""
Main entry point for the WagerBot Discord bot.

This bot runs tournament betting with virtual coins: users bet on match and
overall-winner markets whose odds follow the money, and admins post results
that settle every bet. It uses discord.py for interactions, SQLAlchemy for
async database operations, and supports both slash commands and message
commands.
"""

import asyncio
import logging
import os

import discord
from discord import app_commands
from discord.ext import commands
from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import AsyncSession

from utils.anti_fraud import AntiFraud
from utils.bets import BetManager
from utils.config import Config
from utils.db import Database
from utils.errors import BettingError
from utils.helpers import EmbedBuilder
from utils.store import MemoryStore
from utils.tournaments import TournamentManager

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=getattr(logging, os.getenv('LOG_LEVEL', 'INFO').upper()),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('bot.log'),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)


class WagerBot(commands.Bot):
    """Main bot class for WagerBot."""

    def __init__(self, config: Config):
        intents = discord.Intents.default()
        intents.message_content = True  # For message commands

        super().__init__(
            command_prefix='w?',
            intents=intents,
            help_command=commands.DefaultHelpCommand()
        )

        self.config = config
        self.db = Database(config.database_url)
        self.store = MemoryStore()
        self.anti_fraud = AntiFraud(self.store, config)
        self.bets = BetManager(config)
        self.tournaments = TournamentManager(config, self.bets)

    def get_session(self) -> AsyncSession:
        """Get a database session."""
        return self.db.get_session()

    async def setup_hook(self) -> None:
        """Setup hook called before the bot starts."""
        # Create database tables
        await self.db.create_all()

        self.tree.on_error = self.on_app_command_error

        # Load cogs
        await self.load_extension('cogs.betting')
        await self.load_extension('cogs.admin')

        # Sync slash commands
        try:
            if self.config.guild_id:
                guild = discord.Object(id=self.config.guild_id)
                self.tree.copy_global_to(guild=guild)
                await self.tree.sync(guild=guild)
                logger.info(f"Synced slash commands to guild {self.config.guild_id}")
            else:
                await self.tree.sync()
                logger.info("Synced slash commands globally")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

        logger.info(f"Registered slash commands: {[cmd.name for cmd in self.tree.get_commands()]}")

    async def on_ready(self):
        """Called when the bot is ready."""
        if self.user:
            logger.info(f'Logged in as {self.user} (ID: {self.user.id})')
        logger.info(f'Connected to {len(self.guilds)} guilds')

        await self.change_presence(
            activity=discord.Game(name="Tournament betting | w?markets")
        )

    async def close(self) -> None:
        await super().close()
        await self.db.dispose()

    async def on_command_error(self, ctx: commands.Context, error: commands.CommandError):
        """Handle command errors."""
        original = getattr(error, 'original', error)
        if isinstance(original, BettingError):
            await ctx.send(embed=EmbedBuilder.betting_error_embed(original))
        elif isinstance(error, commands.CheckFailure):
            await ctx.send("You don't have permission to use this command.")
        elif isinstance(error, commands.MissingRequiredArgument):
            await ctx.send(f"Missing argument: `{error.param.name}`. See `{ctx.prefix}help {ctx.command}`.")
        elif isinstance(error, commands.BadArgument):
            await ctx.send("Invalid argument provided.")
        elif isinstance(error, commands.CommandNotFound):
            return
        else:
            logger.error(f"Command error in {ctx.command}: {original!r}", exc_info=original)
            await ctx.send("An error occurred while processing your command.")

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        """Handle slash command errors."""
        original = getattr(error, 'original', error)
        if isinstance(original, BettingError):
            embed = EmbedBuilder.betting_error_embed(original)
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
            return

        logger.error(f"Slash command error: {original!r}", exc_info=original)
        if not interaction.response.is_done():
            await interaction.response.send_message(
                "An error occurred while processing your command.",
                ephemeral=True
            )


async def main():
    """Main function to run the bot."""
    config = Config()

    if not config.discord_token:
        logger.error("DISCORD_TOKEN not found in environment variables.")
        return

    bot = WagerBot(config)

    try:
        await bot.start(config.discord_token)
    except KeyboardInterrupt:
        logger.info("Bot shutdown requested.")
    finally:
        await bot.close()

if __name__ == '__main__':
    asyncio.run(main())
