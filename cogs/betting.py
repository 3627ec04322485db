"""
Betting cog: balances, markets and wagers for regular users.
"""

from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands
from sqlalchemy.ext.asyncio import AsyncSession

from bot import WagerBot
from models import BetStatus, User
from utils.accounts import AccountUtils
from utils.config import Config
from utils.errors import UserNotFound
from utils.helpers import EmbedBuilder, format_coins, format_odds
from utils.markets import MarketUtils


class Betting(commands.Cog):
    """Betting commands for the bot."""

    def __init__(self, bot: WagerBot, config: Config):
        self.bot = bot
        self.config = config

    async def _register(self, session: AsyncSession, user: discord.abc.User) -> User:
        """Make sure the caller has an account."""
        async with session.begin():
            account = await AccountUtils.get_or_create_user(
                session, user.id, str(user), self.config.starting_coins
            )
        return account

    @commands.command(name='balance', aliases=['bal', 'wallet'])
    async def balance(self, ctx: commands.Context, user: Optional[discord.User] = None):
        """Check your or another user's balance."""
        target_user = user or ctx.author

        async with self.bot.get_session() as session:
            if target_user.id == ctx.author.id:
                account = await self._register(session, ctx.author)
            else:
                account = await AccountUtils.get_user(session, target_user.id)
                if account is None:
                    raise UserNotFound(f"{target_user.display_name} has not placed any bets yet.")

        await ctx.send(embed=EmbedBuilder.balance_embed(target_user, account.coins))

    @app_commands.command(name='balance', description='Check your balance')
    async def balance_slash(self, interaction: discord.Interaction):
        """Slash command for balance."""
        async with self.bot.get_session() as session:
            account = await self._register(session, interaction.user)

        embed = EmbedBuilder.balance_embed(interaction.user, account.coins)
        await interaction.response.send_message(embed=embed)

    @commands.command(name='tournaments')
    async def tournaments(self, ctx: commands.Context):
        """List running and upcoming tournaments."""
        async with self.bot.get_session() as session:
            tournaments = await self.bot.tournaments.list_tournaments(session, active_only=True)

        if not tournaments:
            await ctx.send("No tournaments are running right now.")
            return

        embed = discord.Embed(title="🏆 Tournaments", color=discord.Color.blue())
        for tournament in tournaments[:25]:
            embed.add_field(
                name=f"#{tournament.id} {tournament.name} ({tournament.status})",
                value=(
                    f"Teams: {', '.join(tournament.team_names())}\n"
                    f"Winner market: #{tournament.overall_market_id}"
                ),
                inline=False
            )
        await ctx.send(embed=embed)

    @commands.command(name='markets')
    async def markets(self, ctx: commands.Context, tournament_id: Optional[int] = None):
        """List markets that are open for betting."""
        async with self.bot.get_session() as session:
            markets = await MarketUtils.list_markets(session, tournament_id=tournament_id, open_only=True)

        if not markets:
            await ctx.send("There are no open markets right now.")
            return

        embed = discord.Embed(title="📋 Open Markets", color=discord.Color.blue())
        for market in markets[:25]:
            odds = " | ".join(f"{option.name} {format_odds(option.odds)}" for option in market.options)
            embed.add_field(
                name=f"#{market.id} {market.title}",
                value=f"{odds}\n{market.event_date.strftime('%Y-%m-%d %H:%M')} • {market.status}",
                inline=False
            )
        embed.set_footer(text=f"Use {ctx.prefix}bet <market> <amount> <option> to place a bet")
        await ctx.send(embed=embed)

    @commands.command(name='market')
    async def market(self, ctx: commands.Context, market_id: int):
        """Show one market with its current odds."""
        async with self.bot.get_session() as session:
            market = await MarketUtils.get_market(session, market_id)

        await ctx.send(embed=EmbedBuilder.market_embed(market))

    @commands.command(name='bet')
    async def bet(self, ctx: commands.Context, market_id: int, amount: int, *, selection: str):
        """Bet on an option of a market.

        Usage: bet <market_id> <amount> <option>
        """
        blocked, reason = await self.bot.anti_fraud.check_bet(ctx.author.id, amount)
        if blocked:
            await ctx.send(embed=EmbedBuilder.error_embed("Bet Blocked", reason))
            return

        async with self.bot.get_session() as session:
            await self._register(session, ctx.author)
            # The message id makes a re-delivered command place the bet only once
            placed = await self.bot.bets.place_bet(
                session, ctx.author.id, market_id, selection.strip(), amount,
                idempotency_key=f"msg:{ctx.message.id}"
            )
        if not placed.replayed:
            await self.bot.anti_fraud.record_bet(ctx.author.id)

        await ctx.send(embed=EmbedBuilder.bet_embed(placed.bet, placed.new_balance))

    @app_commands.command(name='bet', description='Bet on a market option')
    @app_commands.describe(market_id='Market to bet on', amount='Coins to stake', selection='Option name')
    async def bet_slash(self, interaction: discord.Interaction, market_id: int, amount: int, selection: str):
        """Slash command for betting."""
        blocked, reason = await self.bot.anti_fraud.check_bet(interaction.user.id, amount)
        if blocked:
            await interaction.response.send_message(
                embed=EmbedBuilder.error_embed("Bet Blocked", reason), ephemeral=True
            )
            return

        async with self.bot.get_session() as session:
            await self._register(session, interaction.user)
            placed = await self.bot.bets.place_bet(
                session, interaction.user.id, market_id, selection.strip(), amount,
                idempotency_key=f"interaction:{interaction.id}"
            )
        if not placed.replayed:
            await self.bot.anti_fraud.record_bet(interaction.user.id)

        await interaction.response.send_message(embed=EmbedBuilder.bet_embed(placed.bet, placed.new_balance))

    @commands.command(name='cancelbet')
    async def cancelbet(self, ctx: commands.Context, bet_id: int):
        """Cancel one of your bets before its market starts."""
        async with self.bot.get_session() as session:
            cancelled = await self.bot.bets.cancel_bet(session, bet_id, ctx.author.id)

        embed = EmbedBuilder.success_embed(
            "↩️ Bet Cancelled",
            f"Bet #{bet_id} was cancelled and {format_coins(cancelled.refund_amount)} refunded.\n"
            f"New balance: {format_coins(cancelled.new_balance)}"
        )
        await ctx.send(embed=embed)

    @commands.command(name='mybets')
    async def mybets(self, ctx: commands.Context, status: Optional[str] = None, page: int = 1):
        """Show your bets, newest first. Optionally filter by status."""
        if status is not None:
            status = status.lower()
            if status not in {s.value for s in BetStatus}:
                valid = ", ".join(s.value for s in BetStatus)
                await ctx.send(embed=EmbedBuilder.error_embed("Invalid Status", f"Status must be one of: {valid}."))
                return

        async with self.bot.get_session() as session:
            result = await self.bot.bets.get_user_bets(session, ctx.author.id, status=status, page=page, limit=10)

        if not result.bets:
            await ctx.send("You have no bets to show.")
            return

        embed = discord.Embed(
            title=f"🎟️ {ctx.author.display_name}'s Bets",
            description="\n".join(EmbedBuilder.bet_line(bet) for bet in result.bets),
            color=discord.Color.blue()
        )
        embed.set_footer(text=f"Page {result.page}/{result.pages} • {result.total} bets")
        await ctx.send(embed=embed)

    @commands.command(name='leaderboard', aliases=['lb', 'top'])
    async def leaderboard(self, ctx: commands.Context, page: int = 1):
        """Show the richest bettors."""
        async with self.bot.get_session() as session:
            entries = await AccountUtils.leaderboard(session, page=page, limit=10)

        if not entries:
            await ctx.send("No one is on the leaderboard yet.")
            return

        lines = [
            f"**{entry.rank}.** {entry.username}: {entry.coins:,} coins "
            f"({entry.won_bets}/{entry.total_bets} won, {entry.win_rate}%)"
            for entry in entries
        ]
        embed = discord.Embed(title="🏅 Leaderboard", description="\n".join(lines), color=discord.Color.gold())
        embed.set_footer(text=f"Page {max(page, 1)}")
        await ctx.send(embed=embed)


async def setup(bot):
    """Setup the betting cog."""
    config = bot.config
    await bot.add_cog(Betting(bot, config))
