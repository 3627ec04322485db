"""
Admin commands cog: tournaments, matches, results and moderation.
"""

from datetime import datetime
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from bot import WagerBot
from utils.accounts import AccountUtils
from utils.bets import SettlementReport
from utils.config import Config
from utils.errors import SettlementIncomplete
from utils.helpers import EmbedBuilder, format_coins, format_odds
from utils.ledger import Ledger
from utils.markets import MarketUtils


def parse_date(argument: str) -> datetime:
    """Parse ``YYYY-MM-DD`` or ``YYYY-MM-DDTHH:MM``."""
    return datetime.fromisoformat(argument)


def split_teams(argument: str) -> list:
    return [team.strip() for team in argument.split(',') if team.strip()]


class Admin(commands.Cog):
    """Admin commands."""

    def __init__(self, bot: WagerBot, config: Config):
        self.bot = bot
        self.config = config

    async def cog_check(self, ctx: commands.Context):
        """Check if user is owner."""
        return ctx.author.id == self.config.owner_id

    async def _send_report(
        self, ctx: commands.Context, title: str, report: SettlementReport, this_run: bool = True
    ):
        if not report.complete:
            error = SettlementIncomplete(
                f"Market #{report.market_id} is finished but its bets were not settled: {report.error}\n"
                f"Run `{ctx.prefix}resettle {report.market_id}` to finish settlement.",
                market_id=report.market_id
            )
            await ctx.send(embed=EmbedBuilder.betting_error_embed(error))
            return

        lines = [f"Market #{report.market_id} result: **{report.result or 'void'}**"]
        if this_run:
            lines.append(f"Bets settled this run: {report.settled_count}")
            lines.append(f"Credited: {format_coins(report.credited)}")
        lines.append(f"Won: {report.winning_count} • Lost: {report.losing_count} • Void: {report.void_count}")
        lines.append(f"Total paid out: {format_coins(report.total_payout)}")
        await ctx.send(embed=EmbedBuilder.success_embed(title, "\n".join(lines)))

    # Tournaments

    @commands.command(name='tournament_create')
    async def tournament_create(
        self,
        ctx: commands.Context,
        name: str,
        start_date: parse_date,
        end_date: parse_date,
        *,
        teams: split_teams
    ):
        """Create a tournament.

        Usage: tournament_create "<name>" <start> <end> <team1, team2, ...>
        """
        async with self.bot.get_session() as session:
            tournament = await self.bot.tournaments.create_tournament(session, name, teams, start_date, end_date)

        embed = EmbedBuilder.success_embed(
            "🏆 Tournament Created",
            f"#{tournament.id} **{tournament.name}**\n"
            f"Teams: {', '.join(tournament.team_names())}\n"
            f"Overall winner market: #{tournament.overall_market_id}"
        )
        await ctx.send(embed=embed)

    @commands.command(name='tournament_teams')
    async def tournament_teams(self, ctx: commands.Context, tournament_id: int, *, teams: split_teams):
        """Replace a tournament's roster (comma separated)."""
        async with self.bot.get_session() as session:
            tournament = await self.bot.tournaments.update_teams(session, tournament_id, teams)

        await ctx.send(f"Tournament #{tournament.id} teams: {', '.join(tournament.team_names())}")

    @commands.command(name='tournament_status')
    async def tournament_status(self, ctx: commands.Context, tournament_id: int, status: str):
        """Set a tournament to upcoming or active."""
        async with self.bot.get_session() as session:
            tournament = await self.bot.tournaments.set_status(session, tournament_id, status.lower())

        await ctx.send(f"Tournament #{tournament.id} is now **{tournament.status}**.")

    @commands.command(name='tournament_delete')
    async def tournament_delete(self, ctx: commands.Context, tournament_id: int):
        """Delete a tournament with no active bets."""
        async with self.bot.get_session() as session:
            await self.bot.tournaments.delete_tournament(session, tournament_id)

        await ctx.send(f"Tournament #{tournament_id} and its markets were deleted.")

    @commands.command(name='tournament_results')
    async def tournament_results(self, ctx: commands.Context, tournament_id: int, *teams: str):
        """Post final standings, first place first, and settle the winner market."""
        rankings = [(rank, team) for rank, team in enumerate(teams, start=1)]
        async with self.bot.get_session() as session:
            try:
                tournament = await self.bot.tournaments.set_tournament_results(session, tournament_id, rankings)
            except SettlementIncomplete as e:
                market_id = e.details['market_id']
                e.message += f"\nRun `{ctx.prefix}resettle {market_id}` to finish settlement."
                raise
            market_id = tournament.overall_market_id
            name = tournament.name
            standings = "\n".join(f"**{r.rank}.** {r.team_name}" for r in tournament.rankings)

        # Totals are read in a fresh session so they reflect committed state
        async with self.bot.get_session() as session:
            report = await self.bot.bets.settle_market(session, market_id)

        await ctx.send(embed=EmbedBuilder.success_embed(f"🏆 {name} Results", standings))
        await self._send_report(ctx, "💸 Winner Market Settled", report, this_run=False)

    # Matches and markets

    @commands.command(name='match_create')
    async def match_create(
        self,
        ctx: commands.Context,
        tournament_id: int,
        team1: str,
        team2: str,
        event_date: parse_date,
        *,
        title: Optional[str] = None
    ):
        """Create a match market between two teams."""
        async with self.bot.get_session() as session:
            market = await self.bot.tournaments.create_match(
                session, tournament_id, team1, team2, event_date, title=title
            )

        await ctx.send(embed=EmbedBuilder.market_embed(market))

    @commands.command(name='match_result')
    async def match_result(
        self,
        ctx: commands.Context,
        market_id: int,
        winner: str,
        score: Optional[str] = None
    ):
        """Declare a match winner (or Draw) and settle its bets."""
        async with self.bot.get_session() as session:
            report = await self.bot.tournaments.set_match_result(session, market_id, winner, score)

        await self._send_report(ctx, "✅ Match Settled", report)

    @commands.command(name='market_status')
    async def market_status(self, ctx: commands.Context, market_id: int, status: str):
        """Set a market to upcoming or active."""
        async with self.bot.get_session() as session:
            market = await MarketUtils.set_status(session, market_id, status.lower())

        await ctx.send(f"Market #{market.id} is now **{market.status}**.")

    @commands.command(name='market_void')
    async def market_void(self, ctx: commands.Context, market_id: int):
        """Cancel a market and refund every active bet."""
        async with self.bot.get_session() as session:
            report = await self.bot.bets.void_market(session, market_id)

        await self._send_report(ctx, "🚫 Market Voided", report)

    @commands.command(name='market_stats')
    async def market_stats(self, ctx: commands.Context, market_id: int):
        """Show betting activity on a market."""
        async with self.bot.get_session() as session:
            summary = await MarketUtils.market_summary(session, market_id)

        embed = discord.Embed(title=f"📊 #{summary.market_id} {summary.title}", color=discord.Color.blue())
        for option in summary.options:
            embed.add_field(
                name=f"{option.name} ({format_odds(option.odds)})",
                value=(
                    f"Bets: {option.bet_count}\nStaked: {option.stake:,}\n"
                    f"Liability: {option.potential_payout:,}"
                ),
                inline=True
            )
        by_status = ", ".join(f"{status}: {count}" for status, count in summary.by_status.items() if count)
        embed.add_field(name="Bets by status", value=by_status or "None", inline=False)
        embed.set_footer(text=f"{summary.status} • {summary.total_bets} bets • {summary.total_stake:,} staked")
        await ctx.send(embed=embed)

    @commands.command(name='resettle')
    async def resettle(self, ctx: commands.Context, market_id: int):
        """Settle any bets left active on a finished market."""
        async with self.bot.get_session() as session:
            report = await self.bot.bets.settle_market(session, market_id)

        await self._send_report(ctx, "✅ Settlement Complete", report)

    @commands.command(name='reconcile')
    async def reconcile(self, ctx: commands.Context, market_id: int):
        """Rebuild a market's stake totals from its active bets."""
        async with self.bot.get_session() as session:
            stakes = await MarketUtils.reconcile_stakes(session, market_id)

        lines = "\n".join(f"{name}: {stake:,}" for name, stake in stakes.items())
        await ctx.send(embed=EmbedBuilder.success_embed("🔧 Stakes Reconciled", lines or "No options."))

    @commands.command(name='odds_refresh')
    async def odds_refresh(self, ctx: commands.Context, market_id: int):
        """Recalculate a market's odds from its stakes."""
        async with self.bot.get_session() as session:
            odds = await MarketUtils.recalculate_odds(session, market_id, self.bot.bets.odds_settings)

        if not odds:
            await ctx.send(f"Market #{market_id} is not open; odds were left unchanged.")
            return
        lines = "\n".join(f"{name}: {format_odds(value)}" for name, value in odds.items())
        await ctx.send(embed=EmbedBuilder.success_embed("📈 Odds Updated", lines))

    # Users

    @commands.command(name='ban')
    async def ban(self, ctx: commands.Context, user: discord.User, *, reason: Optional[str] = None):
        """Ban a user from betting."""
        async with self.bot.get_session() as session:
            async with session.begin():
                await AccountUtils.set_banned(session, user.id, True, reason)

        await ctx.send(f"{user.mention} can no longer place bets.")

    @commands.command(name='unban')
    async def unban(self, ctx: commands.Context, user: discord.User):
        """Lift a betting ban."""
        async with self.bot.get_session() as session:
            async with session.begin():
                await AccountUtils.set_banned(session, user.id, False)

        await ctx.send(f"{user.mention} can place bets again.")

    @commands.command(name='add_coins')
    async def add_coins(self, ctx: commands.Context, user: discord.User, amount: int):
        """Add coins to a user (admin only)."""
        async with self.bot.get_session() as session:
            async with session.begin():
                await AccountUtils.get_or_create_user(session, user.id, str(user), self.config.starting_coins)
                balance = await Ledger.credit(session, user.id, amount, 'admin', f'Admin added {amount} coins')

        await ctx.send(f"Added {format_coins(amount)} to {user.mention}. New balance: {format_coins(balance)}")

    @app_commands.command(name='add_coins', description='Add coins to a user (admin only)')
    @app_commands.describe(user='User to add coins to', amount='Amount to add')
    async def add_coins_slash(self, interaction: discord.Interaction, user: discord.User, amount: int):
        """Slash command for adding coins."""
        if interaction.user.id != self.config.owner_id:
            await interaction.response.send_message("You don't have permission to use this command.", ephemeral=True)
            return

        async with self.bot.get_session() as session:
            async with session.begin():
                await AccountUtils.get_or_create_user(session, user.id, str(user), self.config.starting_coins)
                balance = await Ledger.credit(session, user.id, amount, 'admin', f'Admin added {amount} coins')

        await interaction.response.send_message(
            f"Added {format_coins(amount)} to {user.mention}. New balance: {format_coins(balance)}"
        )


async def setup(bot):
    """Setup the admin cog."""
    config = bot.config
    await bot.add_cog(Admin(bot, config))
