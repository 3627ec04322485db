"""
Helper functions and embed builders for command replies.
"""

from typing import Dict, Type

import discord

from models import Bet, Market
from utils.errors import (
    AccountBanned, ActiveBetsRemain, AlreadySettled, BelowMinimumStake, BetNotFound, BettingError,
    DuplicateTeams, ErrorKind, Forbidden, InsufficientFunds, InvalidAmount, InvalidOptions,
    InvalidRankings, InvalidResult, InvalidState, InvalidStatus, InvalidTournament, MarketClosed,
    MarketFinished, MarketNotFound, MarketStarted, NotAMatch, NotReadyToSettle, SettlementIncomplete,
    TournamentNotFound, UnknownOption, UnknownTeam, UserNotFound,
)

# Title shown for each error type; every BettingError subclass must appear here
ERROR_TITLES: Dict[Type[BettingError], str] = {
    InvalidAmount: "Invalid Amount",
    BelowMinimumStake: "Bet Too Small",
    UnknownOption: "Unknown Option",
    InvalidResult: "Invalid Result",
    InvalidOptions: "Invalid Options",
    UnknownTeam: "Unknown Team",
    DuplicateTeams: "Duplicate Teams",
    InvalidRankings: "Invalid Rankings",
    InvalidTournament: "Invalid Tournament",
    InvalidStatus: "Invalid Status",
    NotAMatch: "Not a Match",
    UserNotFound: "Not Registered",
    MarketNotFound: "Market Not Found",
    TournamentNotFound: "Tournament Not Found",
    BetNotFound: "Bet Not Found",
    Forbidden: "Not Your Bet",
    AccountBanned: "Account Banned",
    MarketClosed: "Market Closed",
    MarketStarted: "Market Started",
    MarketFinished: "Market Finished",
    InvalidState: "Bet Not Active",
    AlreadySettled: "Already Settled",
    NotReadyToSettle: "Not Ready to Settle",
    InsufficientFunds: "Insufficient Coins",
    ActiveBetsRemain: "Active Bets Remain",
    SettlementIncomplete: "Settlement Incomplete",
}

STATUS_ICONS = {
    'active': "⏳",
    'won': "✅",
    'lost': "❌",
    'cancelled': "↩️",
    'void': "🚫",
}


def format_coins(amount: int) -> str:
    """Format a coin amount for display."""
    return f"**{amount:,}** coins"


def format_odds(odds: float) -> str:
    return f"{odds:.2f}x"


class EmbedBuilder:
    """Builds the embeds used in command replies."""

    @staticmethod
    def success_embed(title: str, description: str) -> discord.Embed:
        return discord.Embed(title=title, description=description, color=discord.Color.green())

    @staticmethod
    def error_embed(title: str, description: str) -> discord.Embed:
        return discord.Embed(title=title, description=description, color=discord.Color.red())

    @staticmethod
    def betting_error_embed(error: BettingError) -> discord.Embed:
        """Turn a core error into a reply."""
        title = ERROR_TITLES[type(error)]
        color = discord.Color.orange() if error.kind == ErrorKind.CONSISTENCY else discord.Color.red()
        embed = discord.Embed(title=f"❌ {title}", description=error.message, color=color)
        available = error.details.get('available')
        if available:
            embed.add_field(name="Available options", value=", ".join(available), inline=False)
        return embed

    @staticmethod
    def balance_embed(user: discord.abc.User, coins: int) -> discord.Embed:
        embed = discord.Embed(title=f"💰 {user.display_name}'s Balance", color=discord.Color.gold())
        embed.add_field(name="Coins", value=f"```\n{coins:,}\n```", inline=False)
        return embed

    @staticmethod
    def market_embed(market: Market) -> discord.Embed:
        embed = discord.Embed(
            title=f"#{market.id} {market.title}",
            description=market.description or "",
            color=discord.Color.blue()
        )
        lines = [
            f"`{option.name}` {format_odds(option.odds)} ({option.stake:,} staked)"
            for option in market.options
        ]
        embed.add_field(name="Options", value="\n".join(lines) or "None", inline=False)
        embed.add_field(name="Status", value=market.status, inline=True)
        embed.add_field(name="Date", value=market.event_date.strftime('%Y-%m-%d %H:%M'), inline=True)
        if market.result:
            result = market.result + (f" ({market.score})" if market.score else "")
            embed.add_field(name="Result", value=result, inline=True)
        embed.set_footer(text=f"Total staked: {market.total_stake:,} coins")
        return embed

    @staticmethod
    def bet_embed(bet: Bet, balance: int, title: str = "🎟️ Bet Placed") -> discord.Embed:
        embed = discord.Embed(title=title, color=discord.Color.green())
        embed.add_field(name="Selection", value=bet.selection, inline=True)
        embed.add_field(name="Stake", value=format_coins(bet.amount), inline=True)
        embed.add_field(name="Odds", value=format_odds(bet.odds), inline=True)
        embed.add_field(name="Potential Win", value=format_coins(bet.potential_payout), inline=True)
        embed.add_field(name="Balance", value=format_coins(balance), inline=True)
        embed.set_footer(text=f"Bet #{bet.id} • Market #{bet.market_id}")
        return embed

    @staticmethod
    def bet_line(bet: Bet) -> str:
        icon = STATUS_ICONS.get(bet.status, "•")
        return (
            f"{icon} `#{bet.id}` {bet.selection}: {bet.amount:,} @ {format_odds(bet.odds)} "
            f"→ {bet.potential_payout:,} ({bet.status})"
        )
