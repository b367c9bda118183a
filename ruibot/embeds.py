"""Embed rendering for command results."""

from __future__ import annotations

from typing import List

import discord

from .models import CardDef, CommandResult
from .utils import utc_now

RUI_COLOR = 0xFFB6C1
ERROR_COLOR = 0xE57373


def build_result_embeds(result: CommandResult) -> List[discord.Embed]:
    """Return the main embed followed by one image embed per offered card."""
    embed = discord.Embed(
        title=result.title,
        description=result.description,
        color=ERROR_COLOR if result.is_error else RUI_COLOR,
        timestamp=utc_now(),
    )
    for entry in result.fields:
        embed.add_field(name=entry.name, value=entry.value, inline=entry.inline)
    if result.image_url:
        embed.set_image(url=result.image_url)

    embeds = [embed]
    # Discord caps a message at 10 embeds.
    for position, card in enumerate(result.offer[:9], start=1):
        embeds.append(_card_embed(position, card))
    return embeds


def _card_embed(position: int, card: CardDef) -> discord.Embed:
    embed = discord.Embed(
        title=f"#{position} • {card.label}",
        description=f"ID: `{card.id}` • Rarity: **{card.rarity}**",
        color=RUI_COLOR,
    )
    if card.image:
        embed.set_image(url=card.image)
    return embed


__all__ = ["ERROR_COLOR", "RUI_COLOR", "build_result_embeds"]
