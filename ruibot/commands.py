"""Slash command registration and the drop pick buttons."""

from __future__ import annotations

import logging
from typing import List, Optional

import discord
from discord import app_commands

from .config import EconomyRules
from .economy import EconomyManager
from .embeds import build_result_embeds
from .models import CommandResult

logger = logging.getLogger("ruibot.commands")

GIFT_CHOICES = [
    app_commands.Choice(name="Coins", value="coins"),
    app_commands.Choice(name="Butterflies", value="butterflies"),
    app_commands.Choice(name="Card", value="card"),
]
RARITY_CHOICES = [
    app_commands.Choice(name=label, value=value)
    for label, value in (
        ("Common", "common"),
        ("Rare", "rare"),
        ("Super rare", "super_rare"),
        ("Ultra rare", "ultra_rare"),
        ("Legendary", "legendary"),
        ("Event", "event"),
        ("Limited", "limited"),
    )
]
TYPE_CHOICES = [
    app_commands.Choice(name="Regular", value="reg"),
    app_commands.Choice(name="Event", value="event"),
    app_commands.Choice(name="Limited", value="limited"),
]


def boost_choices(rules: EconomyRules) -> List[app_commands.Choice[str]]:
    return [
        app_commands.Choice(name=f"{tier.capitalize()} ({price} 🦋)", value=tier)
        for tier, price in rules.boost_prices.items()
    ]


def pack_choices(rules: EconomyRules) -> List[app_commands.Choice[str]]:
    choices = []
    for size, price in rules.pack_prices.items():
        count = rules.pack_sizes.get(size)
        if count is None:
            continue
        choices.append(app_commands.Choice(name=f"{size.capitalize()}: {count} cards ({price} 🪙)", value=size))
    return choices


def boost_description(rules: EconomyRules) -> str:
    minutes = max(1, int(rules.boost_duration.total_seconds() // 60))
    return f"Buy a {minutes} minute drop boost."


def _caller(interaction: discord.Interaction) -> dict:
    return {"user_id": str(interaction.user.id), "name": interaction.user.display_name}


async def send_result(
    interaction: discord.Interaction,
    result: CommandResult,
    *,
    view: Optional[discord.ui.View] = None,
) -> Optional[discord.Message]:
    """Reply to ``interaction`` with the rendered result, following up if already answered."""
    kwargs = {
        "embeds": build_result_embeds(result),
        "ephemeral": result.ephemeral,
        "allowed_mentions": discord.AllowedMentions.none(),
    }
    if view is not None:
        kwargs["view"] = view
    try:
        if interaction.response.is_done():
            return await interaction.followup.send(wait=True, **kwargs)
        await interaction.response.send_message(**kwargs)
        return await interaction.original_response()
    except discord.HTTPException as exc:
        logger.warning("Failed to deliver /%s reply: %s", getattr(interaction.command, "name", "?"), exc)
        return None


class DropPickView(discord.ui.View):
    """One button per offered card. Only the dropping user may press them."""

    def __init__(self, manager: EconomyManager, owner_id: int, size: int, *, timeout: float):
        super().__init__(timeout=timeout)
        self.manager = manager
        self.owner_id = owner_id
        self.message: Optional[discord.Message] = None
        for index in range(size):
            button = discord.ui.Button(label=f"Pick {index + 1}", style=discord.ButtonStyle.primary)
            button.callback = self._make_callback(index)  # type: ignore[assignment]
            self.add_item(button)

    def _make_callback(self, index: int):
        async def _on_pick(interaction: discord.Interaction) -> None:
            result = await self.manager.dispatch("pick", index=index, **_caller(interaction))
            if not result.is_error or result.title == "Drop expired":
                self._disable()
                self.stop()
                try:
                    await interaction.response.edit_message(view=self)
                except discord.HTTPException as exc:
                    logger.debug("Could not disable drop buttons: %s", exc)
            await send_result(interaction, result)

        return _on_pick

    def _disable(self) -> None:
        for item in self.children:
            if isinstance(item, discord.ui.Button):
                item.disabled = True

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.owner_id:
            await interaction.response.send_message("This drop isn't yours.", ephemeral=True)
            return False
        return True

    async def on_timeout(self) -> None:
        self._disable()
        if self.message is not None:
            try:
                await self.message.edit(view=self)
            except discord.HTTPException:
                logger.debug("Drop message vanished before timeout cleanup.")


def register_commands(tree: app_commands.CommandTree, manager: EconomyManager) -> None:
    """Attach every Rui slash command to ``tree``."""
    rules = manager.rules

    @tree.command(name="ping", description="Check if Rui is awake.")
    async def ping(interaction: discord.Interaction):
        await send_result(interaction, await manager.dispatch("ping"))

    @tree.command(name="start", description="Create your collector profile.")
    async def start(interaction: discord.Interaction):
        await send_result(interaction, await manager.dispatch("start", **_caller(interaction)))

    @tree.command(name="balance", description="Show your coins, butterflies and cards.")
    async def balance(interaction: discord.Interaction):
        await send_result(interaction, await manager.dispatch("balance", **_caller(interaction)))

    @tree.command(name="daily", description="Claim your daily reward.")
    async def daily(interaction: discord.Interaction):
        await send_result(interaction, await manager.dispatch("daily", **_caller(interaction)))

    @tree.command(name="weekly", description="Claim your weekly reward.")
    async def weekly(interaction: discord.Interaction):
        await send_result(interaction, await manager.dispatch("weekly", **_caller(interaction)))

    @tree.command(name="monthly", description="Claim your monthly reward.")
    async def monthly(interaction: discord.Interaction):
        await send_result(interaction, await manager.dispatch("monthly", **_caller(interaction)))

    @tree.command(name="work", description="Work for coins and butterflies.")
    async def work(interaction: discord.Interaction):
        await send_result(interaction, await manager.dispatch("work", **_caller(interaction)))

    @tree.command(name="drop", description=f"Drop {rules.drop_size} cards and pick one.")
    async def drop(interaction: discord.Interaction):
        result = await manager.dispatch("drop", **_caller(interaction))
        if result.is_error or not result.offer:
            await send_result(interaction, result)
            return
        view = DropPickView(
            manager,
            interaction.user.id,
            len(result.offer),
            timeout=rules.pending_drop_window.total_seconds(),
        )
        view.message = await send_result(interaction, result, view=view)

    @tree.command(name="claim", description="Claim one random card.")
    async def claim(interaction: discord.Interaction):
        await send_result(interaction, await manager.dispatch("claim", **_caller(interaction)))

    @tree.command(name="inventory", description="View your collected cards.")
    async def inventory(interaction: discord.Interaction):
        await send_result(interaction, await manager.dispatch("inventory", **_caller(interaction)))

    @tree.command(name="buy", description="Buy a specific card by ID.")
    @app_commands.describe(card_id="Card ID, e.g. CXLRUV101")
    async def buy(interaction: discord.Interaction, card_id: str):
        await send_result(interaction, await manager.dispatch("buy", card_id=card_id, **_caller(interaction)))

    @tree.command(name="buyboost", description=boost_description(rules))
    @app_commands.describe(tier="Boost strength")
    @app_commands.choices(tier=boost_choices(rules))
    async def buyboost(interaction: discord.Interaction, tier: app_commands.Choice[str]):
        await send_result(interaction, await manager.dispatch("buyboost", tier=tier.value, **_caller(interaction)))

    @tree.command(name="buypack", description="Buy a pack of random cards.")
    @app_commands.describe(size="Pack size")
    @app_commands.choices(size=pack_choices(rules))
    async def buypack(interaction: discord.Interaction, size: app_commands.Choice[str]):
        await send_result(interaction, await manager.dispatch("buypack", size=size.value, **_caller(interaction)))

    @tree.command(name="gift", description="Send coins, butterflies or a card to another player.")
    @app_commands.describe(
        member="Who receives the gift",
        what="What to send",
        amount="Amount of coins or butterflies",
        card_id="Card ID when sending a card",
    )
    @app_commands.choices(what=GIFT_CHOICES)
    async def gift(
        interaction: discord.Interaction,
        member: discord.User,
        what: app_commands.Choice[str],
        amount: Optional[app_commands.Range[int, 1]] = None,
        card_id: Optional[str] = None,
    ):
        if member.bot:
            result = CommandResult("Invalid target", "You can't gift to a bot.", ephemeral=True, is_error=True)
        else:
            result = await manager.dispatch(
                "gift",
                target_id=str(member.id),
                target_name=member.display_name,
                what=what.value,
                amount=amount,
                card_id=card_id,
                **_caller(interaction),
            )
        await send_result(interaction, result)

    @tree.command(name="addcard", description="Staff: add a new card to the catalog.")
    @app_commands.describe(
        card_id="Card ID, e.g. CXLRUV101",
        rarity="Card rarity",
        group="Group name",
        idol="Idol name",
        card_type="Card type",
        era="Era (optional)",
        version="Version (optional)",
        image="Image URL (optional)",
        droppable="Can this card appear in drops and packs?",
    )
    @app_commands.choices(rarity=RARITY_CHOICES, card_type=TYPE_CHOICES)
    async def addcard(
        interaction: discord.Interaction,
        card_id: str,
        rarity: app_commands.Choice[str],
        group: str,
        idol: str,
        card_type: app_commands.Choice[str],
        era: Optional[str] = None,
        version: Optional[str] = None,
        image: Optional[str] = None,
        droppable: bool = True,
    ):
        result = await manager.dispatch(
            "addcard",
            user_id=str(interaction.user.id),
            card_id=card_id,
            rarity=rarity.value,
            group=group,
            idol=idol,
            card_type=card_type.value,
            era=era,
            version=version,
            image=image,
            droppable=droppable,
        )
        await send_result(interaction, result)

    @tree.command(name="overview", description="Show all Rui commands.")
    async def overview(interaction: discord.Interaction):
        await send_result(interaction, await manager.dispatch("overview"))


__all__ = [
    "DropPickView",
    "boost_choices",
    "boost_description",
    "pack_choices",
    "register_commands",
    "send_result",
]
