"""Command handlers for the collector economy.

``EconomyManager`` owns the store, the rules, the random source and the
clock. Every command loads the documents it needs, applies the pure rule
functions from :mod:`ruibot.ledger`, :mod:`ruibot.drops` and
:mod:`ruibot.catalog`, persists the result and returns a
:class:`~ruibot.models.CommandResult` for the Discord layer to render.

Collections are stored as whole documents with last-write-wins semantics,
so all commands run behind a single lock; two overlapping load/save pairs
would otherwise drop one another's writes.
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime, timedelta
from typing import AbstractSet, Callable, Dict, List, Mapping, Optional, Tuple

from .catalog import Catalog, buy_boost, buy_card, create_card, gift_card, open_pack
from .config import EconomyRules
from .cooldowns import ensure_ready
from .drops import offer_drop, resolve_pick
from .errors import (
    CatalogUnavailableError,
    DropExpiredError,
    InvalidTargetError,
    ProfileExistsError,
    RuiBotError,
    StoreError,
    ValidationError,
)
from .ledger import grant, roll_reward, transfer
from .models import (
    CardDef,
    CommandResult,
    ResultField,
    UserInventory,
    UserRecord,
    deserialize_card,
    deserialize_inventory,
    deserialize_user,
    serialize_card,
    serialize_inventory,
    serialize_user,
)
from .rarity import active_boost_tier
from .store import DocumentStore
from .utils import utc_now

logger = logging.getLogger("ruibot.economy")

INVENTORY_PAGE_SIZE = 10
NUMBER_EMOJI = ("1️⃣", "2️⃣", "3️⃣", "4️⃣", "5️⃣")

WORK_MESSAGES = (
    "You've been working so hard again... Hyun said you deserve a break.",
    "You showed up again. Haru keeps stealing your snacks during breaks, but we're proud of you.",
    "Work done! Don't tell Noa, but you might be more productive than him today.",
    "I helped count your coins. Muti thinks you're saving for something big.",
    "That look of determination suits you.",
    "The others noticed how much effort you put in lately. We're all cheering for you.",
    "Small steps, right? You did well again today.",
    "Here, I saved a few butterflies for you.",
    "Another job done. Don't forget to rest, okay?",
    "You earned these fair and square. Keep them safe.",
)

REWARD_TITLES: Dict[str, Tuple[str, str]] = {
    "daily": ("Daily collected", "{name}, here is what I found for you today."),
    "weekly": ("Weekly collected", "Weekly rewards for {name}."),
    "monthly": ("Monthly collected", "Big drop for {name}."),
}

GENERIC_FAILURE = "Something went wrong in Rui. The staff can find the details in the logs."


def _span(window: timedelta) -> str:
    seconds = int(window.total_seconds())
    for label, size in (("d", 86400), ("h", 3600), ("min", 60)):
        if seconds >= size and seconds % size == 0:
            return f"{seconds // size}{label}"
    return f"{seconds}s"


def _totals(user: UserRecord) -> str:
    return f"{user.coins} 🪙 / {user.butterflies} 🦋"


def _card_line(card: CardDef) -> str:
    return f"**{card.id}** ({card.label}) • **{card.rarity}**"


class EconomyManager:
    """Encapsulates economy state access and the command handlers."""

    def __init__(
        self,
        *,
        store: DocumentStore,
        rules: Optional[EconomyRules] = None,
        staff_ids: AbstractSet[str] = frozenset(),
        enforce_card_ids: bool = True,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.rules = rules or EconomyRules()
        self.staff_ids = frozenset(str(item) for item in staff_ids)
        self.enforce_card_ids = enforce_card_ids
        self.rng = rng or random.Random()
        self.clock = clock
        self._lock = asyncio.Lock()

    # Boundary ---------------------------------------------------------

    async def dispatch(self, command: str, **kwargs) -> CommandResult:
        """Run ``command_<command>`` and turn every failure into a result."""
        handler = getattr(self, f"command_{command}", None)
        if handler is None:
            logger.warning("Unknown command %s", command)
            return CommandResult("Unknown command", f"`/{command}` does not exist.", ephemeral=True, is_error=True)
        try:
            async with self._lock:
                return await handler(**kwargs)
        except StoreError as exc:
            logger.error("Storage failure during /%s: %s", command, exc)
            return CommandResult("Error", GENERIC_FAILURE, ephemeral=True, is_error=True)
        except RuiBotError as exc:
            logger.info("/%s rejected for %s: %s", command, kwargs.get("user_id"), exc.message)
            return CommandResult(exc.title, exc.message, ephemeral=True, is_error=True)
        except Exception:
            logger.exception("Unexpected error while handling /%s", command)
            return CommandResult("Error", GENERIC_FAILURE, ephemeral=True, is_error=True)

    # Storage helpers --------------------------------------------------

    async def _load_user(self, user_id: str, name: str) -> Tuple[Dict[str, object], UserRecord]:
        """Load the users document and the caller's record, creating it on first touch."""
        users = await self.store.load("users")
        user = self._get_or_create(users, str(user_id), name)
        if str(user_id) not in users:
            users[str(user_id)] = serialize_user(user)
            await self.store.save("users", users)
            logger.info("Created profile for %s (%s)", name, user_id)
        return users, user

    def _get_or_create(self, users: Mapping[str, object], user_id: str, name: str) -> UserRecord:
        payload = users.get(user_id)
        if isinstance(payload, Mapping):
            return deserialize_user(user_id, payload, default_created=self.clock())
        return UserRecord(user_id=user_id, name=name, created_at=self.clock())

    async def _save_users(self, users: Dict[str, object], *records: UserRecord) -> None:
        for record in records:
            users[record.user_id] = serialize_user(record)
        await self.store.save("users", users)

    async def _load_inventories(self) -> Dict[str, object]:
        return await self.store.load("user_cards")

    @staticmethod
    def _inventory(inventories: Mapping[str, object], user_id: str) -> UserInventory:
        entries = inventories.get(user_id)
        return deserialize_inventory(entries) if isinstance(entries, list) else []

    async def _save_inventories(self, inventories: Dict[str, object], **updates: UserInventory) -> None:
        for user_id, inventory in updates.items():
            inventories[user_id] = serialize_inventory(inventory)
        await self.store.save("user_cards", inventories)

    async def _load_catalog(self) -> Catalog:
        entries = await self.store.load("cards")
        cards: List[CardDef] = []
        for entry in entries:
            if not isinstance(entry, Mapping) or not entry.get("id"):
                logger.warning("Skipping malformed card entry: %r", entry)
                continue
            cards.append(deserialize_card(entry))
        return Catalog(cards)

    # Commands ---------------------------------------------------------

    async def command_ping(self, **_ignored) -> CommandResult:
        return CommandResult("Pong", "Rui is awake.")

    async def command_start(self, *, user_id: str, name: str) -> CommandResult:
        users = await self.store.load("users")
        if str(user_id) in users:
            raise ProfileExistsError(f"Oh! Seems like you already created a profile, {name}. Have fun playing.")
        user = UserRecord(user_id=str(user_id), name=name, created_at=self.clock())
        await self._save_users(users, user)
        logger.info("Created profile for %s (%s)", name, user_id)
        return CommandResult("Profile created", f"Hi {name}. Your collector profile has been created.")

    async def command_balance(self, *, user_id: str, name: str) -> CommandResult:
        _users, user = await self._load_user(user_id, name)
        inventory = self._inventory(await self._load_inventories(), user.user_id)
        boost = active_boost_tier(user, self.clock())
        return CommandResult(
            f"{name}'s Balance",
            "Here's your current collector data. Keep playing to get more.",
            fields=[
                ResultField("🪙 Coins", str(user.coins), inline=True),
                ResultField("🦋 Butterflies", str(user.butterflies), inline=True),
                ResultField("✨ Cards", str(len(inventory)), inline=True),
                ResultField("Boost", f"{boost} (active)" if boost else "none", inline=True),
            ],
        )

    async def _claim_reward(self, action: str, user_id: str, name: str) -> Tuple[UserRecord, int, int]:
        users, user = await self._load_user(user_id, name)
        now = self.clock()
        ensure_ready(self.rules.cooldowns[action], user.last_claimed(action), now)
        coins, butterflies = roll_reward(action, self.rng, self.rules.reward_ranges)
        grant(user, coins=coins, butterflies=butterflies)
        user.mark_claimed(action, now)
        await self._save_users(users, user)
        logger.debug("%s reward for %s: +%d coins +%d butterflies", action, user_id, coins, butterflies)
        return user, coins, butterflies

    async def _timed_reward(self, action: str, user_id: str, name: str) -> CommandResult:
        user, coins, butterflies = await self._claim_reward(action, user_id, name)
        title, description = REWARD_TITLES[action]
        return CommandResult(
            title,
            description.format(name=name),
            fields=[
                ResultField("🪙 Coins", f"+{coins}", inline=True),
                ResultField("🦋 Butterflies", f"+{butterflies}", inline=True),
                ResultField("New total", _totals(user)),
            ],
        )

    async def command_daily(self, *, user_id: str, name: str) -> CommandResult:
        return await self._timed_reward("daily", user_id, name)

    async def command_weekly(self, *, user_id: str, name: str) -> CommandResult:
        return await self._timed_reward("weekly", user_id, name)

    async def command_monthly(self, *, user_id: str, name: str) -> CommandResult:
        return await self._timed_reward("monthly", user_id, name)

    async def command_work(self, *, user_id: str, name: str) -> CommandResult:
        user, coins, butterflies = await self._claim_reward("work", user_id, name)
        message = self.rng.choice(WORK_MESSAGES)
        return CommandResult(
            "Work complete",
            f"{message}\nYou earned {coins} 🪙 and {butterflies} 🦋.\nNew total: {_totals(user)}.",
        )

    async def command_drop(self, *, user_id: str, name: str) -> CommandResult:
        users, user = await self._load_user(user_id, name)
        catalog = await self._load_catalog()
        offer = offer_drop(
            user,
            catalog.cards,
            now=self.clock(),
            rng=self.rng,
            cooldown=self.rules.cooldowns["drop"],
            pending_window=self.rules.pending_drop_window,
            drop_size=self.rules.drop_size,
            base_weights=self.rules.rarity_weights,
            multipliers=self.rules.boost_multipliers,
        )
        if not offer.reused:
            await self._save_users(users, user)
        heading = f"Drop (boost: {offer.boost_tier})" if offer.boost_tier else "Drop"
        lines = [
            f"{NUMBER_EMOJI[index] if index < len(NUMBER_EMOJI) else index + 1} {card.label}"
            for index, card in enumerate(offer.cards)
        ]
        return CommandResult(
            heading,
            "Choose **one** of the cards below:\n" + "\n".join(lines),
            ephemeral=True,
            offer=offer.cards,
        )

    async def command_pick(self, *, user_id: str, name: str, index: int) -> CommandResult:
        users, user = await self._load_user(user_id, name)
        try:
            chosen = resolve_pick(user, index, now=self.clock())
        except DropExpiredError:
            await self._save_users(users, user)
            raise
        inventories = await self._load_inventories()
        inventory = self._inventory(inventories, user.user_id)
        inventory.append(chosen)
        await self._save_inventories(inventories, **{user.user_id: inventory})
        await self._save_users(users, user)
        return CommandResult("Card claimed", f"You claimed {_card_line(chosen)}", ephemeral=True, image_url=chosen.image)

    async def command_claim(self, *, user_id: str, name: str) -> CommandResult:
        users, user = await self._load_user(user_id, name)
        catalog = await self._load_catalog()
        if not len(catalog):
            raise CatalogUnavailableError("There are no cards to claim yet.")
        now = self.clock()
        ensure_ready(self.rules.cooldowns["claim"], user.last_claim, now)
        pool = catalog.standard_pool()
        if not pool:
            raise CatalogUnavailableError("There are no claimable cards right now.")
        chosen = self.rng.choice(pool)

        inventories = await self._load_inventories()
        inventory = self._inventory(inventories, user.user_id)
        inventory.append(chosen)
        await self._save_inventories(inventories, **{user.user_id: inventory})
        user.mark_claimed("claim", now)
        await self._save_users(users, user)
        return CommandResult(
            "Card claimed",
            f"You got **{chosen.id}** ({chosen.label}) • **{chosen.rarity.upper()}**! 🎉",
            image_url=chosen.image,
        )

    async def command_inventory(self, *, user_id: str, name: str) -> CommandResult:
        _users, user = await self._load_user(user_id, name)
        inventory = self._inventory(await self._load_inventories(), user.user_id)
        if not inventory:
            return CommandResult(
                f"{name}'s Inventory",
                "You don't have any cards yet. Try `/drop`, `/claim` or buy a pack.",
            )
        shown = inventory[:INVENTORY_PAGE_SIZE]
        return CommandResult(
            f"{name}'s Inventory",
            f"You currently own **{len(inventory)}** card(s). Showing first {len(shown)}:",
            fields=[
                ResultField(f"#{position} • {card.label}", f"ID: {card.id} • Rarity: **{card.rarity}**")
                for position, card in enumerate(shown, start=1)
            ],
        )

    async def command_buy(self, *, user_id: str, name: str, card_id: str) -> CommandResult:
        users, user = await self._load_user(user_id, name)
        catalog = await self._load_catalog()
        inventories = await self._load_inventories()
        inventory = self._inventory(inventories, user.user_id)
        before = user.coins
        card = buy_card(user, inventory, catalog, card_id, prices=self.rules.rarity_prices)
        await self._save_inventories(inventories, **{user.user_id: inventory})
        await self._save_users(users, user)
        return CommandResult(
            "Card bought",
            f"You bought {_card_line(card)} for **{before - user.coins}** 🪙",
            image_url=card.image,
        )

    async def command_buyboost(self, *, user_id: str, name: str, tier: str) -> CommandResult:
        users, user = await self._load_user(user_id, name)
        before = user.butterflies
        boost = buy_boost(
            user,
            tier,
            now=self.clock(),
            prices=self.rules.boost_prices,
            duration=self.rules.boost_duration,
        )
        await self._save_users(users, user)
        minutes = int(self.rules.boost_duration.total_seconds() // 60)
        return CommandResult(
            "Boost activated",
            f"You activated a **{boost.tier}** boost for **{minutes} minutes**.\n"
            f"It will affect your **/drop** pulls.\nCost: **{before - user.butterflies}** 🦋",
            ephemeral=True,
        )

    async def command_buypack(self, *, user_id: str, name: str, size: str) -> CommandResult:
        users, user = await self._load_user(user_id, name)
        catalog = await self._load_catalog()
        inventories = await self._load_inventories()
        inventory = self._inventory(inventories, user.user_id)
        before = user.coins
        won = open_pack(
            user,
            inventory,
            catalog,
            size,
            rng=self.rng,
            pack_prices=self.rules.pack_prices,
            pack_sizes=self.rules.pack_sizes,
        )
        await self._save_inventories(inventories, **{user.user_id: inventory})
        await self._save_users(users, user)
        return CommandResult(
            "Pack opened",
            f"You bought a **{size.lower()}** pack for **{before - user.coins}** 🪙 "
            f"and received **{len(won)}** card(s).",
            fields=[ResultField(f"#{position}", _card_line(card)) for position, card in enumerate(won[:INVENTORY_PAGE_SIZE], start=1)],
        )

    async def command_gift(
        self,
        *,
        user_id: str,
        name: str,
        target_id: str,
        target_name: str,
        what: str,
        amount: Optional[int] = None,
        card_id: Optional[str] = None,
    ) -> CommandResult:
        if str(target_id) == str(user_id):
            raise InvalidTargetError("You can't gift to yourself 😒", title="…No.")
        users, sender = await self._load_user(user_id, name)
        receiver = self._get_or_create(users, str(target_id), target_name)
        kind = (what or "").strip().lower()

        if kind in ("coins", "butterflies"):
            transfer(sender, receiver, kind, amount)
            await self._save_users(users, sender, receiver)
            label = "🪙 coins" if kind == "coins" else "🦋 butterflies"
            return CommandResult("Gift sent", f"{name} sent **{amount}** {label} to {target_name}.")

        if kind == "card":
            inventories = await self._load_inventories()
            sender_cards = self._inventory(inventories, sender.user_id)
            receiver_cards = self._inventory(inventories, receiver.user_id)
            moved = gift_card(sender_cards, receiver_cards, card_id)
            await self._save_inventories(
                inventories,
                **{sender.user_id: sender_cards, receiver.user_id: receiver_cards},
            )
            if receiver.user_id not in users:
                await self._save_users(users, receiver)
            return CommandResult("Card sent", f"{name} sent **{moved.id}** ({moved.label}) to {target_name}.")

        raise ValidationError("You can gift `coins`, `butterflies` or `card`.", title="Unknown thing")

    async def command_addcard(
        self,
        *,
        user_id: str,
        card_id: str,
        rarity: str,
        group: str,
        idol: str,
        card_type: str,
        era: Optional[str] = None,
        version: Optional[str] = None,
        image: Optional[str] = None,
        droppable: bool = True,
    ) -> CommandResult:
        catalog = await self._load_catalog()
        card = create_card(
            catalog,
            actor_id=str(user_id),
            staff_ids=self.staff_ids,
            card_id=card_id,
            rarity=rarity,
            group=group,
            idol=idol,
            card_type=card_type,
            era=era,
            version=version,
            image=image,
            droppable=droppable,
            enforce_id_format=self.enforce_card_ids,
        )
        await self.store.save("cards", [serialize_card(entry) for entry in catalog])
        return CommandResult(
            "Card created",
            "New card was added.\n"
            f"ID: **{card.id}**\nGroup: **{card.group}**\nIdol: **{card.member}**\n"
            f"Rarity: **{card.rarity}**\nType: **{card.type}**\n"
            f"Droppable: **{'yes' if card.droppable else 'no'}**\n"
            f"Era: **{card.era or '—'}**\nVersion: **{card.version or '—'}**",
            image_url=card.image,
        )

    def _overview_fields(self) -> List[Tuple[str, str]]:
        rules = self.rules
        cooldowns = rules.cooldowns
        pack_counts = " / ".join(str(rules.pack_sizes[size]) for size in rules.pack_prices if size in rules.pack_sizes)
        return [
            ("/start", "Create your collector profile"),
            ("/balance", "Show your coins, butterflies, and cards"),
            ("/daily /weekly /monthly", "Claim your rewards"),
            ("/work", f"Earn coins and butterflies ({_span(cooldowns['work'].window)} cooldown)"),
            (
                "/drop",
                f"Drop {rules.drop_size} random cards and choose 1 "
                f"({_span(cooldowns['drop'].window)} cooldown, affected by boost)",
            ),
            ("/claim", f"Claim 1 random card every {_span(cooldowns['claim'].window)}"),
            ("/buy", "Buy a specific card by ID (not event or limited)"),
            ("/buyboost", f"Buy a {_span(rules.boost_duration)} drop boost for butterflies"),
            ("/buypack", f"Buy {pack_counts} random cards for coins"),
            ("/gift", "Send coins, butterflies, or cards to other players"),
            ("/inventory", "View your collected cards"),
        ]

    async def command_overview(self, **_ignored) -> CommandResult:
        return CommandResult(
            "Rui Command Overview",
            "Here's a quick summary of all available commands:",
            fields=[ResultField(name, value) for name, value in self._overview_fields()],
            ephemeral=True,
        )


__all__ = ["EconomyManager", "GENERIC_FAILURE", "WORK_MESSAGES"]
