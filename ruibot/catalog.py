"""Card catalog, id grammar, and the buy / pack / boost / gift rules."""

from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AbstractSet, Dict, Iterable, List, Mapping, Optional, Sequence

from .errors import CatalogUnavailableError, InsufficientFundsError, NotAuthorizedError, ValidationError
from .ledger import spend
from .models import ActiveBoost, CardDef, UserInventory, UserRecord
from .rarity import RARITIES

logger = logging.getLogger("ruibot.catalog")

CARD_TYPES = ("reg", "event", "limited")
UNBUYABLE_RARITIES = frozenset({"event", "limited"})

RARITY_PREFIXES: Dict[str, str] = {
    "C": "common",
    "R": "rare",
    "S": "super_rare",
    "U": "ultra_rare",
    "L": "legendary",
    "ES": "event",
    "EL": "limited",
}

CARD_ID_PATTERN = re.compile(
    r"^(?P<prefix>ES|EL|C|R|S|U|L)"
    r"(?P<group>[A-Z0-9]{2})"
    r"(?P<idol>[A-Z0-9]{2})"
    r"V(?P<version>\d+?)"
    r"(?P<episode>0[1-9]|[1-9][0-9])$"
)

RARITY_PRICES: Dict[str, int] = {
    "common": 200,
    "rare": 400,
    "super_rare": 650,
    "ultra_rare": 900,
    "legendary": 1200,
}

PACK_PRICES: Dict[str, int] = {"small": 350, "medium": 650, "big": 1100}
PACK_SIZES: Dict[str, int] = {"small": 5, "medium": 10, "big": 20}

BOOST_PRICES: Dict[str, int] = {"small": 25, "normal": 40, "mega": 60}
BOOST_DURATION = timedelta(minutes=45)


@dataclass(frozen=True)
class CardIdParts:
    rarity: str
    group: str
    idol: str
    version: int
    episode: int


def normalize_card_id(raw: Optional[str]) -> str:
    return (raw or "").strip().upper()


def parse_card_id(card_id: str) -> CardIdParts:
    match = CARD_ID_PATTERN.match(normalize_card_id(card_id))
    if match is None:
        raise ValidationError(
            f"`{card_id}` is not a valid card id. Expected e.g. `CXLRUV101` "
            "(rarity, group, idol, V, version, episode).",
            title="Invalid card id",
        )
    return CardIdParts(
        rarity=RARITY_PREFIXES[match.group("prefix")],
        group=match.group("group"),
        idol=match.group("idol"),
        version=int(match.group("version")),
        episode=int(match.group("episode")),
    )


def validate_card_id(card_id: str, rarity: str) -> CardIdParts:
    parts = parse_card_id(card_id)
    if parts.rarity != rarity:
        raise ValidationError(
            f"Card id `{card_id}` encodes rarity **{parts.rarity}** but **{rarity}** was given.",
            title="Rarity mismatch",
        )
    return parts


class Catalog:
    """Ordered, append-only set of card definitions keyed by normalized id."""

    def __init__(self, cards: Iterable[CardDef] = ()) -> None:
        self._cards: List[CardDef] = []
        self._by_id: Dict[str, CardDef] = {}
        for card in cards:
            key = normalize_card_id(card.id)
            if key in self._by_id:
                logger.warning("Duplicate card id %s in catalog; keeping the first entry.", card.id)
                continue
            self._cards.append(card)
            self._by_id[key] = card

    def __len__(self) -> int:
        return len(self._cards)

    def __iter__(self):
        return iter(self._cards)

    @property
    def cards(self) -> Sequence[CardDef]:
        return tuple(self._cards)

    def get(self, card_id: str) -> Optional[CardDef]:
        return self._by_id.get(normalize_card_id(card_id))

    def standard_pool(self) -> List[CardDef]:
        return [card for card in self._cards if card.droppable and card.rarity not in UNBUYABLE_RARITIES]

    def add(self, card: CardDef) -> None:
        key = normalize_card_id(card.id)
        if key in self._by_id:
            raise ValidationError(f"There is already a card with ID **{card.id}**.", title="Already exists")
        self._cards.append(card)
        self._by_id[key] = card


def price_for(card: CardDef, prices: Optional[Mapping[str, int]] = None) -> int:
    if card.rarity in UNBUYABLE_RARITIES:
        raise ValidationError(
            f"Cards with rarity **{card.rarity}** cannot be bought. Try drops or events.",
            title="Not buyable",
        )
    price = (prices or RARITY_PRICES).get(card.rarity)
    if not price:
        raise ValidationError(f"Cards with rarity **{card.rarity}** cannot be bought.", title="Not buyable")
    return price


def buy_card(
    user: UserRecord,
    inventory: UserInventory,
    catalog: Catalog,
    card_id: str,
    *,
    prices: Optional[Mapping[str, int]] = None,
) -> CardDef:
    wanted = catalog.get(card_id)
    if wanted is None:
        raise ValidationError(f"There is no card with ID **{normalize_card_id(card_id)}**.", title="Not found")
    price = price_for(wanted, prices)
    spend(user, "coins", price)
    inventory.append(wanted)
    return wanted


def open_pack(
    user: UserRecord,
    inventory: UserInventory,
    catalog: Catalog,
    size: str,
    *,
    rng: Optional[random.Random] = None,
    pack_prices: Optional[Mapping[str, int]] = None,
    pack_sizes: Optional[Mapping[str, int]] = None,
) -> List[CardDef]:
    rng = rng or random.Random()
    key = (size or "").strip().lower()
    price = (pack_prices or PACK_PRICES).get(key)
    amount = (pack_sizes or PACK_SIZES).get(key)
    if not price or not amount:
        raise ValidationError("This pack does not exist.", title="Unknown pack")
    if user.coins < price:
        raise InsufficientFundsError("coins", price, user.coins)
    if not len(catalog):
        raise CatalogUnavailableError("There are no cards to buy right now.")
    pool = catalog.standard_pool()
    if not pool:
        raise CatalogUnavailableError("There are no normal cards to buy right now.")

    spend(user, "coins", price)
    won = [rng.choice(pool) for _ in range(amount)]
    inventory.extend(won)
    return won


def buy_boost(
    user: UserRecord,
    tier: str,
    *,
    now: datetime,
    prices: Optional[Mapping[str, int]] = None,
    duration: timedelta = BOOST_DURATION,
) -> ActiveBoost:
    key = (tier or "").strip().lower()
    price = (prices or BOOST_PRICES).get(key)
    if not price:
        raise ValidationError("This boost does not exist.", title="Unknown boost")
    spend(user, "butterflies", price)
    user.active_boost = ActiveBoost(tier=key, expires_at=now + duration)
    return user.active_boost


def gift_card(sender_inventory: UserInventory, receiver_inventory: UserInventory, card_id: Optional[str]) -> CardDef:
    """Move the first instance of ``card_id`` from one inventory to another."""
    wanted = normalize_card_id(card_id)
    if not wanted:
        raise ValidationError("Tell me which card ID you want to send.", title="Missing card")
    for index, card in enumerate(sender_inventory):
        if normalize_card_id(card.id) == wanted:
            moved = sender_inventory.pop(index)
            receiver_inventory.append(moved)
            return moved
    raise ValidationError(f"You don't own a card with ID **{wanted}**.", title="Not found")


def create_card(
    catalog: Catalog,
    *,
    actor_id: str,
    staff_ids: AbstractSet[str],
    card_id: str,
    rarity: str,
    group: str,
    idol: str,
    card_type: str,
    era: Optional[str] = None,
    version: Optional[str] = None,
    image: Optional[str] = None,
    droppable: bool = True,
    enforce_id_format: bool = True,
) -> CardDef:
    if str(actor_id) not in staff_ids:
        raise NotAuthorizedError()

    normalized_id = normalize_card_id(card_id)
    rarity = (rarity or "").strip().lower()
    card_type = (card_type or "").strip().lower()
    if card_type == "regular":
        card_type = "reg"
    if not normalized_id:
        raise ValidationError("A card id is required.")
    if rarity not in RARITIES:
        raise ValidationError(f"Unknown rarity `{rarity}`.", title="Unknown rarity")
    if card_type not in CARD_TYPES:
        raise ValidationError(f"Unknown card type `{card_type}`. Use reg, event or limited.", title="Unknown type")
    if not (group or "").strip() or not (idol or "").strip():
        raise ValidationError("Group and idol are required.")
    if enforce_id_format:
        validate_card_id(normalized_id, rarity)

    card = CardDef(
        id=normalized_id,
        group=group.strip(),
        member=idol.strip(),
        rarity=rarity,
        type=card_type,
        era=(era or "").strip() or None,
        version=(version or "").strip() or None,
        image=(image or "").strip() or None,
        droppable=bool(droppable),
    )
    catalog.add(card)
    logger.info("Card %s (%s) created by staff member %s", card.id, card.rarity, actor_id)
    return card


__all__ = [
    "BOOST_DURATION",
    "BOOST_PRICES",
    "CARD_ID_PATTERN",
    "CARD_TYPES",
    "Catalog",
    "CardIdParts",
    "PACK_PRICES",
    "PACK_SIZES",
    "RARITY_PREFIXES",
    "RARITY_PRICES",
    "UNBUYABLE_RARITIES",
    "buy_boost",
    "buy_card",
    "create_card",
    "gift_card",
    "normalize_card_id",
    "open_pack",
    "parse_card_id",
    "price_for",
    "validate_card_id",
]
