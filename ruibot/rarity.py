"""Weighted rarity selection and card draws for drops."""

from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence

from .errors import CatalogUnavailableError
from .models import CardDef, UserRecord

logger = logging.getLogger("ruibot.rarity")
_roll_logger = logging.getLogger("ruibot.rarity.rolls")

COMMON = "common"

# Declaration order is the walk order for the cumulative draw.
RARITIES = (
    "common",
    "rare",
    "super_rare",
    "ultra_rare",
    "legendary",
    "event",
    "limited",
)

BASE_RARITY_WEIGHTS: Dict[str, float] = {
    "common": 44.0,
    "rare": 20.0,
    "super_rare": 15.0,
    "ultra_rare": 7.0,
    "legendary": 6.0,
    "event": 5.0,
    "limited": 3.0,
}

BOOST_MULTIPLIERS: Dict[str, Dict[str, float]] = {
    "small": {
        "common": 0.9,
        "rare": 1.1,
        "super_rare": 1.2,
        "ultra_rare": 1.25,
        "legendary": 1.3,
        "event": 1.3,
        "limited": 1.3,
    },
    "normal": {
        "common": 0.75,
        "rare": 1.25,
        "super_rare": 1.4,
        "ultra_rare": 1.5,
        "legendary": 1.6,
        "event": 1.6,
        "limited": 1.6,
    },
    "mega": {
        "common": 0.5,
        "rare": 1.4,
        "super_rare": 1.6,
        "ultra_rare": 1.8,
        "legendary": 2.0,
        "event": 2.2,
        "limited": 2.3,
    },
}


def apply_boost(
    base_weights: Mapping[str, float],
    boost_tier: Optional[str],
    multipliers: Optional[Mapping[str, Mapping[str, float]]] = None,
) -> Dict[str, float]:
    """Return a copy of ``base_weights`` scaled by the boost tier's table."""
    weights = {rarity: float(weight) for rarity, weight in base_weights.items()}
    table = (multipliers if multipliers is not None else BOOST_MULTIPLIERS).get(boost_tier or "")
    if not table:
        return weights
    for rarity in weights:
        factor = table.get(rarity)
        if factor is not None:
            weights[rarity] = weights[rarity] * float(factor)
    return weights


def pick_rarity(
    base_weights: Mapping[str, float],
    boost_tier: Optional[str] = None,
    rng: Optional[random.Random] = None,
    *,
    multipliers: Optional[Mapping[str, Mapping[str, float]]] = None,
) -> str:
    """Draw one rarity tier from the (optionally boosted) weight table."""
    rng = rng or random.Random()
    weights = apply_boost(base_weights, boost_tier, multipliers)
    total = sum(weight for weight in weights.values() if weight > 0)
    if total <= 0:
        return COMMON

    roll = rng.random() * total
    cumulative = 0.0
    for rarity, weight in weights.items():
        if weight <= 0:
            continue
        cumulative += weight
        if roll <= cumulative:
            _roll_logger.debug(
                "Rarity roll %.3f / %.3f -> %s (boost=%s)", roll, total, rarity, boost_tier or "none"
            )
            return rarity

    # Floating point drift at the upper boundary.
    return COMMON


def droppable_pool(cards: Sequence[CardDef], rarity: str) -> List[CardDef]:
    return [card for card in cards if card.rarity == rarity and card.droppable]


def draw_card(cards: Sequence[CardDef], rarity: str, rng: Optional[random.Random] = None) -> CardDef:
    """Pick a droppable card of ``rarity``, falling back to the common pool."""
    rng = rng or random.Random()
    pool = droppable_pool(cards, rarity)
    if not pool:
        pool = droppable_pool(cards, COMMON)
    if not pool:
        logger.error("No droppable %s or common cards in a catalog of %d entries.", rarity, len(cards))
        raise CatalogUnavailableError("There are no droppable cards right now. Please tell the staff.")
    return rng.choice(pool)


def draw_cards(
    cards: Sequence[CardDef],
    count: int,
    *,
    boost_tier: Optional[str] = None,
    base_weights: Optional[Mapping[str, float]] = None,
    multipliers: Optional[Mapping[str, Mapping[str, float]]] = None,
    rng: Optional[random.Random] = None,
) -> List[CardDef]:
    rng = rng or random.Random()
    weights = base_weights if base_weights is not None else BASE_RARITY_WEIGHTS
    drawn = []
    for _ in range(count):
        rarity = pick_rarity(weights, boost_tier, rng, multipliers=multipliers)
        drawn.append(draw_card(cards, rarity, rng))
    return drawn


def active_boost_tier(user: UserRecord, now: datetime) -> Optional[str]:
    """Return the user's boost tier, clearing it if it has expired."""
    boost = user.active_boost
    if boost is None:
        return None
    if not boost.is_active(now):
        user.active_boost = None
        return None
    return boost.tier


__all__ = [
    "BASE_RARITY_WEIGHTS",
    "BOOST_MULTIPLIERS",
    "COMMON",
    "RARITIES",
    "active_boost_tier",
    "apply_boost",
    "draw_card",
    "draw_cards",
    "droppable_pool",
    "pick_rarity",
]
