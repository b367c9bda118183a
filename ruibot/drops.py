"""Two-phase drop flow: offer three cards, then commit a single pick.

A drop moves through ``Idle -> Offered -> Resolved | Expired``. The offered
cards are kept on the user record between the offer and the button press,
and an offer older than its window is discarded lazily the next time the
record is read.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping, Optional, Sequence, Tuple

from .cooldowns import DEFAULT_COOLDOWNS, CooldownRule, ensure_ready
from .errors import CatalogUnavailableError, DropExpiredError, NoActiveDropError, ValidationError
from .models import CardDef, PendingDrop, UserRecord
from .rarity import active_boost_tier, draw_cards

logger = logging.getLogger("ruibot.drops")

DROP_SIZE = 3
PENDING_DROP_WINDOW = timedelta(seconds=60)


@dataclass(frozen=True)
class DropOffer:
    cards: Tuple[CardDef, ...]
    expires_at: datetime
    boost_tier: Optional[str] = None
    reused: bool = False


def offer_drop(
    user: UserRecord,
    cards: Sequence[CardDef],
    *,
    now: datetime,
    rng: Optional[random.Random] = None,
    cooldown: CooldownRule = DEFAULT_COOLDOWNS["drop"],
    pending_window: timedelta = PENDING_DROP_WINDOW,
    drop_size: int = DROP_SIZE,
    base_weights: Optional[Mapping[str, float]] = None,
    multipliers: Optional[Mapping[str, Mapping[str, float]]] = None,
) -> DropOffer:
    pending = user.pending_drop
    if pending is not None:
        if not pending.is_expired(now):
            return DropOffer(
                cards=pending.cards,
                expires_at=pending.expires_at,
                boost_tier=active_boost_tier(user, now),
                reused=True,
            )
        logger.debug("Discarding expired drop for user %s", user.user_id)
        user.pending_drop = None

    ensure_ready(cooldown, user.last_drop, now)
    if not cards:
        raise CatalogUnavailableError("There are no cards in the catalog yet.")

    boost_tier = active_boost_tier(user, now)
    drawn = tuple(
        draw_cards(
            cards,
            drop_size,
            boost_tier=boost_tier,
            base_weights=base_weights,
            multipliers=multipliers,
            rng=rng,
        )
    )
    expires_at = now + pending_window
    user.pending_drop = PendingDrop(cards=drawn, expires_at=expires_at)
    return DropOffer(cards=drawn, expires_at=expires_at, boost_tier=boost_tier)


def resolve_pick(user: UserRecord, index: int, *, now: datetime) -> CardDef:
    """Commit the pick at ``index`` and start the drop cooldown.

    The caller appends the returned snapshot to the user's inventory.
    """
    pending = user.pending_drop
    if pending is None:
        raise NoActiveDropError("You have no active drop. Use /drop first.")
    if pending.is_expired(now):
        user.pending_drop = None
        raise DropExpiredError("Your drop expired. Use /drop again.")
    if not 0 <= index < len(pending.cards):
        raise ValidationError("This card is not available anymore.")

    chosen = pending.cards[index]
    user.pending_drop = None
    user.last_drop = now
    return chosen


__all__ = [
    "DROP_SIZE",
    "DropOffer",
    "PENDING_DROP_WINDOW",
    "offer_drop",
    "resolve_pick",
]
