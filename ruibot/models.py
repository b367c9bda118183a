"""Dataclasses and document (de)serialization for RuiBot."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .utils import format_timestamp, parse_timestamp

UserInventory = List["CardDef"]

COOLDOWN_FIELDS: Dict[str, str] = {
    "daily": "last_daily",
    "weekly": "last_weekly",
    "monthly": "last_monthly",
    "work": "last_work",
    "drop": "last_drop",
    "claim": "last_claim",
}

_DOCUMENT_KEYS: Dict[str, str] = {
    "last_daily": "lastDaily",
    "last_weekly": "lastWeekly",
    "last_monthly": "lastMonthly",
    "last_work": "lastWork",
    "last_drop": "lastDrop",
    "last_claim": "lastClaim",
}


@dataclass(frozen=True)
class CardDef:
    id: str
    group: str
    member: str
    rarity: str = "common"
    type: str = "reg"
    era: Optional[str] = None
    version: Optional[str] = None
    image: Optional[str] = None
    droppable: bool = True

    @property
    def label(self) -> str:
        return f"{self.group} — {self.member}"


@dataclass
class ActiveBoost:
    tier: str
    expires_at: datetime

    def is_active(self, now: datetime) -> bool:
        return now <= self.expires_at


@dataclass
class PendingDrop:
    cards: Tuple[CardDef, ...]
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass
class UserRecord:
    user_id: str
    name: str
    created_at: datetime
    coins: int = 0
    butterflies: int = 0
    last_daily: Optional[datetime] = None
    last_weekly: Optional[datetime] = None
    last_monthly: Optional[datetime] = None
    last_work: Optional[datetime] = None
    last_drop: Optional[datetime] = None
    last_claim: Optional[datetime] = None
    active_boost: Optional[ActiveBoost] = None
    pending_drop: Optional[PendingDrop] = None

    def last_claimed(self, action: str) -> Optional[datetime]:
        return getattr(self, COOLDOWN_FIELDS[action])

    def mark_claimed(self, action: str, when: datetime) -> None:
        setattr(self, COOLDOWN_FIELDS[action], when)

    def balance(self, currency: str) -> int:
        return int(getattr(self, currency))


@dataclass
class ResultField:
    name: str
    value: str
    inline: bool = False


@dataclass
class CommandResult:
    """Platform-neutral description of a command reply."""

    title: str
    description: str
    fields: List[ResultField] = field(default_factory=list)
    ephemeral: bool = False
    image_url: Optional[str] = None
    offer: Tuple[CardDef, ...] = field(default_factory=tuple)
    is_error: bool = False


def serialize_card(card: CardDef) -> Dict[str, object]:
    return {
        "id": card.id,
        "group": card.group,
        "member": card.member,
        "era": card.era,
        "version": card.version,
        "image": card.image,
        "rarity": card.rarity,
        "type": card.type,
        "droppable": card.droppable,
    }


def deserialize_card(payload: Mapping[str, object]) -> CardDef:
    droppable = payload.get("droppable")
    return CardDef(
        id=str(payload["id"]),
        group=str(payload.get("group") or ""),
        member=str(payload.get("member") or payload.get("idol") or ""),
        rarity=str(payload.get("rarity") or "common").lower(),
        type=str(payload.get("type") or "reg").lower(),
        era=_optional_str(payload.get("era")),
        version=_optional_str(payload.get("version")),
        image=_optional_str(payload.get("image")),
        droppable=droppable is not False,
    )


def serialize_user(user: UserRecord) -> Dict[str, object]:
    payload: Dict[str, object] = {
        "id": user.user_id,
        "name": user.name,
        "coins": user.coins,
        "butterflies": user.butterflies,
        "created": format_timestamp(user.created_at),
    }
    for attr, key in _DOCUMENT_KEYS.items():
        payload[key] = format_timestamp(getattr(user, attr))
    payload["activeBoost"] = (
        {"type": user.active_boost.tier, "expiresAt": format_timestamp(user.active_boost.expires_at)}
        if user.active_boost
        else None
    )
    payload["pendingDrop"] = (
        {
            "cards": [serialize_card(card) for card in user.pending_drop.cards],
            "expiresAt": format_timestamp(user.pending_drop.expires_at),
        }
        if user.pending_drop
        else None
    )
    return payload


def deserialize_user(user_id: str, payload: Mapping[str, object], *, default_created: datetime) -> UserRecord:
    user = UserRecord(
        user_id=str(payload.get("id") or user_id),
        name=str(payload.get("name") or ""),
        created_at=parse_timestamp(payload.get("created")) or default_created,
        coins=max(int(payload.get("coins") or 0), 0),
        butterflies=max(int(payload.get("butterflies") or 0), 0),
    )
    for attr, key in _DOCUMENT_KEYS.items():
        setattr(user, attr, parse_timestamp(payload.get(key)))

    boost = payload.get("activeBoost")
    if isinstance(boost, Mapping) and boost.get("type"):
        expires_at = parse_timestamp(boost.get("expiresAt"))
        if expires_at is not None:
            user.active_boost = ActiveBoost(tier=str(boost["type"]), expires_at=expires_at)

    pending = payload.get("pendingDrop")
    if isinstance(pending, Mapping):
        expires_at = parse_timestamp(pending.get("expiresAt"))
        raw_cards = pending.get("cards") or []
        cards = tuple(deserialize_card(entry) for entry in raw_cards if isinstance(entry, Mapping))
        if expires_at is not None and cards:
            user.pending_drop = PendingDrop(cards=cards, expires_at=expires_at)
    return user


def deserialize_inventory(entries: Sequence[object]) -> UserInventory:
    return [deserialize_card(entry) for entry in entries if isinstance(entry, Mapping) and entry.get("id")]


def serialize_inventory(inventory: Sequence[CardDef]) -> List[Dict[str, object]]:
    return [serialize_card(card) for card in inventory]


def _optional_str(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


__all__ = [
    "ActiveBoost",
    "COOLDOWN_FIELDS",
    "CardDef",
    "CommandResult",
    "PendingDrop",
    "ResultField",
    "UserInventory",
    "UserRecord",
    "deserialize_card",
    "deserialize_inventory",
    "deserialize_user",
    "serialize_card",
    "serialize_inventory",
    "serialize_user",
]
