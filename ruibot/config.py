"""Runtime settings and tunable economy rules."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Dict, FrozenSet, Mapping, Optional

from .catalog import BOOST_DURATION, BOOST_PRICES, PACK_PRICES, PACK_SIZES, RARITY_PRICES
from .cooldowns import DEFAULT_COOLDOWNS, CooldownRule
from .drops import DROP_SIZE, PENDING_DROP_WINDOW
from .ledger import DEFAULT_REWARD_RANGES, RewardRange
from .rarity import BASE_RARITY_WEIGHTS, BOOST_MULTIPLIERS
from .store import DEFAULT_JSONBIN_URL
from .utils import bool_from_env, int_from_env, parse_id_set, path_from_env

logger = logging.getLogger("ruibot.config")


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    staff_ids: FrozenSet[str] = frozenset()
    jsonbin_id: str = ""
    jsonbin_key: str = ""
    jsonbin_url: str = DEFAULT_JSONBIN_URL
    economy_config_path: Optional[Path] = None
    enforce_card_ids: bool = True
    keepalive_port: int = 0
    sync_guild_id: int = 0

    @property
    def remote_enabled(self) -> bool:
        return bool(self.jsonbin_id and self.jsonbin_key)


def load_settings() -> Settings:
    data_dir = path_from_env("RUIBOT_DATA_DIR") or Path("data")
    staff_raw = os.getenv("RUIBOT_STAFF_IDS") or os.getenv("STAFF_IDS", "")
    keepalive_port = int_from_env("RUIBOT_KEEPALIVE_PORT", int_from_env("PORT", 0))
    return Settings(
        data_dir=data_dir,
        staff_ids=parse_id_set(staff_raw),
        jsonbin_id=os.getenv("JSONBIN_ID", "").strip(),
        jsonbin_key=os.getenv("JSONBIN_KEY", "").strip(),
        jsonbin_url=os.getenv("JSONBIN_BASE_URL", "").strip() or DEFAULT_JSONBIN_URL,
        economy_config_path=path_from_env("RUIBOT_ECONOMY_CONFIG"),
        enforce_card_ids=bool_from_env("RUIBOT_ENFORCE_CARD_IDS", True),
        keepalive_port=max(keepalive_port, 0),
        sync_guild_id=int_from_env("RUIBOT_SYNC_GUILD_ID", 0),
    )


@dataclass(frozen=True)
class EconomyRules:
    rarity_weights: Mapping[str, float] = field(default_factory=lambda: dict(BASE_RARITY_WEIGHTS))
    boost_multipliers: Mapping[str, Mapping[str, float]] = field(
        default_factory=lambda: {tier: dict(table) for tier, table in BOOST_MULTIPLIERS.items()}
    )
    boost_prices: Mapping[str, int] = field(default_factory=lambda: dict(BOOST_PRICES))
    boost_duration: timedelta = BOOST_DURATION
    pack_prices: Mapping[str, int] = field(default_factory=lambda: dict(PACK_PRICES))
    pack_sizes: Mapping[str, int] = field(default_factory=lambda: dict(PACK_SIZES))
    rarity_prices: Mapping[str, int] = field(default_factory=lambda: dict(RARITY_PRICES))
    cooldowns: Mapping[str, CooldownRule] = field(default_factory=lambda: dict(DEFAULT_COOLDOWNS))
    reward_ranges: Mapping[str, RewardRange] = field(default_factory=lambda: dict(DEFAULT_REWARD_RANGES))
    drop_size: int = DROP_SIZE
    pending_drop_window: timedelta = PENDING_DROP_WINDOW


def _load_json_config(path: Optional[Path]) -> dict:
    if not path:
        return {}
    try:
        if not path.exists():
            logger.warning("Economy config %s not found; using defaults.", path)
            return {}
        payload = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(payload, dict):
            return payload
        logger.warning("Economy config %s must be a JSON object.", path)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Failed to parse economy config %s: %s", path, exc)
    except OSError as exc:
        logger.warning("Failed to read economy config %s: %s", path, exc)
    return {}


def _number_map(raw: object, defaults: Mapping[str, float], label: str, cast=float) -> Dict[str, float]:
    result = dict(defaults)
    if not isinstance(raw, Mapping):
        return result
    for key, value in raw.items():
        try:
            number = cast(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid %s entry %s=%r", label, key, value)
            continue
        if number < 0:
            logger.warning("Ignoring negative %s entry %s=%r", label, key, value)
            continue
        result[str(key).lower()] = number
    return result


def _cooldown_map(raw: object) -> Dict[str, CooldownRule]:
    result = dict(DEFAULT_COOLDOWNS)
    if not isinstance(raw, Mapping):
        return result
    for action, seconds in raw.items():
        rule = result.get(str(action).lower())
        if rule is None:
            logger.warning("Ignoring cooldown for unknown action %s", action)
            continue
        try:
            window = timedelta(seconds=float(seconds))
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid cooldown %s=%r", action, seconds)
            continue
        result[rule.action] = CooldownRule(rule.action, window, rule.unit)
    return result


def _reward_map(raw: object) -> Dict[str, RewardRange]:
    result = dict(DEFAULT_REWARD_RANGES)
    if not isinstance(raw, Mapping):
        return result
    for action, entry in raw.items():
        action = str(action).lower()
        if action not in result or not isinstance(entry, Mapping):
            logger.warning("Ignoring reward range for %s", action)
            continue
        try:
            coins = tuple(int(v) for v in entry["coins"])
            butterflies = tuple(int(v) for v in entry["butterflies"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Reward range for %s needs coins/butterflies [min, max] pairs.", action)
            continue
        if len(coins) != 2 or len(butterflies) != 2 or coins[0] > coins[1] or butterflies[0] > butterflies[1]:
            logger.warning("Ignoring malformed reward range for %s", action)
            continue
        if min(coins + butterflies) < 0:
            logger.warning("Ignoring negative reward range for %s", action)
            continue
        result[action] = (coins, butterflies)
    return result


def load_economy_rules(path: Optional[Path] = None) -> EconomyRules:
    """Build :class:`EconomyRules`, overriding defaults from an optional JSON file."""
    config = _load_json_config(path)
    if not config:
        return EconomyRules()

    multipliers = {tier: dict(table) for tier, table in BOOST_MULTIPLIERS.items()}
    raw_boosts = config.get("boost_multipliers")
    if isinstance(raw_boosts, Mapping):
        for tier, table in raw_boosts.items():
            multipliers[str(tier).lower()] = _number_map(table, {}, f"boost {tier} multiplier")

    duration_minutes = config.get("boost_duration_minutes")
    boost_duration = BOOST_DURATION
    if duration_minutes is not None:
        try:
            boost_duration = timedelta(minutes=float(duration_minutes))
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid boost_duration_minutes=%r", duration_minutes)

    return EconomyRules(
        rarity_weights=_number_map(config.get("rarity_weights"), BASE_RARITY_WEIGHTS, "rarity weight"),
        boost_multipliers=multipliers,
        boost_prices=_number_map(config.get("boost_prices"), BOOST_PRICES, "boost price", int),
        boost_duration=boost_duration,
        pack_prices=_number_map(config.get("pack_prices"), PACK_PRICES, "pack price", int),
        pack_sizes=_number_map(config.get("pack_sizes"), PACK_SIZES, "pack size", int),
        rarity_prices=_number_map(config.get("rarity_prices"), RARITY_PRICES, "rarity price", int),
        cooldowns=_cooldown_map(config.get("cooldown_seconds")),
        reward_ranges=_reward_map(config.get("reward_ranges")),
    )


__all__ = [
    "EconomyRules",
    "Settings",
    "load_economy_rules",
    "load_settings",
]
