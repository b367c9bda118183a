"""Claim-every-N cooldown checks shared by the timed rewards."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from .errors import CooldownActiveError

UNIT_SECONDS: Dict[str, int] = {
    "seconds": 1,
    "minutes": 60,
    "hours": 60 * 60,
    "days": 24 * 60 * 60,
}


@dataclass(frozen=True)
class CooldownRule:
    action: str
    window: timedelta
    unit: str


@dataclass(frozen=True)
class CooldownStatus:
    ready: bool
    remaining: timedelta = timedelta(0)


DEFAULT_COOLDOWNS: Dict[str, CooldownRule] = {
    "daily": CooldownRule("daily", timedelta(hours=24), "hours"),
    "weekly": CooldownRule("weekly", timedelta(days=7), "days"),
    "monthly": CooldownRule("monthly", timedelta(days=30), "days"),
    "work": CooldownRule("work", timedelta(minutes=15), "minutes"),
    "claim": CooldownRule("claim", timedelta(seconds=90), "seconds"),
    "drop": CooldownRule("drop", timedelta(seconds=60), "seconds"),
}


def check_cooldown(last: Optional[datetime], window: timedelta, now: datetime) -> CooldownStatus:
    if last is None:
        return CooldownStatus(ready=True)
    elapsed = now - last
    if elapsed >= window:
        return CooldownStatus(ready=True)
    return CooldownStatus(ready=False, remaining=window - elapsed)


def round_up(remaining: timedelta, unit: str) -> int:
    seconds = remaining.total_seconds()
    if seconds <= 0:
        return 0
    return max(1, math.ceil(seconds / UNIT_SECONDS[unit]))


def ensure_ready(rule: CooldownRule, last: Optional[datetime], now: datetime) -> None:
    """Raise :class:`CooldownActiveError` if ``rule`` has not elapsed since ``last``."""
    status = check_cooldown(last, rule.window, now)
    if not status.ready:
        raise CooldownActiveError(rule.action, status.remaining, rule.unit, round_up(status.remaining, rule.unit))


__all__ = [
    "CooldownRule",
    "CooldownStatus",
    "DEFAULT_COOLDOWNS",
    "UNIT_SECONDS",
    "check_cooldown",
    "ensure_ready",
    "round_up",
]
