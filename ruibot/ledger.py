"""Balance mutations for coins and butterflies."""

from __future__ import annotations

import random
from typing import Dict, Mapping, Optional, Tuple

from .errors import InsufficientFundsError, InvalidTargetError, ValidationError
from .models import UserRecord

CURRENCIES = ("coins", "butterflies")

RewardRange = Tuple[Tuple[int, int], Tuple[int, int]]

# (coins range, butterflies range), both inclusive.
DEFAULT_REWARD_RANGES: Dict[str, RewardRange] = {
    "daily": ((200, 750), (3, 20)),
    "weekly": ((900, 1800), (10, 35)),
    "monthly": ((2500, 5000), (25, 70)),
    "work": ((200, 750), (3, 20)),
}


def _check_currency(currency: str) -> str:
    normalized = (currency or "").strip().lower()
    if normalized not in CURRENCIES:
        raise ValidationError(f"Unknown currency `{currency}`. Use coins or butterflies.")
    return normalized


def grant(user: UserRecord, coins: int = 0, butterflies: int = 0) -> None:
    if coins < 0 or butterflies < 0:
        raise ValidationError("Rewards cannot be negative.")
    user.coins += coins
    user.butterflies += butterflies


def spend(user: UserRecord, currency: str, amount: int) -> None:
    currency = _check_currency(currency)
    if amount < 0:
        raise ValidationError("The amount must not be negative.")
    balance = user.balance(currency)
    if balance < amount:
        raise InsufficientFundsError(currency, amount, balance)
    setattr(user, currency, balance - amount)


def transfer(sender: UserRecord, receiver: UserRecord, currency: str, amount: Optional[int]) -> None:
    """Move ``amount`` of ``currency`` from ``sender`` to ``receiver`` as one unit."""
    if sender.user_id == receiver.user_id:
        raise InvalidTargetError("You can't gift to yourself.")
    currency = _check_currency(currency)
    if not amount or amount <= 0:
        raise ValidationError("Tell me how many you want to send.", title="Missing amount")
    balance = sender.balance(currency)
    if balance < amount:
        raise InsufficientFundsError(currency, amount, balance, message=f"You only have {balance} {currency}.")
    setattr(sender, currency, balance - amount)
    setattr(receiver, currency, receiver.balance(currency) + amount)


def roll_reward(
    action: str,
    rng: Optional[random.Random] = None,
    ranges: Optional[Mapping[str, RewardRange]] = None,
) -> Tuple[int, int]:
    rng = rng or random.Random()
    (coin_lo, coin_hi), (fly_lo, fly_hi) = (ranges or DEFAULT_REWARD_RANGES)[action]
    return rng.randint(coin_lo, coin_hi), rng.randint(fly_lo, fly_hi)


__all__ = [
    "CURRENCIES",
    "DEFAULT_REWARD_RANGES",
    "RewardRange",
    "grant",
    "roll_reward",
    "spend",
    "transfer",
]
