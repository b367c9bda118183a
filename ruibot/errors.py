"""Exception types raised by the economy and drop engine."""

from __future__ import annotations

from datetime import timedelta


class RuiBotError(Exception):
    """Base class for errors that are reported back to the user."""

    title = "Something went wrong"

    def __init__(self, message: str, *, title: str = "") -> None:
        super().__init__(message)
        self.message = message
        if title:
            self.title = title


class ValidationError(RuiBotError):
    """Malformed input, unknown ids or a request the rules do not allow."""

    title = "Invalid request"


class InvalidTargetError(ValidationError):
    title = "Invalid target"


class ProfileExistsError(ValidationError):
    title = "Profile already exists"


class NoActiveDropError(ValidationError):
    title = "No active drop"


class DropExpiredError(ValidationError):
    title = "Drop expired"


class InsufficientFundsError(RuiBotError):
    """Raised when a balance or inventory cannot cover a request."""

    title = "Not enough"

    def __init__(self, currency: str, required: int, available: int, *, message: str = "") -> None:
        self.currency = currency
        self.required = required
        self.available = available
        super().__init__(
            message or f"This needs **{required}** {currency} but you only have **{available}**.",
            title=f"Not enough {currency}",
        )


class CooldownActiveError(RuiBotError):
    """Raised when an action is attempted before its window has elapsed."""

    title = "Cooldown"

    def __init__(self, action: str, remaining: timedelta, unit: str, amount: int) -> None:
        self.action = action
        self.remaining = remaining
        self.unit = unit
        self.amount = amount
        super().__init__(
            f"You can use /{action} again in about **{amount}** {unit}.",
            title=f"{action.title()} not ready",
        )


class NotAuthorizedError(RuiBotError):
    title = "Not allowed"

    def __init__(self, message: str = "This command is for Rui staff only.") -> None:
        super().__init__(message)


class CatalogUnavailableError(RuiBotError):
    """No cards are available for a draw; the catalog needs seeding."""

    title = "No cards available"


class StoreError(RuiBotError):
    """A local persistence failure. The message is never shown to users."""

    title = "Storage failure"


__all__ = [
    "CatalogUnavailableError",
    "CooldownActiveError",
    "DropExpiredError",
    "InsufficientFundsError",
    "InvalidTargetError",
    "NoActiveDropError",
    "NotAuthorizedError",
    "ProfileExistsError",
    "RuiBotError",
    "StoreError",
    "ValidationError",
]
