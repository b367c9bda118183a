"""RuiBot package providing the collector economy, drops, storage, and Discord commands."""

from . import catalog, config, cooldowns, drops, economy, errors, ledger, models, rarity, store, utils  # noqa: F401

__all__ = ["catalog", "config", "cooldowns", "drops", "economy", "errors", "ledger", "models", "rarity", "store", "utils"]
