import logging
import os
from typing import Optional

import discord
from aiohttp import web
from discord.ext import commands
from dotenv import load_dotenv

from ruibot.commands import register_commands
from ruibot.config import Settings, load_economy_rules, load_settings
from ruibot.economy import EconomyManager
from ruibot.keepalive import start_keepalive
from ruibot.store import DocumentStore, JsonFileStore, RemoteMirrorStore

load_dotenv()

logging.basicConfig(
    level=os.getenv("RUIBOT_LOG_LEVEL", "INFO"),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("ruibot")

DISCORD_TOKEN = os.getenv("DISCORD_TOKEN")
if not DISCORD_TOKEN:
    raise RuntimeError("Missing DISCORD_TOKEN. Set it in your environment or .env file.")

SETTINGS = load_settings()

intents = discord.Intents.default()


def build_store(settings: Settings) -> DocumentStore:
    local = JsonFileStore(settings.data_dir)
    if not settings.remote_enabled:
        logger.info("Remote mirror disabled; storing collections in %s", settings.data_dir)
        return local
    logger.info("Mirroring collections to remote bin %s", settings.jsonbin_id)
    return RemoteMirrorStore(
        local,
        bin_id=settings.jsonbin_id,
        api_key=settings.jsonbin_key,
        base_url=settings.jsonbin_url,
    )


class RuiBot(commands.Bot):
    def __init__(self, settings: Settings) -> None:
        super().__init__(command_prefix=commands.when_mentioned, intents=intents)
        self.settings = settings
        self.manager = EconomyManager(
            store=build_store(settings),
            rules=load_economy_rules(settings.economy_config_path),
            staff_ids=settings.staff_ids,
            enforce_card_ids=settings.enforce_card_ids,
        )
        self.keepalive_runner: Optional[web.AppRunner] = None

    async def setup_hook(self) -> None:
        register_commands(self.tree, self.manager)
        await self._sync_commands()
        if self.settings.keepalive_port:
            try:
                self.keepalive_runner = await start_keepalive(self.settings.keepalive_port)
            except OSError as exc:
                logger.warning("Unable to start keep-alive server on port %s: %s", self.settings.keepalive_port, exc)

    async def _sync_commands(self) -> None:
        guild_id = self.settings.sync_guild_id
        try:
            if guild_id:
                guild = discord.Object(id=guild_id)
                self.tree.copy_global_to(guild=guild)
                await self.tree.sync(guild=guild)
                logger.info("Synced application commands for guild %s", guild_id)
            else:
                await self.tree.sync()
                logger.info("Synced global application commands")
        except discord.HTTPException as exc:
            logger.warning("Failed to sync application commands: %s", exc)

    async def close(self) -> None:
        if self.keepalive_runner is not None:
            await self.keepalive_runner.cleanup()
        await super().close()


bot = RuiBot(SETTINGS)


@bot.event
async def on_ready():
    logger.info("Logged in as %s (%s); staff ids: %d", bot.user, getattr(bot.user, "id", "?"), len(SETTINGS.staff_ids))


def main():
    bot.run(DISCORD_TOKEN, log_handler=None)


if __name__ == "__main__":
    main()
