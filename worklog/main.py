from __future__ import annotations

import asyncio
import logging

import discord
from discord.ext import commands
from dotenv import load_dotenv

from .authority import TimerAuthority, now_ms
from .commands import register_commands
from .config import Config, load_config
from .db import Database
from .ledger import RecordLedger
from .messaging import AuthorityChannel, Broadcast
from .observer import TimerObserver
from .settings import SettingsService


class WorklogBot(commands.Bot):
    def __init__(self, config: Config, db: Database) -> None:
        intents = discord.Intents.none()
        intents.guilds = True

        super().__init__(command_prefix="!", intents=intents)

        self.config = config
        self.db = db
        self.logger = logging.getLogger("worklog-bot")

        # The bot process outlives every interaction, so it hosts the timer authority.
        self.channel = AuthorityChannel()
        self.broadcast = Broadcast()
        self.authority = TimerAuthority(db=db, clock=now_ms, tick_seconds=config.tick_seconds)
        self.ledger = RecordLedger(db=db, clock=now_ms)
        self.settings = SettingsService(db=db, broadcast=self.broadcast)
        self.authority_task: asyncio.Task | None = None

    async def setup_hook(self) -> None:
        register_commands(self)
        await self.tree.sync(guild=discord.Object(id=self.config.guild_id))
        self.authority_task = asyncio.create_task(self.authority.serve(self.channel))

    async def on_ready(self) -> None:
        self.logger.info("Connected as %s (%s)", self.user, self.user.id if self.user else "unknown")

    def new_observer(self) -> TimerObserver:
        """A fresh observer for one interaction; callers must detach it."""
        return TimerObserver(
            channel=self.channel,
            db=self.db,
            ledger=self.ledger,
            settings=self.settings,
            tz=self.config.timezone,
            clock=now_ms,
            refresh_seconds=self.config.tick_seconds,
        )

    async def close(self) -> None:
        self.channel.close()
        if self.authority_task is not None:
            await self.authority_task
            self.authority_task = None
        self.db.close()
        await super().close()


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def main() -> None:
    load_dotenv()
    configure_logging()

    config = load_config()
    db = Database(config.db_path)
    db.initialize()

    bot = WorklogBot(config=config, db=db)
    bot.run(config.discord_token)


if __name__ == "__main__":
    main()
