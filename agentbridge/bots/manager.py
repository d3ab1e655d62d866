"""Lifecycle and lookup of the configured bots."""

import asyncio
import logging
from typing import Optional

import httpx

from ..core.config import BotConfig, PluginConfig
from ..core.hostname_filter import parse_allowed_hostnames
from ..errors import ConfigurationError, UsageRestrictedError
from ..llm.language_model import LanguageModel
from ..platform.client import BotAccount, PlatformClient
from ..platform.models import Channel
from ..providers import new_language_model
from .bot import Bot
from .mentions import mentioned_usernames
from .permissions import check_user_access

logger = logging.getLogger(__name__)

ENSURE_BOTS_MUTEX = "ai_ensure_bots"


class BotManager:
    """Holds the active bots.

    Readers take a snapshot of the current list; ``ensure_bots`` builds a new
    list and swaps it in under the write lock, so a reload is atomic for
    readers.

    Usage:
        manager = BotManager(client, multi_llm_licensed=True)
        await manager.ensure_bots(plugin_config)

        bot = manager.get_bot_mentioned("@matty what's up?")
    """

    def __init__(
        self,
        client: PlatformClient,
        multi_llm_licensed: bool = False,
        allowed_hostnames_override: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client = client
        self.multi_llm_licensed = multi_llm_licensed
        self.allowed_hostnames_override = allowed_hostnames_override
        self.transport = transport
        self._bots: list[Bot] = []
        self._write_lock = asyncio.Lock()

    def _new_llm(self, config: BotConfig, allowed: list[str], trace: bool) -> LanguageModel:
        return new_language_model(config.service, allowed, enable_trace=trace, transport=self.transport)

    async def ensure_bots(self, config: PluginConfig) -> None:
        """Reconcile platform bot accounts with the configuration.

        Raises:
            ConfigurationError: If two bots share a name
        """
        allowed = parse_allowed_hostnames(self.allowed_hostnames_override or config.allowed_upstream_hostnames)

        async with self._write_lock:
            async with self.client.cluster_mutex(ENSURE_BOTS_MUTEX):
                bot_configs = list(config.bots)
                if not self.multi_llm_licensed and len(bot_configs) > 1:
                    logger.warning("Multiple bots configured without a multi-LLM license, only the first is enabled")
                    bot_configs = bot_configs[:1]

                valid: list[BotConfig] = []
                names: set[str] = set()
                for bot_config in bot_configs:
                    try:
                        bot_config.validate_config()
                    except ConfigurationError as e:
                        logger.error(f"Skipping invalid bot configuration: {e}")
                        continue
                    if bot_config.name in names:
                        raise ConfigurationError(f"duplicate bot name: {bot_config.name}")
                    names.add(bot_config.name)
                    valid.append(bot_config)

                existing = {account.username: account for account in await self.client.get_bots()}

                for username, account in existing.items():
                    if username not in names and account.delete_at == 0:
                        logger.info(f"Deactivating bot no longer in configuration: {username}")
                        await self.client.update_bot_active(account.user_id, False)

                bots: list[Bot] = []
                for bot_config in valid:
                    account = await self._ensure_account(bot_config, existing.get(bot_config.name))
                    llm = self._new_llm(bot_config, allowed, config.enable_llm_trace)
                    bots.append(Bot(config=bot_config, account=account, llm=llm))

            for i, bot in enumerate(bots):
                if bot.username == config.default_bot_name:
                    bots.insert(0, bots.pop(i))
                    break

            previous, self._bots = self._bots, bots
            logger.info(f"Active bots: {[bot.username for bot in bots]}")
            await _close_llms(previous)

    async def close(self) -> None:
        async with self._write_lock:
            bots, self._bots = self._bots, []
            await _close_llms(bots)

    async def _ensure_account(self, bot_config: BotConfig, account: Optional[BotAccount]) -> BotAccount:
        description = f"Powered by {bot_config.service.type}"
        if account is None:
            logger.info(f"Creating bot account: {bot_config.name}")
            return await self.client.create_bot(BotAccount(
                user_id="",
                username=bot_config.name,
                display_name=bot_config.display_name,
                description=description,
            ))

        patched = await self.client.patch_bot(account.user_id, bot_config.display_name, description)
        if account.delete_at != 0:
            logger.info(f"Reactivating bot account: {bot_config.name}")
            await self.client.update_bot_active(account.user_id, True)
            patched.delete_at = 0
        return patched

    def get_all_bots(self) -> list[Bot]:
        return list(self._bots)

    def get_bot_by_username(self, username: str) -> Optional[Bot]:
        for bot in self._bots:
            if bot.username == username:
                return bot
        return None

    def get_bot_by_id(self, user_id: str) -> Optional[Bot]:
        for bot in self._bots:
            if bot.user_id == user_id:
                return bot
        return None

    def get_default_bot(self) -> Optional[Bot]:
        bots = self._bots
        return bots[0] if bots else None

    def is_any_bot(self, user_id: str) -> bool:
        return self.get_bot_by_id(user_id) is not None

    def get_bot_mentioned(self, text: str) -> Optional[Bot]:
        """First active bot @mentioned outside code spans and blocks."""
        by_username = {bot.username.lower(): bot for bot in self._bots}
        for username in mentioned_usernames(text):
            bot = by_username.get(username.lower())
            if bot is not None:
                return bot
        return None

    def get_bot_for_dm_channel(self, channel: Channel) -> Optional[Bot]:
        if not channel.is_direct:
            return None
        member_ids = channel.name.split("__")
        for bot in self._bots:
            if bot.user_id in member_ids:
                return bot
        return None

    async def get_bots_for_user(self, user_id: str) -> list[Bot]:
        """Bots the user may talk to, default bot first."""
        usable: list[Bot] = []
        for bot in self.get_all_bots():
            try:
                await check_user_access(self.client, bot, user_id)
            except UsageRestrictedError:
                continue
            usable.append(bot)
        return usable


async def _close_llms(bots: list[Bot]) -> None:
    for bot in bots:
        try:
            await bot.llm.close()
        except Exception as e:
            logger.warning(f"Failed to close language model for bot {bot.username}: {e}")
