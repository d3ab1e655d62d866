"""Tests for bot lifecycle, mention detection and access policies."""

import pytest

from agentbridge.bots.manager import BotManager
from agentbridge.bots.mentions import is_mentioned, mentioned_usernames
from agentbridge.bots.permissions import check_channel_access, check_usage_restrictions, check_user_access
from agentbridge.common.enums import AccessLevel, ChannelType
from agentbridge.core.config import BotConfig, PluginConfig, ServiceConfig
from agentbridge.errors import ConfigurationError, UsageRestrictedError
from agentbridge.llm.language_model import TruncationWrapper
from agentbridge.platform.client import BotAccount, dm_channel_name
from agentbridge.platform.models import Channel
from fakes import FakeLLM, make_bot


def bot_config(name: str, service_type: str = "openai") -> BotConfig:
    return BotConfig(
        name=name,
        display_name=name.title(),
        service=ServiceConfig(type=service_type, api_key="k"),
    )


# Mentions

def test_mentioned_usernames():
    assert list(mentioned_usernames("@matty what's up? cc @bob.")) == ["matty", "bob"]


def test_mentions_in_code_are_ignored():
    text = "Use `@matty` like this:\n\n```\n@matty hello\n```\n\nthanks @bob"

    assert list(mentioned_usernames(text)) == ["bob"]


def test_emoji_and_bare_at_are_ignored():
    assert list(mentioned_usernames(":smile: @ hello")) == []


def test_is_mentioned_ignores_case():
    assert is_mentioned("Hey @Matty, help", "matty")
    assert not is_mentioned("Hey @mattyb", "matty")


# Permissions

def test_channel_access(platform):
    channel = Channel(id="c1")
    other = Channel(id="c2")

    check_channel_access(make_bot(platform), channel)

    allow = make_bot(platform, "allow", channel_access_level=AccessLevel.ALLOW, channel_ids=["c1"])
    check_channel_access(allow, channel)
    with pytest.raises(UsageRestrictedError):
        check_channel_access(allow, other)

    block = make_bot(platform, "block", channel_access_level=AccessLevel.BLOCK, channel_ids=["c1"])
    check_channel_access(block, other)
    with pytest.raises(UsageRestrictedError):
        check_channel_access(block, channel)

    none = make_bot(platform, "none", channel_access_level=AccessLevel.NONE)
    with pytest.raises(UsageRestrictedError):
        check_channel_access(none, channel)


@pytest.mark.asyncio
async def test_user_access_by_id_and_team(platform, alice, bob):
    platform.team_members["t1"] = {bob.id}
    allow = make_bot(platform, "allow", user_access_level=AccessLevel.ALLOW, user_ids=[alice.id], team_ids=["t1"])
    block = make_bot(platform, "block", user_access_level=AccessLevel.BLOCK, team_ids=["t1"])
    stranger = platform.add_user("carol")

    await check_user_access(platform, allow, alice.id)
    await check_user_access(platform, allow, bob.id)
    with pytest.raises(UsageRestrictedError):
        await check_user_access(platform, allow, stranger.id)

    await check_user_access(platform, block, alice.id)
    with pytest.raises(UsageRestrictedError, match="team blocked"):
        await check_user_access(platform, block, bob.id)


@pytest.mark.asyncio
async def test_usage_restrictions_check_channel_first(platform, alice):
    bot = make_bot(platform, channel_access_level=AccessLevel.NONE, user_access_level=AccessLevel.NONE)

    with pytest.raises(UsageRestrictedError, match="channel"):
        await check_usage_restrictions(platform, bot, alice.id, Channel(id="c1"))


# Manager

@pytest.mark.asyncio
async def test_ensure_bots_creates_accounts(platform):
    manager = BotManager(platform, multi_llm_licensed=True)

    await manager.ensure_bots(PluginConfig(bots=[bot_config("matty"), bot_config("claude", "anthropic")]))

    bots = manager.get_all_bots()
    assert [b.username for b in bots] == ["matty", "claude"]
    assert {a.username for a in platform.bots.values()} == {"matty", "claude"}
    assert isinstance(bots[0].llm, TruncationWrapper)
    assert platform.bots[bots[1].user_id].description == "Powered by anthropic"


@pytest.mark.asyncio
async def test_ensure_bots_without_license_keeps_first(platform):
    manager = BotManager(platform, multi_llm_licensed=False)

    await manager.ensure_bots(PluginConfig(bots=[bot_config("matty"), bot_config("claude", "anthropic")]))

    assert [b.username for b in manager.get_all_bots()] == ["matty"]


@pytest.mark.asyncio
async def test_ensure_bots_default_first(platform):
    manager = BotManager(platform, multi_llm_licensed=True)

    await manager.ensure_bots(PluginConfig(
        bots=[bot_config("matty"), bot_config("claude", "anthropic")],
        default_bot_name="claude",
    ))

    assert manager.get_default_bot().username == "claude"


@pytest.mark.asyncio
async def test_ensure_bots_reconciles_existing_accounts(platform):
    """Removed bots are deactivated and returning ones reactivated."""
    platform.bots["old"] = BotAccount(user_id="old", username="retired")
    platform.bots["back"] = BotAccount(user_id="back", username="matty", delete_at=123)
    manager = BotManager(platform, multi_llm_licensed=True)

    await manager.ensure_bots(PluginConfig(bots=[bot_config("matty")]))

    assert platform.bots["old"].delete_at != 0
    assert platform.bots["back"].delete_at == 0
    assert manager.get_bot_by_username("matty").user_id == "back"


@pytest.mark.asyncio
async def test_ensure_bots_skips_invalid_and_rejects_duplicates(platform):
    manager = BotManager(platform, multi_llm_licensed=True)
    invalid = BotConfig(name="nokey", display_name="No Key", service=ServiceConfig(type="openai"))

    await manager.ensure_bots(PluginConfig(bots=[invalid, bot_config("matty")]))
    assert [b.username for b in manager.get_all_bots()] == ["matty"]

    with pytest.raises(ConfigurationError, match="duplicate"):
        await manager.ensure_bots(PluginConfig(bots=[bot_config("matty"), bot_config("matty")]))
    # A failed reload leaves the previous bots in place
    assert [b.username for b in manager.get_all_bots()] == ["matty"]


def test_lookups(platform, alice):
    matty = make_bot(platform, "matty")
    claude = make_bot(platform, "claude")
    manager = BotManager(platform)
    manager._bots = [matty, claude]
    dm = Channel(id="dm", type=ChannelType.DIRECT, name=dm_channel_name(alice.id, claude.user_id))

    assert manager.get_bot_mentioned("hi @CLAUDE and @matty") is claude
    assert manager.get_bot_mentioned("`@matty`") is None
    assert manager.get_bot_for_dm_channel(dm) is claude
    assert manager.get_bot_for_dm_channel(Channel(id="c1", name=dm.name)) is None
    assert manager.get_bot_by_id(matty.user_id) is matty
    assert manager.is_any_bot(claude.user_id)
    assert not manager.is_any_bot(alice.id)


@pytest.mark.asyncio
async def test_bots_for_user(platform, alice, bob):
    matty = make_bot(platform, "matty")
    private = make_bot(platform, "private", user_access_level=AccessLevel.ALLOW, user_ids=[bob.id])
    manager = BotManager(platform)
    manager._bots = [matty, private]

    assert await manager.get_bots_for_user(alice.id) == [matty]
    assert await manager.get_bots_for_user(bob.id) == [matty, private]


@pytest.mark.asyncio
async def test_reload_closes_replaced_models(platform, monkeypatch):
    """Each reload releases the previous bots' upstream clients; close releases the rest."""
    built = []

    def new_llm(config, allowed, trace):
        built.append(FakeLLM())
        return built[-1]

    manager = BotManager(platform, multi_llm_licensed=True)
    monkeypatch.setattr(manager, "_new_llm", new_llm)
    config = PluginConfig(bots=[bot_config("matty"), bot_config("claude", "anthropic")])

    await manager.ensure_bots(config)
    first = list(built)
    await manager.ensure_bots(config)

    assert all(llm.closed for llm in first)
    assert not any(llm.closed for llm in built[2:])

    await manager.close()

    assert all(llm.closed for llm in built)
    assert manager.get_all_bots() == []
