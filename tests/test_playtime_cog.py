"""Tests for the playtime cog - embed rendering, commands, admin gate and presence listener."""

import asyncio
import importlib
import sys
from types import SimpleNamespace
from unittest.mock import AsyncMock

import discord
import pytest

from errors import NotFoundError, StorageError
from models import PresenceSignal, SummaryEntry
from reconciler import SessionReconciler
from state_store import PlaytimeStore


@pytest.fixture
def cog_module(monkeypatch):
    monkeypatch.setenv("DISCORD_TOKEN", "token")
    monkeypatch.setenv("ADMIN_USER_IDS", "1")
    for name in ("config", "cogs.playtime"):
        sys.modules.pop(name, None)
    yield importlib.import_module("cogs.playtime")
    for name in ("config", "cogs.playtime"):
        sys.modules.pop(name, None)


def interaction_from(user_id):
    response = SimpleNamespace(send_message=AsyncMock())
    return SimpleNamespace(user=SimpleNamespace(id=user_id), response=response)


def test_summary_embed_fields(cog_module):
    user = SimpleNamespace(name="alice")
    embed = cog_module.build_summary_embed(user, [SummaryEntry("Chess", 3661), SummaryEntry("Go", 61)])
    assert embed.title == "alice's playtime summary"
    assert embed.color == discord.Color.teal()
    assert [(f.name, f.value, f.inline) for f in embed.fields] == [
        ("Chess", "1h 1m", True),
        ("Go", "1m 1s", True),
    ]


def test_empty_summary_embed(cog_module):
    embed = cog_module.build_summary_embed(SimpleNamespace(name="bob"), [])
    assert embed.description == "No playtime recorded yet."
    assert embed.fields == []


def test_admin_gate(cog_module):
    cog = cog_module.PlaytimeCog(SimpleNamespace())
    admin, stranger = interaction_from(1), interaction_from(2)

    async def scenario():
        return await cog._deny_non_admin(admin), await cog._deny_non_admin(stranger)

    assert asyncio.run(scenario()) == (False, True)
    admin.response.send_message.assert_not_awaited()
    stranger.response.send_message.assert_awaited_once()


ALICE = SimpleNamespace(id=42, name="alice")


def sent(interaction):
    """(args, kwargs) of the single response the command sent."""
    interaction.response.send_message.assert_awaited_once()
    call = interaction.response.send_message.await_args
    return call.args, call.kwargs


# ---------------------------------------------------------------------------
# /summarize
# ---------------------------------------------------------------------------

class TestSummarize:
    def test_storage_failure_answers_ephemeral(self, cog_module):
        """An unreachable store becomes a private failure message."""
        cog = cog_module.PlaytimeCog(SimpleNamespace())
        interaction = interaction_from(7)

        asyncio.run(cog_module.PlaytimeCog.summarize.callback(cog, interaction, ALICE))

        assert sent(interaction) == (("Could not load the playtime summary.",), {"ephemeral": True})

    def test_summary_embed_sent(self, cog_module):
        cog = cog_module.PlaytimeCog(SimpleNamespace())
        interaction = interaction_from(7)

        async def scenario():
            async with PlaytimeStore(":memory:") as store:
                cog.store = store
                cog.reconciler = SessionReconciler(store)
                aid = await store.ensure_activity("Chess")
                await store.add_playtime(42, aid, 3661)
                await cog_module.PlaytimeCog.summarize.callback(cog, interaction, ALICE)

        asyncio.run(scenario())
        _, kwargs = sent(interaction)
        embed = kwargs["embed"]
        assert embed.title == "alice's playtime summary"
        assert [(f.name, f.value) for f in embed.fields] == [("Chess", "1h 1m")]


# ---------------------------------------------------------------------------
# Admin commands
# ---------------------------------------------------------------------------

ADMIN_COMMANDS = [
    ("reset_user", (ALICE,), "Reset of alice"),
    ("reset_all", (), "Reset of all users"),
    ("hard_reset", (), "Hard reset"),
]


class TestAdminCommands:
    @pytest.mark.parametrize("name, args, what", ADMIN_COMMANDS)
    def test_failure_reported(self, cog_module, name, args, what):
        """With the store down every admin command reports failure."""
        cog = cog_module.PlaytimeCog(SimpleNamespace())
        interaction = interaction_from(1)
        command = getattr(cog_module.PlaytimeCog, name)

        asyncio.run(command.callback(cog, interaction, *args))

        assert sent(interaction) == ((f"{what} failed, check the logs.",), {"ephemeral": True})

    @pytest.mark.parametrize("name, args, what", ADMIN_COMMANDS)
    def test_success_reported(self, cog_module, name, args, what):
        cog = cog_module.PlaytimeCog(SimpleNamespace())
        interaction = interaction_from(1)
        command = getattr(cog_module.PlaytimeCog, name)

        async def scenario():
            async with PlaytimeStore(":memory:") as store:
                cog.store = store
                cog.reconciler = SessionReconciler(store)
                await command.callback(cog, interaction, *args)

        asyncio.run(scenario())
        assert sent(interaction) == ((f"{what} done.",), {"ephemeral": True})

    @pytest.mark.parametrize("name, args, what", ADMIN_COMMANDS)
    def test_strangers_never_reach_reconciler(self, cog_module, name, args, what):
        cog = cog_module.PlaytimeCog(SimpleNamespace())
        cog.reconciler = AsyncMock()
        interaction = interaction_from(2)
        command = getattr(cog_module.PlaytimeCog, name)

        asyncio.run(command.callback(cog, interaction, *args))

        assert sent(interaction) == (("You are not allowed to do that.",), {"ephemeral": True})
        assert cog.reconciler.mock_calls == []


# ---------------------------------------------------------------------------
# Presence listener
# ---------------------------------------------------------------------------

def presence_member(bot=False):
    chess = SimpleNamespace(type=discord.ActivityType.playing, name="Chess", start=None)
    return SimpleNamespace(id=42, bot=bot, activities=[chess])


class TestPresenceListener:
    def test_forwards_signal(self, cog_module):
        cog = cog_module.PlaytimeCog(SimpleNamespace())
        cog.reconciler = SimpleNamespace(handle=AsyncMock())
        member = presence_member()

        asyncio.run(cog.on_presence_update(member, member))

        cog.reconciler.handle.assert_awaited_once_with(PresenceSignal.playing(42, "Chess"))

    def test_bots_skipped(self, cog_module):
        cog = cog_module.PlaytimeCog(SimpleNamespace())
        cog.reconciler = SimpleNamespace(handle=AsyncMock())
        member = presence_member(bot=True)

        asyncio.run(cog.on_presence_update(member, member))

        cog.reconciler.handle.assert_not_awaited()

    @pytest.mark.parametrize("error", [StorageError("database is locked"), NotFoundError("activity 1 does not exist")])
    def test_store_failures_logged_not_raised(self, cog_module, caplog, error):
        cog = cog_module.PlaytimeCog(SimpleNamespace())
        cog.reconciler = SimpleNamespace(handle=AsyncMock(side_effect=error))
        member = presence_member()

        asyncio.run(cog.on_presence_update(member, member))

        assert "could not apply presence of 42" in caplog.text
