from __future__ import annotations

import asyncio
from pathlib import Path
from types import SimpleNamespace

from gork_v1.bot import GorkBot
from stubs import make_settings


class StubResponse:
    def __init__(self) -> None:
        self.deferred = False
        self.messages: list[tuple[str, bool]] = []

    async def defer(self) -> None:
        self.deferred = True

    async def send_message(self, content: str, *, ephemeral: bool = False) -> None:
        self.messages.append((content, ephemeral))

    def is_done(self) -> bool:
        return self.deferred or bool(self.messages)


class StubInteraction:
    def __init__(self, *, user_id: int = 5, guild_id: int | None = 77, manage_channels: bool = True) -> None:
        self.user = SimpleNamespace(id=user_id)
        self.guild_id = guild_id
        self.permissions = SimpleNamespace(manage_channels=manage_channels)
        self.response = StubResponse()
        self.edits: list[str] = []

    async def edit_original_response(self, *, content: str) -> None:
        self.edits.append(content)


def _make_bot(tmp_path: Path, **overrides) -> GorkBot:
    bot = GorkBot(make_settings(tmp_path, **overrides))
    asyncio.run(bot.store.load())
    return bot


def test_channel_command_binds_guild(tmp_path: Path) -> None:
    bot = _make_bot(tmp_path)
    interaction = StubInteraction()
    channel = SimpleNamespace(id=55, mention="<#55>")

    asyncio.run(bot.set_channel_command(interaction, channel))

    assert interaction.response.deferred is True
    assert interaction.edits == ["\u2705 Bot channel has been set to <#55>!"]
    assert bot.pipeline.guild_configs.get_config(77).channel_id == 55


def test_channel_command_requires_manage_channels(tmp_path: Path) -> None:
    bot = _make_bot(tmp_path)
    interaction = StubInteraction(manage_channels=False)

    asyncio.run(bot.set_channel_command(interaction, SimpleNamespace(id=55, mention="<#55>")))

    assert interaction.edits == ["You need the `Manage Channels` permission to use this command!"]
    assert bot.pipeline.guild_configs.has_config(77) is False


def test_owner_can_configure_without_permission(tmp_path: Path) -> None:
    bot = _make_bot(tmp_path, owner_user_id=9)

    assert bot.can_configure(StubInteraction(user_id=9, manage_channels=False)) is True
    assert bot.can_configure(StubInteraction(user_id=10, manage_channels=False)) is False


def test_commands_outside_guild_are_refused(tmp_path: Path) -> None:
    bot = _make_bot(tmp_path)
    interaction = StubInteraction(guild_id=None)

    asyncio.run(bot.set_personality_command(interaction, "gork_english"))

    assert interaction.edits == ["This command can only be used in a server!"]


def test_personality_command_validates_choice(tmp_path: Path) -> None:
    bot = _make_bot(tmp_path)
    bad = StubInteraction()
    good = StubInteraction()

    asyncio.run(bot.set_personality_command(bad, "pirate"))
    asyncio.run(bot.set_personality_command(good, "gork_english"))

    assert bad.edits == ["\u274c Invalid personality selected!"]
    assert good.edits == ["\u2705 Bot personality has been set to **Gork (English)**!"]
    assert bot.pipeline.guild_configs.get_config(77).personality == "gork_english"


def test_forget_command_clears_memory(tmp_path: Path) -> None:
    bot = _make_bot(tmp_path)
    asyncio.run(bot.pipeline.memory.append(5, "likes cats"))
    first = StubInteraction()
    second = StubInteraction()

    asyncio.run(bot.forget_command(first))
    asyncio.run(bot.forget_command(second))

    assert first.response.messages == [("Done, I forgot everything about you.", True)]
    assert second.response.messages == [("I don't remember anything about you yet.", True)]
    assert bot.pipeline.memory.load(5) == ""
