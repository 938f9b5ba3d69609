from __future__ import annotations

import asyncio
from types import SimpleNamespace

import discord

from gork_v1.utils.discord_utils import split_text_for_discord, try_add_reaction, try_trigger_typing


def test_split_prefers_paragraph_breaks() -> None:
    text = ("a" * 1200) + "\n\n" + ("b" * 1200)

    chunks = split_text_for_discord(text)

    assert chunks == ["a" * 1200, "b" * 1200]


def test_split_hard_cuts_unbroken_text() -> None:
    chunks = split_text_for_discord("x" * 4000, limit=1900)

    assert [len(chunk) for chunk in chunks] == [1900, 1900, 200]


def test_split_empty_text_gives_nothing() -> None:
    assert split_text_for_discord("   \r\n ") == []


def test_best_effort_helpers_swallow_discord_errors() -> None:
    class Failing:
        async def add_reaction(self, emoji: str) -> None:
            raise discord.HTTPException(SimpleNamespace(status=403, reason="Forbidden"), "missing permissions")

    assert asyncio.run(try_add_reaction(Failing(), "\u23f3")) is False
    assert asyncio.run(try_trigger_typing(object())) is False
