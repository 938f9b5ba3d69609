from __future__ import annotations

import io
from typing import Any

import discord


DISCORD_MESSAGE_LIMIT = 1900


def split_text_for_discord(text: str, limit: int = DISCORD_MESSAGE_LIMIT) -> list[str]:
    normalized = str(text or "").replace("\r\n", "\n").strip()
    if not normalized:
        return []

    chunks: list[str] = []
    remaining = normalized
    while len(remaining) > limit:
        cut = remaining.rfind("\n\n", 0, limit + 1)
        if cut < max(1, int(limit * 0.5)):
            cut = remaining.rfind("\n", 0, limit + 1)
        if cut < max(1, int(limit * 0.5)):
            cut = remaining.rfind(" ", 0, limit + 1)
        if cut <= 0:
            cut = limit
        chunk = remaining[:cut].strip()
        if not chunk:
            chunk = remaining[:limit]
            cut = len(chunk)
        chunks.append(chunk[:limit])
        remaining = remaining[cut:].strip()
    if remaining:
        chunks.append(remaining[:limit])
    return chunks


async def send_split_reply(source_message: Any, text: str, *, mention_author: bool = False) -> int:
    chunks = split_text_for_discord(text)
    if not chunks:
        return 0
    first, *rest = chunks
    await source_message.reply(first, mention_author=mention_author)
    for chunk in rest:
        await source_message.channel.send(chunk)
    return len(chunks)


async def send_image_reply(source_message: Any, data: bytes, *, filename: str = "image.png") -> None:
    await source_message.reply(file=discord.File(io.BytesIO(data), filename=filename), mention_author=False)


async def try_add_reaction(message: Any, emoji: str) -> bool:
    """Best-effort reaction; returns False instead of raising."""
    try:
        await message.add_reaction(emoji)
    except (AttributeError, discord.HTTPException):
        return False
    return True


async def try_trigger_typing(channel: Any) -> bool:
    try:
        await channel.typing()
    except (AttributeError, discord.HTTPException):
        return False
    return True
