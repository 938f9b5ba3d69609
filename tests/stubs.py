from __future__ import annotations

import asyncio
from pathlib import Path
from types import SimpleNamespace
from typing import Any

from gork_v1.config import Settings
from gork_v1.services.ai_service import AIService
from gork_v1.services.logger_service import LoggerService
from gork_v1.storage import MessagePackStore


def make_settings(tmp_path: Path, **overrides: Any) -> Settings:
    prompts_dir = tmp_path / "prompts"
    personality_dir = prompts_dir / "personality"
    personality_dir.mkdir(parents=True, exist_ok=True)
    (personality_dir / "gork_english.txt").write_text(
        "# NAME\nGork (English)\n# CONTENT:\nyou are gork. answer lazily.\n",
        encoding="utf-8",
    )
    values: dict[str, Any] = dict(
        discord_token="token",
        xai_api_key="fake-key",
        xai_base_url="https://example.invalid/v1",
        chat_model="chat-model",
        vision_model="vision-model",
        image_model="image-model",
        owner_user_id=0,
        store_path=tmp_path / "state.msgpack",
        prompts_dir=prompts_dir,
    )
    values.update(overrides)
    return Settings(**values)


def make_store(tmp_path: Path) -> MessagePackStore:
    store = MessagePackStore(tmp_path / "state.msgpack")
    asyncio.run(store.load())
    return store


def make_logger(store: MessagePackStore) -> LoggerService:
    return LoggerService(store)


def logged_events(logger: LoggerService) -> list[str]:
    return [str(row["event"]) for row in logger.recent(limit=2000)]


class StubAIService(AIService):
    """Answers from canned payloads instead of the network."""

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.completions: list[str] = []
        self.image_urls: list[str | None] = []
        self.fail_completion = False
        self.fail_vision = False
        self.fail_image = False
        self.fail_download = False
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.downloads: list[str] = []

    async def _post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((path, payload))
        if path == "images/generations":
            if self.fail_image:
                raise RuntimeError("HTTP 500: image backend down")
            url = self.image_urls.pop(0) if self.image_urls else None
            return {"data": [{"url": url}] if url else []}
        if payload.get("model") == self.settings.vision_model:
            if self.fail_vision:
                raise RuntimeError("vision down")
            return {"choices": [{"message": {"content": f"description {len(self.calls)}"}}]}
        if self.fail_completion:
            raise RuntimeError("HTTP 503: unavailable")
        content = self.completions.pop(0) if self.completions else ""
        return {"choices": [{"message": {"content": content}}]}

    async def download_image(self, url: str) -> bytes:
        self.downloads.append(url)
        if self.fail_download:
            raise RuntimeError("Image download failed: connection reset")
        return b"\x89PNG-bytes"

    def calls_to(self, path: str) -> list[dict[str, Any]]:
        return [payload for called, payload in self.calls if called == path]


class StubGuild:
    def __init__(self, guild_id: int = 77, members: list[Any] | None = None, fail_members: bool = False) -> None:
        self.id = guild_id
        self.name = "Test Guild"
        self.member_count = len(members or [])
        self._members = members or []
        self._fail_members = fail_members

    async def fetch_members(self, limit: int | None = None):
        if self._fail_members:
            raise RuntimeError("members intent disabled")
        for member in self._members[:limit]:
            yield member


class StubChannel:
    def __init__(self, guild: StubGuild, channel_id: int = 55, fail_history: bool = False) -> None:
        self.id = channel_id
        self.name = "general"
        self.guild = guild
        self.messages: list[Any] = []
        self.sent: list[str] = []
        self.typing_calls = 0
        self._fail_history = fail_history

    async def history(self, limit: int = 100):
        if self._fail_history:
            raise RuntimeError("missing access")
        for message in list(reversed(self.messages))[:limit]:
            yield message

    async def send(self, content: str) -> None:
        self.sent.append(content)

    def typing(self):
        self.typing_calls += 1
        return asyncio.sleep(0)


class StubMessage:
    def __init__(
        self,
        channel: StubChannel,
        *,
        user_id: int,
        content: str,
        name: str | None = None,
        attachments: list[Any] | None = None,
        bot: bool = False,
        in_guild: bool = True,
    ) -> None:
        author_name = name or f"user{user_id}"
        self.author = SimpleNamespace(id=user_id, name=author_name, display_name=author_name.title(), bot=bot)
        self.member = SimpleNamespace(nick=None)
        self.channel = channel
        self.guild = channel.guild if in_guild else None
        self.content = content
        self.attachments = attachments or []
        self.replies: list[Any] = []
        self.reactions: list[str] = []

    async def reply(self, content: Any = None, *, file: Any = None, mention_author: bool = False) -> None:
        self.replies.append(file if file is not None else content)

    async def add_reaction(self, emoji: str) -> None:
        self.reactions.append(emoji)


def image_attachment(url: str, content_type: str = "image/png") -> SimpleNamespace:
    return SimpleNamespace(url=url, content_type=content_type, filename=url.rsplit("/", 1)[-1])


def post(channel: StubChannel, **kwargs: Any) -> StubMessage:
    message = StubMessage(channel, **kwargs)
    channel.messages.append(message)
    return message
