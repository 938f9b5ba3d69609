from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from gork_v1.services.ai_service import AIService
from gork_v1.services.guild_config_service import GuildConfigService
from gork_v1.services.logger_service import LoggerService
from gork_v1.services.personality_service import PersonalityService
from gork_v1.services.quota_service import QuotaService, QuotaSnapshot


VISION_CONTENT_TYPES = ("image/jpeg", "image/png")
MEMBER_FETCH_LIMIT = 1000


@dataclass(frozen=True)
class AttachmentRef:
    url: str
    content_type: str
    filename: str = ""

    @property
    def is_vision_image(self) -> bool:
        return self.content_type in VISION_CONTENT_TYPES


@dataclass(frozen=True)
class HistoryEntry:
    author_id: int
    author: str
    text: str
    attachments: tuple[AttachmentRef, ...] = ()


@dataclass(frozen=True)
class ImageDescription:
    source_url: str
    description: str
    message_text: str
    author_name: str
    is_from_requestor: bool


@dataclass(frozen=True)
class MemberRef:
    name: str
    user_id: int


@dataclass(frozen=True)
class QueuedRequest:
    message: Any = field(compare=False, repr=False)
    user_id: int
    user_name: str
    display_name: str
    nickname: str
    guild_id: int
    guild_name: str
    guild_member_count: int
    channel_id: int
    channel_name: str
    text: str
    history: tuple[HistoryEntry, ...]
    images: tuple[ImageDescription, ...]
    members: tuple[MemberRef, ...]
    system_prompt: str
    quota: QuotaSnapshot
    attached_image_count: int
    enqueued_at: float


def attachment_refs(message: Any) -> tuple[AttachmentRef, ...]:
    refs: list[AttachmentRef] = []
    for attachment in getattr(message, "attachments", None) or []:
        url = str(getattr(attachment, "url", "") or "").strip()
        if not url:
            continue
        refs.append(
            AttachmentRef(
                url=url,
                content_type=str(getattr(attachment, "content_type", "") or "").lower(),
                filename=str(getattr(attachment, "filename", "") or ""),
            )
        )
    return tuple(refs)


class ContextService:
    """Builds a :class:`QueuedRequest` for one admitted message.

    History, vision descriptions, members and the personality prompt are
    fetched independently; any of them failing leaves that part empty.
    """

    def __init__(
        self,
        ai: AIService,
        guild_configs: GuildConfigService,
        personalities: PersonalityService,
        quota: QuotaService,
        logger: LoggerService,
        *,
        history_limit: int = 15,
        max_images: int = 5,
    ) -> None:
        self.ai = ai
        self.guild_configs = guild_configs
        self.personalities = personalities
        self.quota = quota
        self.logger = logger
        self.history_limit = history_limit
        self.max_images = max_images

    async def assemble(self, message: Any, *, now: float | None = None) -> QueuedRequest:
        guild = message.guild
        channel = message.channel
        author = message.author
        history = await self.fetch_history(channel)
        images = await self.describe_images(history, author.id)
        members = await self.fetch_members(channel)
        config = self.guild_configs.get_config(guild.id)
        system_prompt = self.load_system_prompt(config.personality, guild_id=guild.id)
        member = getattr(message, "member", None)
        return QueuedRequest(
            message=message,
            user_id=author.id,
            user_name=str(getattr(author, "name", "") or ""),
            display_name=str(getattr(author, "display_name", "") or ""),
            nickname=str(getattr(member, "nick", "") or ""),
            guild_id=guild.id,
            guild_name=str(getattr(guild, "name", "") or ""),
            guild_member_count=int(getattr(guild, "member_count", 0) or 0),
            channel_id=channel.id,
            channel_name=str(getattr(channel, "name", "") or ""),
            text=str(message.content or ""),
            history=history,
            images=images,
            members=members,
            system_prompt=system_prompt,
            quota=self.quota.snapshot(author.id, guild.id),
            attached_image_count=sum(1 for ref in attachment_refs(message) if ref.is_vision_image),
            enqueued_at=float(now if now is not None else time.time()),
        )

    async def fetch_history(self, channel: Any) -> tuple[HistoryEntry, ...]:
        rows: list[HistoryEntry] = []
        try:
            async for item in channel.history(limit=self.history_limit):
                rows.append(
                    HistoryEntry(
                        author_id=int(item.author.id),
                        author=str(item.author.name),
                        text=str(item.content or ""),
                        attachments=attachment_refs(item),
                    )
                )
        except Exception as exc:  # noqa: BLE001
            self.logger.log("context.history_failed", channel_id=getattr(channel, "id", 0), error=str(exc)[:300])
            return ()
        rows.reverse()
        return tuple(rows)

    async def describe_images(self, history: tuple[HistoryEntry, ...], requestor_id: int) -> tuple[ImageDescription, ...]:
        out: list[ImageDescription] = []
        for entry in reversed(history):
            for ref in entry.attachments:
                if len(out) >= self.max_images:
                    return tuple(out)
                if not ref.is_vision_image:
                    continue
                try:
                    description = await self.ai.describe_image(ref.url, entry.text)
                except Exception as exc:  # noqa: BLE001
                    self.logger.log("context.vision_failed", url=ref.url, author=entry.author, error=str(exc)[:300])
                    continue
                out.append(
                    ImageDescription(
                        source_url=ref.url,
                        description=description,
                        message_text=entry.text,
                        author_name=entry.author,
                        is_from_requestor=entry.author_id == requestor_id,
                    )
                )
        return tuple(out)

    async def fetch_members(self, channel: Any) -> tuple[MemberRef, ...]:
        rows: list[MemberRef] = []
        try:
            async for member in channel.guild.fetch_members(limit=MEMBER_FETCH_LIMIT):
                rows.append(MemberRef(name=str(member.name), user_id=int(member.id)))
        except Exception as exc:  # noqa: BLE001
            self.logger.log("context.members_failed", channel_id=getattr(channel, "id", 0), error=str(exc)[:300])
            return ()
        return tuple(rows)

    def load_system_prompt(self, personality_id: str, *, guild_id: int = 0) -> str:
        try:
            return self.personalities.load_prompt_body(personality_id)
        except (OSError, ValueError) as exc:
            self.logger.log("context.personality_failed", guild_id=guild_id, personality=personality_id, error=str(exc)[:300])
            return ""
