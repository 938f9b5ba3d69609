from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

import discord

from gork_v1.prompts import OUTPUT_RULES, PREAMBLE
from gork_v1.services.ai_service import AIService, EmptyCompletionError
from gork_v1.services.context_service import ImageDescription, QueuedRequest
from gork_v1.services.logger_service import LoggerService
from gork_v1.services.memory_service import MemoryService
from gork_v1.services.quota_service import QuotaService
from gork_v1.utils.discord_utils import send_image_reply, send_split_reply, try_add_reaction


BACKEND_FAILURE_REPLY = "Sorry, there was an error processing your request. Please try again later."
EMPTY_COMPLETION_REPLY = "Sorry, I couldn't generate a response. Please try again later."
PARSE_FAILURE_REPLY = "Sorry, I had trouble processing that request. Please try again."
IMAGE_FAILURE_REPLY = "Sorry, I couldn't generate an image right now. Please try again later."
BLOCKED_REPLY = "nice try"
QUOTA_DENIED_PREFIX = "\U0001F6AB"

DENYLIST = ("@everyone", "@here", "<@", "nigg", "nega", "niga")
RESPONSE_FIELDS = {"reply": str, "memory": str, "should_generate_image": bool}


@dataclass(frozen=True)
class ParsedResponse:
    reply: str
    memory: str
    generate_image: bool


@dataclass(frozen=True)
class ParseFailure:
    raw: str
    cause: str


def parse_structured_response(raw: str) -> ParsedResponse | ParseFailure:
    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as exc:
        return ParseFailure(raw=str(raw), cause=f"invalid json: {exc}")
    if not isinstance(data, dict):
        return ParseFailure(raw=raw, cause="top-level value is not an object")
    missing = [key for key in RESPONSE_FIELDS if key not in data]
    if missing:
        return ParseFailure(raw=raw, cause=f"missing fields: {', '.join(missing)}")
    extra = sorted(set(data) - set(RESPONSE_FIELDS))
    if extra:
        return ParseFailure(raw=raw, cause=f"unexpected fields: {', '.join(extra)}")
    for key, expected in RESPONSE_FIELDS.items():
        if not isinstance(data[key], expected):
            return ParseFailure(raw=raw, cause=f"field {key} is not {expected.__name__}")
    return ParsedResponse(
        reply=data["reply"],
        memory=data["memory"],
        generate_image=data["should_generate_image"],
    )


def is_blocked_reply(text: str) -> bool:
    folded = text.lower().replace(" ", "").replace(",", "")
    return any(term in folded for term in DENYLIST)


def order_images(images: tuple[ImageDescription, ...]) -> list[ImageDescription]:
    # Stable: requestor's images first, otherwise newest-first as collected.
    return sorted(images, key=lambda image: not image.is_from_requestor)


def build_system_prompt(request: QueuedRequest, memory: str, *, now: datetime, max_images: int = 5) -> str:
    quota = request.quota
    parts: list[str] = [
        PREAMBLE,
        "# System Prompt:\n",
        "--- Start System Prompt ---\n",
        request.system_prompt,
        "\n--- End System Prompt ---\n\n",
        "IMPORTANT! Below, you'll find some information about the user and the current context. "
        "Use this to generate a personalized response.\n",
        "# Environment Information:\n",
        "## User Information:\n",
        f"User ID: {request.user_id}\n",
        f"Username: {request.user_name}\n",
        f"Display Name: {request.display_name}\n",
        f"Nickname: {request.nickname or 'None'}\n\n",
        f"Image Rate Limit: {quota.user_count}/{quota.user_limit} (daily), "
        f"server {quota.guild_count}/{quota.guild_limit} (daily) -> "
        f"IS ALLOWED TO GENERATE IMAGE? {'YES' if quota.allowed else 'NO'}\n\n",
        "## Channel Information:\n",
        f"Channel ID: {request.channel_id}\n",
        f"Channel Name: {request.channel_name}\n\n",
        "## Guild Information:\n",
        f"Guild ID: {request.guild_id}\n",
        f"Guild Name: {request.guild_name}\n",
        f"Guild Member Count: {request.guild_member_count}\n\n",
        "## Current Time:\n",
        f"{now.strftime('%Y-%m-%d %H:%M:%S %Z')}\n\n",
        "## Members in Channel:\n",
        (", ".join(f"{member.name} ({member.user_id})" for member in request.members) or "No members found") + "\n\n",
        "## User Memory:\n",
        (f"--- Start User Memory ---\n{memory}\n--- End User Memory ---" if memory else "") + "\n\n",
    ]

    if request.images:
        parts.append("## Recent Images in Conversation:\n")
        parts.append(
            f"The following images were shared in recent messages (most recent first, max {max_images} images):\n\n"
        )
        for index, image in enumerate(order_images(request.images), start=1):
            priority = "[HIGH PRIORITY - Current User's Image]" if image.is_from_requestor else "[Context Image]"
            parts.append(f"### Image {index} {priority}\n")
            parts.append(f"**Author:** {image.author_name}\n")
            parts.append(f"**Message Context:** {image.message_text or 'No message text'}\n")
            parts.append(f"**Image Description:** {image.description}\n")
            parts.append(f"**Image URL:** {image.source_url}\n\n")

    parts.append("## Recent messages:\n")
    parts.append("\n".join(f"{entry.author}: {entry.text}" for entry in request.history) + "\n\n")
    parts.append("## Current message (the one you're replying to):\n")
    parts.append(f"{request.user_name}: {request.text}\n\n")

    if request.attached_image_count > 0:
        parts.append("## Current Message Images:\n")
        parts.append(
            f"The user has attached {request.attached_image_count} image(s) to their current message. "
            "These images should be given HIGH PRIORITY in your response as they are directly relevant "
            "to the current conversation.\n\n"
        )

    parts.append("## Output rules:\n")
    parts.append(OUTPUT_RULES)
    return "".join(parts)


class ResponseService:
    """Turns one dequeued request into exactly one user-visible outcome.

    Returns a short outcome tag (``reply``, ``blocked``, ``image``,
    ``image_failed``, ``quota_denied``, ``parse_failed``, ``backend_failed``,
    ``empty``) for logging and tests.
    """

    def __init__(
        self,
        ai: AIService,
        quota: QuotaService,
        memory: MemoryService,
        logger: LoggerService,
        *,
        max_images: int = 5,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.ai = ai
        self.max_images = max_images
        self.quota = quota
        self.memory = memory
        self.logger = logger
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    async def handle(self, request: QueuedRequest) -> str:
        memory = self.memory.load(request.user_id)
        system_prompt = build_system_prompt(request, memory, now=self._clock(), max_images=self.max_images)
        try:
            raw = await self.ai.structured_completion(system_prompt, request.text)
        except EmptyCompletionError:
            self.logger.log("ai.empty_completion", guild_id=request.guild_id, user_id=request.user_id)
            await self._reply(request, EMPTY_COMPLETION_REPLY)
            return "empty"
        except RuntimeError as exc:
            self.logger.log("ai.completion_failed", guild_id=request.guild_id, user_id=request.user_id, error=str(exc)[:300])
            await self._reply(request, BACKEND_FAILURE_REPLY)
            return "backend_failed"

        parsed = parse_structured_response(raw)
        if isinstance(parsed, ParseFailure):
            self.logger.log(
                "ai.parse_failed",
                guild_id=request.guild_id,
                user_id=request.user_id,
                cause=parsed.cause,
                raw=parsed.raw[:1000],
            )
            await self._reply(request, PARSE_FAILURE_REPLY)
            return "parse_failed"

        if parsed.generate_image:
            return await self._handle_image(request)
        return await self._handle_reply(request, parsed)

    async def _handle_image(self, request: QueuedRequest) -> str:
        decision = self.quota.check(request.user_id, request.guild_id)
        if not decision.allowed:
            self.logger.log("ai.image_quota_denied", guild_id=request.guild_id, user_id=request.user_id, reason=decision.reason)
            await self._reply(request, f"{QUOTA_DENIED_PREFIX} {decision.reason}")
            return "quota_denied"

        await self.quota.increment(request.user_id, request.guild_id)
        await try_add_reaction(request.message, "\U0001F5BC\ufe0f")
        await try_add_reaction(request.message, "\u23f3")

        image: bytes | None = None
        try:
            url = await self.ai.generate_image(request.text)
            if url:
                image = await self.ai.download_image(url)
        except RuntimeError as exc:
            self.logger.log("ai.image_failed", guild_id=request.guild_id, user_id=request.user_id, error=str(exc)[:300])

        if not image:
            await self.quota.decrement(request.user_id, request.guild_id)
            await self._reply(request, IMAGE_FAILURE_REPLY)
            return "image_failed"

        try:
            await send_image_reply(request.message, image)
        except discord.HTTPException as exc:
            self.logger.log("send.image_failed", guild_id=request.guild_id, user_id=request.user_id, error=str(exc)[:300])
        self.logger.log(
            "ai.image_reply",
            guild_id=request.guild_id,
            channel=request.channel_name,
            user=request.user_name,
            prompt=request.text[:300],
        )
        return "image"

    async def _handle_reply(self, request: QueuedRequest, parsed: ParsedResponse) -> str:
        if parsed.memory.strip():
            await self.memory.append(request.user_id, parsed.memory)

        if not parsed.reply.strip():
            self.logger.log("ai.empty_reply", guild_id=request.guild_id, user_id=request.user_id)
            await self._reply(request, EMPTY_COMPLETION_REPLY)
            return "empty"

        if is_blocked_reply(parsed.reply):
            self.logger.log("ai.reply_blocked", guild_id=request.guild_id, user_id=request.user_id, reply=parsed.reply[:300])
            await self._reply(request, BLOCKED_REPLY)
            return "blocked"

        parts = await self._reply(request, parsed.reply)
        self.logger.log(
            "ai.chat_reply",
            guild_id=request.guild_id,
            channel=request.channel_name,
            user=request.user_name,
            text=request.text[:300],
            reply=parsed.reply[:300],
            parts=parts,
        )
        return "reply"

    async def _reply(self, request: QueuedRequest, text: str) -> int:
        try:
            return await send_split_reply(request.message, text)
        except discord.HTTPException as exc:
            self.logger.log("send.reply_failed", guild_id=request.guild_id, user_id=request.user_id, error=str(exc)[:300])
            return 0
