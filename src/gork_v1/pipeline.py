from __future__ import annotations

import time
from typing import Any

import discord

from gork_v1.config import Settings
from gork_v1.services.admission_service import AdmissionService
from gork_v1.services.ai_service import AIService
from gork_v1.services.context_service import ContextService, QueuedRequest
from gork_v1.services.guild_config_service import GuildConfigService
from gork_v1.services.logger_service import LoggerService
from gork_v1.services.memory_service import MemoryService
from gork_v1.services.personality_service import PersonalityService
from gork_v1.services.queue_service import IntakeQueue, Scheduler
from gork_v1.services.quota_service import QuotaService
from gork_v1.services.response_service import BACKEND_FAILURE_REPLY, ResponseService
from gork_v1.storage import MessagePackStore
from gork_v1.utils.discord_utils import send_split_reply, try_add_reaction, try_trigger_typing


class RelayPipeline:
    """Owns the intake state (cooldowns, queue) and wires the services together.

    Build once at startup, call :meth:`start` once the event loop is running and
    :meth:`stop` on shutdown.
    """

    def __init__(
        self,
        settings: Settings,
        store: MessagePackStore,
        logger: LoggerService,
        *,
        ai: AIService | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.logger = logger
        self.ai = ai or AIService(settings)
        self.guild_configs = GuildConfigService(store, logger)
        self.personalities = PersonalityService(settings.prompts_dir)
        self.memory = MemoryService(store, logger)
        self.quota = QuotaService(
            store,
            logger,
            user_limit=settings.user_daily_image_limit,
            guild_limit=settings.guild_daily_image_limit,
        )
        self.admission = AdmissionService(settings.user_cooldown_ms)
        self.context = ContextService(
            self.ai,
            self.guild_configs,
            self.personalities,
            self.quota,
            logger,
            history_limit=settings.history_limit,
            max_images=settings.max_images,
        )
        self.responder = ResponseService(self.ai, self.quota, self.memory, logger, max_images=settings.max_images)
        self.queue: IntakeQueue[QueuedRequest] = IntakeQueue()
        self.scheduler: Scheduler[QueuedRequest] = Scheduler(
            self.queue,
            self._process,
            logger,
            max_per_second=settings.max_messages_per_second,
            on_error=self._notify_failure,
        )

    def start(self) -> None:
        self.scheduler.start()
        self.logger.log("pipeline.started", period_sec=round(self.scheduler.period, 3))

    async def stop(self) -> None:
        await self.scheduler.stop()
        dropped = self.queue.clear()
        self.admission.reset()
        self.logger.log("pipeline.stopped", dropped=dropped)

    def is_eligible(self, message: Any) -> bool:
        if message.author.bot or not message.guild or not message.content:
            return False
        config = self.guild_configs.get_config(message.guild.id)
        return config.channel_id is None or config.channel_id == message.channel.id

    async def handle_event(self, message: Any, *, now: float | None = None) -> QueuedRequest | None:
        """Admit, assemble and enqueue one inbound message.

        Returns the queued request, or ``None`` when the message was ignored or
        rejected by the cooldown.
        """
        if not self.is_eligible(message):
            return None

        now_ts = float(now if now is not None else time.time())
        admission = self.admission.try_admit(message.author.id, now_ts)
        if not admission.admitted:
            self.logger.log(
                "intake.cooldown_rejected",
                guild_id=message.guild.id,
                user_id=message.author.id,
                retry_after_sec=admission.retry_after_sec,
            )
            try:
                await send_split_reply(
                    message,
                    f"\u23f3 Please wait {admission.retry_after_sec} second(s) before sending another message.",
                )
            except discord.HTTPException as exc:
                self.logger.log("send.cooldown_notice_failed", user_id=message.author.id, error=str(exc)[:300])
            return None

        request = await self.context.assemble(message, now=now_ts)
        depth = self.queue.enqueue(request)
        self.logger.log(
            "queue.enqueued",
            guild_id=request.guild_id,
            user_id=request.user_id,
            depth=depth,
            images=len(request.images),
            history=len(request.history),
        )
        if depth > self.settings.queue_notice_depth:
            await try_add_reaction(message, "\u23f3")
        return request

    async def _process(self, request: QueuedRequest) -> None:
        await try_trigger_typing(request.message.channel)
        outcome = await self.responder.handle(request)
        self.logger.log(
            "queue.processed",
            guild_id=request.guild_id,
            user_id=request.user_id,
            outcome=outcome,
            wait_sec=round(time.time() - request.enqueued_at, 2),
            pending=len(self.queue),
        )

    async def _notify_failure(self, request: QueuedRequest, exc: Exception) -> None:
        await send_split_reply(request.message, BACKEND_FAILURE_REPLY)
