from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any

from gork_v1.services.logger_service import LoggerService
from gork_v1.storage import MessagePackStore


NAMESPACE = "guilds"
DEFAULT_PERSONALITY = "gork_english"


@dataclass(frozen=True)
class GuildConfig:
    channel_id: int | None = None
    personality: str = DEFAULT_PERSONALITY

    def to_row(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_row(row: Any) -> "GuildConfig":
        if not isinstance(row, dict):
            return GuildConfig()
        channel_id = row.get("channel_id")
        try:
            channel_id = int(channel_id) if channel_id is not None else None
        except (TypeError, ValueError):
            channel_id = None
        personality = str(row.get("personality") or DEFAULT_PERSONALITY).strip() or DEFAULT_PERSONALITY
        return GuildConfig(channel_id=channel_id, personality=personality)


class GuildConfigService:
    def __init__(self, store: MessagePackStore, logger: LoggerService) -> None:
        self.store = store
        self.logger = logger

    def has_config(self, guild_id: int) -> bool:
        return self.store.get(NAMESPACE, guild_id) is not None

    def get_config(self, guild_id: int) -> GuildConfig:
        return GuildConfig.from_row(self.store.get(NAMESPACE, guild_id))

    def all_guild_ids(self) -> list[int]:
        return [int(key) for key in self.store.keys(NAMESPACE) if key.isdigit()]

    async def update_config(self, guild_id: int, **changes: Any) -> GuildConfig:
        unknown = set(changes) - {"channel_id", "personality"}
        if unknown:
            raise ValueError(f"Unknown guild config fields: {', '.join(sorted(unknown))}")

        def mutate(row: Any) -> dict[str, Any]:
            return replace(GuildConfig.from_row(row), **changes).to_row()

        row = await self.store.update(NAMESPACE, guild_id, mutate)
        self.logger.log("guild_config.updated", guild_id=guild_id, fields=sorted(changes))
        return GuildConfig.from_row(row)

    async def set_channel(self, guild_id: int, channel_id: int | None) -> GuildConfig:
        return await self.update_config(guild_id, channel_id=channel_id)

    async def set_personality(self, guild_id: int, personality: str) -> GuildConfig:
        return await self.update_config(guild_id, personality=personality)

    async def delete_config(self, guild_id: int) -> bool:
        existed = await self.store.delete(NAMESPACE, guild_id)
        self.logger.log("guild_config.deleted", guild_id=guild_id, existed=existed)
        return existed
