from __future__ import annotations

from gork_v1.services.logger_service import LoggerService
from gork_v1.storage import MessagePackStore


NAMESPACE = "memory"
SEPARATOR = "\n- "


class MemoryService:
    def __init__(self, store: MessagePackStore, logger: LoggerService) -> None:
        self.store = store
        self.logger = logger

    def load(self, user_id: int) -> str:
        value = self.store.get(NAMESPACE, user_id, "")
        return value if isinstance(value, str) else ""

    async def append(self, user_id: int, note: str) -> bool:
        if not note.strip():
            return False

        def mutate(existing: object) -> str:
            current = existing if isinstance(existing, str) else ""
            return f"{current}{SEPARATOR}{note}" if current else note

        updated = await self.store.update(NAMESPACE, user_id, mutate)
        self.logger.log("memory.appended", user_id=user_id, chars=len(note), total_chars=len(updated))
        return True

    async def forget(self, user_id: int) -> bool:
        existed = await self.store.delete(NAMESPACE, user_id)
        self.logger.log("memory.deleted", user_id=user_id, existed=existed)
        return existed
