from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from gork_v1.storage import MessagePackStore


MAX_LOG_ROWS = 2000


class LoggerService:
    def __init__(self, store: MessagePackStore) -> None:
        self.store = store
        self._listeners: list[Callable[[dict[str, object]], None]] = []
        store.set_error_hook(self._on_store_error)

    def subscribe(self, listener: Callable[[dict[str, object]], None]) -> None:
        self._listeners.append(listener)

    def log(self, event: str, **data: object) -> None:
        row = {
            "ts": datetime.now(tz=timezone.utc).isoformat(),
            "event": event,
            "data": {key: _plain(value) for key, value in data.items()},
        }
        logs = self.store.data.setdefault("logs", [])
        logs.append(row)
        if len(logs) > MAX_LOG_ROWS:
            del logs[: len(logs) - MAX_LOG_ROWS]
        self.store.touch()
        print(f"[{row['ts']}] {event} {data}")
        for listener in self._listeners:
            try:
                listener(row)
            except Exception:  # noqa: BLE001
                continue

    def recent(self, event_prefix: str = "", limit: int = 50) -> list[dict[str, object]]:
        rows = [row for row in self.store.data.get("logs", []) if str(row.get("event", "")).startswith(event_prefix)]
        return rows[-max(1, limit) :]

    def _on_store_error(self, event: str, exc: Exception) -> None:
        self.log(event, path=str(self.store.path), error=str(exc)[:300] or type(exc).__name__)


def _plain(value: object) -> object:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return str(value)
