from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass


@dataclass(frozen=True)
class AdmissionResult:
    admitted: bool
    retry_after_sec: int = 0


class AdmissionService:
    """Per-user cooldown gate applied before any context work is done."""

    def __init__(self, cooldown_ms: int = 2500) -> None:
        self.cooldown_ms = max(0, int(cooldown_ms))
        self._last_admitted_ms: dict[int, float] = {}
        self._lock = threading.Lock()

    def try_admit(self, user_id: int, now: float | None = None) -> AdmissionResult:
        now_ms = float(now if now is not None else time.time()) * 1000.0
        with self._lock:
            last = self._last_admitted_ms.get(user_id)
            if last is not None:
                elapsed = now_ms - last
                if elapsed < self.cooldown_ms:
                    remaining = math.ceil((self.cooldown_ms - max(0.0, elapsed)) / 1000.0)
                    return AdmissionResult(admitted=False, retry_after_sec=max(1, remaining))
                self._last_admitted_ms[user_id] = max(last, now_ms)
            else:
                self._last_admitted_ms[user_id] = now_ms
        return AdmissionResult(admitted=True)

    def last_admitted(self, user_id: int) -> float | None:
        with self._lock:
            value = self._last_admitted_ms.get(user_id)
        return None if value is None else value / 1000.0

    def prune(self, now: float | None = None) -> int:
        now_ms = float(now if now is not None else time.time()) * 1000.0
        with self._lock:
            stale = [uid for uid, ts in self._last_admitted_ms.items() if now_ms - ts >= self.cooldown_ms]
            for uid in stale:
                del self._last_admitted_ms[uid]
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._last_admitted_ms.clear()
