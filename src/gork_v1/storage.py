from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable

import msgpack


DEFAULT_STORE: dict[str, Any] = {
    "meta": {"version": 1},
    "memory": {},
    "quota": {},
    "guilds": {},
    "logs": [],
}

ErrorHook = Callable[[str, Exception], None]


class MessagePackStore:
    """Single-file key-value store.

    Data lives in namespaces (``memory``, ``quota``, ``guilds``, ``logs``).
    Durable writes go through :meth:`put`, :meth:`update` or :meth:`delete`,
    which flush the whole file before returning. Each ``(namespace, key)`` pair
    has its own lock, so read-modify-write on one key is serialized while
    other keys proceed.

    Read failures fall back to the defaults and write failures keep the
    in-memory value; both are reported to the error hook instead of raised.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = asyncio.Lock()
        self._key_locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._key_holders: dict[tuple[str, str], int] = {}
        self._dirty = False
        self._error_hook: ErrorHook | None = None
        self.load_error: str | None = None
        self.data: dict[str, Any] = _clone_defaults()

    def set_error_hook(self, hook: ErrorHook) -> None:
        self._error_hook = hook

    async def load(self) -> None:
        async with self._lock:
            if not self.path.exists():
                self.data = _clone_defaults()
                await self._save_unlocked()
                return
            try:
                raw = self.path.read_bytes()
                loaded = msgpack.unpackb(raw, raw=False)
            except (OSError, ValueError, msgpack.UnpackException) as exc:
                self.load_error = str(exc)[:300] or type(exc).__name__
                self.data = _clone_defaults()
                self._report("store.read_failed", exc)
                return
            self.data = loaded if isinstance(loaded, dict) else _clone_defaults()
            self._ensure_schema()

    async def autosave_loop(self) -> None:
        while True:
            await asyncio.sleep(5)
            if self._dirty:
                await self.save()

    async def save(self) -> bool:
        async with self._lock:
            return await self._save_unlocked()

    async def _save_unlocked(self) -> bool:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            packed = msgpack.packb(self.data, use_bin_type=True)
            tmp.write_bytes(packed)
            tmp.replace(self.path)
        except (OSError, TypeError, ValueError) as exc:
            self._report("store.write_failed", exc)
            return False
        self._dirty = False
        return True

    def touch(self) -> None:
        self._dirty = True

    def namespace(self, name: str) -> dict[str, Any]:
        bucket = self.data.get(name)
        if not isinstance(bucket, dict):
            bucket = {}
            self.data[name] = bucket
        return bucket

    def get(self, namespace: str, key: object, default: Any = None) -> Any:
        return self.namespace(namespace).get(str(key), default)

    def keys(self, namespace: str) -> list[str]:
        return list(self.namespace(namespace).keys())

    async def put(self, namespace: str, key: object, value: Any) -> Any:
        async with self._hold_key(namespace, key):
            self.namespace(namespace)[str(key)] = value
            await self.save()
        return value

    async def update(self, namespace: str, key: object, mutate: Callable[[Any], Any]) -> Any:
        """Apply ``mutate(current)`` under the key lock and persist the result.

        Returning ``None`` from ``mutate`` removes the key.
        """
        async with self._hold_key(namespace, key):
            bucket = self.namespace(namespace)
            new_value = mutate(bucket.get(str(key)))
            if new_value is None:
                bucket.pop(str(key), None)
            else:
                bucket[str(key)] = new_value
            await self.save()
        return new_value

    async def delete(self, namespace: str, key: object) -> bool:
        async with self._hold_key(namespace, key):
            existed = self.namespace(namespace).pop(str(key), None) is not None
            if existed:
                await self.save()
        return existed

    @asynccontextmanager
    async def _hold_key(self, namespace: str, key: object) -> AsyncIterator[None]:
        # The lock lives only while someone holds or waits on it.
        lock_key = (namespace, str(key))
        lock = self._key_locks.setdefault(lock_key, asyncio.Lock())
        self._key_holders[lock_key] = self._key_holders.get(lock_key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._key_holders[lock_key] - 1
            if remaining:
                self._key_holders[lock_key] = remaining
            else:
                del self._key_holders[lock_key]
                del self._key_locks[lock_key]

    def _report(self, event: str, exc: Exception) -> None:
        if self._error_hook is not None:
            self._error_hook(event, exc)

    def _ensure_schema(self) -> None:
        defaults = _clone_defaults()
        for key, value in defaults.items():
            if key not in self.data:
                self.data[key] = value
        self._dirty = True


def _clone_defaults() -> dict[str, Any]:
    return msgpack.unpackb(msgpack.packb(DEFAULT_STORE, use_bin_type=True), raw=False)
