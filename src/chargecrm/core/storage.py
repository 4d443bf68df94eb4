"""Durable string-keyed storage for CRM config and native customer records.

Three interchangeable backends share the KeyValueStore interface:

- MemoryKeyValueStore: process-local dict, used by tests and ephemeral setups.
- JsonFileKeyValueStore: single JSON document on disk, rewritten atomically.
- RedisKeyValueStore: Redis strings under a configurable key prefix.

Operations are synchronous so callers can keep a read-modify-write cycle
free of ``await`` points.
"""

from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

import redis
import structlog

from src.chargecrm.config import Settings, StoreBackend, get_settings

logger = structlog.get_logger(__name__)


class KeyValueStore(ABC):
    """Minimal get/set/delete contract over string values."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored string, or None when the key is absent."""
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a string value, replacing any previous value."""
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key. Missing keys are ignored."""
        ...

    def get_json(self, key: str, default=None):
        """Decode a JSON value, returning ``default`` if absent or unreadable."""
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("storage.invalid_json", key=key)
            return default

    def set_json(self, key: str, value) -> None:
        self.set(key, json.dumps(value))


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        """Copy of the current contents (handy for assertions)."""
        return dict(self._data)


class JsonFileKeyValueStore(KeyValueStore):
    """Key-value store persisted as one JSON object in a file.

    The whole document is cached in memory and rewritten on every change via
    a temp file + ``os.replace`` so a crash never leaves a half-written file.

    Args:
        path: Location of the JSON document. Parent directories are created.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self._data: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("storage.file_unreadable", path=str(self._path), error=str(exc))
            return {}
        if not isinstance(raw, dict):
            logger.warning("storage.file_not_object", path=str(self._path))
            return {}
        return {str(k): str(v) for k, v in raw.items()}

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, prefix=".store-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f)
            os.replace(tmp_path, self._path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._flush()

    def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush()


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store; every key is prefixed to share a database safely.

    Args:
        client: Synchronous Redis client created with ``decode_responses=True``.
        prefix: Key prefix, e.g. ``chargecrm:``.
    """

    def __init__(self, client: redis.Redis, prefix: str = "chargecrm:") -> None:
        self._redis = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "chargecrm:") -> RedisKeyValueStore:
        return cls(redis.Redis.from_url(url, decode_responses=True), prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> str | None:
        return self._redis.get(self._key(key))

    def set(self, key: str, value: str) -> None:
        self._redis.set(self._key(key), value)

    def delete(self, key: str) -> None:
        self._redis.delete(self._key(key))


def create_store(settings: Settings | None = None) -> KeyValueStore:
    """Build the store selected by CRM_STORE_BACKEND."""
    settings = settings or get_settings()
    backend = settings.CRM_STORE_BACKEND
    if backend == StoreBackend.memory:
        return MemoryKeyValueStore()
    if backend == StoreBackend.redis:
        return RedisKeyValueStore.from_url(settings.REDIS_URL, prefix=settings.CRM_STORE_KEY_PREFIX)
    return JsonFileKeyValueStore(settings.CRM_STORE_PATH)
