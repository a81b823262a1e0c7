"""Key-value persistence for session, ledger and pending-job state."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Protocol

import redis

from app.config import Settings, get_settings
from app.core.exceptions import PersistenceCorrupt

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get_str(self, key: str) -> Optional[str]: ...

    def set_str(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def get_json(self, key: str) -> Any: ...

    def set_json(self, key: str, value: Any) -> None: ...


class _JsonMixin:
    def get_json(self, key: str) -> Any:
        """Decode a JSON value; None when absent, PersistenceCorrupt when unreadable."""
        raw = self.get_str(key)  # type: ignore[attr-defined]
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise PersistenceCorrupt(f"Stored value for {key!r} is not valid JSON") from e

    def set_json(self, key: str, value: Any) -> None:
        self.set_str(key, json.dumps(value, default=str))  # type: ignore[attr-defined]


class MemoryKeyValueStore(_JsonMixin):
    """Process-local store for tests and local development."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    def get_str(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_str(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class RedisKeyValueStore(_JsonMixin):
    def __init__(self, client: redis.Redis, prefix: str = ""):
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "") -> "RedisKeyValueStore":
        return cls(redis.from_url(url, decode_responses=True), prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get_str(self, key: str) -> Optional[str]:
        return self._client.get(self._key(key))

    def set_str(self, key: str, value: str) -> None:
        self._client.set(self._key(key), value)

    def remove(self, key: str) -> None:
        self._client.delete(self._key(key))


def read_json(store: KeyValueStore, key: str, default: Any = None) -> Any:
    """get_json that logs and falls back to `default` on corrupt or missing data."""
    try:
        value = store.get_json(key)
    except PersistenceCorrupt as e:
        logger.warning("Ignoring corrupt persisted value: %s", e.message)
        return default
    return default if value is None else value


def build_kv_store(settings: Optional[Settings] = None) -> KeyValueStore:
    settings = settings or get_settings()
    if settings.kv_backend == "redis":
        return RedisKeyValueStore.from_url(settings.redis_url, prefix=settings.kv_prefix)
    return MemoryKeyValueStore()
