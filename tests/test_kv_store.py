import pytest

from app.core.exceptions import PersistenceCorrupt
from app.core.kv_store import (
    MemoryKeyValueStore,
    RedisKeyValueStore,
    build_kv_store,
    read_json,
)


class FakeRedis:
    """Just the three commands the store uses."""

    def __init__(self):
        self.data = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value

    def delete(self, key):
        self.data.pop(key, None)


def test_memory_store_json_values():
    store = MemoryKeyValueStore()
    store.set_json("k", {"a": [1, 2]})
    assert store.get_json("k") == {"a": [1, 2]}
    store.remove("k")
    store.remove("k")
    assert store.get_json("k") is None


def test_corrupt_json_raises_and_read_json_falls_back():
    store = MemoryKeyValueStore({"k": "{oops"})
    with pytest.raises(PersistenceCorrupt):
        store.get_json("k")
    assert read_json(store, "k", default={}) == {}
    assert read_json(store, "missing", default=[]) == []


def test_redis_store_prefixes_keys():
    client = FakeRedis()
    store = RedisKeyValueStore(client, prefix="avatar_ia:")
    store.set_json("accounts", {"u": 1})
    assert client.data == {"avatar_ia:accounts": '{"u": 1}'}
    assert store.get_json("accounts") == {"u": 1}
    store.remove("accounts")
    assert store.get_str("accounts") is None


def test_build_kv_store_defaults_to_memory(settings):
    assert isinstance(build_kv_store(settings), MemoryKeyValueStore)
