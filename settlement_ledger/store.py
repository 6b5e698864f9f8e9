"""
store.py - Key-value store adapter

The ledger keeps no state of its own. Everything lives in a key-value store
reached through the KVStore protocol below. Each call is atomic on its own;
a sequence of calls is not. Multi-key atomicity is only available through
batch(), which commits a WriteBatch as one unit.

RedisStore is the production adapter (redis-py). Tests use an in-memory
implementation of the same protocol.
"""

from __future__ import annotations
from decimal import Decimal
import os
from typing import Any, Dict, List, Optional, Protocol, Set, runtime_checkable

import redis

from .core import StoreError, format_decimal


# Used when neither a URL nor REDIS_URL is given.
DEFAULT_REDIS_URL = "redis://localhost:6379/0"


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class WriteBatch(Protocol):
    """
    Queued mutations committed together by execute().

    Nothing reaches the store before execute(). If execute() raises
    StoreError, readers never observe a subset of the queued writes.
    """

    def add_to_set(self, key: str, *members: str) -> None:
        ...

    def increment_scalar_decimal(self, key: str, delta: Decimal) -> None:
        ...

    def increment_record_field_integer(self, key: str, field: str, delta: int) -> None:
        ...

    def increment_record_field_decimal(self, key: str, field: str, delta: Decimal) -> None:
        ...

    def set_scalar(self, key: str, value: str) -> None:
        ...

    def execute(self) -> None:
        ...

    def discard(self) -> None:
        """Drop whatever is still queued. A no-op after execute()."""
        ...


@runtime_checkable
class KVStore(Protocol):
    """
    Contract between LedgerEngine and the key-value engine.

    Absent keys read as empty (empty set, "" or empty dict). Increments create
    missing keys and fields starting from zero. Every failure is raised as
    StoreError; there is no retry at this layer.
    """

    def read_set_members(self, key: str) -> Set[str]:
        ...

    def add_to_set(self, key: str, *members: str) -> None:
        """Union members into the set at key. Adding nothing is a no-op."""
        ...

    def read_scalar(self, key: str) -> str:
        ...

    def set_scalar(self, key: str, value: str) -> None:
        ...

    def increment_scalar_integer(self, key: str, delta: int = 1) -> int:
        """Increment an integer scalar and return the new value."""
        ...

    def increment_scalar_decimal(self, key: str, delta: Decimal) -> None:
        ...

    def read_record(self, key: str) -> Dict[str, str]:
        ...

    def increment_record_field_integer(self, key: str, field: str, delta: int) -> None:
        ...

    def increment_record_field_decimal(self, key: str, field: str, delta: Decimal) -> None:
        ...

    def batch(self) -> WriteBatch:
        ...


# ============================================================================
# REDIS ADAPTER
# ============================================================================

def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


class RedisStore:
    """
    KVStore backed by a redis-py client.

    Decimal deltas are sent as decimal strings (INCRBYFLOAT / HINCRBYFLOAT
    accept them verbatim), so no binary float rounding happens on the client
    side. Replies are decoded to str whether or not the client was created
    with decode_responses.

    Example:
        store = RedisStore.from_url("redis://localhost:6379/0")
        engine = LedgerEngine(store)
    """

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: Optional[str] = None, **kwargs) -> RedisStore:
        """
        Connect to Redis.

        Args:
            url: Redis URL (default: $REDIS_URL, then redis://localhost:6379/0)
            **kwargs: Passed to redis.from_url (e.g. socket_timeout)
        """
        url = url or os.getenv("REDIS_URL", DEFAULT_REDIS_URL)
        kwargs.setdefault("decode_responses", True)
        return cls(redis.from_url(url, **kwargs))

    @property
    def client(self) -> redis.Redis:
        return self._client

    def _call(self, operation: str, key: str, fn, *args):
        try:
            return fn(*args)
        except redis.RedisError as exc:
            raise StoreError(f"{operation} {key} failed: {exc}", operation, key) from exc

    def read_set_members(self, key: str) -> Set[str]:
        members = self._call("SMEMBERS", key, self._client.smembers, key)
        return {_text(m) for m in members or ()}

    def add_to_set(self, key: str, *members: str) -> None:
        if not members:
            return
        self._call("SADD", key, self._client.sadd, key, *members)

    def read_scalar(self, key: str) -> str:
        value = self._call("GET", key, self._client.get, key)
        return "" if value is None else _text(value)

    def set_scalar(self, key: str, value: str) -> None:
        self._call("SET", key, self._client.set, key, value)

    def increment_scalar_integer(self, key: str, delta: int = 1) -> int:
        return int(self._call("INCRBY", key, self._client.incrby, key, delta))

    def increment_scalar_decimal(self, key: str, delta: Decimal) -> None:
        self._call("INCRBYFLOAT", key, self._client.incrbyfloat, key, format_decimal(delta))

    def read_record(self, key: str) -> Dict[str, str]:
        record = self._call("HGETALL", key, self._client.hgetall, key)
        return {_text(k): _text(v) for k, v in (record or {}).items()}

    def increment_record_field_integer(self, key: str, field: str, delta: int) -> None:
        self._call("HINCRBY", key, self._client.hincrby, key, field, delta)

    def increment_record_field_decimal(self, key: str, field: str, delta: Decimal) -> None:
        self._call("HINCRBYFLOAT", key, self._client.hincrbyfloat, key, field, format_decimal(delta))

    def batch(self) -> RedisWriteBatch:
        return RedisWriteBatch(self._client.pipeline(transaction=True))


class RedisWriteBatch:
    """
    WriteBatch over a MULTI/EXEC pipeline.

    EXEC makes the queued commands visible to other clients all at once.
    Redis does not roll back a command that fails at run time inside EXEC
    (e.g. WRONGTYPE); such failures are still raised as StoreError.
    """

    def __init__(self, pipeline: redis.client.Pipeline):
        self._pipeline = pipeline
        self._keys: List[str] = []

    def _queue(self, key: str, fn, *args) -> None:
        fn(*args)
        self._keys.append(key)

    def add_to_set(self, key: str, *members: str) -> None:
        if not members:
            return
        self._queue(key, self._pipeline.sadd, key, *members)

    def increment_scalar_decimal(self, key: str, delta: Decimal) -> None:
        self._queue(key, self._pipeline.incrbyfloat, key, format_decimal(delta))

    def increment_record_field_integer(self, key: str, field: str, delta: int) -> None:
        self._queue(key, self._pipeline.hincrby, key, field, delta)

    def increment_record_field_decimal(self, key: str, field: str, delta: Decimal) -> None:
        self._queue(key, self._pipeline.hincrbyfloat, key, field, format_decimal(delta))

    def set_scalar(self, key: str, value: str) -> None:
        self._queue(key, self._pipeline.set, key, value)

    def execute(self) -> None:
        if not self._keys:
            return
        first_key = self._keys[0]
        try:
            self._pipeline.execute()
        except redis.RedisError as exc:
            raise StoreError(
                f"EXEC of {len(self._keys)} commands starting at {first_key} failed: {exc}",
                "EXEC", first_key,
            ) from exc
        finally:
            self._pipeline.reset()
            self._keys = []

    def discard(self) -> None:
        if self._keys:
            self._pipeline.reset()
            self._keys = []
