# dbedit/core/store.py
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

import orjson
from redis import Redis

from dbedit.core.config import settings

# Set up logging
logger = logging.getLogger(__name__)


class KeyValueStore:
    """
    Minimal key-value interface the editor persists its instances in.

    Values are anything orjson can serialise. Every read returns a fresh copy,
    so callers can never mutate stored state by accident.
    """

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def delete(self, *keys: str) -> int:
        raise NotImplementedError

    def keys(self, prefix: str = "") -> List[str]:
        raise NotImplementedError

    def scoped(self, namespace: str) -> "ScopedStore":
        """Return a view of this store restricted to one namespace (a browser session)"""
        return ScopedStore(self, namespace)


class ScopedStore(KeyValueStore):
    """Prefixes every key with a namespace"""

    def __init__(self, store: KeyValueStore, namespace: str):
        self.store = store
        self.namespace = namespace
        self._prefix = f"{namespace}:"

    def get(self, key):
        return self.store.get(self._prefix + key)

    def set(self, key, value):
        self.store.set(self._prefix + key, value)

    def delete(self, *keys):
        return self.store.delete(*(self._prefix + key for key in keys))

    def keys(self, prefix=""):
        return [key[len(self._prefix):] for key in self.store.keys(self._prefix + prefix)]


class MemoryStore(KeyValueStore):
    """
    In-process store. Suitable for a single worker process.

    With a `ttl` every entry expires that many seconds after it was last
    written, like keys of the Redis store. Expired entries are dropped when
    read or listed.
    """

    def __init__(self, ttl: Optional[int] = None):
        self.data: Dict[str, Tuple[bytes, Optional[float]]] = {}
        self.ttl = ttl
        self.lock = threading.RLock()

    def _live(self, key, now):
        entry = self.data.get(key)
        if entry is None:
            return None
        raw, expiry = entry
        if expiry is not None and expiry <= now:
            del self.data[key]
            return None
        return raw

    def get(self, key):
        with self.lock:
            raw = self._live(key, time.time())
        if raw is None:
            return None
        return orjson.loads(raw)

    def set(self, key, value):
        raw = orjson.dumps(value)
        expiry = time.time() + self.ttl if self.ttl else None
        with self.lock:
            self.data[key] = (raw, expiry)

    def delete(self, *keys):
        deleted = 0
        with self.lock:
            for key in keys:
                if key in self.data:
                    del self.data[key]
                    deleted += 1
        return deleted

    def keys(self, prefix=""):
        now = time.time()
        with self.lock:
            return [k for k in list(self.data) if k.startswith(prefix) and self._live(k, now) is not None]


class RedisStore(KeyValueStore):
    """Redis-backed store shared by all worker processes"""

    def __init__(self, client: Redis, key_prefix: str = "dbedit:", ttl: Optional[int] = None):
        self.client = client
        self.key_prefix = key_prefix
        self.ttl = ttl

    @classmethod
    def from_settings(cls) -> "RedisStore":
        client = Redis.from_url(
            settings.REDIS_CONNECTION_STRING,
            decode_responses=True,  # Auto-decode to strings
            encoding="utf-8",
            retry_on_timeout=True,  # Auto-retry on timeout
            socket_timeout=2.0,  # Socket timeout (seconds)
            socket_connect_timeout=2.0,  # Connection timeout
            health_check_interval=30  # Health check interval
        )
        return cls(client, ttl=settings.REDIS_TTL)

    def get(self, key):
        data = self.client.get(self.key_prefix + key)
        if data is None:
            return None
        try:
            return orjson.loads(data)
        except orjson.JSONDecodeError as e:
            logger.error(f"Error decoding stored JSON for {key}: {str(e)}")
            return None

    def set(self, key, value):
        json_value = orjson.dumps(value).decode("utf-8")
        self.client.set(self.key_prefix + key, json_value, ex=self.ttl)

    def delete(self, *keys):
        if not keys:
            return 0
        return self.client.delete(*(self.key_prefix + key for key in keys))

    def keys(self, prefix=""):
        pattern = f"{self.key_prefix}{prefix}*"
        return [key[len(self.key_prefix):] for key in self.client.scan_iter(match=pattern)]


_store: Optional[KeyValueStore] = None


def get_store() -> KeyValueStore:
    """Return the process-wide store selected by SESSION_BACKEND"""
    global _store

    if _store is None:
        if settings.SESSION_BACKEND == "redis":
            _store = RedisStore.from_settings()
            logger.info(f"Using Redis session store at {settings.REDIS_HOST}:{settings.REDIS_PORT}")
        else:
            _store = MemoryStore(ttl=settings.REDIS_TTL)
            logger.info("Using in-memory session store")

    return _store
