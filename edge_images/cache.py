"""Transform cache.

Memoizes provider URLs keyed by (source URL, canonical arguments, context)
with a TTL. Every key starts with a digest of its source URL, so one
image's entries can be purged with a single prefix delete when it is
replaced or deleted.

Backend failures never fail a rewrite: they are logged and the value is
computed directly.
"""

import hashlib
import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

import redis

from .config import get_cache_dir
from .errors import CacheUnavailable
from .models import CacheEntry

KEY_PREFIX = "edge_images:"


class _Miss:
    """Sentinel for a cache miss; False and "" are valid cached values."""

    def __repr__(self) -> str:
        return "MISS"


MISS = _Miss()


def _digest(*parts: str) -> str:
    return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()


def source_prefix(source_url: str) -> str:
    """Key prefix shared by every entry of one source URL."""
    return f"{KEY_PREFIX}{_digest(source_url)}:"


def make_key(source_url: str, canonical_args: str, context: str) -> str:
    """Build the namespaced cache key for one transform.

    Args:
        source_url: Canonical source URL
        canonical_args: TransformArgs.canonical() output
        context: Context label (e.g., "cloudflare:src")

    Returns:
        Key of the form "edge_images:<sha256 of source>:<sha256 of all parts>"
    """
    return source_prefix(source_url) + _digest(source_url, canonical_args, context)


class CacheBackend(Protocol):
    """Storage interface behind TransformCache.

    get returns MISS for absent or expired keys. All methods raise
    CacheUnavailable when the store cannot be reached or holds a value
    that cannot be decoded.
    """

    def get(self, key: str) -> Any:
        ...

    def set(self, key: str, value: Any, ttl: int) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def delete_group(self, prefix: str) -> None:
        ...


class MemoryCacheBackend:
    """Process-local backend with lazy expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return MISS
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return MISS
            return entry.value

    def set(self, key: str, value: Any, ttl: int) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(key, value, self._clock() + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def delete_group(self, prefix: str) -> None:
        with self._lock:
            for key in [k for k in self._entries if k.startswith(prefix)]:
                del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


class JsonFileCacheBackend:
    """Backend persisted to a JSON file, shared between CLI runs.

    The file is re-read whenever it changed on disk, so separate processes
    see each other's writes. Writes go to a temporary file that replaces the
    cache file in one step, so readers never see a partial file.
    """

    def __init__(self, path: Optional[Path] = None, clock: Callable[[], float] = time.time):
        self.path = Path(path) if path else get_cache_dir() / "transforms.json"
        self._clock = clock
        self._lock = threading.Lock()
        self._data: dict[str, dict[str, Any]] = {}
        self._signature: Optional[tuple[int, int, int]] = None

    def _stat_signature(self) -> Optional[tuple[int, int, int]]:
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CacheUnavailable(f"Cannot stat cache file {self.path}: {e}") from e
        return (stat.st_ino, stat.st_mtime_ns, stat.st_size)

    def _load(self) -> dict[str, dict[str, Any]]:
        signature = self._stat_signature()
        if signature is None:
            self._data, self._signature = {}, None
            return {}
        if signature == self._signature:
            return dict(self._data)

        try:
            with open(self.path) as f:
                data = json.load(f)
        except json.JSONDecodeError:
            # A corrupt file is treated as empty and overwritten on next save
            data = {}
        except OSError as e:
            raise CacheUnavailable(f"Cannot read cache file {self.path}: {e}") from e

        self._data = data if isinstance(data, dict) else {}
        self._signature = signature
        return dict(self._data)

    def _save(self, data: dict[str, dict[str, Any]]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, 'w') as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp_name, self.path)
            except Exception:
                os.unlink(tmp_name)
                raise
        except OSError as e:
            raise CacheUnavailable(f"Cannot write cache file {self.path}: {e}") from e

        self._data = data
        self._signature = self._stat_signature()

    def get(self, key: str) -> Any:
        with self._lock:
            record = self._load().get(key)
        if not isinstance(record, dict) or record.get("expires_at", 0) <= self._clock():
            return MISS
        return record.get("value")

    def set(self, key: str, value: Any, ttl: int) -> None:
        with self._lock:
            now = self._clock()
            data = {
                k: v for k, v in self._load().items()
                if isinstance(v, dict) and v.get("expires_at", 0) > now
            }
            data[key] = {"value": value, "expires_at": now + ttl}
            self._save(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if data.pop(key, None) is not None:
                self._save(data)

    def delete_group(self, prefix: str) -> None:
        with self._lock:
            data = self._load()
            kept = {k: v for k, v in data.items() if not k.startswith(prefix)}
            if len(kept) != len(data):
                self._save(kept)


class RedisCacheBackend:
    """Backend on a shared Redis instance; values are JSON-encoded."""

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheBackend":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def get(self, key: str) -> Any:
        try:
            raw = self.client.get(key)
        except redis.RedisError as e:
            raise CacheUnavailable(f"Redis get failed: {e}") from e
        if raw is None:
            return MISS
        try:
            return json.loads(raw)
        except ValueError as e:
            raise CacheUnavailable(f"Undecodable cache value at {key}: {e}") from e

    def set(self, key: str, value: Any, ttl: int) -> None:
        try:
            self.client.set(key, json.dumps(value), ex=int(ttl))
        except redis.RedisError as e:
            raise CacheUnavailable(f"Redis set failed: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except redis.RedisError as e:
            raise CacheUnavailable(f"Redis delete failed: {e}") from e

    def delete_group(self, prefix: str) -> None:
        try:
            keys = list(self.client.scan_iter(match=f"{prefix}*"))
            if keys:
                self.client.delete(*keys)
        except redis.RedisError as e:
            raise CacheUnavailable(f"Redis group delete failed: {e}") from e


class TransformCache:
    """TTL memoization of transformed URLs with per-source invalidation.

    Args:
        backend: Storage backend (defaults to an in-process dict)
        ttl: Entry lifetime in seconds
        logger: Logger for backend failures
    """

    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        ttl: int = 3600,
        logger: Optional[logging.Logger] = None,
    ):
        self.backend = backend if backend is not None else MemoryCacheBackend()
        self.ttl = ttl
        self.logger = logger or logging.getLogger("edge_images")

    def get(self, key: str) -> Any:
        try:
            return self.backend.get(key)
        except CacheUnavailable as e:
            self.logger.warning("Transform cache read failed, bypassing: %s", e)
            return MISS

    def set(self, key: str, value: Any) -> None:
        try:
            self.backend.set(key, value, self.ttl)
        except CacheUnavailable as e:
            self.logger.warning("Transform cache write failed, bypassing: %s", e)

    def get_or_compute(self, key_parts: tuple[str, str, str], compute: Callable[[], Any]) -> Any:
        """Return the cached value for a transform, computing it on a miss.

        Args:
            key_parts: (source_url, canonical_args, context)
            compute: Zero-argument callable producing the value

        Returns:
            The cached or freshly computed value
        """
        key = make_key(*key_parts)
        value = self.get(key)
        if value is not MISS:
            return value

        value = compute()
        self.set(key, value)
        return value

    def invalidate(self, *source_urls: str) -> None:
        """Purge every entry for the given source URLs.

        Falls back to a full flush if a per-source delete fails.
        """
        try:
            for source_url in source_urls:
                self.backend.delete_group(source_prefix(source_url))
                self.logger.debug("Invalidated cached transforms for %s", source_url)
        except CacheUnavailable as e:
            self.logger.warning("Per-source invalidation failed, flushing: %s", e)
            self.flush()

    def flush(self) -> None:
        """Drop every transform cache entry."""
        try:
            self.backend.delete_group(KEY_PREFIX)
        except CacheUnavailable as e:
            self.logger.warning("Transform cache flush failed: %s", e)
