"""JSON cache and view counters kept in Redis."""

from __future__ import annotations

import json
import re
from dataclasses import is_dataclass
from datetime import datetime, timedelta
from typing import Any, Optional, Union

import redis

from .models import _format_time

VIEWS_PREFIX = "views:"
VIEWS_TTL = timedelta(hours=24)

_INTEGER = re.compile(r"[+-]?\d+")

Ttl = Union[timedelta, int, float, None]


class CacheError(Exception):
    """Raised when the cache cannot be read or written."""


def _to_jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict") and is_dataclass(value):
        return value.to_dict()
    if isinstance(value, datetime):
        return _format_time(value)
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _to_jsonable(item) for key, item in value.items()}
    return value


def _text(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


def _parse_int(text: str) -> Optional[int]:
    return int(text) if _INTEGER.fullmatch(text) else None


class RedisCache:
    """Stores JSON values and per-item view counters."""

    def __init__(self, client: Any) -> None:
        self.client = client

    @classmethod
    def from_address(cls, addr: str, password: str) -> "RedisCache":
        """Build a cache for a 'host:port' address on database 0."""
        host, port = "localhost", 6379
        if addr:
            head, sep, tail = addr.rpartition(":")
            if sep:
                host = head or host
                port = int(tail) if tail else port
            else:
                host = addr
        return cls(redis.Redis(host=host, port=port, password=password or None, db=0))

    def set(self, key: str, value: Any, ttl: Ttl) -> None:
        """Store value as JSON under key; a zero or missing ttl never expires."""
        try:
            payload = json.dumps(_to_jsonable(value))
        except (TypeError, ValueError) as exc:
            raise CacheError(f"failed to marshal data to JSON: {exc}") from exc
        try:
            self.client.set(key, payload, ex=ttl or None)
        except redis.RedisError as exc:
            raise CacheError(f"failed to set key '{key}': {exc}") from exc

    def set_views(self, item_id: str, value: int, ttl: Ttl) -> None:
        self.set(VIEWS_PREFIX + str(item_id), value, ttl)

    def inc_views(self, item_id: str) -> None:
        """Count one view, starting a fresh counter when none exists."""
        key = VIEWS_PREFIX + str(item_id)
        try:
            exists = self.client.exists(key)
        except redis.RedisError as exc:
            raise CacheError(f"failed to check Redis key existence: {exc}") from exc
        if not exists:
            self.set_views(item_id, 1, VIEWS_TTL)
            return
        try:
            self.client.incr(key)
        except redis.RedisError as exc:
            raise CacheError(f"failed to increment '{key}': {exc}") from exc

    def get_all_views(self) -> dict[int, int]:
        """Collect and remove all view counters, skipping unreadable ones."""
        try:
            keys = self.client.keys(VIEWS_PREFIX + "*")
        except redis.RedisError as exc:
            raise CacheError(f"failed to list view counters: {exc}") from exc

        results: dict[int, int] = {}
        for raw_key in keys:
            key = _text(raw_key)
            try:
                raw_value = self.client.get(key)
            except redis.RedisError:
                continue
            if raw_value is None:
                continue
            item_id = _parse_int(key[len(VIEWS_PREFIX):])
            count = _parse_int(_text(raw_value))
            if item_id is None or count is None:
                continue
            results[item_id] = count
            try:
                self.client.delete(key)
            except redis.RedisError:
                continue
        return results

    def get_json(self, key: str) -> Any:
        """Return the decoded JSON stored under key, or None when absent."""
        try:
            raw = self.client.get(key)
        except redis.RedisError as exc:
            raise CacheError(f"failed to get key '{key}' from Redis: {exc}") from exc
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise CacheError(f"failed to unmarshal JSON from key '{key}': {exc}") from exc