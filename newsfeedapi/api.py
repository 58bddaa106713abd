"""HTTP handlers for the news API."""

from __future__ import annotations

import logging
import re
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from flask import Flask, Response, jsonify, request

from .cache import CacheError
from .database import DatabaseError
from .models import ListItem, News, _parse_time

DEFAULT_LIMIT = 15
DEFAULT_SIMILAR_LIMIT = 10
LIST_TTL = timedelta(minutes=10)
ITEM_TTL = timedelta(hours=1)
VIEWS_FLUSH_INTERVAL = timedelta(minutes=10)

_UINT = re.compile(r"[0-9]+")
_UINT_MAX = 2**64 - 1
_RFC3339 = re.compile(
    r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})"
)


def _parse_uint(value: Optional[str]) -> Optional[int]:
    if value is None or not _UINT.fullmatch(value):
        return None
    number = int(value)
    return number if number <= _UINT_MAX else None


def parse_limit(value: Optional[str], default: int) -> int:
    """Parse an unsigned limit, falling back to default when invalid."""
    number = _parse_uint(value)
    return default if number is None else number


def parse_date(value: Optional[str]) -> datetime:
    """Parse an RFC 3339 timestamp; an empty or invalid value means now."""
    if value and _RFC3339.fullmatch(value):
        try:
            return _parse_time(value)
        except ValueError:
            pass
    return datetime.now(timezone.utc)


def parse_search(value: Optional[str]) -> list[str]:
    """Split a comma separated search string into trimmed terms."""
    return [term.strip() for term in (value or "").split(",")]


def _error(message: str, status: int) -> tuple[Response, int]:
    return jsonify({"error": message}), status


def _items(items: list[ListItem]) -> Response:
    return jsonify({"items": [item.to_dict() for item in items]})


class API:
    """Request handlers backed by the database and the cache."""

    def __init__(self, db: Any, cache: Any, logger: Optional[logging.Logger] = None) -> None:
        self.db = db
        self.cache = cache
        self.logger = logger or logging.getLogger(__name__)

    def _cached(self, key: str) -> Any:
        try:
            return self.cache.get_json(key)
        except CacheError as exc:
            self.logger.error("Error getting data from cache: %s", exc)
            return None

    def _cached_items(self, key: str) -> Optional[list[ListItem]]:
        data = self._cached(key)
        if data is None:
            return None
        try:
            return [ListItem.from_dict(entry) for entry in data]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            self.logger.error("Error getting items from cache: %s", exc)
            return None

    def _store(self, key: str, value: Any, ttl: timedelta) -> None:
        try:
            self.cache.set(key, value, ttl)
        except CacheError as exc:
            self.logger.error("Error setting data in cache: %s", exc)

    def _cached_list(self, key: str, ttl: timedelta, load) -> Union[Response, tuple[Response, int]]:
        items = self._cached_items(key)
        if items is not None:
            return _items(items)
        try:
            items = load()
        except DatabaseError as exc:
            self.logger.error("Error getting items from database: %s", exc)
            return _error(str(exc), 500)
        response = _items(items)
        self._store(key, items, ttl)
        return response

    def check(self):
        return jsonify({"message": "pong"})

    def get_max(self):
        try:
            index = self.db.get_last_index()
        except DatabaseError as exc:
            self.logger.error("Error getting max: %s", exc)
            return _error(str(exc), 500)
        return jsonify({"max": index})

    def get(self):
        date = parse_date(request.args.get("date", ""))
        limit = parse_limit(request.args.get("limit", str(DEFAULT_LIMIT)), DEFAULT_LIMIT)
        search = parse_search(request.args.get("q", ""))
        try:
            items = self.db.get(date, limit, *search)
        except DatabaseError as exc:
            self.logger.error("Error getting items: %s", exc)
            return _error(str(exc), 500)
        return _items(items)

    def get_top(self):
        limit = parse_limit(request.args.get("limit", str(DEFAULT_LIMIT)), DEFAULT_LIMIT)
        return self._cached_list(
            "clusters:top", LIST_TTL, lambda: self.db.get_top_groups_by_feed_count(limit)
        )

    def get_rt(self):
        limit = parse_limit(request.args.get("limit", str(DEFAULT_LIMIT)), DEFAULT_LIMIT)
        is_rt = request.args.get("rt", "true").lower() == "true"
        key = "clusters:rt" if is_rt else "clusters:not_rt"
        return self._cached_list(key, LIST_TTL, lambda: self.db.get_rt_groups(limit, is_rt))

    def get_by_id(self, group_id: str):
        response, status = self._group_response(group_id)
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "POST, GET, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response, status

    def _group_response(self, group_id: str) -> tuple[Response, int]:
        number = _parse_uint(group_id)
        if number is None:
            message = f'invalid id "{group_id}"'
            self.logger.error("Error getting id: %s", message)
            return _error(message, 400)

        key = "clusters:" + group_id
        data = self._cached(key)
        if data is not None:
            try:
                return jsonify(News.from_dict(data).to_dict()), 200
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                self.logger.error("Error getting data from cache: %s", exc)

        try:
            item = self.db.get_by_id(number)
        except DatabaseError as exc:
            self.logger.error("Error getting data from database: %s", exc)
            return _error(str(exc), 500)

        response = jsonify(item.to_dict())
        self._store(key, item, ITEM_TTL)
        threading.Thread(target=self._count_view, args=(group_id,), daemon=True).start()
        return response, 200

    def _count_view(self, group_id: str) -> None:
        try:
            self.cache.inc_views(group_id)
        except CacheError as exc:
            self.logger.error("Error counting view: %s", exc)

    def get_similar(self, group_id: str):
        number = _parse_uint(group_id)
        if number is None:
            message = f'invalid id "{group_id}"'
            self.logger.error("Error getting id: %s", message)
            return _error(message, 400)
        limit = parse_limit(
            request.args.get("limit", str(DEFAULT_SIMILAR_LIMIT)), DEFAULT_SIMILAR_LIMIT
        )
        return self._cached_list(
            "clusters:similar:" + group_id,
            ITEM_TTL,
            lambda: self.db.get_similar_groups(number, limit),
        )

    def flush_views(self) -> dict[int, int]:
        """Move view counters from the cache into the database.

        Returns the counters that were written.
        """
        try:
            views = self.cache.get_all_views()
        except CacheError as exc:
            self.logger.error("Error getting views: %s", exc)
            return {}
        written: dict[int, int] = {}
        for group_id, count in views.items():
            try:
                self.db.update_views(group_id, count)
            except DatabaseError as exc:
                self.logger.error("Error updating views: %s", exc)
                continue
            written[group_id] = count
        return written

    def start_views_updater(
        self, interval: Union[timedelta, float] = VIEWS_FLUSH_INTERVAL
    ) -> threading.Event:
        """Flush view counters periodically in a background thread.

        Setting the returned event stops the thread.
        """
        seconds = interval.total_seconds() if isinstance(interval, timedelta) else float(interval)
        stop = threading.Event()

        def run() -> None:
            while not stop.wait(seconds):
                self.flush_views()

        threading.Thread(target=run, name="views-updater", daemon=True).start()
        return stop

    def register(self, app: Flask) -> None:
        """Attach the API routes to app."""
        app.add_url_rule("/api/ping", "check", self.check, methods=["GET"])
        app.add_url_rule("/api/v1/max", "get_max", self.get_max, methods=["GET"])
        app.add_url_rule("/api/v1/get/all", "get_all", self.get, methods=["GET"])
        app.add_url_rule("/api/v1/get/top", "get_top", self.get_top, methods=["GET"])
        app.add_url_rule("/api/v1/get/reg", "get_rt", self.get_rt, methods=["GET"])
        app.add_url_rule(
            "/api/v1/get/similar/<group_id>", "get_similar", self.get_similar, methods=["GET"]
        )
        app.add_url_rule("/api/v1/get/<group_id>", "get_by_id", self.get_by_id, methods=["GET"])