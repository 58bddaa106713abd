"""Queries over news groups stored in PostgreSQL."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError

from .models import ListItem, News, Source, _parse_time

DATABASE_NAME = "newagregator"

_LIST_QUERY = """
    SELECT
        groups.id,
        groups.time,
        feed.title,
        feed.description,
        feed.source_name,
        groups.is_rt,
        (
            SELECT feed.enclosure
            FROM compares
            JOIN feed ON feed.id = compares.feed_id
            WHERE compares.group_id = groups.id
              AND feed.enclosure IS NOT NULL
              AND feed.enclosure != ''
            LIMIT 1
        ) AS enclosure
    FROM groups
    JOIN feed ON groups.feed_id = feed.id
    WHERE groups.time < :p1
"""

_TOP_QUERY = """
    SELECT
        groups.id,
        groups.time,
        feed.title,
        feed.description,
        feed.source_name,
        groups.is_rt,
        (
            SELECT feed.enclosure
            FROM compares
            JOIN feed ON feed.id = compares.feed_id
            WHERE compares.group_id = groups.id
              AND feed.enclosure IS NOT NULL
              AND feed.enclosure != ''
            LIMIT 1
        ) AS enclosure
    FROM groups
    JOIN feed ON groups.feed_id = feed.id
    WHERE groups.time >= NOW() - INTERVAL '27 HOURS'
    GROUP BY groups.id, feed.title, feed.description, groups.time, groups.is_rt,
             feed.source_name, enclosure
    ORDER BY (
        SELECT COUNT(*)
        FROM compares
        WHERE compares.group_id = groups.id
    ) DESC,
    groups.time DESC
    LIMIT :p1
"""

_RT_QUERY = """
    SELECT
        groups.id,
        groups.time,
        feed.title,
        feed.description,
        feed.source_name,
        groups.is_rt,
        (
            SELECT COALESCE(feed.enclosure, '')
            FROM compares
            JOIN feed ON feed.id = compares.feed_id
            WHERE compares.group_id = groups.id
              AND feed.enclosure IS NOT NULL
              AND feed.enclosure != ''
            LIMIT 1
        ) AS enclosure
    FROM groups
    JOIN feed ON groups.feed_id = feed.id
    WHERE groups.is_rt = :p1
    ORDER BY groups.time DESC
    LIMIT :p2
"""

_SIMILAR_QUERY = """
    SELECT
        g.id,
        g.time,
        g.is_rt,
        feed.title,
        feed.description,
        feed.source_name,
        (
            SELECT COALESCE(feed.enclosure, '')
            FROM compares
            JOIN feed ON feed.id = compares.feed_id
            WHERE compares.group_id = g.id
              AND feed.enclosure IS NOT NULL
              AND feed.enclosure != ''
            LIMIT 1
        ) AS enclosure
    FROM groups g
    JOIN feed ON feed.id = g.feed_id
    WHERE g.id <> :p1
    ORDER BY
        1 - (g.embedding <=> (SELECT embedding FROM groups WHERE id = :p1)) DESC,
        g.time DESC
    LIMIT :p2
"""

_BY_ID_QUERY = """
    SELECT
        g.id,
        fc.title,
        fc.description,
        fc.full_text,
        g.time,
        g.views AS views_count,
        (
            SELECT COALESCE(f_enc.enclosure, '')
            FROM compares AS c_enc
            JOIN feed AS f_enc ON f_enc.id = c_enc.feed_id
            WHERE c_enc.group_id = g.id
              AND f_enc.enclosure IS NOT NULL
              AND f_enc.enclosure != ''
            LIMIT 1
        ) AS enclosure,
        COALESCE(
            json_agg(
                json_build_object(
                    'title', fc.title,
                    'link', fc.link,
                    'name', fc.source_name,
                    'pubDate', fc.time,
                    'description', fc.description,
                    'fullText', fc.full_text,
                    'enclosure', fc.enclosure
                ) ORDER BY fc.time DESC, fc.id
            ) FILTER (WHERE fc.id IS NOT NULL),
        '[]'::json) AS sources_json
    FROM groups AS g
    LEFT JOIN compares AS cp ON cp.group_id = g.id
    LEFT JOIN feed AS fc ON fc.id = cp.feed_id
    WHERE g.id = :p1
    GROUP BY g.id, g.title, g.description, g.full_text, g.time, g.views
"""

_ADD_VIEWS = "UPDATE groups SET views = views + :views WHERE id = :id"


class DatabaseError(Exception):
    """Raised when a query against the database fails."""


class GroupNotFoundError(DatabaseError):
    """Raised when no group has the requested id."""


def connection_url(env: Optional[Mapping[str, str]] = None) -> URL:
    """Build the PostgreSQL connection URL from DB_* environment variables."""
    env = os.environ if env is None else env
    port = env.get("DB_PORT") or ""
    return URL.create(
        "postgresql",
        username=env.get("DB_LOGIN") or None,
        password=env.get("DB_PASSWORD") or None,
        host=env.get("DB_HOST") or None,
        port=int(port) if port else None,
        database=DATABASE_NAME,
        query={"sslmode": "disable"},
    )


def build_list_query(
    last_date: datetime, limit: int, search: Iterable[str] = ()
) -> tuple[str, dict[str, Any]]:
    """Return the SQL and parameters for a page of groups older than last_date."""
    params: dict[str, Any] = {"p1": last_date}
    sql = _LIST_QUERY
    terms = list(search)
    if terms and terms[0] != "":
        clauses = []
        for term in terms:
            pattern = "%" + term.replace(" ", "%") + "%"
            for column in ("feed.title", "feed.description", "feed.full_text"):
                name = f"p{len(params) + 1}"
                clauses.append(f"{column} ILIKE :{name}")
                params[name] = pattern
        sql += " AND (" + " OR ".join(clauses) + ")"
    name = f"p{len(params) + 1}"
    sql += f"\n    ORDER BY groups.time DESC\n    LIMIT :{name}"
    params[name] = limit
    return sql, params


def parse_sources(raw: Any) -> list[Source]:
    """Decode the aggregated JSON array of sources; raise ValueError if malformed."""
    if raw is None:
        return []
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode()
    if isinstance(raw, str):
        if not raw.strip():
            return []
        raw = json.loads(raw)
    if not isinstance(raw, list):
        raise ValueError(f"sources must be a JSON array, got {type(raw).__name__}")
    try:
        return [Source.from_dict(item) for item in raw]
    except (KeyError, TypeError, AttributeError) as exc:
        raise ValueError(f"malformed source entry: {exc!r}") from exc


def _as_datetime(value: Any) -> datetime:
    return value if isinstance(value, datetime) else _parse_time(value)


def _list_item(row: Mapping[str, Any]) -> ListItem:
    enclosure = row["enclosure"]
    return ListItem(
        id=int(row["id"]),
        time=_as_datetime(row["time"]),
        title=row["title"] or "",
        description=row["description"] or "",
        enclosure=None if enclosure is None else str(enclosure),
        is_rt=bool(row["is_rt"]),
        source_name=row["source_name"] or "",
    )


class Database:
    """Read and update news groups."""

    def __init__(self, engine: Any, logger: Optional[logging.Logger] = None) -> None:
        self.engine = engine
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_env(
        cls, logger: Optional[logging.Logger] = None, env: Optional[Mapping[str, str]] = None
    ) -> "Database":
        """Connect using DB_LOGIN, DB_PASSWORD, DB_HOST and DB_PORT."""
        try:
            engine = create_engine(connection_url(env), pool_pre_ping=True)
            with engine.connect():
                pass
        except (SQLAlchemyError, ImportError) as exc:
            raise DatabaseError(f"failed to connect to database: {exc}") from exc
        return cls(engine, logger)

    def _select(self, sql: str, params: Mapping[str, Any]) -> list[ListItem]:
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(text(sql), dict(params)).mappings().all()
        except SQLAlchemyError as exc:
            self.logger.error("Error executing query: %s", exc)
            raise DatabaseError(str(exc)) from exc
        return [_list_item(row) for row in rows]

    def _add_views(self, group_id: int, views: int) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(text(_ADD_VIEWS), {"views": views, "id": group_id})
        except SQLAlchemyError as exc:
            self.logger.error("Error executing query: %s", exc)
            raise DatabaseError(str(exc)) from exc

    def get_last_index(self) -> int:
        """Return the highest group id."""
        try:
            with self.engine.connect() as conn:
                index = conn.execute(text("SELECT MAX(id) FROM groups")).scalar()
        except SQLAlchemyError as exc:
            self.logger.error("Error getting last index: %s", exc)
            raise DatabaseError(str(exc)) from exc
        if index is None:
            self.logger.error("Error getting last index: no groups")
            raise DatabaseError("no groups found")
        return int(index)

    def get(self, last_date: datetime, limit: int, *args: str) -> list[ListItem]:
        """Return up to limit groups older than last_date, newest first.

        Extra arguments are search terms matched against title, description
        and full text; the filter applies only when the first term is not empty.
        """
        sql, params = build_list_query(last_date, limit, args)
        return self._select(sql, params)

    def get_top_groups_by_feed_count(self, limit: int) -> list[ListItem]:
        """Return the recent groups with the most sources."""
        return self._select(_TOP_QUERY, {"p1": limit})

    def get_rt_groups(self, limit: int, is_rt: bool) -> list[ListItem]:
        """Return the newest groups with the given is_rt flag."""
        return self._select(_RT_QUERY, {"p1": is_rt, "p2": limit})

    def get_similar_groups(self, group_id: int, limit: int) -> list[ListItem]:
        """Return groups ordered by embedding similarity to group_id."""
        return self._select(_SIMILAR_QUERY, {"p1": group_id, "p2": limit})

    def get_by_id(self, group_id: int) -> News:
        """Return one group together with all of its sources."""
        try:
            with self.engine.connect() as conn:
                row = conn.execute(text(_BY_ID_QUERY), {"p1": group_id}).mappings().first()
        except SQLAlchemyError as exc:
            self.logger.error("Error executing query: %s", exc)
            raise DatabaseError(f"failed to query group {group_id}: {exc}") from exc
        if row is None:
            raise GroupNotFoundError(f"group with ID {group_id} not found")

        try:
            sources = parse_sources(row["sources_json"])
        except ValueError as exc:
            self.logger.error("Error parsing sources for group %s: %s", group_id, exc)
            raise DatabaseError(f"failed to parse sources for group {group_id}: {exc}") from exc

        return News(
            id=int(row["id"]),
            title=row["title"] or "",
            time=_as_datetime(row["time"]),
            description=row["description"],
            full_text=row["full_text"],
            enclosure=row["enclosure"],
            sources=sources,
            views_count=int(row["views_count"] or 0),
        )

    def increment_views(self, group_id: int) -> None:
        """Add one view to a group."""
        self._add_views(group_id, 1)

    def update_views(self, group_id: int, views: int) -> None:
        """Add views to a group."""
        self._add_views(group_id, views)

    def update_views_batch(self, views: Mapping[int, int]) -> None:
        """Add views to many groups in one transaction."""
        try:
            with self.engine.begin() as conn:
                for group_id, count in views.items():
                    conn.execute(text(_ADD_VIEWS), {"views": count, "id": group_id})
        except SQLAlchemyError as exc:
            self.logger.error("Error updating views: %s", exc)
            raise DatabaseError(str(exc)) from exc