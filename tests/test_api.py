import fnmatch
import time
from datetime import datetime, timedelta, timezone

import redis
from flask import Flask

from newsfeedapi.api import API, parse_date, parse_limit, parse_search
from newsfeedapi.cache import RedisCache
from newsfeedapi.database import DatabaseError, GroupNotFoundError
from newsfeedapi.models import ListItem, News, Source

WHEN = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeRedis:
    def __init__(self, broken=False):
        self.data = {}
        self.ttls = {}
        self.broken = broken

    def _check(self):
        if self.broken:
            raise redis.ConnectionError("down")

    def set(self, key, value, ex=None):
        self._check()
        self.data[key] = value.encode() if isinstance(value, str) else value
        self.ttls[key] = ex

    def get(self, key):
        self._check()
        return self.data.get(key)

    def exists(self, key):
        self._check()
        return int(key in self.data)

    def incr(self, key):
        self._check()
        value = int(self.data[key]) + 1
        self.data[key] = str(value).encode()
        return value

    def keys(self, pattern):
        self._check()
        return [k.encode() for k in self.data if fnmatch.fnmatchcase(k, pattern)]

    def delete(self, key):
        self._check()
        self.data.pop(key, None)


class FakeDatabase:
    def __init__(self, items=(), news=None, error=None):
        self.items = list(items)
        self.news = news
        self.error = error
        self.calls = []
        self.updated = {}

    def _result(self, name, *args):
        self.calls.append((name, args))
        if self.error:
            raise self.error
        return list(self.items)

    def get_last_index(self):
        self.calls.append(("max", ()))
        if self.error:
            raise self.error
        return 7

    def get(self, last_date, limit, *search):
        return self._result("get", last_date, limit, *search)

    def get_top_groups_by_feed_count(self, limit):
        return self._result("top", limit)

    def get_rt_groups(self, limit, is_rt):
        return self._result("rt", limit, is_rt)

    def get_similar_groups(self, group_id, limit):
        return self._result("similar", group_id, limit)

    def get_by_id(self, group_id):
        self.calls.append(("by_id", (group_id,)))
        if self.error:
            raise self.error
        return self.news

    def update_views(self, group_id, views):
        self.updated[group_id] = views


ITEMS = [
    ListItem(id=1, time=WHEN, title="First", description="d", is_rt=True, source_name="Wire"),
    ListItem(id=2, time=WHEN - timedelta(hours=1), title="Second", enclosure="https://img.example.com/a.jpg"),
]

NEWS = News(
    id=5,
    title="Group",
    time=WHEN,
    sources=[Source(title="s", name="Wire", time=WHEN, link="https://news.example.com/a")],
)


def make(db, client=None):
    client = client if client is not None else FakeRedis()
    api = API(db, RedisCache(client))
    app = Flask(__name__)
    api.register(app)
    return api, app.test_client(), client


def wait_for(predicate):
    deadline = time.monotonic() + 2
    while time.monotonic() < deadline and not predicate():
        time.sleep(0.01)
    return predicate()


def test_parse_limit():
    assert parse_limit("20", 15) == 20
    assert parse_limit("abc", 15) == 15
    assert parse_limit("-1", 15) == 15
    assert parse_limit("", 10) == 10


def test_parse_date_valid_and_fallback():
    assert parse_date("2024-01-02T03:04:05Z") == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    before = datetime.now(timezone.utc)
    assert before <= parse_date("garbage") <= datetime.now(timezone.utc)
    assert before <= parse_date("") <= datetime.now(timezone.utc)


def test_parse_search():
    assert parse_search(" a, b ") == ["a", "b"]
    assert parse_search("") == [""]


def test_check():
    _, client, _ = make(FakeDatabase())
    assert client.get("/api/ping").get_json() == {"message": "pong"}


def test_get_max_and_error():
    _, client, _ = make(FakeDatabase())
    assert client.get("/api/v1/max").get_json() == {"max": 7}
    _, client, _ = make(FakeDatabase(error=DatabaseError("boom")))
    response = client.get("/api/v1/max")
    assert response.status_code == 500
    assert response.get_json() == {"error": "boom"}


def test_get_defaults():
    db = FakeDatabase(ITEMS)
    _, client, _ = make(db)
    response = client.get("/api/v1/get/all")
    assert response.get_json() == {"items": [item.to_dict() for item in ITEMS]}
    name, (date, limit, *search) = db.calls[0]
    assert (name, limit, search) == ("get", 15, [""])
    assert date.tzinfo is not None


def test_get_with_params():
    db = FakeDatabase(ITEMS)
    _, client, _ = make(db)
    client.get(
        "/api/v1/get/all",
        query_string={"q": "a , b", "limit": "5", "date": "2024-01-02T03:04:05Z"},
    )
    assert db.calls[0] == (
        "get",
        (datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc), 5, "a", "b"),
    )


def test_get_database_error():
    _, client, _ = make(FakeDatabase(error=DatabaseError("fail")))
    response = client.get("/api/v1/get/all")
    assert response.status_code == 500
    assert response.get_json() == {"error": "fail"}


def test_get_top_uses_cache_after_first_call():
    db = FakeDatabase(ITEMS)
    _, client, store = make(db)
    first = client.get("/api/v1/get/top").get_json()
    second = client.get("/api/v1/get/top").get_json()
    assert first == second == {"items": [item.to_dict() for item in ITEMS]}
    assert db.calls == [("top", (15,))]
    assert store.ttls["clusters:top"] == timedelta(minutes=10)


def test_get_top_ignores_malformed_cache():
    db = FakeDatabase(ITEMS)
    client_store = FakeRedis()
    client_store.data["clusters:top"] = b'{"not": "a list"}'
    _, client, _ = make(db, client_store)
    response = client.get("/api/v1/get/top")
    assert response.get_json()["items"] == [item.to_dict() for item in ITEMS]
    assert len(db.calls) == 1


def test_get_top_works_when_cache_is_down():
    db = FakeDatabase(ITEMS)
    _, client, _ = make(db, FakeRedis(broken=True))
    response = client.get("/api/v1/get/top")
    assert response.status_code == 200
    assert len(response.get_json()["items"]) == len(ITEMS)


def test_get_rt_not_rt():
    db = FakeDatabase(ITEMS)
    _, client, store = make(db)
    client.get("/api/v1/get/reg", query_string={"rt": "FALSE", "limit": "3"})
    assert db.calls == [("rt", (3, False))]
    assert "clusters:not_rt" in store.data
    assert "clusters:rt" not in store.data


def test_get_by_id_invalid():
    _, client, _ = make(FakeDatabase())
    response = client.get("/api/v1/get/abc")
    assert response.status_code == 400
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_get_by_id_success_caches_and_counts_view():
    db = FakeDatabase(news=NEWS)
    _, client, store = make(db)
    response = client.get("/api/v1/get/5")
    assert response.get_json() == NEWS.to_dict()
    assert "clusters:5" in store.data
    assert wait_for(lambda: store.data.get("views:5") == b"1")


def test_get_by_id_from_cache():
    db = FakeDatabase(news=NEWS)
    _, client, _ = make(db)
    client.get("/api/v1/get/5")
    response = client.get("/api/v1/get/5")
    assert response.get_json() == NEWS.to_dict()
    assert db.calls == [("by_id", (5,))]


def test_get_by_id_not_found():
    _, client, _ = make(FakeDatabase(error=GroupNotFoundError("group with ID 9 not found")))
    response = client.get("/api/v1/get/9")
    assert response.status_code == 500
    assert response.get_json() == {"error": "group with ID 9 not found"}


def test_get_similar():
    db = FakeDatabase(ITEMS)
    _, client, store = make(db)
    response = client.get("/api/v1/get/similar/3")
    assert response.get_json()["items"] == [item.to_dict() for item in ITEMS]
    assert db.calls == [("similar", (3, 10))]
    assert store.ttls["clusters:similar:3"] == timedelta(hours=1)
    assert client.get("/api/v1/get/similar/x").status_code == 400


def test_flush_views_moves_counters():
    db = FakeDatabase()
    api, _, store = make(db)
    store.data.update({"views:1": b"3", "views:2": b"4", "other": b"1"})
    assert api.flush_views() == {1: 3, 2: 4}
    assert db.updated == {1: 3, 2: 4}
    assert sorted(store.data) == ["other"]


def test_flush_views_cache_error():
    db = FakeDatabase()
    api, _, _ = make(db, FakeRedis(broken=True))
    assert api.flush_views() == {}
    assert db.updated == {}


def test_views_updater_runs_periodically():
    db = FakeDatabase()
    api, _, store = make(db)
    store.data["views:8"] = b"2"
    stop = api.start_views_updater(0.01)
    try:
        assert stop.is_set() is False
        assert wait_for(lambda: db.updated == {8: 2})
        assert "views:8" not in store.data
    finally:
        stop.set()
    assert stop.is_set() is True