# newsfeedapi

An HTTP API over a news aggregator database. It serves groups of related news
items stored in PostgreSQL and caches list and item responses in Redis. It
counts views of single groups in Redis and writes the counts to the database
every ten minutes.

## Installation

    pip install .

The package does not install a PostgreSQL driver. SQLAlchemy needs one for
`postgresql` connection URLs, for example psycopg2, which you install
separately.

To run the tests:

    pip install .[test]
    pytest

## Running

    newsfeedapi [--host HOST] [--port PORT]

`--host` defaults to `0.0.0.0` and `--port` to `8080`. The command serves the
application with Flask's built-in server. If the database cannot be reached at
start-up, it logs the error and exits with status 1.

Settings are read from the environment:

| Variable               | Meaning                                                   |
|------------------------|-----------------------------------------------------------|
| `DB_LOGIN`             | PostgreSQL user                                           |
| `DB_PASSWORD`          | PostgreSQL password                                       |
| `DB_HOST`, `DB_PORT`   | PostgreSQL address; the database is named `newagregator`  |
| `REDIS_ADDR`           | Redis address as `host:port`, default `localhost:6379`    |
| `REDIS_PASSWORD`       | Redis password                                            |
| `ALLOWED_CORS_ORIGINS` | Comma separated list of origins, default `*`              |

## Endpoints

| Method | Path                       | Description                                             |
|--------|----------------------------|---------------------------------------------------------|
| GET    | `/api/ping`                | Health check, returns `{"message": "pong"}`             |
| GET    | `/api/v1/max`              | Highest group id, as `{"max": ...}`                     |
| GET    | `/api/v1/get/all`          | Groups older than `date` (RFC 3339, default now); `limit` (default 15), `q` |
| GET    | `/api/v1/get/top`          | Groups of the last 27 hours with the most sources; `limit` |
| GET    | `/api/v1/get/reg`          | Newest groups filtered by `rt=true` (default) or another value for false; `limit` |
| GET    | `/api/v1/get/similar/<id>` | Groups ordered by embedding similarity; `limit` (default 10) |
| GET    | `/api/v1/get/<id>`         | One group with all of its sources                       |

List endpoints answer `{"items": [...]}`. `q` takes comma separated search
terms matched against title, description and full text; a space inside a term
matches any run of characters. An invalid `limit` or `date` falls back to the
default. A non-numeric id gives status 400, a database failure status 500 with
`{"error": ...}`.

Responses of `get/top` and `get/reg` are cached for ten minutes, those of
`get/similar/<id>` and `get/<id>` for an hour. Each database read through
`get/<id>` counts one view.

Requests under `/api/v1` from an origin that is not allowed get status 403;
preflight `OPTIONS` requests are answered with the CORS headers. Responses are
gzip-compressed when the client accepts it.

## Using it as a library

```python
from newsfeedapi.app import build_api, create_app
from newsfeedapi.server import CorsConfig

api = build_api()
app = create_app(api, CorsConfig.from_env())
app.run(port=8080)
```

`build_api` connects to the database and Redis from the environment (or from
the mapping passed as `env`) and starts the background thread that flushes
view counts. `API.start_views_updater` returns a `threading.Event`; setting it
stops the thread. `API.flush_views` does one flush and returns the counts
written.

`newsfeedapi.database.Database` and `newsfeedapi.cache.RedisCache` can be used
on their own. Failures raise `DatabaseError` (with `GroupNotFoundError` for an
unknown id) and `CacheError`. The records returned are the dataclasses in
`newsfeedapi.models`: `ListItem`, `News` and `Source`, each with `to_dict` and
`from_dict` for their JSON form.

## What it does not do

The package only reads from and updates an existing database. It does not
create the `groups`, `feed` and `compares` tables, does not fill them, and does
not compute the embeddings that `get/similar/<id>` orders by; the similarity
query expects a PostgreSQL column type that supports the `<=>` distance
operator.