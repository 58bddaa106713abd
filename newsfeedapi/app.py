"""Application wiring and command entry point."""

from __future__ import annotations

import argparse
import logging
import os
from typing import Mapping, Optional

from flask import Flask

from .api import API
from .cache import RedisCache
from .database import Database, DatabaseError
from .server import CorsConfig, create_flask_app

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080


def create_app(api: API, cors: Optional[CorsConfig] = None) -> Flask:
    """Build the Flask application serving api."""
    app = create_flask_app(cors if cors is not None else CorsConfig.from_env())
    api.register(app)
    return app


def build_api(
    env: Optional[Mapping[str, str]] = None, logger: Optional[logging.Logger] = None
) -> API:
    """Connect to the database and cache from the environment and start view flushing."""
    env = os.environ if env is None else env
    logger = logger or logging.getLogger("newsfeedapi")
    database = Database.from_env(logger, env)
    cache = RedisCache.from_address(env.get("REDIS_ADDR", ""), env.get("REDIS_PASSWORD", ""))
    api = API(database, cache, logger)
    api.start_views_updater()
    return api


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Serve the news aggregator API.")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger("newsfeedapi")
    try:
        api = build_api(logger=logger)
    except DatabaseError as exc:
        logger.critical("%s", exc)
        return 1
    create_app(api).run(host=args.host, port=args.port)
    return 0