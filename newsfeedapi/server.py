"""HTTP application shell: CORS for the versioned API and gzip responses."""

from __future__ import annotations

import gzip
import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Mapping, Optional

from flask import Flask, Response, g, request

API_V1_PREFIX = "/api/v1"

DEFAULT_METHODS = ("GET", "POST", "PUT", "DELETE", "OPTIONS")
DEFAULT_HEADERS = (
    "Origin", "Content-Type", "Content-Length", "Accept-Encoding", "X-CSRF-Token",
    "Authorization", "accept", "Cache-Control", "X-Requested-With",
)


def parse_allowed_origins(value: Optional[str]) -> list[str]:
    """Split a comma separated origin list; an empty value allows every origin."""
    return [origin.strip() for origin in (value or "*").split(",")]


@dataclass
class CorsConfig:
    """Cross-origin policy applied to the versioned API."""

    allow_origins: list[str] = field(default_factory=lambda: ["*"])
    allow_methods: tuple[str, ...] = DEFAULT_METHODS
    allow_headers: tuple[str, ...] = DEFAULT_HEADERS
    allow_credentials: bool = True
    max_age: timedelta = timedelta(hours=12)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "CorsConfig":
        """Read the allowed origins from ALLOWED_CORS_ORIGINS."""
        env = os.environ if env is None else env
        return cls(allow_origins=parse_allowed_origins(env.get("ALLOWED_CORS_ORIGINS")))

    def headers_for(self, origin: Optional[str], preflight: bool = False) -> Optional[dict[str, str]]:
        """CORS headers for a request from origin: {} if not cross-origin, None if refused."""
        if not origin:
            return {}
        allow_all = "*" in self.allow_origins
        if not allow_all and origin not in self.allow_origins:
            return None
        headers: dict[str, str] = {}
        if self.allow_credentials:
            headers["Access-Control-Allow-Credentials"] = "true"
        if preflight:
            headers["Access-Control-Allow-Methods"] = ",".join(self.allow_methods)
            headers["Access-Control-Allow-Headers"] = ",".join(self.allow_headers)
            headers["Access-Control-Max-Age"] = str(int(self.max_age.total_seconds()))
        headers["Access-Control-Allow-Origin"] = "*" if allow_all else origin
        if not allow_all:
            headers["Vary"] = "Origin"
        return headers


def _apply_headers(response: Response, headers: Mapping[str, str]) -> None:
    for name, value in headers.items():
        if name == "Vary":
            response.vary.add(value)
        else:
            response.headers.setdefault(name, value)


def create_flask_app(cors: Optional[CorsConfig] = None) -> Flask:
    """Create the Flask application with CORS on /api/v1 and gzip compression."""
    cors = cors if cors is not None else CorsConfig.from_env()
    app = Flask(__name__)

    @app.before_request
    def _cors_check():
        if not request.path.startswith(API_V1_PREFIX):
            return None
        preflight = request.method == "OPTIONS"
        headers = cors.headers_for(request.headers.get("Origin"), preflight)
        if headers is None:
            return Response(status=403)
        if preflight and headers:
            response = Response(status=204)
            _apply_headers(response, headers)
            return response
        g.cors_headers = headers
        return None

    @app.after_request
    def _compress(response: Response) -> Response:
        skip = (
            response.direct_passthrough
            or response.is_streamed
            or request.accept_encodings.quality("gzip") <= 0
            or response.status_code < 200
            or response.status_code in (204, 304)
            or "Content-Encoding" in response.headers
        )
        if not skip:
            response.set_data(gzip.compress(response.get_data(), compresslevel=6))
            response.headers["Content-Encoding"] = "gzip"
            response.vary.add("Accept-Encoding")
        return response

    @app.after_request
    def _cors_headers(response: Response) -> Response:
        _apply_headers(response, g.pop("cors_headers", None) or {})
        return response

    return app