[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "newsfeedapi"
version = "0.1.0"
description = "HTTP API serving aggregated news groups from PostgreSQL with a Redis cache"
requires-python = ">=3.10"
keywords = ["news", "aggregator", "rest", "api", "flask", "redis", "postgresql"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]
dependencies = [
    "flask",
    "redis",
    "sqlalchemy",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
newsfeedapi = "newsfeedapi.app:main"

[tool.hatch.build.targets.wheel]
packages = ["newsfeedapi"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
