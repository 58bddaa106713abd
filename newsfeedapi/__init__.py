"""HTTP API over aggregated news groups, with a PostgreSQL store and a Redis cache."""

__version__ = "0.1.0"
__all__ = ["__version__"]