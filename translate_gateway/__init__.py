"""Translation gateway: rate-limited, retrying, batched dispatch with result caching."""

__version__ = "0.3.0"
