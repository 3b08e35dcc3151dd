"""
Serving Module - metrics cache and the admin HTTP API
"""
from .cache import MetricsCache, close_redis, get_redis, init_redis

__all__ = [
    "MetricsCache",
    "init_redis",
    "close_redis",
    "get_redis",
]
