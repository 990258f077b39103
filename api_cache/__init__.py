"""api-cache - response caching and rate limiting for third-party HTTP APIs.

Deduplicates outbound requests by fingerprinting their parameters, stores
responses (optionally zlib-compressed) in per-client SQLite tables with TTL
expiry, and enforces per-client fixed-window rate limits before live calls.
"""

from api_cache.cache.compression import CompressionService
from api_cache.cache.converter import ResponsesTableCompressionConverter, ResponsesTableDecompressionConverter
from api_cache.cache.repository import CacheRepository
from api_cache.clients.base import BaseApiClient
from api_cache.core.config import ConfigurationManager
from api_cache.core.exceptions import (
    ApiCacheError,
    CompressionError,
    MigrationRowError,
    RateLimitExceeded,
    ValidationError,
)
from api_cache.core.manager import ApiCacheManager
from api_cache.throttling.manager import RateLimitService

__version__ = "0.1.0"

__all__ = [
    "ApiCacheManager",
    "BaseApiClient",
    "CacheRepository",
    "CompressionService",
    "ConfigurationManager",
    "RateLimitService",
    "ResponsesTableCompressionConverter",
    "ResponsesTableDecompressionConverter",
    "ApiCacheError",
    "CompressionError",
    "MigrationRowError",
    "RateLimitExceeded",
    "ValidationError",
]
