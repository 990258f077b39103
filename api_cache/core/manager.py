"""ApiCacheManager: cache key generation and cache/rate-limit orchestration."""

import hashlib
from typing import Any, Dict, Optional

from api_cache.cache.compression import CompressionService
from api_cache.cache.repository import CacheRepository, CacheStore
from api_cache.core.config import ConfigurationManager, as_configuration
from api_cache.database.manager import DatabaseManager
from api_cache.database.models import CachedHttpResponse
from api_cache.throttling.counters import InMemoryCounterStore, RedisCounterStore
from api_cache.throttling.manager import RateLimiter, RateLimitService
from api_cache.utils.logger import get_logger
from api_cache.utils.params import canonical_json, summarize_params, validate_identifier


def _response_parts(response: Any):
    """Extract (status, headers, body) from a requests.Response or a cached response."""
    status = response.status() if callable(getattr(response, "status", None)) else response.status_code

    headers = response.headers() if callable(getattr(response, "headers", None)) else response.headers
    headers = dict(headers or {})

    if callable(getattr(response, "body", None)):
        body = response.body()
    else:
        content = response.content
        try:
            body = content.decode("utf-8") if isinstance(content, bytes) else content
        except UnicodeDecodeError:
            body = content
    return status, headers, body


class ApiCacheManager:
    """Facade used by HTTP clients: cache keys, cached responses and rate limits.

    The caller flow is: ``generate_cache_key`` -> ``get_cached_response``;
    on a miss, ``allow_request`` -> live call -> ``increment_attempts`` ->
    ``store_response``. Concurrent misses for the same key may both fetch
    and both store; the last write wins.

    Example:
        >>> manager = ApiCacheManager.from_config({"clients": {"demo": {}}})
        >>> key = manager.generate_cache_key("demo", "/users", {"name": "John"})
        >>> manager.get_cached_response("demo", key) is None
        True
    """

    def __init__(
        self,
        repository: CacheStore,
        rate_limiter: RateLimiter,
        config: Any = None,
    ) -> None:
        self.repository = repository
        self.rate_limiter = rate_limiter
        self.config = as_configuration(config)
        self.logger = get_logger("core.manager")

    @classmethod
    def from_config(cls, config: Any = None) -> "ApiCacheManager":
        """Wire the SQLite repository, compression and the configured counter backend."""
        configuration: ConfigurationManager = as_configuration(config)
        settings = configuration.config

        db_manager = DatabaseManager(settings["database"]["path"])
        compression = CompressionService(configuration)
        repository = CacheRepository(db_manager, compression, table_prefix=settings["database"]["table_prefix"])

        if settings["rate_limit"]["backend"] == "redis":
            store = RedisCounterStore(settings["rate_limit"]["redis_url"])
        else:
            store = InMemoryCounterStore()
        rate_limiter = RateLimitService(configuration, store)

        return cls(repository, rate_limiter, configuration)

    def get_cache_repository(self) -> CacheStore:
        return self.repository

    # Cache keys

    def generate_cache_key(
        self,
        client_name: str,
        endpoint: str,
        params: Dict[str, Any],
        method: str = "GET",
        version: Optional[str] = None,
    ) -> str:
        """Generate a deterministic cache key.

        Format: ``{client}.{method}.{endpoint}.{params_hash}[.{version}]``

        Params are normalized (mapping keys sorted recursively), encoded as
        canonical JSON and hashed with SHA-1, so key order never matters and
        key length does not grow with the payload. One leading slash of the
        endpoint is dropped.

        Raises:
            ValidationError: For invalid client names or params that cannot be encoded
        """
        validate_identifier(client_name)

        params_hash = hashlib.sha1(canonical_json(params).encode("utf-8")).hexdigest()

        if endpoint.startswith("/"):
            endpoint = endpoint[1:]

        components = [client_name, method.lower(), endpoint, params_hash]
        if version is not None:
            components.append(version)

        key = ".".join(components)
        self.logger.debug("Generated cache key for %s: %s", client_name, key)
        return key

    # Cached responses

    def store_response(
        self,
        client_name: str,
        cache_key: str,
        params: Dict[str, Any],
        api_result: Dict[str, Any],
        endpoint: str,
        version: Optional[str] = None,
        ttl: Optional[int] = None,
        attributes: Optional[str] = None,
        credits: Optional[int] = None,
    ) -> None:
        """Cache a live API result.

        Args:
            client_name: Client identifier
            cache_key: Key from generate_cache_key
            params: Request parameters, summarized for inspection
            api_result: ``{"response": ..., "response_time": float, "request": {...}}``
            endpoint: API endpoint
            version: API version
            ttl: Seconds until expiry; defaults to the client's ``cache_ttl``
            attributes: Free-form attributes stored with the row
            credits: Credits consumed by the request
        """
        if ttl is None:
            ttl = self.config.client_config(client_name).get("cache_ttl")

        request = api_result.get("request") or {}
        status, headers, body = _response_parts(api_result["response"])

        metadata = {
            "endpoint": endpoint,
            "version": version,
            "base_url": request.get("base_url"),
            "full_url": request.get("full_url"),
            "method": request.get("method"),
            "attributes": attributes,
            "credits": credits,
            "cost": request.get("cost"),
            "request_params_summary": summarize_params(params),
            "request_headers": request.get("headers"),
            "request_body": request.get("body"),
            "response_headers": headers,
            "response_body": body,
            "response_status_code": status,
            "response_time": api_result.get("response_time"),
        }

        self.repository.store(client_name, cache_key, metadata, ttl)
        self.logger.debug("Stored API response for %s key %s (ttl=%s)", client_name, cache_key, ttl)

    def get_cached_response(self, client_name: str, cache_key: str) -> Optional[Dict[str, Any]]:
        """Return the cached result in the same shape as a live one, or None on a miss."""
        cached = self.repository.get(client_name, cache_key)
        if not cached:
            return None

        body = cached.get("response_body") or ""
        response = CachedHttpResponse(
            status_code=cached.get("response_status_code") or 0,
            headers=cached.get("response_headers") or {},
            content=body.encode("utf-8") if isinstance(body, str) else body,
        )

        return {
            "request": {
                "base_url": cached.get("base_url"),
                "full_url": cached.get("full_url"),
                "method": cached.get("method"),
                "attributes": cached.get("attributes"),
                "credits": cached.get("credits"),
                "cost": cached.get("cost"),
                "headers": cached.get("request_headers"),
                "body": cached.get("request_body"),
            },
            "response": response,
            "response_status_code": cached.get("response_status_code"),
            "response_size": cached.get("response_size"),
            "response_time": cached.get("response_time"),
            "is_cached": True,
        }

    # Storage pass-throughs

    def get_table_name(self, client_name: str) -> str:
        return self.repository.get_table_name(client_name)

    def clear_table(self, client_name: str) -> None:
        self.repository.clear_table(client_name)

    def cleanup(self, client_name: Optional[str] = None) -> int:
        return self.repository.cleanup(client_name)

    def close(self) -> None:
        self.repository.close()

    # Rate limit pass-throughs

    def allow_request(self, client_name: str) -> bool:
        allowed = self.rate_limiter.allow_request(client_name)
        self.logger.debug("Rate limit check for %s: allowed=%s", client_name, allowed)
        return allowed

    def get_remaining_attempts(self, client_name: str) -> int:
        return self.rate_limiter.get_remaining_attempts(client_name)

    def get_available_in(self, client_name: str) -> int:
        return self.rate_limiter.get_available_in(client_name)

    def increment_attempts(self, client_name: str, amount: int = 1) -> None:
        self.rate_limiter.increment_attempts(client_name, amount)

    def clear_rate_limit(self, client_name: str) -> None:
        self.rate_limiter.clear(client_name)
