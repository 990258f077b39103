"""Base HTTP client that routes requests through the api-cache core."""

import time
from typing import Any, Dict, Optional
from urllib.parse import urljoin

import requests

from api_cache.core.exceptions import RateLimitExceeded
from api_cache.core.manager import ApiCacheManager
from api_cache.utils.logger import get_logger

MAX_ATTRIBUTES_LENGTH = 255


class BaseApiClient:
    """Issues HTTP requests for one upstream API with caching and rate limiting.

    Vendor clients subclass this and add one method per endpoint, each
    building params and calling :meth:`send_cached_request`.

    Example:
        >>> manager = ApiCacheManager.from_config({"clients": {"demo": {"base_url": "https://api.example.com/v1"}}})
        >>> client = BaseApiClient("demo", manager)
        >>> result = client.send_cached_request("predictions", {"query": "test"})
        >>> result["is_cached"]
        False
    """

    def __init__(
        self,
        client_name: str,
        manager: ApiCacheManager,
        base_url: Optional[str] = None,
        version: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
        use_cache: bool = True,
    ) -> None:
        settings = manager.config.client_config(client_name)
        self.client_name = client_name
        self.manager = manager
        self.base_url = base_url or settings.get("base_url") or ""
        self.version = version if version is not None else settings.get("version")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.use_cache = use_cache
        self.logger = get_logger(f"clients.{client_name}")

    def build_url(self, endpoint: str) -> str:
        return urljoin(self.base_url.rstrip("/") + "/", endpoint.lstrip("/"))

    def get_auth_headers(self) -> Dict[str, str]:
        """Headers added to every request; subclasses supply credentials."""
        return {}

    def calculate_cost(self, response_body: Optional[str]) -> Optional[float]:
        """Monetary cost of a response, stored in the ``cost`` column. None when the API is not priced."""
        return None

    def should_cache(self, response_body: Optional[str]) -> bool:
        """Whether a successful response may be cached; override to reject error payloads sent with 2xx."""
        return True

    def send_request(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        method: str = "GET",
        attributes: Optional[str] = None,
        credits: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Perform the live HTTP call and describe it in the api_result shape.

        Network errors from ``requests`` propagate to the caller.
        """
        params = params or {}
        url = self.build_url(endpoint)
        method = method.upper()
        headers = self.get_auth_headers()

        start = time.perf_counter()
        if method == "GET":
            response = self.session.request(method, url, params=params, headers=headers, timeout=self.timeout)
        else:
            response = self.session.request(method, url, json=params, headers=headers, timeout=self.timeout)
        elapsed = time.perf_counter() - start

        request = response.request
        body = request.body if request is not None else None
        if isinstance(body, bytes):
            body = body.decode("utf-8", errors="replace")

        self.logger.debug("%s %s -> %s in %.3fs", method, url, response.status_code, elapsed)

        return {
            "request": {
                "base_url": self.base_url,
                "full_url": request.url if request is not None else url,
                "method": method,
                "attributes": attributes,
                "credits": credits,
                "cost": self.calculate_cost(response.text),
                "headers": dict(request.headers) if request is not None else headers,
                "body": body,
            },
            "response": response,
            "response_time": elapsed,
            "is_cached": False,
        }

    def send_cached_request(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        method: str = "GET",
        attributes: Optional[str] = None,
        amount: int = 1,
        ttl: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Serve from cache when possible, otherwise call the API and cache a successful result.

        Args:
            endpoint: API endpoint relative to ``base_url``
            params: Query params for GET, JSON body otherwise
            method: HTTP method
            attributes: Free-form attributes stored with the row, cut to 255 characters
            amount: Rate-limit attempts the call consumes, also stored as ``credits``
            ttl: Seconds until expiry; defaults to the client's ``cache_ttl``

        Raises:
            RateLimitExceeded: When a live call is needed but the client is rate limited
        """
        params = params or {}
        cache_key = self.manager.generate_cache_key(self.client_name, endpoint, params, method, self.version)

        if self.use_cache:
            cached = self.manager.get_cached_response(self.client_name, cache_key)
            if cached is not None:
                self.logger.debug("Serving %s from cache", cache_key)
                return cached

        if not self.manager.allow_request(self.client_name):
            raise RateLimitExceeded(self.client_name, self.manager.get_available_in(self.client_name))

        if attributes is not None:
            attributes = attributes[:MAX_ATTRIBUTES_LENGTH]

        result = self.send_request(endpoint, params, method, attributes, amount)
        self.manager.increment_attempts(self.client_name, amount)

        response = result["response"]
        successful = 200 <= response.status_code < 300
        if not successful:
            self.logger.warning("%s %s returned %s, not caching", method, endpoint, response.status_code)
        elif self.use_cache and response.content:
            if self.should_cache(response.text):
                self.manager.store_response(
                    self.client_name,
                    cache_key,
                    params,
                    result,
                    endpoint,
                    version=self.version,
                    ttl=ttl,
                    attributes=attributes,
                    credits=amount,
                )
            else:
                self.logger.warning("Response for %s rejected by should_cache, not caching", cache_key)

        return result
