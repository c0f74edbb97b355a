"""
ServiceClient - Async GitHub API client with resilience patterns.

Combines:
- ResponseCache for memoizing results by call fingerprint
- CircuitBreakerRegistry for failure isolation per remote dependency
- RetryOrchestrator for classified, jittered retries
"""

from datetime import timedelta
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar

import httpx
import pydantic
from loguru import logger
from pydantic import BaseModel

from hubcore.services.cache import CacheConfig, ResponseCache, build_cache_key
from hubcore.services.circuit_breaker import CircuitBreakerRegistry
from hubcore.services.errors import (
    GraphQLError,
    RequestContext,
    RequestTimeoutError,
    ValidationError,
    classify_error,
    error_from_response,
    summarize_params,
)
from hubcore.services.retry import RetryOrchestrator, RetryPolicy

if TYPE_CHECKING:
    from hubcore.settings import Settings

T = TypeVar("T")

DEFAULT_SERVICE_ID = "github"

_MISSING = object()


class ServiceClient:
    """
    Unified client with caching, circuit breaking and retries.

    Endpoint methods only supply a cache key source, a schema and the remote
    call; everything else happens in ``call``.

    Usage:
        async with ServiceClient(base_url="https://api.github.com", token=...) as client:
            repo = await client.call(
                method="GET",
                operation="getRepository",
                params={"owner": "octocat", "repo": "hello-world"},
                fetch=lambda: client.fetch_json("GET", "/repos/octocat/hello-world"),
                schema=Repository,
            )
    """

    def __init__(
        self,
        base_url: str = "https://api.github.com",
        token: str | None = None,
        cache_config: CacheConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        service_id: str = DEFAULT_SERVICE_ID,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        debug: bool = False,
    ):
        self.base_url = base_url.rstrip("/")
        self.service_id = service_id
        self._timeout = timeout
        self._token = token
        self._headers = headers or {}
        self._debug = debug
        self._sleep = sleep

        self.retry_policy = retry_policy or RetryPolicy()
        self._cache = ResponseCache(cache_config, debug=debug)
        self._circuit_breakers = CircuitBreakerRegistry(
            self.retry_policy.circuit_breaker
        )

        # HTTP client (lazy initialization unless injected)
        self._http_client = http_client
        self._owns_http_client = http_client is None

    @classmethod
    def from_settings(cls, settings: "Settings", **kwargs: Any) -> "ServiceClient":
        """Build a client from loaded environment settings."""
        return cls(
            base_url=settings.github_api_url,
            token=settings.github_token or None,
            cache_config=settings.cache_config(),
            retry_policy=settings.retry_policy(),
            timeout=settings.request_timeout,
            headers={"User-Agent": settings.user_agent},
            **kwargs,
        )

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    @property
    def circuit_breakers(self) -> CircuitBreakerRegistry:
        return self._circuit_breakers

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            headers = {
                "Accept": "application/vnd.github+json",
                **self._headers,
            }
            if self._token:
                headers["Authorization"] = f"Bearer {self._token}"
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
                headers=headers,
                follow_redirects=True,
            )
        return self._http_client

    def _orchestrator(self, service_id: str) -> RetryOrchestrator:
        breaker = None
        if self.retry_policy.circuit_breaker is not None:
            breaker = self._circuit_breakers.get(service_id)
        if self._sleep is not None:
            return RetryOrchestrator(self.retry_policy, breaker, sleep=self._sleep)
        return RetryOrchestrator(self.retry_policy, breaker)

    async def call(
        self,
        method: str,
        operation: str,
        params: dict[str, Any] | None,
        fetch: Callable[[], Awaitable[Any]],
        schema: type[BaseModel] | None = None,
        cache_ttl: timedelta | None = None,
        use_cache: bool = True,
        service_id: str | None = None,
    ) -> Any:
        """
        Run a remote call through cache, breaker and retries.

        Args:
            method: HTTP verb or logical method name, part of the cache key
            operation: Logical operation name (e.g. ``getRepository``)
            params: Parameters identifying the call, used for the cache key
            fetch: Zero-argument coroutine factory performing the remote call
            schema: Optional pydantic model the result must validate against
            cache_ttl: Override the configured cache max age
            use_cache: Skip the cache entirely when False
            service_id: Breaker to use (defaults to the client's service)

        Returns:
            The validated model if a schema is given, the raw data otherwise

        Raises:
            CircuitOpenError: If the breaker rejects the call
            ValidationError: If the response does not match ``schema``
            ServiceError: Classified final failure after retries
        """
        service_id = service_id or self.service_id
        params = params or {}
        cache_key = build_cache_key(f"{method}:{operation}", params)

        if use_cache:
            cached = await self._cache.get(cache_key, _MISSING)
            if cached is not _MISSING:
                return self._validate(cached, schema, method, operation, params, service_id)

        context = RequestContext(
            method=method,
            operation=operation,
            params=summarize_params(params),
            service_id=service_id,
        )
        data = await self._orchestrator(service_id).execute_with_retry(fetch, context)
        result = self._validate(data, schema, method, operation, params, service_id)

        if use_cache:
            await self._cache.set(cache_key, data, cache_ttl)

        return result

    def _validate(
        self,
        data: Any,
        schema: type[BaseModel] | None,
        method: str,
        operation: str,
        params: dict[str, Any],
        service_id: str,
    ) -> Any:
        if schema is None:
            return data
        try:
            return schema.model_validate(data)
        except pydantic.ValidationError as e:
            error = classify_error(e, service_id)
            raise error.with_context(
                RequestContext(
                    method=method,
                    operation=operation,
                    params=summarize_params(params),
                    max_retries=self.retry_policy.retries,
                    service_id=service_id,
                )
            ) from e

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        schema: type[BaseModel] | None = None,
        operation: str | None = None,
        use_cache: bool | None = None,
        cache_ttl: timedelta | None = None,
    ) -> Any:
        """
        Make a REST request with resilience patterns.

        Only GET requests are cached unless ``use_cache`` says otherwise.
        """
        method = method.upper()
        should_cache = use_cache if use_cache is not None else method == "GET"
        key_params = {"path": path, "params": params, "body": json_data}

        async def do_request() -> Any:
            return await self.fetch_json(method, path, params=params, json_data=json_data)

        return await self.call(
            method=method,
            operation=operation or path,
            params=key_params,
            fetch=do_request,
            schema=schema,
            cache_ttl=cache_ttl,
            use_cache=should_cache,
        )

    async def graphql(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
        schema: type[BaseModel] | None = None,
        operation: str = "graphql",
    ) -> Any:
        """
        Execute a GraphQL query. Responses carrying ``errors`` raise GraphQLError.
        """

        async def do_query() -> Any:
            body = await self.fetch_json(
                "POST", "/graphql", json_data={"query": query, "variables": variables or {}}
            )
            if isinstance(body, dict) and body.get("errors"):
                raise GraphQLError(body["errors"], service_id=self.service_id)
            return body.get("data") if isinstance(body, dict) else body

        return await self.call(
            method="POST",
            operation=operation,
            params={"query": query, "variables": variables},
            fetch=do_query,
            schema=schema,
            use_cache=False,
        )

    async def fetch_json(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> Any:
        """Execute the actual HTTP request, raising taxonomy errors."""
        client = await self._get_http_client()

        try:
            response = await client.request(
                method=method,
                url=path,
                params=params,
                json=json_data,
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(self.service_id, self._timeout) from e
        except httpx.RequestError as e:
            raise classify_error(e, self.service_id) from e

        if response.is_error:
            raise error_from_response(response, self.service_id)

        if not response.content:
            return None
        return response.json()

    async def close(self) -> None:
        """Close the HTTP client and cleanup resources."""
        if self._http_client and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("ServiceClient closed")

    async def __aenter__(self) -> "ServiceClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    # Health and status methods

    def get_health_status(self) -> dict[str, Any]:
        """Get health status of cache and circuit breakers."""
        return {
            "cache": self._cache.get_stats().to_dict(),
            "circuit_breakers": self._circuit_breakers.get_all_status(),
            "open_circuits": self._circuit_breakers.get_open_circuits(),
        }

    def get_circuit_status(self, service_id: str | None = None) -> dict[str, Any] | None:
        """Get circuit breaker status for a specific service."""
        cb = self._circuit_breakers.find(service_id or self.service_id)
        return cb.get_status() if cb else None

    def reset_circuit(self, service_id: str | None = None) -> bool:
        """Reset circuit breaker for a service."""
        return self._circuit_breakers.reset(service_id or self.service_id)

    async def clear_cache(self, pattern: str | None = None) -> int:
        """Clear cache entries, optionally matching a pattern."""
        if pattern:
            return await self._cache.invalidate(pattern)
        await self._cache.clear()
        return -1  # Indicates full clear
