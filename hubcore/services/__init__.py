"""
Service layer infrastructure - resilience patterns for remote API calls.

Provides:
- ResponseCache: TTL cache with FIFO eviction and deterministic keys
- CircuitBreaker: Prevents cascading failures
- RetryOrchestrator: Classified retries with jittered backoff
- ServiceClient: Unified client combining all patterns
"""

from hubcore.services.errors import (
    ErrorKind,
    RequestContext,
    ServiceError,
    ConfigurationError,
    ValidationError,
    HttpApiError,
    RateLimitError,
    SecondaryRateLimitError,
    NetworkError,
    RequestTimeoutError,
    GraphQLError,
    CircuitOpenError,
    UnknownServiceError,
    classify_error,
)
from hubcore.services.cache import (
    CacheConfig,
    CacheEntry,
    CacheStats,
    ResponseCache,
    build_cache_key,
)
from hubcore.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from hubcore.services.retry import (
    RetryOrchestrator,
    RetryPolicy,
    RetryState,
    compute_retry_delay,
    should_retry,
    with_retry,
)
from hubcore.services.client import ServiceClient

__all__ = [
    # Errors
    "ErrorKind",
    "RequestContext",
    "ServiceError",
    "ConfigurationError",
    "ValidationError",
    "HttpApiError",
    "RateLimitError",
    "SecondaryRateLimitError",
    "NetworkError",
    "RequestTimeoutError",
    "GraphQLError",
    "CircuitOpenError",
    "UnknownServiceError",
    "classify_error",
    # Cache
    "CacheConfig",
    "CacheEntry",
    "CacheStats",
    "ResponseCache",
    "build_cache_key",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    # Retry
    "RetryOrchestrator",
    "RetryPolicy",
    "RetryState",
    "compute_retry_delay",
    "should_retry",
    "with_retry",
    # Client
    "ServiceClient",
]
