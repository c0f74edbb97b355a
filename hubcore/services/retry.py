"""
Retry orchestration for remote calls.

``RetryOrchestrator.execute_with_retry`` wraps an awaitable-returning
operation: it consults the circuit breaker before every attempt, classifies
each failure through ``classify_error``, decides whether the failure is worth
retrying, and suspends for a jittered exponential backoff (or the server's
retry-after) before the next attempt.

Usage::

    orchestrator = RetryOrchestrator(RetryPolicy(retries=2), breaker=cb)
    data = await orchestrator.execute_with_retry(
        lambda: client.get("/repos/o/r"),
        RequestContext(method="GET", operation="getRepository"),
    )
"""

import asyncio
import functools
import random
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from hubcore.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from hubcore.services.errors import (
    CircuitOpenError,
    ConfigurationError,
    ErrorKind,
    GraphQLError,
    HttpApiError,
    RequestContext,
    ServiceError,
    classify_error,
)

T = TypeVar("T")

DEFAULT_DO_NOT_RETRY = (400, 401, 403, 404, 422)
RETRYABLE_STATUSES = frozenset({408, 409, 429, 502, 503, 504})
RETRYABLE_GRAPHQL_TYPES = frozenset({"RATE_LIMITED"})
NON_RETRYABLE_GRAPHQL_TYPES = frozenset(
    {"VALIDATION", "GRAPHQL_PARSE_FAILED", "FORBIDDEN", "UNAUTHORIZED"}
)

MAX_RETRIES = 10
MAX_DELAY_SECONDS = 30.0
MIN_DELAY_SECONDS = 0.1
JITTER_RATIO = 0.1


@dataclass
class RetryState:
    """Per-call record, discarded when the call resolves."""

    attempt: int = 0
    last_error: ServiceError | None = None
    total_delay: float = 0.0
    started_at: datetime = field(default_factory=datetime.now)


RetryObserver = Callable[[ServiceError, int, RetryState], None]
RetryClassifier = Callable[[ServiceError, int], bool]
DelayCalculator = Callable[[int, float], float]


@dataclass
class RetryPolicy:
    """
    How a remote call is retried.

    ``retries`` counts extra attempts beyond the first. ``should_retry``,
    ``calculate_delay`` and ``on_retry`` are optional hooks; an override
    classifier wins over every built-in rule.
    """

    enabled: bool = True
    retries: int = 3
    base_delay: timedelta = timedelta(seconds=1)
    do_not_retry: tuple[int, ...] = DEFAULT_DO_NOT_RETRY
    retry_unclassified_graphql: bool = True
    circuit_breaker: CircuitBreakerConfig | None = None
    should_retry: RetryClassifier | None = None
    calculate_delay: DelayCalculator | None = None
    on_retry: RetryObserver | None = None

    def __post_init__(self) -> None:
        self.do_not_retry = tuple(self.do_not_retry)
        validate_retry_policy(self)

    @property
    def base_delay_seconds(self) -> float:
        return self.base_delay.total_seconds()

    def with_overrides(self, **changes: Any) -> "RetryPolicy":
        return replace(self, **changes)


def validate_retry_policy(policy: RetryPolicy) -> None:
    """Raise ConfigurationError for out-of-range retry settings."""
    if policy.retries < 0:
        raise ConfigurationError("Retry count cannot be negative")
    if policy.retries > MAX_RETRIES:
        raise ConfigurationError(f"Maximum retry count is {MAX_RETRIES}")
    if policy.base_delay < timedelta(0):
        raise ConfigurationError("Retry base delay cannot be negative")


def _jitter(value: float, rand: Callable[[], float]) -> float:
    """Scale ``value`` by a random factor in [1 - 10%, 1 + 10%]."""
    return value * (1 + JITTER_RATIO * (rand() * 2 - 1))


def compute_retry_delay(
    attempt: int,
    base_delay: float = 1.0,
    retry_after: float | None = None,
    rand: Callable[[], float] = random.random,
) -> float:
    """
    Seconds to wait before the attempt after ``attempt``.

    An explicit retry-after wins and skips backoff entirely. Otherwise the
    delay is ``min(base * 2**attempt, 30s)`` with ±10% jitter, kept within
    [0.1s, 30s].
    """
    if retry_after is not None and retry_after > 0:
        return max(MIN_DELAY_SECONDS, _jitter(retry_after, rand))

    exponential = min(base_delay * 2**attempt, MAX_DELAY_SECONDS)
    delayed = _jitter(exponential, rand)
    return max(MIN_DELAY_SECONDS, min(delayed, MAX_DELAY_SECONDS))


def should_retry(error: ServiceError, attempt: int, policy: RetryPolicy) -> bool:
    """Decide whether a classified failure is worth another attempt."""
    if policy.should_retry is not None:
        return policy.should_retry(error, attempt)

    if not policy.enabled:
        return False

    if isinstance(error, HttpApiError):
        if error.status in policy.do_not_retry:
            return False
        if error.kind in (ErrorKind.RATE_LIMIT, ErrorKind.SECONDARY_RATE_LIMIT):
            return True
        if error.status >= 500:
            return True
        return error.status in RETRYABLE_STATUSES

    if isinstance(error, GraphQLError):
        return _should_retry_graphql(error, policy)

    return error.kind in (ErrorKind.NETWORK, ErrorKind.TIMEOUT)


def _should_retry_graphql(error: GraphQLError, policy: RetryPolicy) -> bool:
    types = set(error.error_types)
    if types & RETRYABLE_GRAPHQL_TYPES:
        return True
    if types & NON_RETRYABLE_GRAPHQL_TYPES:
        return False
    # Unclassified GraphQL errors are usually transient infrastructure failures
    return policy.retry_unclassified_graphql


class RetryOrchestrator:
    """
    Runs an operation with classified retries and circuit breaker gating.

    The loop is linear: every wait is an awaited ``sleep`` inside the calling
    task. Cancelling that task cancels the wait; nothing is scheduled in the
    background.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        breaker: CircuitBreaker | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ):
        self.policy = policy or RetryPolicy()
        self.breaker = breaker
        self._sleep = sleep
        self._rand = rand

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        context: RequestContext | None = None,
    ) -> T:
        """
        Execute ``operation`` with retries.

        Returns:
            Whatever the operation returns on its first successful attempt

        Raises:
            CircuitOpenError: If the breaker refuses an attempt
            ServiceError: The classified final failure, carrying a RequestContext
        """
        policy = self.policy
        service_id = self.breaker.service_id if self.breaker else None
        state = RetryState()
        ctx = context or RequestContext(
            method="CALL",
            operation=getattr(operation, "__name__", "operation"),
        )
        ctx.max_retries = policy.retries
        ctx.started_at = state.started_at
        if ctx.service_id is None:
            ctx.service_id = service_id

        for attempt in range(policy.retries + 1):
            state.attempt = attempt
            ctx.attempt = attempt

            if self.breaker is not None and not self.breaker.can_execute():
                wait = self.breaker.get_time_until_reset() or 0.0
                rejection = CircuitOpenError(self.breaker.service_id, wait).with_context(ctx)
                if state.last_error is not None:
                    raise rejection from state.last_error
                raise rejection

            try:
                result = await operation()
            except Exception as exc:
                error = classify_error(exc, service_id)
                state.last_error = error

                if self.breaker is not None:
                    self.breaker.record_failure()

                if attempt == policy.retries:
                    break

                if not should_retry(error, attempt, policy):
                    logger.debug(
                        f"Not retrying {ctx.operation}: {error.kind.value} error is final"
                    )
                    break

                delay = self._calculate_delay(error, attempt)
                state.total_delay += delay

                logger.warning(
                    f"{ctx.operation} attempt {attempt + 1}/{policy.retries + 1} "
                    f"failed ({error.kind.value}): {error} - retrying in {delay:.2f}s"
                )
                if policy.on_retry is not None:
                    policy.on_retry(error, attempt + 1, state)

                if delay > 0:
                    await self._sleep(delay)
                continue

            if self.breaker is not None:
                self.breaker.record_success()

            if attempt > 0 and policy.on_retry is not None and state.last_error:
                policy.on_retry(state.last_error, attempt, state)

            return result

        final = state.last_error or ServiceError(
            "Operation failed after retries", service_id
        )
        raise final.with_context(ctx) from final.__cause__

    def _calculate_delay(self, error: ServiceError, attempt: int) -> float:
        base = self.policy.base_delay_seconds
        if self.policy.calculate_delay is not None:
            return self.policy.calculate_delay(attempt, base)

        retry_after = getattr(error, "retry_after", None)
        return compute_retry_delay(attempt, base, retry_after, self._rand)


def with_retry(
    policy: RetryPolicy | None = None,
    breaker: CircuitBreaker | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator form of RetryOrchestrator.

    Example::

        @with_retry(RetryPolicy(retries=2))
        async def fetch_user(login: str) -> dict:
            ...
    """
    orchestrator = RetryOrchestrator(policy, breaker)

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            context = RequestContext(method="CALL", operation=func.__name__)
            return await orchestrator.execute_with_retry(
                lambda: func(*args, **kwargs), context
            )

        return wrapper

    return decorator
