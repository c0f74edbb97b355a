"""
CircuitBreaker - Stops calling a remote dependency that keeps failing.

States:
- CLOSED: calls flow, failures are counted
- OPEN: calls are refused until the recovery timeout elapses
- HALF_OPEN: probe calls decide between recovery and reopening

Transitions:
- CLOSED → OPEN: failure_count reaches failure_threshold
- OPEN → HALF_OPEN: on the first can_execute() after recovery_timeout
- HALF_OPEN → CLOSED: after min(failure_threshold, 3) successes
- HALF_OPEN → OPEN: on any failure

A success while CLOSED decrements the failure count by one instead of
clearing it, so isolated blips decay gradually.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

from loguru import logger

from hubcore.services.errors import ConfigurationError

HALF_OPEN_SUCCESS_CAP = 3


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreakerConfig:
    """Breaker tuning. A disabled breaker never blocks and records nothing."""

    enabled: bool = True
    failure_threshold: int = 5
    recovery_timeout: timedelta = timedelta(seconds=30)

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ConfigurationError(
                "Circuit breaker failure threshold must be at least 1"
            )
        if self.recovery_timeout < timedelta(seconds=1):
            raise ConfigurationError(
                "Circuit breaker recovery timeout must be at least 1000ms"
            )

    @property
    def required_successes(self) -> int:
        """Successes needed in HALF_OPEN before closing."""
        return min(self.failure_threshold, HALF_OPEN_SUCCESS_CAP)


class CircuitBreaker:
    """
    Failure isolation for one remote dependency.

    Usage:
        breaker = CircuitBreaker("github")

        if not breaker.can_execute():
            raise CircuitOpenError("github", breaker.get_time_until_reset() or 0)
        try:
            data = await fetch()
        except Exception:
            breaker.record_failure()
            raise
        breaker.record_success()
    """

    def __init__(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._last_failure_at: datetime | None = None
        self._last_success_at: datetime | None = None

    @property
    def state(self) -> CircuitState:
        """Current state. Reading it never triggers the timed transition."""
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    @property
    def success_count(self) -> int:
        return self._successes

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def can_execute(self) -> bool:
        """True if a call may proceed. Moves OPEN → HALF_OPEN once the timeout is up."""
        if not self.config.enabled or self._state != CircuitState.OPEN:
            return True

        if self._recovery_due():
            self._enter_half_open()
            return True
        return False

    def record_success(self) -> None:
        if not self.config.enabled:
            return

        self._successes += 1
        self._last_success_at = self._clock()

        if self._state == CircuitState.CLOSED:
            self._failures = max(0, self._failures - 1)
        elif (
            self._state == CircuitState.HALF_OPEN
            and self._successes >= self.config.required_successes
        ):
            self._enter_closed()

    def record_failure(self) -> None:
        if not self.config.enabled:
            return

        self._failures += 1
        self._last_failure_at = self._clock()

        # a single failing probe is enough to reopen
        if (
            self._state == CircuitState.HALF_OPEN
            or self._failures >= self.config.failure_threshold
        ):
            self._enter_open()

    def _recovery_due(self) -> bool:
        if self._last_failure_at is None:
            return True
        return self._clock() - self._last_failure_at >= self.config.recovery_timeout

    def _enter_open(self) -> None:
        if self._state != CircuitState.OPEN:
            logger.warning(
                f"Circuit breaker '{self.service_id}' OPENED after {self._failures} failures"
            )
        self._state = CircuitState.OPEN

    def _enter_half_open(self) -> None:
        self._state = CircuitState.HALF_OPEN
        self._successes = 0
        logger.info(f"Circuit breaker '{self.service_id}' probing (HALF_OPEN)")

    def _enter_closed(self) -> None:
        self._state = CircuitState.CLOSED
        self._failures = 0
        logger.info(f"Circuit breaker '{self.service_id}' CLOSED (recovered)")

    def reset(self) -> None:
        """Force CLOSED and forget all history."""
        self._state = CircuitState.CLOSED
        self._failures = self._successes = 0
        self._last_failure_at = self._last_success_at = None
        logger.info(f"Circuit breaker '{self.service_id}' manually reset")

    def get_time_until_reset(self) -> float | None:
        """Seconds until an OPEN breaker lets a probe through, None otherwise."""
        if self._state != CircuitState.OPEN or self._last_failure_at is None:
            return None

        reopens_at = self._last_failure_at + self.config.recovery_timeout
        return max(0.0, (reopens_at - self._clock()).total_seconds())

    def get_status(self) -> dict[str, Any]:
        def iso(moment: datetime | None) -> str | None:
            return moment.isoformat() if moment else None

        return {
            "service_id": self.service_id,
            "enabled": self.config.enabled,
            "state": self._state.value,
            "failure_count": self._failures,
            "success_count": self._successes,
            "last_failure_at": iso(self._last_failure_at),
            "last_success_at": iso(self._last_success_at),
            "time_until_reset": self.get_time_until_reset(),
        }


class CircuitBreakerRegistry:
    """
    Lazily created breakers keyed by service id.

    Usage:
        breakers = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=3))
        breaker = breakers.get("github")
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._by_service: dict[str, CircuitBreaker] = {}

    def get(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
    ) -> CircuitBreaker:
        breaker = self._by_service.get(service_id)
        if breaker is None:
            breaker = CircuitBreaker(
                service_id, config or self.default_config, clock=self._clock
            )
            self._by_service[service_id] = breaker
        return breaker

    def find(self, service_id: str) -> CircuitBreaker | None:
        return self._by_service.get(service_id)

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        return {sid: breaker.get_status() for sid, breaker in self._by_service.items()}

    def reset(self, service_id: str) -> bool:
        breaker = self._by_service.get(service_id)
        if breaker is None:
            return False
        breaker.reset()
        return True

    def reset_all(self) -> None:
        for breaker in self._by_service.values():
            breaker.reset()
        logger.info(f"Reset {len(self._by_service)} circuit breakers")

    def get_open_circuits(self) -> list[str]:
        return [
            sid
            for sid, breaker in self._by_service.items()
            if breaker.state == CircuitState.OPEN
        ]
