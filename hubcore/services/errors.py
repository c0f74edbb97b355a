"""
Service layer exceptions.

Every failure that crosses the remote-call boundary is converted into one of
these classes by ``classify_error`` before retry or circuit breaker logic looks
at it. Downstream code switches on ``ServiceError.kind`` only.
"""

import asyncio
import errno
import re
import socket
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

import httpx
import pydantic


class ErrorKind(str, Enum):
    """Tag carried by every service error."""

    HTTP = "http"
    RATE_LIMIT = "rate_limit"
    SECONDARY_RATE_LIMIT = "secondary_rate_limit"
    NETWORK = "network"
    TIMEOUT = "timeout"
    GRAPHQL = "graphql"
    VALIDATION = "validation"
    CIRCUIT_OPEN = "circuit_open"
    CONFIGURATION = "configuration"
    WEBHOOK = "webhook"
    WEBHOOK_SIGNATURE = "webhook_signature"
    WEBHOOK_PAYLOAD = "webhook_payload"
    WEBHOOK_DELIVERY_ID = "webhook_delivery_id"
    WEBHOOK_HANDLER = "webhook_handler"
    UNKNOWN = "unknown"


SENSITIVE_PARAM_WORDS = frozenset(
    {
        "token",
        "tokens",
        "secret",
        "password",
        "passwd",
        "authorization",
        "signature",
        "credential",
        "credentials",
        "apikey",
        "privatekey",
    }
)
# "key" alone, or after one of these, names a secret; sort_key and keyword do not
SENSITIVE_KEY_PREFIXES = frozenset(
    {"api", "private", "secret", "access", "client", "signing", "ssh", "deploy", "encryption"}
)
MAX_PARAM_VALUE_LENGTH = 100

_WORD_PATTERN = re.compile(r"[A-Z]+(?![a-z])|[A-Z]?[a-z]+|\d+")


def is_sensitive_param(name: Any) -> bool:
    """True if a parameter name looks like it carries a credential."""
    words = [word.lower() for word in _WORD_PATTERN.findall(str(name))]
    for index, word in enumerate(words):
        if word in SENSITIVE_PARAM_WORDS:
            return True
        if word != "key":
            continue
        if len(words) == 1 or (index > 0 and words[index - 1] in SENSITIVE_KEY_PREFIXES):
            return True
    return False


def summarize_params(params: Mapping[str, Any] | None) -> dict[str, Any]:
    """Redact sensitive keys and truncate long values for error context."""
    if not params:
        return {}

    summary: dict[str, Any] = {}
    for name, value in params.items():
        if is_sensitive_param(name):
            summary[name] = "[REDACTED]"
        elif isinstance(value, Mapping):
            summary[name] = summarize_params(value)
        elif isinstance(value, str) and len(value) > MAX_PARAM_VALUE_LENGTH:
            summary[name] = value[:MAX_PARAM_VALUE_LENGTH] + "..."
        elif isinstance(value, (list, tuple)) and len(value) > 10:
            summary[name] = f"<{len(value)} items>"
        else:
            summary[name] = value
    return summary


@dataclass
class RequestContext:
    """Where a failed call came from, attached to the final error."""

    method: str
    operation: str
    params: dict[str, Any] = field(default_factory=dict)
    attempt: int = 0
    max_retries: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    service_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method,
            "operation": self.operation,
            "params": self.params,
            "attempt": self.attempt,
            "max_retries": self.max_retries,
            "started_at": self.started_at.isoformat(),
            "service_id": self.service_id,
        }


class ServiceError(Exception):
    """Base exception for service layer errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        self.context: RequestContext | None = None
        super().__init__(message)

    def with_context(self, context: RequestContext) -> "ServiceError":
        self.context = context
        if self.service_id is None:
            self.service_id = context.service_id
        return self

    def __str__(self) -> str:
        message = super().__str__()
        if self.context is None:
            return message
        return (
            f"{message} [{self.context.method} {self.context.operation}, "
            f"attempt {self.context.attempt}/{self.context.max_retries}]"
        )


class UnknownServiceError(ServiceError):
    """Failure that matched no known shape."""

    kind = ErrorKind.UNKNOWN


class ConfigurationError(ServiceError):
    """Invalid cache, retry, circuit breaker or webhook configuration."""

    kind = ErrorKind.CONFIGURATION


class ValidationError(ServiceError):
    """Remote response did not match the expected schema."""

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        service_id: str | None = None,
        issues: list[dict[str, Any]] | None = None,
    ):
        self.issues = issues or []
        super().__init__(message, service_id=service_id)


class HttpApiError(ServiceError):
    """Remote answered with a non-success HTTP status."""

    kind = ErrorKind.HTTP

    def __init__(
        self,
        status: int,
        message: str | None = None,
        service_id: str | None = None,
        body: str = "",
        headers: Mapping[str, str] | None = None,
        retry_after: float | None = None,
    ):
        self.status = status
        self.body = body
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.retry_after = (
            retry_after
            if retry_after is not None
            else parse_retry_after(self.headers.get("retry-after"))
        )
        super().__init__(message or f"HTTP {status}: {body[:200]}", service_id)


class RateLimitError(HttpApiError):
    """Primary rate limit exceeded."""

    kind = ErrorKind.RATE_LIMIT


class SecondaryRateLimitError(HttpApiError):
    """Secondary (abuse) rate limit exceeded."""

    kind = ErrorKind.SECONDARY_RATE_LIMIT


class NetworkError(ServiceError):
    """Connection-level failure (reset, refused, DNS)."""

    kind = ErrorKind.NETWORK


class RequestTimeoutError(ServiceError):
    """Request timed out."""

    kind = ErrorKind.TIMEOUT

    def __init__(
        self,
        service_id: str | None = None,
        timeout: float | None = None,
        message: str | None = None,
    ):
        self.timeout = timeout
        if message is None:
            message = f"Request to service '{service_id}' timed out"
            if timeout is not None:
                message += f" after {timeout}s"
        super().__init__(message, service_id=service_id)


class GraphQLError(ServiceError):
    """Query-level errors returned in a GraphQL response body."""

    kind = ErrorKind.GRAPHQL

    def __init__(
        self,
        errors: list[dict[str, Any]],
        service_id: str | None = None,
        message: str | None = None,
    ):
        self.errors = list(errors)
        if message is None:
            first = self.errors[0].get("message", "unknown") if self.errors else "unknown"
            message = f"GraphQL query failed with {len(self.errors)} error(s): {first}"
        super().__init__(message, service_id=service_id)

    @property
    def error_types(self) -> list[str]:
        return [str(e.get("type")) for e in self.errors if e.get("type")]


class CircuitOpenError(ServiceError):
    """Circuit breaker is open, request blocked."""

    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
        )


class WebhookError(ServiceError):
    """Base class for inbound webhook failures."""

    kind = ErrorKind.WEBHOOK


class WebhookSignatureInvalid(WebhookError):
    kind = ErrorKind.WEBHOOK_SIGNATURE


class WebhookPayloadInvalid(WebhookError):
    kind = ErrorKind.WEBHOOK_PAYLOAD

    def __init__(self, message: str, payload_size: int | None = None):
        self.payload_size = payload_size
        super().__init__(message)


class WebhookDeliveryIdInvalid(WebhookError):
    kind = ErrorKind.WEBHOOK_DELIVERY_ID


class WebhookHandlerError(WebhookError):
    """A registered handler raised; the delivery stays unprocessed."""

    kind = ErrorKind.WEBHOOK_HANDLER

    def __init__(self, event_type: str, delivery_id: str, cause: Exception):
        self.event_type = event_type
        self.delivery_id = delivery_id
        super().__init__(f"Handler for {event_type} event failed: {cause}")


def parse_retry_after(value: str | None) -> float | None:
    """Parse a ``retry-after`` header given in seconds."""
    if value is None:
        return None
    try:
        seconds = float(str(value).strip())
    except ValueError:
        return None
    return seconds if seconds > 0 else None


# Connection error codes, by errno and by Node-style string code
NETWORK_ERRNOS = {
    errno.ECONNRESET,
    errno.ECONNREFUSED,
    errno.ECONNABORTED,
    errno.EHOSTUNREACH,
    errno.ENETUNREACH,
    errno.EPIPE,
}
NETWORK_CODES = {"ECONNRESET", "ECONNREFUSED", "ENOTFOUND", "EAI_AGAIN", "EPIPE"}
TIMEOUT_CODES = {"ETIMEDOUT", "ESOCKETTIMEDOUT"}
NETWORK_MESSAGE_MARKERS = ("network", "socket", "connection")
TIMEOUT_MESSAGE_MARKERS = ("timeout", "timed out")


def error_from_response(
    response: httpx.Response, service_id: str | None = None
) -> HttpApiError:
    """Map a non-success ``httpx.Response`` to the HTTP error family."""
    status = response.status_code
    headers = {k.lower(): v for k, v in response.headers.items()}
    body = response.text
    message = f"HTTP {status}: {body[:200]}"

    if status == 429 or (status == 403 and headers.get("x-ratelimit-remaining") == "0"):
        return RateLimitError(status, message, service_id, body, headers)
    if status == 403 and "retry-after" in headers:
        return SecondaryRateLimitError(status, message, service_id, body, headers)
    return HttpApiError(status, message, service_id, body, headers)


def classify_error(exc: BaseException, service_id: str | None = None) -> ServiceError:
    """
    Convert any caught failure into one tagged variant of the taxonomy.

    Already-classified errors pass through unchanged. Unrecognised failures
    become ``UnknownServiceError`` which is never retried.
    """
    if isinstance(exc, ServiceError):
        return exc

    error: ServiceError
    if isinstance(exc, httpx.HTTPStatusError):
        error = error_from_response(exc.response, service_id)
    elif isinstance(exc, httpx.TimeoutException):
        error = RequestTimeoutError(service_id, message=f"Request timed out: {exc}")
    elif isinstance(exc, httpx.TransportError):
        error = NetworkError(f"Transport error: {exc}", service_id)
    elif isinstance(exc, pydantic.ValidationError):
        error = ValidationError(
            f"Invalid response format: {exc.error_count()} validation error(s)",
            service_id,
            issues=[dict(e) for e in exc.errors()],
        )
    elif isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        error = RequestTimeoutError(service_id, message=f"Operation timed out: {exc}")
    elif isinstance(exc, (ConnectionError, socket.gaierror)):
        error = NetworkError(f"Connection failed: {exc}", service_id)
    elif isinstance(exc, OSError) and exc.errno in NETWORK_ERRNOS:
        error = NetworkError(f"Connection failed: {exc}", service_id)
    else:
        error = _classify_by_shape(exc, service_id)

    error.__cause__ = exc
    return error


def _classify_by_shape(exc: BaseException, service_id: str | None) -> ServiceError:
    """Fallback for foreign exception objects that only look like API errors."""
    status = getattr(exc, "status", None) or getattr(exc, "status_code", None)
    if isinstance(status, int):
        response = getattr(exc, "response", None)
        headers = getattr(response, "headers", None) or getattr(exc, "headers", None) or {}
        headers = {str(k).lower(): str(v) for k, v in dict(headers).items()}
        message = str(exc)
        lowered = message.lower()
        primary_hint = "rate limit" in lowered and "secondary" not in lowered
        if status == 429 or (
            status == 403
            and (headers.get("x-ratelimit-remaining") == "0" or primary_hint)
        ):
            return RateLimitError(status, message, service_id, headers=headers)
        if status == 403 and ("retry-after" in headers or "secondary" in lowered):
            return SecondaryRateLimitError(status, message, service_id, headers=headers)
        return HttpApiError(status, message, service_id, headers=headers)

    errors = getattr(exc, "errors", None)
    if isinstance(errors, list):
        return GraphQLError(
            [e if isinstance(e, dict) else {"message": str(e)} for e in errors],
            service_id,
            message=str(exc) or None,
        )

    code = str(getattr(exc, "code", "") or "").upper()
    message = str(exc).lower()
    if code in TIMEOUT_CODES or any(m in message for m in TIMEOUT_MESSAGE_MARKERS):
        return RequestTimeoutError(service_id, message=str(exc))
    if code in NETWORK_CODES or any(m in message for m in NETWORK_MESSAGE_MARKERS):
        return NetworkError(str(exc), service_id)

    return UnknownServiceError(f"{type(exc).__name__}: {exc}", service_id)
