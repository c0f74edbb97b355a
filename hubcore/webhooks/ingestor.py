"""
WebhookIngestor - Validates signed deliveries and dispatches each one exactly once.

Pipeline (any failure aborts before a handler runs):
1. Non-empty payload and a header mapping
2. HMAC signature (SHA-256, or legacy SHA-1 when not strict)
3. Parse into a typed event
4. UUID-shaped delivery id
5. Already processed delivery id → absorbed silently
6. Dispatch to the registered handler; mark processed only on success
"""

import inspect
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

from loguru import logger

from hubcore.services.errors import (
    ConfigurationError,
    WebhookDeliveryIdInvalid,
    WebhookHandlerError,
    WebhookPayloadInvalid,
    WebhookSignatureInvalid,
)
from hubcore.webhooks.events import (
    SIGNATURE_256_HEADER,
    SIGNATURE_SHA1_HEADER,
    SUPPORTED_EVENTS,
    WebhookEvent,
    normalize_headers,
    parse_webhook_event,
)
from hubcore.webhooks.signature import verify_signature

WebhookHandler = Callable[[WebhookEvent], Awaitable[None] | None]

DELIVERY_ID_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE
)
MIN_SECRET_LENGTH = 8
MIN_PROCESSED = 100
MAX_PROCESSED = 100_000


class DeliveryOutcome(str, Enum):
    """What ``WebhookIngestor.handle`` did with a valid delivery."""

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


@dataclass
class WebhookOptions:
    """Configuration for webhook ingestion."""

    strict: bool = True  # Reject legacy SHA-1 signatures
    max_processed: int = 10_000  # Remembered delivery ids before trimming
    max_payload_bytes: int = 25 * 1024 * 1024

    def __post_init__(self) -> None:
        if not MIN_PROCESSED <= self.max_processed <= MAX_PROCESSED:
            raise ConfigurationError(
                f"max_processed must be between {MIN_PROCESSED} and {MAX_PROCESSED}"
            )
        if self.max_payload_bytes <= 0:
            raise ConfigurationError("max_payload_bytes must be positive")


class ProcessedDeliverySet:
    """
    Insertion-ordered set of handled delivery ids.

    Trimming is amortized: once the set grows past ``max_size`` the oldest
    half is dropped in one pass.
    """

    def __init__(self, max_size: int = 10_000, clock: Callable[[], datetime] = datetime.now):
        self.max_size = max_size
        self._clock = clock
        self._deliveries: dict[str, datetime] = {}

    def __contains__(self, delivery_id: str) -> bool:
        return delivery_id in self._deliveries

    def __len__(self) -> int:
        return len(self._deliveries)

    def add(self, delivery_id: str) -> None:
        self._deliveries[delivery_id] = self._clock()

    def trim(self) -> int:
        """Drop the oldest half if over capacity. Returns how many were removed."""
        if len(self._deliveries) <= self.max_size:
            return 0

        remove_count = len(self._deliveries) // 2
        for delivery_id in list(self._deliveries)[:remove_count]:
            del self._deliveries[delivery_id]
        return remove_count

    def clear(self) -> None:
        self._deliveries.clear()

    def ids(self) -> list[str]:
        return list(self._deliveries)


class WebhookIngestor:
    """
    Ingests GitHub webhook deliveries.

    Usage:
        ingestor = WebhookIngestor(secret)

        @ingestor.on("issues")
        async def on_issue(event: IssuesEvent) -> None:
            ...

        outcome = await ingestor.handle(raw_body, request_headers)
    """

    def __init__(
        self,
        secret: str,
        handlers: Mapping[str, WebhookHandler] | None = None,
        options: WebhookOptions | None = None,
    ):
        if not isinstance(secret, str):
            raise ConfigurationError("Webhook secret must be a string")
        if len(secret) < MIN_SECRET_LENGTH:
            raise ConfigurationError(
                f"Webhook secret must be at least {MIN_SECRET_LENGTH} characters"
            )
        if handlers is not None and not isinstance(handlers, Mapping):
            raise ConfigurationError("Webhook handlers must be a mapping of event type to callable")

        self._secret = secret
        self.options = options or WebhookOptions()
        self._handlers: dict[str, WebhookHandler] = {}
        self._processed = ProcessedDeliverySet(self.options.max_processed)
        self._in_flight: set[str] = set()

        for event_type, handler in (handlers or {}).items():
            self.register(event_type, handler)

    @property
    def processed(self) -> ProcessedDeliverySet:
        return self._processed

    def register(self, event_type: str, handler: WebhookHandler) -> None:
        """Register the handler for one supported event type."""
        if event_type not in SUPPORTED_EVENTS:
            raise ConfigurationError(
                f"Unsupported webhook event '{event_type}', expected one of {SUPPORTED_EVENTS}"
            )
        if not callable(handler):
            raise ConfigurationError(f"Handler for '{event_type}' must be callable")
        self._handlers[event_type] = handler
        logger.debug(f"Registered webhook handler: {event_type}")

    def on(self, event_type: str) -> Callable[[WebhookHandler], WebhookHandler]:
        """Decorator form of ``register``."""

        def decorator(handler: WebhookHandler) -> WebhookHandler:
            self.register(event_type, handler)
            return handler

        return decorator

    async def handle(
        self, payload: str | bytes, headers: Mapping[str, Any]
    ) -> DeliveryOutcome:
        """
        Validate and dispatch one delivery.

        Returns:
            DeliveryOutcome.PROCESSED, DUPLICATE or IGNORED

        Raises:
            WebhookPayloadInvalid: Empty/oversized/malformed payload or bad headers
            WebhookSignatureInvalid: Missing or mismatching signature
            WebhookDeliveryIdInvalid: Delivery id missing or not UUID-shaped
            WebhookHandlerError: The handler raised; the delivery stays unprocessed
        """
        if not isinstance(payload, (str, bytes)) or not payload:
            raise WebhookPayloadInvalid("Invalid webhook payload: expected non-empty body")
        if not isinstance(headers, Mapping):
            raise WebhookPayloadInvalid("Invalid headers: expected a mapping")

        raw = payload.encode("utf-8") if isinstance(payload, str) else payload
        if len(raw) > self.options.max_payload_bytes:
            raise WebhookPayloadInvalid(
                f"Webhook payload too large: {len(raw)} bytes "
                f"(limit {self.options.max_payload_bytes})",
                payload_size=len(raw),
            )

        normalized = normalize_headers(headers)
        self._verify_signature(raw, normalized)

        event = parse_webhook_event(raw, normalized)

        if not DELIVERY_ID_PATTERN.fullmatch(event.delivery_id):
            logger.warning(f"Rejected webhook with malformed delivery id: {event.delivery_id[:64]}")
            raise WebhookDeliveryIdInvalid(
                f"Webhook event validation failed: invalid delivery id '{event.delivery_id[:64]}'"
            )

        if event.delivery_id in self._processed or event.delivery_id in self._in_flight:
            logger.info(f"Duplicate webhook delivery {event.delivery_id} ({event.type}) skipped")
            return DeliveryOutcome.DUPLICATE

        handler = self._handlers.get(event.type)
        if handler is None:
            logger.debug(f"No handler for webhook event '{event.type}', ignoring")
            return DeliveryOutcome.IGNORED

        self._in_flight.add(event.delivery_id)
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                f"Webhook handler for {event.type} failed on delivery {event.delivery_id}: {e}"
            )
            raise WebhookHandlerError(event.type, event.delivery_id, e) from e
        finally:
            self._in_flight.discard(event.delivery_id)

        self._processed.add(event.delivery_id)
        removed = self._processed.trim()
        if removed:
            logger.debug(f"Trimmed {removed} processed webhook deliveries")

        logger.info(f"Processed webhook {event.type} delivery {event.delivery_id}")
        return DeliveryOutcome.PROCESSED

    def _verify_signature(self, raw: bytes, headers: dict[str, str]) -> None:
        signature = headers.get(SIGNATURE_256_HEADER)
        allow_sha1 = False

        if signature is None and not self.options.strict:
            signature = headers.get(SIGNATURE_SHA1_HEADER)
            allow_sha1 = True

        if not signature:
            logger.warning("Rejected webhook without a signature header")
            raise WebhookSignatureInvalid("Missing webhook signature")

        if not verify_signature(raw, signature, self._secret, allow_sha1=allow_sha1):
            logger.warning("Rejected webhook with invalid signature")
            raise WebhookSignatureInvalid("Invalid webhook signature")

    def get_configuration(self) -> dict[str, Any]:
        """Describe the ingestor without exposing the secret."""
        return {
            "supported_events": list(SUPPORTED_EVENTS),
            "registered_events": sorted(self._handlers),
            "strict": self.options.strict,
            "max_processed": self.options.max_processed,
            "max_payload_bytes": self.options.max_payload_bytes,
            "processed_count": len(self._processed),
        }

    def clear(self) -> None:
        """Forget every processed delivery id."""
        self._processed.clear()
