"""
Inbound webhook ingestion.

Provides:
- Signature computation and constant-time verification
- Typed event models and parsing
- WebhookIngestor: validated, exactly-once dispatch to handlers
- WebhookServer: FastAPI transport adapter
"""

from hubcore.webhooks.signature import compute_signature, verify_signature
from hubcore.webhooks.events import (
    SUPPORTED_EVENTS,
    WebhookEvent,
    IssuesEvent,
    PullRequestEvent,
    PushEvent,
    StarEvent,
    ForkEvent,
    ReleaseEvent,
    WorkflowRunEvent,
    parse_webhook_event,
)
from hubcore.webhooks.ingestor import (
    DeliveryOutcome,
    ProcessedDeliverySet,
    WebhookIngestor,
    WebhookOptions,
)
from hubcore.webhooks.server import WebhookServer, create_webhook_app

__all__ = [
    # Signatures
    "compute_signature",
    "verify_signature",
    # Events
    "SUPPORTED_EVENTS",
    "WebhookEvent",
    "IssuesEvent",
    "PullRequestEvent",
    "PushEvent",
    "StarEvent",
    "ForkEvent",
    "ReleaseEvent",
    "WorkflowRunEvent",
    "parse_webhook_event",
    # Ingestor
    "DeliveryOutcome",
    "ProcessedDeliverySet",
    "WebhookIngestor",
    "WebhookOptions",
    # Server
    "WebhookServer",
    "create_webhook_app",
]
