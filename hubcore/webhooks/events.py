"""
Webhook event types using Pydantic models.
"""

import json
from typing import Any, Mapping

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from hubcore.services.errors import WebhookDeliveryIdInvalid, WebhookPayloadInvalid

EVENT_HEADER = "x-github-event"
DELIVERY_HEADER = "x-github-delivery"
SIGNATURE_256_HEADER = "x-hub-signature-256"
SIGNATURE_SHA1_HEADER = "x-hub-signature"

SUPPORTED_EVENTS = (
    "issues",
    "pull_request",
    "push",
    "star",
    "fork",
    "release",
    "workflow_run",
)


class WebhookEvent(BaseModel):
    """A parsed delivery: envelope fields plus the raw JSON body."""

    model_config = ConfigDict(extra="ignore")

    type: str
    delivery_id: str
    action: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    repository: dict[str, Any] | None = None
    sender: dict[str, Any] | None = None


class IssuesEvent(WebhookEvent):
    issue: dict[str, Any] = Field(default_factory=dict)


class PullRequestEvent(WebhookEvent):
    number: int | None = None
    pull_request: dict[str, Any] = Field(default_factory=dict)


class PushEvent(WebhookEvent):
    """Push events carry no action."""

    ref: str = ""
    before: str | None = None
    after: str | None = None
    commits: list[dict[str, Any]] = Field(default_factory=list)


class StarEvent(WebhookEvent):
    starred_at: str | None = None


class ForkEvent(WebhookEvent):
    forkee: dict[str, Any] = Field(default_factory=dict)


class ReleaseEvent(WebhookEvent):
    release: dict[str, Any] = Field(default_factory=dict)


class WorkflowRunEvent(WebhookEvent):
    workflow_run: dict[str, Any] = Field(default_factory=dict)
    workflow: dict[str, Any] | None = None


EVENT_MODELS: dict[str, type[WebhookEvent]] = {
    "issues": IssuesEvent,
    "pull_request": PullRequestEvent,
    "push": PushEvent,
    "star": StarEvent,
    "fork": ForkEvent,
    "release": ReleaseEvent,
    "workflow_run": WorkflowRunEvent,
}

_ENVELOPE_FIELDS = {"type", "delivery_id", "payload"}


def normalize_headers(headers: Mapping[str, Any]) -> dict[str, str]:
    """Lower-case header names; multi-valued headers keep their first value."""
    normalized: dict[str, str] = {}
    for name, value in headers.items():
        if isinstance(value, (list, tuple)):
            value = value[0] if value else ""
        if value is None:
            continue
        normalized[str(name).lower()] = str(value)
    return normalized


def parse_webhook_event(
    payload: str | bytes, headers: Mapping[str, Any]
) -> WebhookEvent:
    """
    Parse a raw delivery into its typed event model.

    Unknown event types parse into the base ``WebhookEvent``.

    Raises:
        WebhookPayloadInvalid: Empty, non-JSON or non-object payload, or a
            missing event header
        WebhookDeliveryIdInvalid: Missing delivery header
    """
    if not isinstance(payload, (str, bytes)) or not payload:
        raise WebhookPayloadInvalid("Invalid webhook payload: expected non-empty body")
    if not isinstance(headers, Mapping):
        raise WebhookPayloadInvalid("Invalid headers: expected a mapping")

    normalized = normalize_headers(headers)
    event_type = normalized.get(EVENT_HEADER)
    if not event_type:
        raise WebhookPayloadInvalid("Missing X-GitHub-Event header")
    delivery_id = normalized.get(DELIVERY_HEADER)
    if not delivery_id:
        raise WebhookDeliveryIdInvalid("Missing X-GitHub-Delivery header")

    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise WebhookPayloadInvalid(
            f"Failed to parse webhook payload: {e}", payload_size=len(payload)
        ) from e

    if not isinstance(data, dict):
        raise WebhookPayloadInvalid(
            "Webhook payload must be a JSON object", payload_size=len(payload)
        )

    model = EVENT_MODELS.get(event_type, WebhookEvent)
    fields = {
        name: data[name]
        for name in model.model_fields
        if name in data and name not in _ENVELOPE_FIELDS
    }

    try:
        return model(type=event_type, delivery_id=delivery_id, payload=data, **fields)
    except pydantic.ValidationError as e:
        raise WebhookPayloadInvalid(
            f"Webhook {event_type} payload failed validation: {e.error_count()} error(s)",
            payload_size=len(payload),
        ) from e
