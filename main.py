"""
hubcore entry point.
Serves the GitHub webhook endpoint.
"""

import sys

import uvicorn
from loguru import logger

from hubcore.settings import global_settings
from hubcore.webhooks import (
    IssuesEvent,
    PullRequestEvent,
    PushEvent,
    WebhookEvent,
    WebhookIngestor,
    WebhookOptions,
    create_webhook_app,
)


def build_ingestor() -> WebhookIngestor:
    """Ingestor with logging handlers for the common event types."""
    ingestor = WebhookIngestor(
        global_settings.webhook_secret,
        options=WebhookOptions(
            strict=global_settings.webhook_strict_signatures,
            max_processed=global_settings.webhook_max_processed,
        ),
    )

    @ingestor.on("issues")
    async def on_issue(event: IssuesEvent) -> None:
        logger.info(f"Issue #{event.issue.get('number')} {event.action}")

    @ingestor.on("pull_request")
    async def on_pull_request(event: PullRequestEvent) -> None:
        logger.info(f"Pull request #{event.number} {event.action}")

    @ingestor.on("push")
    async def on_push(event: PushEvent) -> None:
        logger.info(f"Push to {event.ref}: {len(event.commits)} commit(s)")

    def log_event(event: WebhookEvent) -> None:
        logger.info(f"Received {event.type} event ({event.action or 'no action'})")

    for event_type in ("star", "fork", "release", "workflow_run"):
        ingestor.register(event_type, log_event)

    return ingestor


def main() -> None:
    """Main function."""
    logger.remove()
    logger.add(sys.stderr, level=global_settings.log_level.upper())

    logger.info("Starting hubcore webhook server...")
    app = create_webhook_app(build_ingestor())
    uvicorn.run(
        app,
        host=global_settings.webhook_host,
        port=global_settings.webhook_port,
        log_level=global_settings.log_level.lower(),
    )
    logger.info("hubcore stopped")


if __name__ == "__main__":
    main()
