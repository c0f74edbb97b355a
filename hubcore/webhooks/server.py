"""FastAPI server for GitHub webhook deliveries."""

from fastapi import FastAPI, HTTPException, Request
from loguru import logger

from hubcore.services.errors import (
    WebhookDeliveryIdInvalid,
    WebhookHandlerError,
    WebhookPayloadInvalid,
    WebhookSignatureInvalid,
)
from hubcore.webhooks.ingestor import WebhookIngestor


class WebhookServer:
    """HTTP transport adapter in front of a WebhookIngestor."""

    def __init__(self, ingestor: WebhookIngestor, path: str = "/webhooks/github"):
        self.ingestor = ingestor
        self.app = FastAPI(title="hubcore webhook server")

        # Register routes
        self.app.post(path)(self.handle_delivery)
        self.app.get("/health")(self.health_check)

    async def handle_delivery(self, request: Request):
        """Handle one delivery.

        The raw body is passed through untouched; the signature covers the
        exact bytes GitHub sent.
        """
        body = await request.body()

        try:
            outcome = await self.ingestor.handle(body, dict(request.headers))
        except WebhookSignatureInvalid as e:
            raise HTTPException(status_code=401, detail=str(e)) from e
        except (WebhookPayloadInvalid, WebhookDeliveryIdInvalid) as e:
            logger.warning(f"Rejected webhook delivery: {e}")
            raise HTTPException(status_code=400, detail=str(e)) from e
        except WebhookHandlerError as e:
            raise HTTPException(status_code=500, detail=str(e)) from e

        return {"status": outcome.value}

    async def health_check(self):
        """Health check endpoint."""
        config = self.ingestor.get_configuration()
        return {
            "status": "ok",
            "service": "hubcore-webhooks",
            "registered_events": config["registered_events"],
            "processed_count": config["processed_count"],
        }


def create_webhook_app(
    ingestor: WebhookIngestor, path: str = "/webhooks/github"
) -> FastAPI:
    """Create FastAPI app for webhook ingestion.

    Args:
        ingestor: Configured WebhookIngestor
        path: Route receiving deliveries

    Returns:
        FastAPI app
    """
    server = WebhookServer(ingestor, path)
    return server.app
