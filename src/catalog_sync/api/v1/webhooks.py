"""ERP webhook receiver.

The event is acknowledged immediately and applied in a background task.
"""

import hmac
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, BackgroundTasks, Body, Depends, Header, HTTPException
from pydantic import BaseModel

from catalog_sync.api.dependencies import (
    EventProcessor,
    get_event_processor,
    run_in_background,
)
from catalog_sync.config import Settings, get_settings

router = APIRouter()
logger = structlog.get_logger()

WEBHOOK_ACCEPTED = "Webhook received and processing initiated."


class WebhookAcceptedResponse(BaseModel):
    message: str


def _verify_secret(provided: str | None, settings: Settings) -> None:
    expected = settings.erp_webhook_secret
    if not expected:
        logger.warning("Webhook secret not configured, skipping validation")
        return
    if not provided or not hmac.compare_digest(
        provided.rstrip().encode(), expected.encode()
    ):
        logger.warning("Webhook rejected, invalid secret")
        raise HTTPException(status_code=401, detail="Unauthorized: Invalid webhook secret")


def _accept(
    payload: Any,
    secret: str | None,
    settings: Settings,
    background_tasks: BackgroundTasks,
    processor: EventProcessor,
) -> WebhookAcceptedResponse:
    _verify_secret(secret, settings)
    if (
        not isinstance(payload, dict)
        or not payload.get("triggercode")
        or not isinstance(payload.get("object"), dict)
    ):
        raise HTTPException(status_code=400, detail="Bad Request: Invalid webhook payload")

    log = logger.bind(triggercode=payload["triggercode"], external_id=payload["object"].get("id"))
    log.info("Webhook received")
    background_tasks.add_task(run_in_background, processor, payload, log=log)
    return WebhookAcceptedResponse(message=WEBHOOK_ACCEPTED)


@router.post("/webhook", response_model=WebhookAcceptedResponse)
async def receive_webhook(
    background_tasks: BackgroundTasks,
    settings: Annotated[Settings, Depends(get_settings)],
    processor: Annotated[EventProcessor, Depends(get_event_processor)],
    payload: Annotated[Any, Body()] = None,
    x_dolibarr_webhook_secret: Annotated[str | None, Header()] = None,
) -> WebhookAcceptedResponse:
    """Receive an event authenticated by the ``X-Dolibarr-Webhook-Secret`` header."""
    return _accept(payload, x_dolibarr_webhook_secret, settings, background_tasks, processor)


@router.post("/webhook/{secret}", response_model=WebhookAcceptedResponse)
async def receive_webhook_with_path_secret(
    secret: str,
    background_tasks: BackgroundTasks,
    settings: Annotated[Settings, Depends(get_settings)],
    processor: Annotated[EventProcessor, Depends(get_event_processor)],
    payload: Annotated[Any, Body()] = None,
) -> WebhookAcceptedResponse:
    """Receive an event authenticated by the secret in the URL path."""
    return _accept(payload, secret, settings, background_tasks, processor)
