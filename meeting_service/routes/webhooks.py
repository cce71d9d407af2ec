"""Webhook ingress for conferencing platform events."""
import logging

import pydantic
from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session

from meeting_service.core.concurrency import locks
from meeting_service.core.config import settings
from meeting_service.core.database import get_session
from meeting_service.webhooks.events import UrlValidationPayload, WebhookEnvelope, WebhookEventKind
from meeting_service.webhooks.reconciler import IGNORED, WebhookReconciler
from meeting_service.webhooks.validator import url_validation_response, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/zoom")
async def zoom_webhook(request: Request, session: Session = Depends(get_session)):
    """
    Receive a Zoom webhook.

    The signature is checked against the raw body before anything is
    parsed. URL validation handshakes are answered directly; every other
    event goes to the reconciler. Events that cannot be used are
    acknowledged with {"status": "ignored"} so the platform does not retry
    them.
    """
    body = await request.body()
    verify_signature(
        body,
        request.headers.get("x-zm-signature"),
        request.headers.get("x-zm-request-timestamp"),
        settings.zoom_webhook_secret_token,
        settings.webhook_replay_window_seconds,
    )

    try:
        envelope = WebhookEnvelope.model_validate_json(body)
    except pydantic.ValidationError:
        logger.warning("Dropping webhook with malformed envelope")
        return IGNORED

    if envelope.kind == WebhookEventKind.URL_VALIDATION:
        try:
            payload = UrlValidationPayload.model_validate(envelope.payload)
        except pydantic.ValidationError:
            logger.warning("URL validation request without plainToken")
            return IGNORED
        return url_validation_response(payload.plainToken, settings.zoom_webhook_secret_token)

    reconciler = WebhookReconciler(session, locks)
    return await run_in_threadpool(reconciler.handle, envelope)
