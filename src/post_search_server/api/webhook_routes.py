"""
Webhook Routes

Receives post lifecycle webhooks from the blogging platform.

Workflow
--------
1. Decode the JSON body.
2. Verify the signature header (fail closed, no side effects).
3. Validate the body shape.
4. Admit the event id through the idempotency guard.
5. Publish the event to the bus and acknowledge.

Indexing itself happens asynchronously in the bus worker.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .dependencies import ServiceContainer, get_container
from .models import WebhookAck
from ..auth.signature import parse_signature_header, require_valid_signature
from ..core.errors import EventBusFull, SignatureVerificationError
from ..events.models import BusEvent, InboundEvent, WebhookPayload

logger = logging.getLogger("post_search.webhook")

router = APIRouter(tags=["webhook"])


@router.post(
    "/webhook",
    response_model=WebhookAck,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Receive a post lifecycle webhook",
)
async def receive_webhook(
    request: Request,
    container: Annotated[ServiceContainer, Depends(get_container)],
) -> JSONResponse:
    settings = container.settings

    # -------------------------------------------------------------
    # 1. Decode body
    # -------------------------------------------------------------
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else None
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Request body is not valid JSON.",
        )

    # -------------------------------------------------------------
    # 2. Verify signature
    # -------------------------------------------------------------
    header = request.headers.get(settings.webhook_signature_header)
    try:
        require_valid_signature(
            header,
            body,
            settings.webhook_secret.get_secret_value(),
            max_age_seconds=settings.webhook_max_age_seconds,
        )
    except SignatureVerificationError as exc:
        logger.warning("Rejected webhook: %s", exc.reason)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": "Invalid webhook signature", "reason": exc.reason},
        )

    # -------------------------------------------------------------
    # 3. Validate payload
    # -------------------------------------------------------------
    try:
        payload = WebhookPayload.model_validate(body)
    except ValidationError as exc:
        logger.warning("Rejected webhook with invalid body: %d error(s)", exc.error_count())
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook body does not match the expected shape.",
        )

    signed_at = parse_signature_header(header).timestamp
    event = InboundEvent(
        id=payload.metadata.uuid,
        type=payload.data.event_type,
        timestamp=datetime.fromtimestamp(signed_at / 1000, tz=timezone.utc),
        payload=payload.data,
    )

    # -------------------------------------------------------------
    # 4. Idempotency
    # -------------------------------------------------------------
    guard = container.idempotency_guard
    admission = await guard.admit(event.id)
    if not admission.admitted:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content=WebhookAck(status="duplicate", event_id=event.id).model_dump(),
        )

    # -------------------------------------------------------------
    # 5. Publish
    # -------------------------------------------------------------
    try:
        container.event_bus.publish(BusEvent.from_inbound(event, settings.event_source))
    except EventBusFull:
        await guard.release(event.id)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Event queue is full, retry later.",
        )
    except Exception:
        await guard.release(event.id)
        raise

    logger.info(
        "Accepted %s for document %s (event %s)",
        event.type.value,
        event.payload.document_id,
        event.id,
    )

    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=WebhookAck(status="accepted", event_id=event.id).model_dump(),
    )
