"""Calling-provider webhook endpoints."""

import hmac
import json

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from campaign_dialer.config import get_settings
from campaign_dialer.schemas.webhooks import (
    InboundLookupRequest,
    InboundLookupResponse,
    ProviderMessage,
    WebhookAck,
)
from campaign_dialer.services.dependencies import Runtime

logger = structlog.get_logger(__name__)

SECRET_HEADER = "X-Vapi-Secret"


async def verify_webhook_secret(request: Request) -> None:
    """Check the shared secret header when one is configured."""
    settings = get_settings()
    if not settings.webhook_secret:
        return

    provided = request.headers.get(SECRET_HEADER, "")
    if not hmac.compare_digest(provided, settings.webhook_secret):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid webhook secret")


router = APIRouter(
    prefix="/webhooks",
    tags=["webhooks"],
    dependencies=[Depends(verify_webhook_secret)],
)


@router.post("/vapi", response_model=WebhookAck)
async def provider_webhook(request: Request, runtime: Runtime) -> WebhookAck:
    """
    Handle provider server messages.

    Only ``end-of-call-report`` changes anything. The provider expects a
    quick acknowledgement, so processing problems are logged and the
    message is acknowledged regardless; only a body without ``message``
    is rejected.
    """
    try:
        body = await request.json()
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON") from e

    raw_message = body.get("message") if isinstance(body, dict) else None
    if not raw_message:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing message")

    try:
        message = ProviderMessage.model_validate(raw_message)
    except ValidationError:
        logger.warning("Unreadable provider message", body=raw_message)
        return WebhookAck()

    if not message.is_end_of_call_report:
        logger.debug("Provider message ignored", type=message.type)
        return WebhookAck()

    event = message.to_event()
    outcome = await runtime.reconciler.handle_outcome(event)
    logger.info(
        "End-of-call report handled",
        external_id=event.external_id,
        ended_reason=event.ended_reason,
        outcome=outcome.value,
    )
    return WebhookAck()


@router.post("/inbound-lookup", response_model=InboundLookupResponse)
async def inbound_lookup(lookup: InboundLookupRequest, runtime: Runtime) -> InboundLookupResponse:
    """Tell the assistant who is calling in, from the first dataset that knows the number."""
    phone = lookup.resolved_phone
    if not phone:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="phone required")

    matches = await runtime.leads.find_by_phone_anywhere(phone)
    if not matches:
        return InboundLookupResponse(found=False)

    lead = matches[0]
    return InboundLookupResponse(
        found=True,
        first_name=lead.first_name,
        last_name=lead.last_name,
        address=lead.address,
        city=lead.city,
        zip=lead.zip_code,
        phone=lead.phone,
    )
