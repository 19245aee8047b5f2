"""Telnyx call-control webhook endpoint."""
import logging
from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from dispo_voice.core.dependencies import get_call_event_processor
from dispo_voice.services.exceptions import CallFlowError
from dispo_voice.services.webhooks.events import CallControlEvent
from dispo_voice.services.webhooks.processor import CallEventProcessor

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/telnyx/voice")
async def handle_call_control_event(
    request: Request,
    processor: CallEventProcessor = Depends(get_call_event_processor),
):
    """
    Handle call-control events from Telnyx.

    Always answers 200 so the platform does not redeliver; failures are
    logged and the event is dropped.
    """
    try:
        body = await request.json()
    except ValueError:
        logger.warning("[WEBHOOK] Received body that is not JSON")
        return {"ok": True}

    event = CallControlEvent.from_body(body)
    if event is None:
        logger.warning("[WEBHOOK] Received body without a usable event")
        return {"ok": True}

    logger.info(
        f"[WEBHOOK] Received {event.event_type} - Leg: {event.leg_id}, "
        f"Session: {event.call_session_id}, Direction: {event.direction}"
    )
    try:
        state = await processor.handle(event)
        logger.debug(f"[WEBHOOK] {event.event_type} processed - Leg: {event.leg_id}, State: {state}")
    except (CallFlowError, SQLAlchemyError) as e:
        logger.error(
            f"[WEBHOOK] Error processing {event.event_type} - Leg: {event.leg_id}, "
            f"Error: {type(e).__name__}: {e}",
            exc_info=True,
        )

    return {"ok": True}
