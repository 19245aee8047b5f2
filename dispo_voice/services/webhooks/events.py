"""Call-control webhook event models."""
import base64
import json
import logging
from typing import Any, Dict, Optional
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


def decode_client_state(value: Optional[str]) -> Optional[Dict[str, Any]]:
    """Decode a base64 JSON client_state. Returns None when absent or unreadable."""
    if not value or not isinstance(value, str):
        return None
    try:
        decoded = json.loads(base64.b64decode(value).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        logger.warning(f"[WEBHOOK] Ignoring unreadable client_state: {value[:50]}")
        return None
    return decoded if isinstance(decoded, dict) else None


class CallControlEvent(BaseModel):
    """A leg state change reported by the call-control platform."""

    event_type: str
    leg_id: Optional[str] = None
    call_session_id: Optional[str] = None
    direction: Optional[str] = None
    client_state: Optional[Dict[str, Any]] = None
    payload: Dict[str, Any] = {}

    @classmethod
    def from_body(cls, body: Optional[Dict[str, Any]]) -> Optional["CallControlEvent"]:
        """
        Build an event from a webhook body.

        Accepts the enveloped form ``{"data": {"event_type", "payload"}}`` as
        well as a flat body carrying the same fields. Returns None when the
        body has no event type or a field has the wrong type.
        """
        if not isinstance(body, dict):
            return None
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        event_type = data.get("event_type") or body.get("event_type")
        if not event_type:
            return None
        payload = data.get("payload") if isinstance(data.get("payload"), dict) else body

        direction = payload.get("direction")
        try:
            return cls(
                event_type=event_type,
                leg_id=payload.get("call_control_id"),
                call_session_id=payload.get("call_session_id"),
                direction=direction.lower() if isinstance(direction, str) else None,
                client_state=decode_client_state(payload.get("client_state")),
                payload=payload,
            )
        except ValidationError as e:
            logger.warning(f"[WEBHOOK] Dropping malformed {event_type!r} event: {e.error_count()} invalid field(s)")
            return None
