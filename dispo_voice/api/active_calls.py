"""Agent active call endpoints (leg registry)."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from dispo_voice.core.dependencies import get_leg_registry
from dispo_voice.services.exceptions import SessionNotFound
from dispo_voice.services.legs.models import LegRole
from dispo_voice.services.legs.registry import CallLegRegistry

router = APIRouter()
logger = logging.getLogger(__name__)


class StoreActiveCallRequest(BaseModel):
    """Leg ids reported by the agent console."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")
    agent_id: Optional[str] = Field(default=None, alias="agentId")
    customer_leg_id: Optional[str] = Field(default=None, alias="customerLegId")
    agent_leg_id: Optional[str] = Field(default=None, alias="agentLegId")
    consult_leg_id: Optional[str] = Field(default=None, alias="consultLegId")


@router.post("/api/agents/active-call")
async def store_active_call(
    body: StoreActiveCallRequest,
    registry: CallLegRegistry = Depends(get_leg_registry),
):
    """Store the leg ids of an agent's active call."""
    legs = {
        LegRole.CUSTOMER: body.customer_leg_id,
        LegRole.AGENT: body.agent_leg_id,
        LegRole.CONSULT: body.consult_leg_id,
    }
    if not body.session_id or not any(legs.values()):
        raise HTTPException(status_code=400, detail="Missing sessionId or leg IDs")

    logger.info(
        f"[ACTIVE CALL] Storing legs - Session: {body.session_id}, "
        + ", ".join(f"{role.value}: {leg_id}" for role, leg_id in legs.items() if leg_id)
    )
    for role, leg_id in legs.items():
        if leg_id:
            await registry.set_leg(body.session_id, role, leg_id, agent_id=body.agent_id)

    return {"success": True, "message": "Call leg IDs stored successfully"}


@router.get("/api/agents/active-call/{session_id}")
async def get_active_call(
    session_id: str,
    registry: CallLegRegistry = Depends(get_leg_registry),
):
    """Get the leg ids currently attached to a session."""
    try:
        legs = await registry.get_active_legs(session_id)
    except SessionNotFound:
        return {"activeCall": None}
    return {
        "activeCall": {
            "sessionId": legs.session_id,
            "customerLegId": legs.customer_leg_id,
            "agentLegId": legs.agent_leg_id,
            "consultLegId": legs.consult_leg_id,
        }
    }


@router.delete("/api/agents/active-call/{session_id}")
async def delete_active_call(
    session_id: str,
    registry: CallLegRegistry = Depends(get_leg_registry),
):
    """Clear a session from the leg registry."""
    logger.info(f"[ACTIVE CALL] Clearing session {session_id}")
    await registry.clear_session(session_id)
    return {"success": True}
