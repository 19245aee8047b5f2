"""Customer leg actions: hold and recording."""
import logging
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from dispo_voice.core.dependencies import get_transfer_orchestrator
from dispo_voice.services.transfer.orchestrator import TransferOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)


class HoldRequest(BaseModel):
    """Hold toggle request."""

    hold: bool = True


class RecordRequest(BaseModel):
    """Recording request."""

    channels: str = "single"


@router.post("/api/calls/{session_id}/hold")
async def hold_call(
    session_id: str,
    body: HoldRequest,
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
):
    """Start or stop hold music for the customer."""
    logger.info(f"[HOLD] {'Hold' if body.hold else 'Resume'} requested - Session: {session_id}")
    ack = await orchestrator.set_hold(session_id, body.hold)
    return {"success": True, "data": ack.data}


@router.post("/api/calls/{session_id}/record")
async def record_call(
    session_id: str,
    body: RecordRequest,
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
):
    """Start recording the customer leg."""
    logger.info(f"[RECORD] Recording requested - Session: {session_id}, Channels: {body.channels}")
    ack = await orchestrator.start_recording(session_id, body.channels)
    return {"success": True, "data": ack.data}
