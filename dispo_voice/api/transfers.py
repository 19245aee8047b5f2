"""Call transfer endpoints."""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from dispo_voice.core.dependencies import get_transfer_ledger, get_transfer_orchestrator
from dispo_voice.services.transfer.ledger import TransferLedger
from dispo_voice.services.transfer.orchestrator import TransferOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)


class SessionTransferRequest(BaseModel):
    """Transfer request addressed by session id."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")
    destination: Optional[str] = None


class LegTripleRequest(BaseModel):
    """Request naming the three legs of an attended transfer."""

    model_config = ConfigDict(populate_by_name=True)

    customer_leg_id: Optional[str] = Field(default=None, alias="customerLegId")
    agent_leg_id: Optional[str] = Field(default=None, alias="agentLegId")
    consult_leg_id: Optional[str] = Field(default=None, alias="consultLegId")


class TransferRecordResponse(BaseModel):
    """Transfer record response model."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    call_control_id: str
    session_id: Optional[str] = None
    transfer_type: str
    destination: str
    consult_leg_id: Optional[str] = None
    agent_leg_id: Optional[str] = None
    status: str
    detail: Optional[str] = None
    initiated_at: datetime
    completed_at: Optional[datetime] = None


def _client(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.post("/api/calls/transfer/blind")
async def blind_transfer(
    body: SessionTransferRequest,
    request: Request,
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
):
    """Transfer the session's customer leg straight to a destination."""
    logger.info(
        f"[BLIND TRANSFER] Request received - Session: {body.session_id}, "
        f"Destination: {body.destination}, Client: {_client(request)}"
    )
    result = await orchestrator.initiate_blind_transfer(body.session_id, body.destination)
    return {
        "success": True,
        "message": "Transfer initiated",
        "transferId": result["transfer_id"],
        "data": result["data"],
    }


@router.post("/api/calls/transfer/attended/start")
async def start_attended_transfer(
    body: SessionTransferRequest,
    request: Request,
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
):
    """Hold the customer and dial the consult destination."""
    logger.info(
        f"[ATTENDED TRANSFER] Start requested - Session: {body.session_id}, "
        f"Destination: {body.destination}, Client: {_client(request)}"
    )
    result = await orchestrator.start_consult(body.session_id, body.destination)
    return {
        "success": True,
        "message": "Consult call initiated",
        "consultLegId": result["consult_leg_id"],
        "transferId": result["transfer_id"],
    }


@router.post("/api/calls/transfer/attended/bridge-consult")
async def bridge_consult(
    body: LegTripleRequest,
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
):
    """Connect the agent with the consult destination."""
    result = await orchestrator.bridge_consult_to_agent(
        body.customer_leg_id, body.agent_leg_id, body.consult_leg_id
    )
    return {
        "success": True,
        "message": "Agent connected to consult destination",
        "transferId": result["transfer_id"],
    }


@router.post("/api/calls/transfer/attended/complete")
async def complete_attended_transfer(
    body: LegTripleRequest,
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
):
    """Hand the customer off to the consult destination and drop the agent."""
    outcome = await orchestrator.complete_attended_transfer(
        body.customer_leg_id, body.consult_leg_id, body.agent_leg_id
    )
    response = {
        "success": True,
        "message": "Transfer completed successfully",
        "transferId": outcome.transfer_id,
        "agentHangup": outcome.agent_hangup_ok,
    }
    if outcome.agent_hangup_error:
        response["agentHangupError"] = outcome.agent_hangup_error
    return response


@router.post("/api/calls/transfer/attended/cancel")
async def cancel_attended_transfer(
    body: LegTripleRequest,
    orchestrator: TransferOrchestrator = Depends(get_transfer_orchestrator),
):
    """Drop the consult leg and reconnect the customer with the agent."""
    result = await orchestrator.cancel_attended_transfer(
        body.customer_leg_id, body.agent_leg_id, body.consult_leg_id
    )
    return {
        "success": True,
        "message": "Transfer canceled, customer reconnected to agent",
        "transferId": result["transfer_id"],
    }


@router.get("/api/calls/transfers", response_model=List[TransferRecordResponse])
async def list_transfers(
    session_id: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=500),
    ledger: TransferLedger = Depends(get_transfer_ledger),
):
    """Recent transfer records, newest first."""
    logger.info(f"[TRANSFERS] History requested - Session: {session_id}, limit: {limit}")
    records = await ledger.list_recent(session_id=session_id, limit=limit)
    return [TransferRecordResponse.model_validate(record) for record in records]
