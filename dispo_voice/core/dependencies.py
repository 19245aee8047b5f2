"""FastAPI dependencies."""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dispo_voice.core.config import Settings, settings
from dispo_voice.db.database import get_db
from dispo_voice.services.call_control.client import TelnyxCallControlClient
from dispo_voice.services.legs.registry import CallLegRegistry
from dispo_voice.services.transfer.ledger import TransferLedger
from dispo_voice.services.transfer.orchestrator import TransferOrchestrator
from dispo_voice.services.webhooks.processor import CallEventProcessor


def get_settings() -> Settings:
    """Get application settings."""
    return settings


def get_call_control_client(
    app_settings: Settings = Depends(get_settings),
) -> TelnyxCallControlClient:
    """Get Telnyx call-control client."""
    return TelnyxCallControlClient(
        api_key=app_settings.telnyx_api_key,
        base_url=app_settings.telnyx_api_url,
        timeout=app_settings.call_control_timeout_seconds,
    )


def get_leg_registry(db: AsyncSession = Depends(get_db)) -> CallLegRegistry:
    """Get call leg registry bound to the request session."""
    return CallLegRegistry(db)


def get_transfer_ledger(db: AsyncSession = Depends(get_db)) -> TransferLedger:
    """Get transfer ledger bound to the request session."""
    return TransferLedger(db)


def get_transfer_orchestrator(
    registry: CallLegRegistry = Depends(get_leg_registry),
    ledger: TransferLedger = Depends(get_transfer_ledger),
    call_control: TelnyxCallControlClient = Depends(get_call_control_client),
    app_settings: Settings = Depends(get_settings),
) -> TransferOrchestrator:
    """Get transfer orchestrator."""
    return TransferOrchestrator(registry, ledger, call_control, app_settings)


def get_call_event_processor(
    registry: CallLegRegistry = Depends(get_leg_registry),
    ledger: TransferLedger = Depends(get_transfer_ledger),
) -> CallEventProcessor:
    """Get webhook event processor."""
    return CallEventProcessor(registry, ledger)
