"""Transfer orchestrator.

Drives blind and attended (consult) transfers across the customer, agent and
consult legs of a call session.

Attended transfer phases are separate agent actions:

    start_consult            -> record initiated, consult leg dialed
    bridge_consult_to_agent  -> record bridged
    complete_attended_transfer -> record completed, agent leg hung up
    cancel_attended_transfer -> record canceled, customer back with agent

Each phase re-checks the record status before touching the platform, so a
phase arriving out of order is rejected with InvalidTransferState instead of
being sent.
"""
import logging
from typing import Any, Dict, Optional

from dispo_voice.core.config import Settings
from dispo_voice.db.models import CallTransfer
from dispo_voice.services.call_control.client import TelnyxCallControlClient
from dispo_voice.services.call_control.models import CommandAck
from dispo_voice.services.exceptions import (
    ConfigurationError,
    InvalidTransferRequest,
    InvalidTransferState,
    MissingLeg,
    SessionNotFound,
    StorageError,
    TransferInProgress,
    UpstreamError,
    UpstreamUnavailable,
)
from dispo_voice.services.legs.models import ActiveLegs, LegRole
from dispo_voice.services.legs.registry import CallLegRegistry
from dispo_voice.services.transfer.ledger import TransferLedger, new_command_id
from dispo_voice.services.transfer.models import (
    TransferCompletion,
    TransferStatus,
    TransferType,
)

logger = logging.getLogger(__name__)

CONSULT_PURPOSE = "attended_transfer_consult"
RECORDING_CHANNELS = ("single", "dual")


def _require(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidTransferRequest(f"Missing {field}")
    return str(value).strip()


def _require_leg(value: Optional[str], role: LegRole) -> str:
    if value is None or not str(value).strip():
        raise MissingLeg(role.value)
    return str(value).strip()


class TransferOrchestrator:
    """Coordinates transfer phases between the leg registry, ledger and call control."""

    def __init__(
        self,
        registry: CallLegRegistry,
        ledger: TransferLedger,
        call_control: TelnyxCallControlClient,
        settings: Settings,
    ):
        self.registry = registry
        self.ledger = ledger
        self.call_control = call_control
        self.settings = settings

    async def _resolve_legs(self, session_id: str) -> ActiveLegs:
        try:
            legs = await self.registry.get_active_legs(session_id)
        except SessionNotFound as e:
            raise MissingLeg(LegRole.CUSTOMER.value, session_id) from e
        if not legs.customer_leg_id:
            raise MissingLeg(LegRole.CUSTOMER.value, session_id)
        return legs

    async def _ensure_no_transfer_in_flight(self, customer_leg_id: str) -> None:
        in_flight = await self.ledger.get_in_flight_for_leg(customer_leg_id)
        if in_flight is not None:
            logger.warning(
                f"[TRANSFER] Transfer {in_flight.id} ({in_flight.status}) already in flight "
                f"for leg {customer_leg_id}"
            )
            raise TransferInProgress(customer_leg_id)

    async def _fail(self, record: CallTransfer, error: Exception) -> None:
        detail = error.detail if isinstance(error, UpstreamError) else str(error)
        try:
            await self.ledger.transition(record, TransferStatus.FAILED, detail=detail)
        except InvalidTransferState as e:
            # Already settled by a webhook
            logger.warning(f"[TRANSFER] Could not mark transfer {record.id} failed: {e.message}")

    async def initiate_blind_transfer(self, session_id: str, destination: str) -> Dict[str, Any]:
        """Redirect the session's customer leg to ``destination``."""
        session_id = _require(session_id, "sessionId")
        destination = _require(destination, "destination")

        legs = await self._resolve_legs(session_id)
        customer_leg_id = legs.customer_leg_id
        await self._ensure_no_transfer_in_flight(customer_leg_id)

        record = await self.ledger.create(
            customer_leg_id,
            TransferType.BLIND,
            destination,
            session_id=session_id,
            agent_leg_id=legs.agent_leg_id,
        )
        logger.info(
            f"[BLIND TRANSFER] Initiating transfer {record.id} - "
            f"Customer leg: {customer_leg_id}, Destination: {destination}"
        )

        try:
            ack = await self.call_control.transfer(customer_leg_id, destination, record.command_id)
        except UpstreamError as e:
            logger.error(
                f"[BLIND TRANSFER] Transfer {record.id} to {destination} rejected - "
                f"Status: {e.status}, Detail: {e.detail}"
            )
            await self._fail(record, e)
            raise UpstreamError(e.status, e.detail, action=f"transfer to {destination}") from e
        except UpstreamUnavailable as e:
            logger.error(f"[BLIND TRANSFER] Transfer {record.id} to {destination} failed - {e.message}")
            await self._fail(record, e)
            raise

        # The record stays initiated until the call.bridged webhook arrives
        logger.info(f"[BLIND TRANSFER] Transfer {record.id} accepted by call control")
        return {"transfer_id": record.id, "status": record.status, "data": ack.data}

    async def start_consult(self, session_id: str, destination: str) -> Dict[str, Any]:
        """Put the customer on hold and dial the consult destination."""
        session_id = _require(session_id, "sessionId")
        destination = _require(destination, "destination")

        if not self.settings.call_control_app_id:
            raise ConfigurationError("Call Control application not configured")
        if not self.settings.telnyx_default_caller_id:
            raise ConfigurationError("Caller ID not configured")

        legs = await self._resolve_legs(session_id)
        customer_leg_id = legs.customer_leg_id
        await self._ensure_no_transfer_in_flight(customer_leg_id)

        record = await self.ledger.create(
            customer_leg_id,
            TransferType.ATTENDED,
            destination,
            session_id=session_id,
            agent_leg_id=legs.agent_leg_id,
        )
        logger.info(
            f"[ATTENDED TRANSFER] Starting consult {record.id} - Customer leg: {customer_leg_id}, "
            f"Agent leg: {legs.agent_leg_id}, Destination: {destination}"
        )

        hold_started = await self._start_hold_music(customer_leg_id)

        client_state = {
            "purpose": CONSULT_PURPOSE,
            "session_id": session_id,
            "customer_leg_id": customer_leg_id,
            "agent_leg_id": legs.agent_leg_id,
            "transfer_id": record.id,
        }
        try:
            consult_leg_id = await self.call_control.dial(
                to=destination,
                from_=self.settings.telnyx_default_caller_id,
                connection_id=self.settings.call_control_app_id,
                webhook_url=self.settings.resolved_webhook_url,
                client_state=client_state,
                command_id=record.command_id,
            )
        except (UpstreamError, UpstreamUnavailable) as e:
            logger.error(
                f"[ATTENDED TRANSFER] Failed to dial consult leg for transfer {record.id} - "
                f"{type(e).__name__}: {e.details or e.message}"
            )
            if hold_started:
                await self._stop_hold_music(customer_leg_id)
            await self._fail(record, e)
            raise

        logger.info(f"[ATTENDED TRANSFER] Consult leg dialing: {consult_leg_id} (transfer {record.id})")
        # Past this point the platform leg exists; storage failures are not compensated
        await self.ledger.attach_consult_leg(record, consult_leg_id)
        await self.registry.set_leg(session_id, LegRole.CONSULT, consult_leg_id)

        return {"transfer_id": record.id, "consult_leg_id": consult_leg_id}

    async def _load_attended_record(
        self, customer_leg_id: str, consult_leg_id: str
    ) -> CallTransfer:
        record = await self.ledger.get_by_consult_leg(consult_leg_id)
        if record is None:
            raise InvalidTransferState(f"No attended transfer found for consult leg {consult_leg_id}")
        if record.call_control_id != customer_leg_id:
            raise InvalidTransferState(
                f"Consult leg {consult_leg_id} belongs to customer leg {record.call_control_id}, "
                f"not {customer_leg_id}"
            )
        return record

    async def bridge_consult_to_agent(
        self,
        customer_leg_id: Optional[str],
        agent_leg_id: Optional[str],
        consult_leg_id: Optional[str],
    ) -> Dict[str, Any]:
        """Connect the agent with the consult destination while the customer stays held."""
        customer_leg_id = _require_leg(customer_leg_id, LegRole.CUSTOMER)
        agent_leg_id = _require_leg(agent_leg_id, LegRole.AGENT)
        consult_leg_id = _require_leg(consult_leg_id, LegRole.CONSULT)

        record = await self._load_attended_record(customer_leg_id, consult_leg_id)
        if record.status == TransferStatus.BRIDGED.value:
            logger.info(f"[ATTENDED TRANSFER] Transfer {record.id} already bridged")
            return {"transfer_id": record.id, "status": record.status}
        if record.status != TransferStatus.INITIATED.value:
            raise InvalidTransferState(
                f"Transfer {record.id} is {record.status}; only an initiated consult can be bridged"
            )

        command_id = await self.ledger.ensure_bridge_command_id(record)
        logger.info(
            f"[ATTENDED TRANSFER] Bridging consult for transfer {record.id} - "
            f"Agent leg: {agent_leg_id}, Consult leg: {consult_leg_id}"
        )
        try:
            await self.call_control.bridge(consult_leg_id, customer_leg_id, command_id)
        except UpstreamError as e:
            logger.error(f"[ATTENDED TRANSFER] Bridge failed for transfer {record.id}: {e.detail}")
            await self._fail(record, e)
            raise
        except UpstreamUnavailable:
            # Outcome unknown; keep the record initiated so a retry reuses the same token
            logger.error(
                f"[ATTENDED TRANSFER] Bridge outcome unknown for transfer {record.id}; "
                f"retry will reuse command {command_id}"
            )
            raise

        try:
            record = await self.ledger.transition(
                record, TransferStatus.BRIDGED, agent_leg_id=agent_leg_id
            )
        except InvalidTransferState:
            # A concurrent request sent the same bridge token and got there first
            if record.status != TransferStatus.BRIDGED.value:
                raise
            logger.info(f"[ATTENDED TRANSFER] Transfer {record.id} bridged by a concurrent request")
            return {"transfer_id": record.id, "status": record.status}
        logger.info(f"[ATTENDED TRANSFER] Agent bridged to consult for transfer {record.id}")
        return {"transfer_id": record.id, "status": record.status}

    async def complete_attended_transfer(
        self,
        customer_leg_id: Optional[str],
        consult_leg_id: Optional[str],
        agent_leg_id: Optional[str],
    ) -> TransferCompletion:
        """
        Hand the customer off to the consult destination.

        The agent leg is hung up and the record marked completed. The hangup
        and the ledger update are independent: a failed hangup is logged and
        does not stop the record from completing.
        """
        customer_leg_id = _require_leg(customer_leg_id, LegRole.CUSTOMER)
        consult_leg_id = _require_leg(consult_leg_id, LegRole.CONSULT)
        agent_leg_id = _require_leg(agent_leg_id, LegRole.AGENT)

        record = await self._load_attended_record(customer_leg_id, consult_leg_id)
        if record.status != TransferStatus.BRIDGED.value:
            raise InvalidTransferState(
                f"Transfer {record.id} is {record.status}; the consult must be bridged before completing"
            )

        logger.info(
            f"[ATTENDED TRANSFER] Completing transfer {record.id} - Customer leg: {customer_leg_id}, "
            f"Consult leg: {consult_leg_id}, Agent leg: {agent_leg_id}"
        )
        playback_stopped = await self._stop_hold_music(agent_leg_id)

        hangup_error: Optional[str] = None
        try:
            await self.call_control.hangup(agent_leg_id, command_id=new_command_id())
            logger.info(f"[ATTENDED TRANSFER] Agent leg {agent_leg_id} disconnected")
        except (UpstreamError, UpstreamUnavailable) as e:
            hangup_error = e.details or e.message
            logger.error(
                f"[ATTENDED TRANSFER] Agent hangup failed for transfer {record.id} - "
                f"Leg: {agent_leg_id}, {type(e).__name__}: {hangup_error}"
            )

        try:
            record = await self.ledger.transition(record, TransferStatus.COMPLETED)
        except (StorageError, InvalidTransferState):
            logger.error(
                f"[ATTENDED TRANSFER] Ledger update failed for transfer {record.id} after "
                f"agent hangup {'failed' if hangup_error else 'succeeded'}"
            )
            raise
        logger.info(f"[ATTENDED TRANSFER] Transfer {record.id} completed")

        return TransferCompletion(
            transfer_id=record.id,
            playback_stopped=playback_stopped,
            agent_hangup_ok=hangup_error is None,
            agent_hangup_error=hangup_error,
        )

    async def cancel_attended_transfer(
        self,
        customer_leg_id: Optional[str],
        agent_leg_id: Optional[str],
        consult_leg_id: Optional[str],
    ) -> Dict[str, Any]:
        """Abandon the consult and reconnect the customer with the agent."""
        customer_leg_id = _require_leg(customer_leg_id, LegRole.CUSTOMER)
        agent_leg_id = _require_leg(agent_leg_id, LegRole.AGENT)
        consult_leg_id = _require_leg(consult_leg_id, LegRole.CONSULT)

        record = await self._load_attended_record(customer_leg_id, consult_leg_id)
        if TransferStatus(record.status).is_terminal:
            raise InvalidTransferState(f"Transfer {record.id} is already {record.status}")

        logger.info(f"[ATTENDED TRANSFER] Canceling transfer {record.id}")
        await self._stop_hold_music(customer_leg_id)

        await self.call_control.bridge(customer_leg_id, agent_leg_id, new_command_id())
        logger.info(f"[ATTENDED TRANSFER] Customer re-bridged to agent for transfer {record.id}")

        try:
            await self.call_control.hangup(consult_leg_id, command_id=new_command_id())
        except (UpstreamError, UpstreamUnavailable) as e:
            logger.error(
                f"[ATTENDED TRANSFER] Consult hangup failed for transfer {record.id} - "
                f"Leg: {consult_leg_id}, {type(e).__name__}: {e.details or e.message}"
            )

        record = await self.ledger.transition(record, TransferStatus.CANCELED)
        if record.session_id:
            await self.registry.clear_leg(record.session_id, LegRole.CONSULT)
        return {"transfer_id": record.id, "status": record.status}

    async def set_hold(self, session_id: str, hold: bool) -> CommandAck:
        """Start or stop hold music on the session's customer leg."""
        session_id = _require(session_id, "sessionId")
        legs = await self._resolve_legs(session_id)
        if hold:
            audio_url = self.settings.resolved_hold_music_url
            if not audio_url:
                raise ConfigurationError("Hold music URL not configured")
            return await self.call_control.playback_start(
                legs.customer_leg_id, audio_url, command_id=new_command_id()
            )
        return await self.call_control.playback_stop(legs.customer_leg_id, command_id=new_command_id())

    async def start_recording(self, session_id: str, channels: str = "single") -> CommandAck:
        """Start recording the session's customer leg."""
        session_id = _require(session_id, "sessionId")
        if channels not in RECORDING_CHANNELS:
            raise InvalidTransferRequest(f"channels must be one of {', '.join(RECORDING_CHANNELS)}")
        legs = await self._resolve_legs(session_id)
        return await self.call_control.record_start(
            legs.customer_leg_id, channels=channels, command_id=new_command_id()
        )

    async def _start_hold_music(self, leg_id: str) -> bool:
        audio_url = self.settings.resolved_hold_music_url
        if not audio_url:
            logger.debug(f"[HOLD] No hold music configured; leg {leg_id} left as is")
            return False
        try:
            await self.call_control.playback_start(leg_id, audio_url, command_id=new_command_id())
        except (UpstreamError, UpstreamUnavailable) as e:
            logger.warning(f"[HOLD] Could not start hold music on leg {leg_id}: {e.details or e.message}")
            return False
        logger.info(f"[HOLD] Playing hold music to leg {leg_id}")
        return True

    async def _stop_hold_music(self, leg_id: str) -> bool:
        try:
            await self.call_control.playback_stop(leg_id, command_id=new_command_id())
        except (UpstreamError, UpstreamUnavailable) as e:
            logger.warning(f"[HOLD] Could not stop playback on leg {leg_id}: {e.details or e.message}")
            return False
        logger.info(f"[HOLD] Stopped playback on leg {leg_id}")
        return True
