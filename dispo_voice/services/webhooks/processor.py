"""Call-control webhook ingestion.

This is the only place leg state changes. Agent actions read state; they
never assume that an acknowledged command moved a leg anywhere.
"""
import logging
from typing import Optional

from dispo_voice.services.legs.models import LegLocation, LegRole, LegState
from dispo_voice.services.legs.registry import CallLegRegistry
from dispo_voice.services.transfer.ledger import TransferLedger
from dispo_voice.services.transfer.models import TransferStatus, TransferType
from dispo_voice.services.transfer.orchestrator import CONSULT_PURPOSE
from dispo_voice.services.webhooks.events import CallControlEvent

logger = logging.getLogger(__name__)

CALL_INITIATED = "call.initiated"
CALL_ANSWERED = "call.answered"
CALL_BRIDGED = "call.bridged"
CALL_HANGUP = "call.hangup"
PLAYBACK_STARTED = "call.playback.started"
PLAYBACK_ENDED = "call.playback.ended"


class CallEventProcessor:
    """Applies call-control events to the leg registry and transfer ledger."""

    def __init__(self, registry: CallLegRegistry, ledger: TransferLedger):
        self.registry = registry
        self.ledger = ledger

    async def handle(self, event: CallControlEvent) -> Optional[LegState]:
        """Process one event. Returns the leg's resulting state, or None if ignored."""
        if not event.leg_id:
            logger.debug(f"[WEBHOOK] {event.event_type} without call_control_id ignored")
            return None

        location = await self._locate(event)
        if location is None:
            logger.debug(f"[WEBHOOK] {event.event_type} for unknown leg {event.leg_id} ignored")
            return None

        if event.event_type == CALL_INITIATED:
            state = LegState.RINGING if event.direction == "incoming" else LegState.DIALING
            return await self._apply(event, location, state)

        if event.event_type == CALL_ANSWERED:
            return await self._apply(event, location, LegState.ACTIVE)

        if event.event_type == CALL_BRIDGED:
            state = await self._apply(event, location, LegState.BRIDGED)
            if location.role == LegRole.CUSTOMER:
                await self._complete_blind_transfer(event.leg_id)
            return state

        if event.event_type == PLAYBACK_STARTED:
            leg = await self.registry.get_leg(event.leg_id)
            if leg is not None and leg.state in (LegState.ACTIVE.value, LegState.BRIDGED.value):
                return await self._apply(event, location, LegState.ON_HOLD)
            return LegState(leg.state) if leg is not None else None

        if event.event_type == PLAYBACK_ENDED:
            leg = await self.registry.get_leg(event.leg_id)
            if leg is not None and leg.state == LegState.ON_HOLD.value:
                return await self._apply(event, location, LegState.ACTIVE)
            return LegState(leg.state) if leg is not None else None

        if event.event_type == CALL_HANGUP:
            state = await self._apply(event, location, LegState.ENDED)
            await self._handle_hangup(event, location)
            return state

        logger.debug(f"[WEBHOOK] No handling for {event.event_type} on leg {event.leg_id}")
        return None

    async def _locate(self, event: CallControlEvent) -> Optional[LegLocation]:
        state = event.client_state or {}
        if state.get("purpose") == CONSULT_PURPOSE and state.get("session_id"):
            location = LegLocation(session_id=state["session_id"], role=LegRole.CONSULT)
            if await self.registry.get_session(location.session_id) is None:
                # Customer hangup already cleared the session; do not resurrect it
                logger.info(
                    f"[WEBHOOK] {event.event_type} for consult leg {event.leg_id} of ended "
                    f"session {location.session_id} ignored"
                )
                return None
            if event.event_type == CALL_INITIATED:
                # The dial response may not have been stored yet
                await self.registry.set_leg(location.session_id, LegRole.CONSULT, event.leg_id)
            return location

        location = await self.registry.find_leg(event.leg_id)
        if location is not None:
            return location

        if event.event_type == CALL_INITIATED and event.call_session_id:
            logger.info(
                f"[WEBHOOK] Registering customer leg {event.leg_id} for session {event.call_session_id}"
            )
            await self.registry.set_leg(event.call_session_id, LegRole.CUSTOMER, event.leg_id)
            return LegLocation(session_id=event.call_session_id, role=LegRole.CUSTOMER)
        return None

    async def _apply(
        self, event: CallControlEvent, location: LegLocation, state: LegState
    ) -> Optional[LegState]:
        leg = await self.registry.apply_leg_state(event.leg_id, location.session_id, location.role, state)
        if leg is None:
            return None
        if leg.state != state.value:
            logger.info(
                f"[WEBHOOK] {event.event_type} ignored for leg {event.leg_id}: already {leg.state}"
            )
        else:
            logger.info(f"[WEBHOOK] Leg {event.leg_id} ({location.role.value}) -> {state.value}")
        return LegState(leg.state)

    async def _complete_blind_transfer(self, customer_leg_id: str) -> None:
        record = await self.ledger.get_in_flight_for_leg(customer_leg_id)
        if record is None or record.transfer_type != TransferType.BLIND.value:
            return
        await self.ledger.transition(record, TransferStatus.COMPLETED)
        logger.info(f"[WEBHOOK] Blind transfer {record.id} completed by platform bridge")

    async def _handle_hangup(self, event: CallControlEvent, location: LegLocation) -> None:
        if location.role == LegRole.CUSTOMER:
            record = await self.ledger.get_in_flight_for_leg(event.leg_id)
            if record is not None:
                await self.ledger.transition(
                    record, TransferStatus.FAILED, detail="Customer leg ended before transfer completed"
                )
            await self.registry.clear_session(location.session_id)
            return

        if location.role == LegRole.CONSULT:
            record = await self.ledger.get_by_consult_leg(event.leg_id)
            if record is not None and not TransferStatus(record.status).is_terminal:
                await self.ledger.transition(
                    record, TransferStatus.FAILED, detail="Consult leg ended before transfer completed"
                )
            await self.registry.clear_leg(location.session_id, LegRole.CONSULT, leg_id=event.leg_id)
            return

        await self.registry.clear_leg(location.session_id, LegRole.AGENT, leg_id=event.leg_id)
