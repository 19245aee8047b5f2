"""Transfer ledger persistence."""
import logging
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import desc, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dispo_voice.db.models import CallTransfer
from dispo_voice.services.exceptions import InvalidTransferState, StorageError, TransferInProgress
from dispo_voice.services.transfer.models import (
    ALLOWED_TRANSITIONS,
    IN_FLIGHT_STATUSES,
    TransferStatus,
    TransferType,
)

logger = logging.getLogger(__name__)


def new_command_id() -> str:
    """Generate an idempotency token for a platform command."""
    return str(uuid.uuid4())


class TransferLedger:
    """Durable record of transfer attempts in the call_transfers table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _commit(self, record: CallTransfer, what: str) -> CallTransfer:
        try:
            await self.db.commit()
            await self.db.refresh(record)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"[TRANSFER LEDGER] Failed to {what}: {type(e).__name__}: {e}", exc_info=True)
            raise StorageError(f"Failed to {what}") from e
        return record

    def _select(self):
        return select(CallTransfer).execution_options(populate_existing=True)

    async def create(
        self,
        customer_leg_id: str,
        transfer_type: TransferType,
        destination: str,
        session_id: Optional[str] = None,
        agent_leg_id: Optional[str] = None,
    ) -> CallTransfer:
        """
        Insert an initiated record and claim the in-flight slot of the customer leg.

        This insert is the commit point of a transfer: if another record
        already holds the slot, the unique constraint rejects it and
        TransferInProgress is raised.
        """
        record = CallTransfer(
            call_control_id=customer_leg_id,
            session_id=session_id,
            transfer_type=TransferType(transfer_type).value,
            destination=destination,
            agent_leg_id=agent_leg_id,
            status=TransferStatus.INITIATED.value,
            in_flight_leg_id=customer_leg_id,
            command_id=new_command_id(),
        )
        self.db.add(record)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(
                f"[TRANSFER LEDGER] In-flight slot already taken - Leg: {customer_leg_id}"
            )
            raise TransferInProgress(customer_leg_id) from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"[TRANSFER LEDGER] Failed to create record: {type(e).__name__}: {e}", exc_info=True)
            raise StorageError("Failed to create transfer record") from e
        await self.db.refresh(record)
        logger.info(
            f"[TRANSFER LEDGER] Created {record.transfer_type} transfer {record.id} - "
            f"Leg: {customer_leg_id}, Destination: {destination}"
        )
        return record

    async def _fetch_one(self, query, what: str) -> Optional[CallTransfer]:
        try:
            result = await self.db.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"[TRANSFER LEDGER] Failed to read {what}: {type(e).__name__}: {e}", exc_info=True)
            raise StorageError(f"Failed to read {what}") from e

    async def get_by_id(self, transfer_id: int) -> Optional[CallTransfer]:
        """Get a transfer record by id."""
        return await self._fetch_one(
            self._select().where(CallTransfer.id == transfer_id), f"transfer {transfer_id}"
        )

    async def get_by_consult_leg(self, consult_leg_id: str) -> Optional[CallTransfer]:
        """Get the attended transfer record keyed by its consult leg."""
        return await self._fetch_one(
            self._select().where(CallTransfer.consult_leg_id == consult_leg_id),
            f"transfer for consult leg {consult_leg_id}",
        )

    async def get_in_flight_for_leg(self, customer_leg_id: str) -> Optional[CallTransfer]:
        """Get the in-flight record of a customer leg, if any."""
        return await self._fetch_one(
            self._select().where(CallTransfer.in_flight_leg_id == customer_leg_id),
            f"in-flight transfer for leg {customer_leg_id}",
        )

    async def get_latest_in_flight_for_session(self, session_id: str) -> Optional[CallTransfer]:
        """Most recent in-flight record of a session."""
        return await self._fetch_one(
            self._select()
            .where(CallTransfer.session_id == session_id)
            .where(CallTransfer.status.in_([s.value for s in IN_FLIGHT_STATUSES]))
            .order_by(desc(CallTransfer.initiated_at), desc(CallTransfer.id))
            .limit(1),
            f"in-flight transfer for session {session_id}",
        )

    async def list_recent(self, session_id: Optional[str] = None, limit: int = 100) -> List[CallTransfer]:
        """Recent transfer records, newest first."""
        query = self._select()
        if session_id:
            query = query.where(CallTransfer.session_id == session_id)
        try:
            result = await self.db.execute(
                query.order_by(desc(CallTransfer.initiated_at), desc(CallTransfer.id)).limit(limit)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"[TRANSFER LEDGER] Failed to list transfers: {type(e).__name__}: {e}", exc_info=True)
            raise StorageError("Failed to list transfers") from e

    async def attach_consult_leg(self, record: CallTransfer, consult_leg_id: str) -> CallTransfer:
        """Key an attended record by the consult leg the platform allocated."""
        record.consult_leg_id = consult_leg_id
        record.updated_at = datetime.utcnow()
        return await self._commit(record, f"attach consult leg {consult_leg_id} to transfer {record.id}")

    async def _update_where(self, record: CallTransfer, statement, what: str) -> int:
        """Run a guarded UPDATE, then reload ``record`` with what is stored now."""
        try:
            result = await self.db.execute(statement.execution_options(synchronize_session=False))
            await self.db.commit()
            await self.db.refresh(record)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"[TRANSFER LEDGER] Failed to {what}: {type(e).__name__}: {e}", exc_info=True)
            raise StorageError(f"Failed to {what}") from e
        return result.rowcount

    async def ensure_bridge_command_id(self, record: CallTransfer) -> str:
        """
        Persist the bridge token before it is sent so retries reuse it.

        The token is only written while none is stored; a concurrent caller
        that lost the race gets the token the winner stored.
        """
        if record.bridge_command_id:
            return record.bridge_command_id
        statement = (
            update(CallTransfer)
            .where(CallTransfer.id == record.id, CallTransfer.bridge_command_id.is_(None))
            .values(bridge_command_id=new_command_id(), updated_at=datetime.utcnow())
        )
        await self._update_where(record, statement, f"store bridge command id for transfer {record.id}")
        return record.bridge_command_id

    async def transition(
        self,
        record: CallTransfer,
        status: TransferStatus,
        detail: Optional[str] = None,
        agent_leg_id: Optional[str] = None,
    ) -> CallTransfer:
        """
        Move a record to ``status``, releasing the in-flight slot on terminal states.

        The stored status is re-checked by the UPDATE itself, so a record
        another writer already moved on (for example to failed by a hangup
        webhook) is left alone and InvalidTransferState is raised.
        """
        current = TransferStatus(record.status)
        target = TransferStatus(status)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransferState(
                f"Transfer {record.id} cannot move from {current.value} to {target.value}"
            )

        sources = [s.value for s, targets in ALLOWED_TRANSITIONS.items() if target in targets]
        # Attended transfers only complete after the consult bridge
        if target == TransferStatus.COMPLETED and record.transfer_type == TransferType.ATTENDED.value:
            sources.remove(TransferStatus.INITIATED.value)
            if current == TransferStatus.INITIATED:
                raise InvalidTransferState(
                    f"Attended transfer {record.id} must be bridged before it can complete"
                )

        now = datetime.utcnow()
        values = {"status": target.value, "updated_at": now}
        if detail is not None:
            values["detail"] = detail
        if agent_leg_id:
            values["agent_leg_id"] = agent_leg_id
        if target.is_terminal:
            values["in_flight_leg_id"] = None
            values["completed_at"] = now

        transfer_id = record.id
        statement = (
            update(CallTransfer)
            .where(CallTransfer.id == transfer_id, CallTransfer.status.in_(sources))
            .values(**values)
        )
        changed = await self._update_where(record, statement, f"move transfer {transfer_id} to {target.value}")
        if not changed:
            logger.warning(
                f"[TRANSFER LEDGER] Transfer {transfer_id} is already {record.status}; "
                f"{current.value} -> {target.value} not applied"
            )
            raise InvalidTransferState(
                f"Transfer {transfer_id} is {record.status}; cannot move to {target.value}"
            )
        logger.info(f"[TRANSFER LEDGER] Transfer {transfer_id}: {current.value} -> {target.value}")
        return record
