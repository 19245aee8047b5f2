"""Call leg registry."""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dispo_voice.db.models import CallLegRecord, CallSessionRecord
from dispo_voice.services.exceptions import SessionNotFound, StorageError
from dispo_voice.services.legs.models import ActiveLegs, LegLocation, LegRole, LegState

logger = logging.getLogger(__name__)

_ROLE_COLUMNS = {
    LegRole.CUSTOMER: "customer_leg_id",
    LegRole.AGENT: "agent_leg_id",
    LegRole.CONSULT: "consult_leg_id",
}


class CallLegRegistry:
    """
    Maps session ids to the call-control legs attached to them.

    Each role lives in its own column and is written with a keyed upsert that
    touches only that column, so concurrent writers for different roles of
    the same session never clobber each other.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql_insert
        if dialect == "sqlite":
            return sqlite_insert
        raise StorageError(f"Leg registry does not support the {dialect} dialect")

    async def _execute_and_commit(self, statement, what: str) -> None:
        try:
            await self.db.execute(statement)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"[LEG REGISTRY] Failed to {what}: {type(e).__name__}: {e}", exc_info=True)
            raise StorageError(f"Failed to {what}") from e

    async def _fetch_one(self, query, what: str):
        try:
            result = await self.db.execute(query.execution_options(populate_existing=True))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"[LEG REGISTRY] Failed to read {what}: {type(e).__name__}: {e}", exc_info=True)
            raise StorageError(f"Failed to read {what}") from e

    async def get_session(self, session_id: str) -> Optional[CallSessionRecord]:
        """Get the registry row for a session."""
        return await self._fetch_one(
            select(CallSessionRecord).where(CallSessionRecord.session_id == session_id),
            f"session {session_id}",
        )

    async def get_active_legs(self, session_id: str) -> ActiveLegs:
        """Resolve a session to its leg ids. Raises SessionNotFound for unknown sessions."""
        record = await self.get_session(session_id)
        if record is None:
            raise SessionNotFound(session_id)
        return ActiveLegs(
            session_id=record.session_id,
            customer_leg_id=record.customer_leg_id,
            agent_leg_id=record.agent_leg_id,
            consult_leg_id=record.consult_leg_id,
        )

    async def set_leg(
        self,
        session_id: str,
        role: LegRole,
        leg_id: str,
        agent_id: Optional[str] = None,
    ) -> None:
        """Record ``leg_id`` as the session's leg for ``role``."""
        column = _ROLE_COLUMNS[LegRole(role)]
        now = datetime.utcnow()
        values = {"session_id": session_id, column: leg_id, "created_at": now, "updated_at": now}
        changes = {column: leg_id, "updated_at": now}
        if agent_id:
            values["agent_id"] = agent_id
            changes["agent_id"] = agent_id

        insert = self._insert()
        statement = (
            insert(CallSessionRecord)
            .values(**values)
            .on_conflict_do_update(index_elements=[CallSessionRecord.session_id], set_=changes)
        )
        await self._execute_and_commit(statement, f"store {role} leg for session {session_id}")
        logger.info(f"[LEG REGISTRY] Stored {LegRole(role).value} leg {leg_id} for session {session_id}")

    async def clear_leg(self, session_id: str, role: LegRole, leg_id: Optional[str] = None) -> None:
        """Detach the leg for ``role`` from the session, only if it is still ``leg_id`` when given."""
        column = _ROLE_COLUMNS[LegRole(role)]
        statement = (
            update(CallSessionRecord)
            .where(CallSessionRecord.session_id == session_id)
            .values({column: None, "updated_at": datetime.utcnow()})
        )
        if leg_id is not None:
            statement = statement.where(getattr(CallSessionRecord, column) == leg_id)
        await self._execute_and_commit(statement, f"clear {role} leg for session {session_id}")

    async def clear_session(self, session_id: str) -> None:
        """Remove the session and the legs recorded for it."""
        try:
            await self.db.execute(
                delete(CallLegRecord).where(CallLegRecord.session_id == session_id)
            )
            await self.db.execute(
                delete(CallSessionRecord).where(CallSessionRecord.session_id == session_id)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"[LEG REGISTRY] Failed to clear session {session_id}: {e}", exc_info=True)
            raise StorageError(f"Failed to clear session {session_id}") from e
        logger.info(f"[LEG REGISTRY] Cleared session {session_id}")

    async def find_leg(self, leg_id: str) -> Optional[LegLocation]:
        """Find which session and role a leg id is registered under."""
        record = await self._fetch_one(
            select(CallSessionRecord)
            .where(
                or_(
                    CallSessionRecord.customer_leg_id == leg_id,
                    CallSessionRecord.agent_leg_id == leg_id,
                    CallSessionRecord.consult_leg_id == leg_id,
                )
            )
            .order_by(CallSessionRecord.updated_at.desc())
            .limit(1),
            f"session of leg {leg_id}",
        )
        if record is None:
            return None
        for role, column in _ROLE_COLUMNS.items():
            if getattr(record, column) == leg_id:
                return LegLocation(session_id=record.session_id, role=role)
        return None

    async def get_leg(self, leg_id: str) -> Optional[CallLegRecord]:
        """Get the lifecycle row for a leg."""
        return await self._fetch_one(
            select(CallLegRecord).where(CallLegRecord.leg_id == leg_id), f"leg {leg_id}"
        )

    async def apply_leg_state(
        self, leg_id: str, session_id: str, role: LegRole, state: LegState
    ) -> Optional[CallLegRecord]:
        """
        Advance a leg to ``state``.

        Ended legs are never reopened; a late event for an ended leg leaves
        the row untouched.
        """
        now = datetime.utcnow()
        insert = self._insert()
        statement = (
            insert(CallLegRecord)
            .values(
                leg_id=leg_id,
                session_id=session_id,
                role=LegRole(role).value,
                state=LegState(state).value,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_update(
                index_elements=[CallLegRecord.leg_id],
                set_={"state": LegState(state).value, "updated_at": now},
                where=CallLegRecord.state != LegState.ENDED.value,
            )
        )
        await self._execute_and_commit(statement, f"update state of leg {leg_id}")
        return await self.get_leg(leg_id)
