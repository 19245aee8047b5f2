"""Unit tests for the transfer ledger."""
import pytest

from dispo_voice.services.exceptions import InvalidTransferState, StorageError, TransferInProgress
from dispo_voice.services.transfer.ledger import TransferLedger
from dispo_voice.services.transfer.models import TransferStatus, TransferType


class TestCreate:
    """Test record creation."""

    @pytest.mark.asyncio
    async def test_create_initiated_record(self, ledger):
        """Test a new record is initiated and holds the in-flight slot."""
        record = await ledger.create("C1", TransferType.BLIND, "+15551234567", session_id="s1")

        assert record.id is not None
        assert record.status == TransferStatus.INITIATED.value
        assert record.transfer_type == "blind"
        assert record.call_control_id == "C1"
        assert record.in_flight_leg_id == "C1"
        assert record.command_id
        assert record.initiated_at is not None
        assert record.completed_at is None

    @pytest.mark.asyncio
    async def test_second_in_flight_record_rejected(self, ledger):
        """Test only one record per customer leg can be in flight."""
        first = await ledger.create("C1", TransferType.BLIND, "+15551234567")
        first_id = first.id

        with pytest.raises(TransferInProgress):
            await ledger.create("C1", TransferType.ATTENDED, "+15557654321")

        in_flight = await ledger.get_in_flight_for_leg("C1")
        assert in_flight.id == first_id

    @pytest.mark.asyncio
    async def test_terminal_record_releases_slot(self, ledger):
        """Test a new transfer may start once the previous one ended."""
        first = await ledger.create("C1", TransferType.BLIND, "+15551234567")
        await ledger.transition(first, TransferStatus.FAILED, detail="rejected")

        second = await ledger.create("C1", TransferType.BLIND, "+15557654321")

        assert second.id != first.id
        assert (await ledger.get_in_flight_for_leg("C1")).id == second.id


class TestTransitions:
    """Test status transitions."""

    @pytest.mark.asyncio
    async def test_attended_lifecycle(self, ledger):
        """Test initiated -> bridged -> completed."""
        record = await ledger.create("C1", TransferType.ATTENDED, "+15551234567", session_id="s1")
        await ledger.attach_consult_leg(record, "K1")

        record = await ledger.transition(record, TransferStatus.BRIDGED, agent_leg_id="A1")
        assert record.status == "bridged"
        assert record.agent_leg_id == "A1"
        assert record.completed_at is None

        record = await ledger.transition(record, TransferStatus.COMPLETED)
        assert record.status == "completed"
        assert record.completed_at is not None
        assert record.in_flight_leg_id is None

        assert (await ledger.get_by_consult_leg("K1")).id == record.id

    @pytest.mark.asyncio
    async def test_attended_cannot_skip_bridge(self, ledger):
        """Test an attended record cannot complete from initiated."""
        record = await ledger.create("C1", TransferType.ATTENDED, "+15551234567")

        with pytest.raises(InvalidTransferState):
            await ledger.transition(record, TransferStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_blind_completes_from_initiated(self, ledger):
        """Test a blind record completes without a bridged phase."""
        record = await ledger.create("C1", TransferType.BLIND, "+15551234567")

        record = await ledger.transition(record, TransferStatus.COMPLETED)

        assert record.status == "completed"

    @pytest.mark.asyncio
    async def test_terminal_records_are_final(self, ledger):
        """Test no transition leaves a terminal status."""
        record = await ledger.create("C1", TransferType.BLIND, "+15551234567")
        record = await ledger.transition(record, TransferStatus.FAILED, detail="rejected")

        with pytest.raises(InvalidTransferState):
            await ledger.transition(record, TransferStatus.COMPLETED)
        assert record.detail == "rejected"

    @pytest.mark.asyncio
    async def test_bridge_command_id_is_stable(self, ledger):
        """Test the bridge token is generated once."""
        record = await ledger.create("C1", TransferType.ATTENDED, "+15551234567")

        first = await ledger.ensure_bridge_command_id(record)
        second = await ledger.ensure_bridge_command_id(record)

        assert first == second
        assert first != record.command_id


class TestQueries:
    """Test ledger queries."""

    @pytest.mark.asyncio
    async def test_list_recent_newest_first(self, ledger):
        """Test history is newest first and filtered by session."""
        first = await ledger.create("C1", TransferType.BLIND, "+15551111111", session_id="s1")
        await ledger.transition(first, TransferStatus.FAILED)
        second = await ledger.create("C1", TransferType.BLIND, "+15552222222", session_id="s1")
        await ledger.create("C2", TransferType.BLIND, "+15553333333", session_id="s2")

        records = await ledger.list_recent(session_id="s1")

        assert [r.id for r in records] == [second.id, first.id]
        assert len(await ledger.list_recent()) == 3
        assert len(await ledger.list_recent(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_latest_in_flight_for_session(self, ledger):
        """Test terminal records are skipped."""
        record = await ledger.create("C1", TransferType.BLIND, "+15551111111", session_id="s1")
        assert (await ledger.get_latest_in_flight_for_session("s1")).id == record.id

        await ledger.transition(record, TransferStatus.CANCELED)
        assert await ledger.get_latest_in_flight_for_session("s1") is None


class TestConcurrentWriters:
    """Test writers holding stale copies of the same record."""

    @pytest.mark.asyncio
    async def test_stale_transition_cannot_leave_terminal_status(self, session_factory):
        """Test a record failed by one writer is not completed by another."""
        async with session_factory() as db_a, session_factory() as db_b:
            ledger_a, ledger_b = TransferLedger(db_a), TransferLedger(db_b)
            record = await ledger_a.create("C1", TransferType.ATTENDED, "+15551234567", session_id="s1")
            await ledger_a.attach_consult_leg(record, "K1")
            record = await ledger_a.transition(record, TransferStatus.BRIDGED, agent_leg_id="A1")

            other = await ledger_b.get_by_consult_leg("K1")
            await ledger_b.transition(other, TransferStatus.FAILED, detail="Customer leg ended")

            assert record.status == TransferStatus.BRIDGED.value
            with pytest.raises(InvalidTransferState):
                await ledger_a.transition(record, TransferStatus.COMPLETED)

            stored = await ledger_a.get_by_consult_leg("K1")
            assert stored.status == TransferStatus.FAILED.value
            assert stored.detail == "Customer leg ended"

    @pytest.mark.asyncio
    async def test_concurrent_bridge_tokens_agree(self, session_factory):
        """Test two writers that both saw no bridge token end up with the same one."""
        async with session_factory() as db_a, session_factory() as db_b:
            ledger_a, ledger_b = TransferLedger(db_a), TransferLedger(db_b)
            record = await ledger_a.create("C1", TransferType.ATTENDED, "+15551234567")
            await ledger_a.attach_consult_leg(record, "K1")
            other = await ledger_b.get_by_consult_leg("K1")
            assert record.bridge_command_id is None
            assert other.bridge_command_id is None

            token_a = await ledger_a.ensure_bridge_command_id(record)
            token_b = await ledger_b.ensure_bridge_command_id(other)

            assert token_a == token_b


class TestStorageFailures:
    """Test read failures surface as StorageError."""

    @pytest.mark.asyncio
    async def test_reads_raise_storage_error(self, broken_db):
        """Test ledger lookups wrap database errors."""
        ledger = TransferLedger(broken_db)

        with pytest.raises(StorageError):
            await ledger.get_by_consult_leg("K1")
        with pytest.raises(StorageError):
            await ledger.get_in_flight_for_leg("C1")
        with pytest.raises(StorageError):
            await ledger.list_recent()
