"""Transfer state models."""
from enum import Enum
from typing import Dict, FrozenSet, Optional
from pydantic import BaseModel


class TransferType(str, Enum):
    """Kind of transfer."""

    BLIND = "blind"
    ATTENDED = "attended"

    def __str__(self) -> str:
        return self.value


class TransferStatus(str, Enum):
    """Status of a transfer record."""

    INITIATED = "initiated"
    BRIDGED = "bridged"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: FrozenSet[TransferStatus] = frozenset(
    {TransferStatus.COMPLETED, TransferStatus.FAILED, TransferStatus.CANCELED}
)

IN_FLIGHT_STATUSES: FrozenSet[TransferStatus] = frozenset(
    {TransferStatus.INITIATED, TransferStatus.BRIDGED}
)

ALLOWED_TRANSITIONS: Dict[TransferStatus, FrozenSet[TransferStatus]] = {
    TransferStatus.INITIATED: frozenset(
        {TransferStatus.BRIDGED, TransferStatus.COMPLETED, TransferStatus.FAILED, TransferStatus.CANCELED}
    ),
    TransferStatus.BRIDGED: frozenset(
        {TransferStatus.COMPLETED, TransferStatus.FAILED, TransferStatus.CANCELED}
    ),
    TransferStatus.COMPLETED: frozenset(),
    TransferStatus.FAILED: frozenset(),
    TransferStatus.CANCELED: frozenset(),
}


class TransferCompletion(BaseModel):
    """Outcome of completing an attended transfer."""

    transfer_id: int
    playback_stopped: bool
    agent_hangup_ok: bool
    agent_hangup_error: Optional[str] = None
