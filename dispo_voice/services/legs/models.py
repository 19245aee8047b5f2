"""Call leg models."""
from enum import Enum
from typing import Optional
from pydantic import BaseModel


class LegRole(str, Enum):
    """Role a leg plays within a call session."""

    CUSTOMER = "customer"
    AGENT = "agent"
    CONSULT = "consult"

    def __str__(self) -> str:
        return self.value


class LegState(str, Enum):
    """Lifecycle of a leg as reported by the platform."""

    DIALING = "dialing"
    RINGING = "ringing"
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    BRIDGED = "bridged"
    ENDED = "ended"  # terminal

    def __str__(self) -> str:
        return self.value


class ActiveLegs(BaseModel):
    """Leg ids currently attached to a session."""

    session_id: str
    customer_leg_id: Optional[str] = None
    agent_leg_id: Optional[str] = None
    consult_leg_id: Optional[str] = None


class LegLocation(BaseModel):
    """Where a leg id was found in the registry."""

    session_id: str
    role: LegRole
