"""Call-control command models."""
from typing import Any, Dict, Optional
from pydantic import BaseModel


class CommandAck(BaseModel):
    """Acknowledgement of a call-control command."""

    leg_id: str
    action: str
    command_id: Optional[str] = None
    result: Optional[str] = None
    data: Dict[str, Any] = {}
