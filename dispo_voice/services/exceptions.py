"""
Call Flow Exceptions

Errors raised by the call-control client, leg registry, transfer ledger and
transfer orchestrator. Each carries the HTTP status it maps to.
"""
from typing import Optional


class CallFlowError(Exception):
    """Base exception for call flow errors"""

    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidTransferRequest(CallFlowError):
    """Raised when a required request field is blank"""

    status_code = 400


class MissingLeg(CallFlowError):
    """Raised when a leg required by an action cannot be resolved"""

    status_code = 400

    def __init__(self, role: str, session_id: Optional[str] = None):
        where = f" for session {session_id}" if session_id else ""
        super().__init__(f"Missing {role} leg{where}")
        self.role = role
        self.session_id = session_id


class SessionNotFound(CallFlowError):
    """Raised when no leg registry row exists for a session"""

    status_code = 404

    def __init__(self, session_id: str):
        super().__init__(f"Call session {session_id} not found")
        self.session_id = session_id


class TransferInProgress(CallFlowError):
    """Raised when a transfer is already in flight for the customer leg"""

    status_code = 409

    def __init__(self, customer_leg_id: str):
        super().__init__(f"A transfer is already in progress for leg {customer_leg_id}")
        self.customer_leg_id = customer_leg_id


class InvalidTransferState(CallFlowError):
    """Raised when a transfer phase is invoked out of order"""

    status_code = 409


class UpstreamError(CallFlowError):
    """Raised when the call-control platform rejects a command"""

    def __init__(self, status: int, detail: str, action: str = "command"):
        super().__init__(f"Call control {action} failed with status {status}", details=detail)
        self.status = status
        self.detail = detail
        self.action = action

    @property
    def status_code(self) -> int:
        return self.status if self.status >= 400 else 502


class UpstreamUnavailable(CallFlowError):
    """Raised on network failure or timeout talking to the platform"""

    status_code = 503


class StorageError(CallFlowError):
    """Raised when a registry or ledger write fails"""

    status_code = 500


class ConfigurationError(CallFlowError):
    """Raised when call control settings needed by an action are missing"""

    status_code = 500
