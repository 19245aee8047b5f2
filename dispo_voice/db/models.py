"""Database models."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class CallSessionRecord(Base):
    """Leg registry row: one customer call and the legs attached to it."""

    __tablename__ = "call_sessions"

    session_id = Column(String, primary_key=True)
    agent_id = Column(String, nullable=True, index=True)
    customer_leg_id = Column(String, nullable=True, index=True)
    agent_leg_id = Column(String, nullable=True, index=True)
    consult_leg_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class CallLegRecord(Base):
    """Lifecycle of a single call-control leg, advanced by webhook events."""

    __tablename__ = "call_legs"

    leg_id = Column(String, primary_key=True)
    session_id = Column(String, nullable=False, index=True)
    role = Column(String, nullable=False)  # customer, agent, consult
    state = Column(String, nullable=False)  # dialing, ringing, active, on_hold, bridged, ended
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class CallTransfer(Base):
    """Audit record of one transfer attempt."""

    __tablename__ = "call_transfers"

    id = Column(Integer, primary_key=True, index=True)
    call_control_id = Column(String, nullable=False, index=True)  # customer leg
    session_id = Column(String, nullable=True, index=True)
    transfer_type = Column(String, nullable=False)  # blind, attended
    destination = Column(String, nullable=False)
    consult_leg_id = Column(String, unique=True, nullable=True, index=True)
    agent_leg_id = Column(String, nullable=True)
    status = Column(String, default="initiated", nullable=False)  # initiated, bridged, completed, failed, canceled
    # Holds the customer leg id only while the transfer is in flight
    in_flight_leg_id = Column(String, unique=True, nullable=True)
    command_id = Column(String, nullable=True)
    bridge_command_id = Column(String, nullable=True)
    detail = Column(Text, nullable=True)
    initiated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
