"""Call transfer schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Leg registry: one row per customer call
    op.create_table(
        'call_sessions',
        sa.Column('session_id', sa.String(), nullable=False),
        sa.Column('agent_id', sa.String(), nullable=True),
        sa.Column('customer_leg_id', sa.String(), nullable=True),
        sa.Column('agent_leg_id', sa.String(), nullable=True),
        sa.Column('consult_leg_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('session_id')
    )
    op.create_index(op.f('ix_call_sessions_agent_id'), 'call_sessions', ['agent_id'], unique=False)
    op.create_index(op.f('ix_call_sessions_customer_leg_id'), 'call_sessions', ['customer_leg_id'], unique=False)
    op.create_index(op.f('ix_call_sessions_agent_leg_id'), 'call_sessions', ['agent_leg_id'], unique=False)
    op.create_index(op.f('ix_call_sessions_consult_leg_id'), 'call_sessions', ['consult_leg_id'], unique=False)

    # Leg lifecycle, advanced by webhooks
    op.create_table(
        'call_legs',
        sa.Column('leg_id', sa.String(), nullable=False),
        sa.Column('session_id', sa.String(), nullable=False),
        sa.Column('role', sa.String(), nullable=False),
        sa.Column('state', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('leg_id')
    )
    op.create_index(op.f('ix_call_legs_session_id'), 'call_legs', ['session_id'], unique=False)

    # Transfer ledger
    op.create_table(
        'call_transfers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('call_control_id', sa.String(), nullable=False),
        sa.Column('session_id', sa.String(), nullable=True),
        sa.Column('transfer_type', sa.String(), nullable=False),
        sa.Column('destination', sa.String(), nullable=False),
        sa.Column('consult_leg_id', sa.String(), nullable=True),
        sa.Column('agent_leg_id', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('in_flight_leg_id', sa.String(), nullable=True),
        sa.Column('command_id', sa.String(), nullable=True),
        sa.Column('bridge_command_id', sa.String(), nullable=True),
        sa.Column('detail', sa.Text(), nullable=True),
        sa.Column('initiated_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('in_flight_leg_id')
    )
    op.create_index(op.f('ix_call_transfers_id'), 'call_transfers', ['id'], unique=False)
    op.create_index(op.f('ix_call_transfers_call_control_id'), 'call_transfers', ['call_control_id'], unique=False)
    op.create_index(op.f('ix_call_transfers_session_id'), 'call_transfers', ['session_id'], unique=False)
    op.create_index(op.f('ix_call_transfers_consult_leg_id'), 'call_transfers', ['consult_leg_id'], unique=True)


def downgrade() -> None:
    op.drop_table('call_transfers')
    op.drop_table('call_legs')
    op.drop_table('call_sessions')
