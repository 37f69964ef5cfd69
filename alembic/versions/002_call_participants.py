"""Call participants

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 00:00:00.000000

"""
import json

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create call_participants table
    op.create_table(
        'call_participants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_call_participants_id'), 'call_participants', ['id'], unique=False)
    op.create_index(op.f('ix_call_participants_session_id'), 'call_participants', ['session_id'], unique=False)
    op.create_index(op.f('ix_call_participants_user_id'), 'call_participants', ['user_id'], unique=False)

    # Backfill from call_records.participant_ids
    connection = op.get_bind()
    records = connection.execute(
        sa.text("SELECT session_id, participant_ids FROM call_records")
    ).fetchall()
    call_participants = sa.table(
        'call_participants',
        sa.column('session_id', sa.String()),
        sa.column('user_id', sa.String()),
    )
    rows = []
    for session_id, participant_ids in records:
        if isinstance(participant_ids, str):
            participant_ids = json.loads(participant_ids)
        rows.extend({"session_id": session_id, "user_id": u} for u in participant_ids or [])
    if rows:
        op.bulk_insert(call_participants, rows)


def downgrade() -> None:
    op.drop_table('call_participants')
