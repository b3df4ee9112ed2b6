"""initial call records

Revision ID: 0001
Revises: 
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "call_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("phone_number", sa.String(length=32), nullable=False),
        sa.Column("provider_call_id", sa.String(length=64), nullable=False),
        sa.Column("call_status", sa.String(length=20), nullable=False, server_default="initiated"),
        sa.Column("duration_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duration_confirmed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("recording_url", sa.String(length=1024)),
        sa.Column("recording_id", sa.String(length=64)),
        sa.Column("transcript_text", sa.Text()),
        sa.Column("transcript_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("transcript_sequences", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_call_records_provider_call_id", "call_records", ["provider_call_id"], unique=True)
    op.create_index("ix_call_records_recording_id", "call_records", ["recording_id"])
    op.create_index("ix_call_records_transcript_status", "call_records", ["transcript_status"])
    op.create_index("ix_call_records_created_at", "call_records", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_call_records_created_at", table_name="call_records")
    op.drop_index("ix_call_records_transcript_status", table_name="call_records")
    op.drop_index("ix_call_records_recording_id", table_name="call_records")
    op.drop_index("ix_call_records_provider_call_id", table_name="call_records")
    op.drop_table("call_records")
